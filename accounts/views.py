import json
import logging
from django.contrib.auth import login, logout
from django.http import HttpResponseBadRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST
from backend.auth import verify_parent
from backend.client import BackendAuthError, BackendError
from .models import User
from .session import ParentSession

logger = logging.getLogger(__name__)


def _json_body(request):
    try:
        data = json.loads(request.body or b"{}")
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _parent_user(identity):
    """Local user for a verified parent, created on first sign-in."""
    user = User.objects.filter(email__iexact=identity["email"]).first()
    if user is None:
        user = User.objects.create_user(
            email=identity["email"],
            first_name=identity["first_name"],
            last_name=identity["last_name"],
            phone=identity["phone"],
            external_parent_id=identity["parent_id"],
        )
        logger.info("Created parent user %s for parent_id=%s", user.pk, identity["parent_id"])
        return user
    if not user.is_parent:
        return None
    user.first_name = identity["first_name"]
    user.last_name = identity["last_name"]
    user.phone = identity["phone"]
    user.save(update_fields=["first_name", "last_name", "phone"])
    return user


# the backend access token is the credential here, not a browser session
@csrf_exempt
@require_POST
def start_session(request):
    data = _json_body(request)
    if data is None:
        return HttpResponseBadRequest("invalid JSON")
    access_token = data.get("access_token")
    if not access_token:
        return HttpResponseBadRequest("access_token required")
    try:
        identity = verify_parent(str(access_token))
    except BackendAuthError as e:
        return JsonResponse({"ok": False, "error": str(e)}, status=401)
    except BackendError as e:
        return JsonResponse({"ok": False, "error": f"Sign-in failed: {e}"}, status=502)
    user = _parent_user(identity)
    if user is None:
        logger.warning("Parent sign-in refused for staff account %s", identity["email"])
        return JsonResponse({"ok": False, "error": "Not a parent account"}, status=403)
    login(request, user)
    session = ParentSession.start(
        user,
        str(access_token),
        refresh_token=str(data.get("refresh_token") or ""),
        parent_id=identity["parent_id"],
    )
    return JsonResponse({"ok": True, "profile": session.profile})


@require_POST
def end_session(request):
    if not request.user.is_authenticated:
        return JsonResponse({"ok": False, "error": "Not signed in"}, status=401)
    # user_logged_out clears the parent's cached data
    logout(request)
    return JsonResponse({"ok": True})
