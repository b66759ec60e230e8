import json
from django.http import JsonResponse
from django.views.decorators.http import require_GET, require_POST
from backend.client import BackendError
from students.decorators import parent_session_required
from .service import get_selected_school, refresh_schools, select_school


@require_GET
@parent_session_required
def index(request):
    session = request.parent_session
    force = request.GET.get("refresh") in ("1", "true", "yes")
    schools = refresh_schools(session, force=force)
    selected = None
    if session.parent_id:
        selected = get_selected_school(session.access_token, session.parent_id)
    return JsonResponse(
        {
            "schools": schools,
            "selected_school": selected,
            "error": str(session.cache.last_error) if session.cache.last_error else None,
        }
    )


@require_POST
@parent_session_required
def select(request):
    session = request.parent_session
    if not session.parent_id:
        return JsonResponse(
            {"ok": False, "error": "User ID is required to select a school"}, status=400
        )
    try:
        data = json.loads(request.body or b"{}")
    except ValueError:
        data = {}
    if not isinstance(data, dict):
        data = {}
    school_id = str(data.get("school_id") or "")
    try:
        select_school(session.access_token, session.parent_id, school_id)
    except BackendError as e:
        return JsonResponse({"ok": False, "error": f"Failed to select school: {e}"}, status=502)
    return JsonResponse({"ok": True, "school_id": school_id or None})
