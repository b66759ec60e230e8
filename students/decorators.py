from functools import wraps
from django.http import JsonResponse


def parent_session_required(view_func):
    """
    Guard JSON views that talk to the backend on the parent's behalf.
    Expects ParentSessionMiddleware to have set request.parent_session.
    """
    @wraps(view_func)
    def _wrapped(request, *args, **kwargs):
        session = getattr(request, "parent_session", None)
        if session is None or not session.active:
            return JsonResponse(
                {"ok": False, "error": "No active session found"}, status=401
            )
        return view_func(request, *args, **kwargs)
    return _wrapped
