import json
from django.http import JsonResponse
from django.views.decorators.http import require_GET, require_POST
from .decorators import parent_session_required
from .matching import LinkingValidationError
from .workflow import (
    MANUAL_DETAILS_MISSING,
    PROFILE_MISSING,
    LinkingWorkflow,
)


def _json_body(request):
    try:
        data = json.loads(request.body or b"{}")
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _text(data, key):
    value = data.get(key)
    return "" if value is None else str(value)


@require_GET
@parent_session_required
def list_students(request):
    workflow = LinkingWorkflow(request.parent_session)
    force = request.GET.get("refresh") in ("1", "true", "yes")
    students = workflow.refresh_linked_students(force=force)
    return JsonResponse(
        {
            "students": [s.to_dict() for s in students],
            "stale_fallback": workflow.session.cache.last_error is not None,
        }
    )


@require_POST
@parent_session_required
def search_automatic(request):
    state = LinkingWorkflow(request.parent_session).search_automatic()
    status = 400 if state.error == PROFILE_MISSING else 200
    return JsonResponse(state.as_dict(), status=status)


@require_POST
@parent_session_required
def search_manual(request):
    data = _json_body(request)
    state = LinkingWorkflow(request.parent_session).search_manual(
        _text(data, "child_name"), _text(data, "school_id")
    )
    status = 400 if state.error == MANUAL_DETAILS_MISSING else 200
    return JsonResponse(state.as_dict(), status=status)


@require_POST
@parent_session_required
def link_student(request):
    data = _json_body(request)
    student_id = data.get("student_id")
    if not student_id:
        return JsonResponse({"ok": False, "error": "student_id required"}, status=400)
    workflow = LinkingWorkflow(request.parent_session)
    try:
        ok = workflow.link(str(student_id))
    except LinkingValidationError as e:
        return JsonResponse({"ok": False, "error": str(e)}, status=400)
    if not ok:
        return JsonResponse({"ok": False, "error": "Could not link student, please try again"})
    return JsonResponse(
        {"ok": True, "students": [s.to_dict() for s in workflow.linked_students]}
    )
