from django.http import JsonResponse
from django.views.decorators.http import require_GET
from students.decorators import parent_session_required
from .service import find_student, payment_summary, refresh_student_fees, upcoming_payments


def _load(request):
    force = request.GET.get("refresh") in ("1", "true", "yes")
    return refresh_student_fees(request.parent_session, force=force)


def _error(request):
    err = request.parent_session.cache.last_error
    return str(err) if err else None


@require_GET
@parent_session_required
def index(request):
    fees = _load(request)
    return JsonResponse(
        {
            "students": fees["students"],
            "summary": fees["summary"],
            "payment_summary": payment_summary(fees),
            "error": _error(request),
        }
    )


@require_GET
@parent_session_required
def upcoming(request):
    fees = _load(request)
    return JsonResponse({"payments": upcoming_payments(fees), "error": _error(request)})


@require_GET
@parent_session_required
def student_detail(request, student_id):
    entry = find_student(_load(request), student_id)
    if entry is None:
        return JsonResponse({"ok": False, "error": "Student not found"}, status=404)
    return JsonResponse({"ok": True, "student": entry})
