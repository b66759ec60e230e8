"""Fee assignments for the parent's linked students.

The backend returns one entry per student with its fee categories, payment
schedules and installments. Amounts arrive validated and rendered as decimal
strings so the payload can be cached as JSON unchanged.
"""
import logging
from datetime import date
from decimal import Decimal

from django.conf import settings
from django.utils import timezone
from django.utils.dateparse import parse_date

from backend.client import BackendError, api_get
from backend.serializers import StudentFeesResponseSerializer, decode

logger = logging.getLogger(__name__)


def empty_fees():
    return {
        "students": [],
        "count": 0,
        "summary": {
            "total_students": 0,
            "total_assignments": 0,
            "total_amount_due": "0.00",
        },
    }


def get_student_fees(access_token: str) -> dict:
    payload = api_get(access_token, "parent/student-fees-detailed")
    data = decode(StudentFeesResponseSerializer, payload or {}, label="student fees").data
    logger.info("Fetched fees for %d students", data["count"])
    return {
        "students": list(data["student_fees"]),
        "count": data["count"],
        "summary": dict(data["summary"]),
    }


def get_student_fees_by_id(access_token: str, student_id: str):
    try:
        fees = get_student_fees(access_token)
    except BackendError as e:
        logger.warning("Fee lookup failed for student %s: %s", student_id, str(e))
        return None
    return find_student(fees, student_id)


def find_student(fees: dict, student_id: str):
    for entry in fees.get("students", []):
        if entry["student"]["id"] == str(student_id):
            return entry
    return None


def _due(installment) -> date | None:
    return parse_date(installment.get("due_date") or "")


def upcoming_payments(fees: dict, today: date | None = None):
    """Unpaid installments due after ``today``, soonest first."""
    today = today or timezone.localdate()
    out = []
    for entry in fees.get("students", []):
        student = entry["student"]
        name = f"{student.get('first_name', '')} {student.get('last_name', '')}".strip()
        for schedule in entry.get("payment_schedules", []):
            for inst in schedule.get("installments", []):
                due = _due(inst)
                if inst.get("paid") or due is None or due <= today:
                    continue
                out.append(
                    {
                        "student_id": student["id"],
                        "student_name": name,
                        "installment": {
                            "id": inst["id"],
                            "installment_number": inst["installment_number"],
                            "name": inst["name"],
                            "amount": inst["amount"],
                            "due_date": inst["due_date"],
                        },
                        "fee_template_name": schedule.get("template_name") or schedule.get("name", ""),
                    }
                )
    out.sort(key=lambda p: p["installment"]["due_date"])
    return out


def payment_summary(fees: dict):
    total_due = Decimal("0")
    total_paid = Decimal("0")
    for entry in fees.get("students", []):
        summary = entry.get("summary") or {}
        total_due += Decimal(str(summary.get("total_amount") or "0"))
        total_paid += Decimal(str(summary.get("paid_amount") or "0"))
    return {
        "total_due": total_due,
        "total_paid": total_paid,
        "remaining_amount": total_due - total_paid,
        "students_count": len(fees.get("students", [])),
        "assignments_count": (fees.get("summary") or {}).get("total_assignments", 0),
    }


def refresh_student_fees(session, force: bool = False) -> dict:
    cache = session.cache
    return cache.refresh_or_load(
        settings.FEES_MAX_AGE_MINUTES,
        lambda: get_student_fees(session.access_token),
        lambda: cache.get_student_fees() or empty_fees(),
        cache.save_student_fees,
        force=force,
    )
