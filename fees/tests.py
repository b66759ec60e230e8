from datetime import date
from decimal import Decimal
from unittest.mock import patch

from django.test import TestCase
from django.urls import reverse

from accounts.models import User
from accounts.session import ParentSession
from backend.client import BackendError
from .service import (
    empty_fees,
    get_student_fees,
    get_student_fees_by_id,
    payment_summary,
    refresh_student_fees,
    upcoming_payments,
)


def _installment(iid, number, due, amount="5000", paid=False):
    return {
        "id": iid,
        "installment_number": number,
        "name": f"Installment {number}",
        "amount": amount,
        "due_date": due,
        "paid": paid,
    }


def _entry(sid, first_name, installments, total="15000", paid="5000"):
    return {
        "student": {
            "id": sid,
            "student_id": f"STU-{sid}",
            "first_name": first_name,
            "last_name": "Doe",
            "grade_level": "Grade 3",
            "school_id": "school-1",
            "school_name": "Hillside Academy",
        },
        "academic_year": {
            "id": "ay-1",
            "name": "2026",
            "start_date": "2026-01-05",
            "end_date": "2026-11-27",
        },
        "fee_categories": [
            {
                "id": "cat-1",
                "name": "Tuition",
                "amount": total,
                "is_mandatory": True,
                "category_type": "tuition",
            }
        ],
        "payment_schedules": [
            {
                "id": "ps-1",
                "name": "Termly",
                "schedule_type": "per_term",
                "template_name": "Standard tuition",
                "installments": installments,
            }
        ],
        "summary": {"total_amount": total, "paid_amount": paid},
    }


PAYLOAD = {
    "student_fees": [
        _entry(
            "s1",
            "Amani",
            [
                _installment("i1", 1, "2026-01-10", paid=True),
                _installment("i2", 2, "2026-12-01"),
                _installment("i3", 3, "2026-11-01"),
            ],
        ),
        _entry("s2", "Baraka", [_installment("i4", 1, "2026-11-15", amount="7500")],
               total="7500", paid="0"),
    ],
    "count": 2,
    "summary": {"total_students": 2, "total_assignments": 3, "total_amount_due": "22500"},
}


class StudentFeesTests(TestCase):
    @patch("fees.service.api_get")
    def test_amounts_come_back_as_decimal_strings(self, api_get):
        api_get.return_value = PAYLOAD
        fees = get_student_fees("tok")
        api_get.assert_called_once_with("tok", "parent/student-fees-detailed")
        self.assertEqual(fees["count"], 2)
        self.assertEqual(fees["summary"]["total_amount_due"], "22500.00")
        first = fees["students"][0]
        self.assertEqual(first["fee_categories"][0]["amount"], "15000.00")
        self.assertEqual(first["academic_year"]["start_date"], "2026-01-05")

    @patch("fees.service.api_get")
    def test_missing_sections_default(self, api_get):
        api_get.return_value = {}
        fees = get_student_fees("tok")
        self.assertEqual(fees["students"], [])
        self.assertEqual(fees["count"], 0)

    @patch("fees.service.api_get")
    def test_by_id(self, api_get):
        api_get.return_value = PAYLOAD
        self.assertEqual(get_student_fees_by_id("tok", "s2")["student"]["first_name"], "Baraka")
        self.assertIsNone(get_student_fees_by_id("tok", "nobody"))

    @patch("fees.service.api_get")
    def test_by_id_failure_is_none(self, api_get):
        api_get.side_effect = BackendError("down")
        self.assertIsNone(get_student_fees_by_id("tok", "s1"))

    @patch("fees.service.api_get")
    def test_upcoming_payments_sorted_by_due_date(self, api_get):
        api_get.return_value = PAYLOAD
        fees = get_student_fees("tok")
        upcoming = upcoming_payments(fees, today=date(2026, 10, 17))
        self.assertEqual([p["installment"]["id"] for p in upcoming], ["i3", "i4", "i2"])
        self.assertEqual(upcoming[1]["student_name"], "Baraka Doe")
        self.assertEqual(upcoming[0]["fee_template_name"], "Standard tuition")

    @patch("fees.service.api_get")
    def test_payment_summary(self, api_get):
        api_get.return_value = PAYLOAD
        summary = payment_summary(get_student_fees("tok"))
        self.assertEqual(summary["total_due"], Decimal("22500"))
        self.assertEqual(summary["total_paid"], Decimal("5000"))
        self.assertEqual(summary["remaining_amount"], Decimal("17500"))
        self.assertEqual(summary["students_count"], 2)
        self.assertEqual(summary["assignments_count"], 3)

    def test_summary_of_nothing(self):
        summary = payment_summary(empty_fees())
        self.assertEqual(summary["total_due"], Decimal("0"))
        self.assertEqual(summary["students_count"], 0)


class RefreshFeesTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(email="jane@x.com")
        self.session = ParentSession.start(self.user, "tok", parent_id="parent-1")

    @patch("fees.service.api_get")
    def test_failure_without_cache_is_empty(self, api_get):
        api_get.side_effect = BackendError("down")
        self.assertEqual(refresh_student_fees(self.session), empty_fees())
        self.assertIsNotNone(self.session.cache.last_error)

    @patch("fees.service.api_get")
    def test_failure_serves_cached_fees(self, api_get):
        api_get.return_value = PAYLOAD
        refresh_student_fees(self.session)
        api_get.side_effect = BackendError("down")
        fees = refresh_student_fees(self.session, force=True)
        self.assertEqual(fees["count"], 2)


class FeeViewsTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(email="jane@x.com")
        self.client.force_login(self.user)
        ParentSession.start(self.user, "tok", parent_id="parent-1")

    @patch("fees.service.api_get")
    def test_student_detail(self, api_get):
        api_get.return_value = PAYLOAD
        r = self.client.get(reverse("fees:student", args=["s1"]))
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["student"]["student"]["id"], "s1")

    @patch("fees.service.api_get")
    def test_unknown_student_is_404(self, api_get):
        api_get.return_value = PAYLOAD
        r = self.client.get(reverse("fees:student", args=["nobody"]))
        self.assertEqual(r.status_code, 404)

    @patch("fees.service.api_get")
    def test_index_serializes_summary(self, api_get):
        api_get.return_value = PAYLOAD
        r = self.client.get(reverse("fees:index"))
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["payment_summary"]["total_due"], "22500.00")
