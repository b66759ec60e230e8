"""Boundary validation for backend payloads.

Every endpoint gets its own serializer; a payload that does not validate is
reported as a ``BackendError`` so callers treat it like an unreachable
backend.
"""
import logging
from rest_framework import serializers

from students.records import StudentRecord
from .client import BackendError

logger = logging.getLogger(__name__)


def _optional_text(**kwargs):
    return serializers.CharField(
        required=False, allow_null=True, allow_blank=True, default=None, **kwargs
    )


class SchoolRefSerializer(serializers.Serializer):
    name = serializers.CharField(allow_blank=True, required=False, default="")


class StudentRowSerializer(serializers.Serializer):
    id = serializers.CharField()
    student_id = serializers.CharField(allow_blank=True, required=False, default="")
    first_name = serializers.CharField(allow_blank=True, allow_null=True)
    last_name = _optional_text()
    grade_level = _optional_text()
    school_id = serializers.CharField()
    parent_name = _optional_text()
    parent_email = _optional_text()
    parent_phone = _optional_text()
    schools = SchoolRefSerializer(required=False, allow_null=True, default=None)


class LinkedRowSerializer(serializers.Serializer):
    student_id = serializers.CharField()
    students = StudentRowSerializer()


class SchoolSerializer(serializers.Serializer):
    id = serializers.CharField()
    name = serializers.CharField()
    address = _optional_text()
    contact_email = _optional_text()
    contact_phone = _optional_text()
    status = serializers.ChoiceField(
        choices=["pending", "pending_verification", "approved", "suspended"]
    )
    verification_status = serializers.ChoiceField(
        choices=["pending", "verified", "rejected"]
    )


class AuthUserSerializer(serializers.Serializer):
    id = serializers.CharField()
    email = serializers.EmailField()


class ParentProfileSerializer(serializers.Serializer):
    id = serializers.CharField()
    user_id = serializers.CharField()
    first_name = serializers.CharField(allow_blank=True, required=False, default="")
    last_name = serializers.CharField(allow_blank=True, required=False, default="")
    phone = _optional_text()


class ProfileSchoolSerializer(serializers.Serializer):
    school_id = _optional_text()


class FeeCategorySerializer(serializers.Serializer):
    id = serializers.CharField()
    name = serializers.CharField()
    description = serializers.CharField(allow_blank=True, required=False, default="")
    amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    is_mandatory = serializers.BooleanField(default=False)
    supports_recurring = serializers.BooleanField(default=False)
    supports_one_time = serializers.BooleanField(default=True)
    category_type = serializers.ChoiceField(choices=["tuition", "additional"])


class InstallmentSerializer(serializers.Serializer):
    id = serializers.CharField()
    installment_number = serializers.IntegerField()
    name = serializers.CharField(allow_blank=True)
    amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    percentage = serializers.DecimalField(
        max_digits=6, decimal_places=2, required=False, default=0
    )
    due_date = serializers.DateField()
    term_id = _optional_text()
    paid = serializers.BooleanField(default=False)


class PaymentScheduleSerializer(serializers.Serializer):
    id = serializers.CharField()
    name = serializers.CharField(allow_blank=True)
    schedule_type = serializers.CharField(allow_blank=True, required=False, default="")
    discount_percentage = serializers.DecimalField(
        max_digits=6, decimal_places=2, required=False, default=0
    )
    template_name = serializers.CharField(allow_blank=True, required=False, default="")
    installments = InstallmentSerializer(many=True, required=False, default=list)


class AcademicYearSerializer(serializers.Serializer):
    id = serializers.CharField()
    name = serializers.CharField()
    start_date = serializers.DateField()
    end_date = serializers.DateField()
    term_structure = serializers.CharField(allow_blank=True, required=False, default="")


class FeeStudentSerializer(serializers.Serializer):
    id = serializers.CharField()
    student_id = serializers.CharField(allow_blank=True, required=False, default="")
    first_name = serializers.CharField(allow_blank=True)
    last_name = serializers.CharField(allow_blank=True, required=False, default="")
    grade_level = _optional_text()
    school_id = serializers.CharField()
    school_name = serializers.CharField(allow_blank=True, required=False, default="")


class StudentFeeSummarySerializer(serializers.Serializer):
    total_amount = serializers.DecimalField(max_digits=14, decimal_places=2, default=0)
    paid_amount = serializers.DecimalField(max_digits=14, decimal_places=2, default=0)
    outstanding_amount = serializers.DecimalField(
        max_digits=14, decimal_places=2, default=0
    )
    total_installments = serializers.IntegerField(default=0)
    paid_installments = serializers.IntegerField(default=0)
    upcoming_payments = serializers.IntegerField(default=0)


class StudentFeeDataSerializer(serializers.Serializer):
    student = FeeStudentSerializer()
    academic_year = AcademicYearSerializer(required=False, allow_null=True, default=None)
    fee_categories = FeeCategorySerializer(many=True, required=False, default=list)
    payment_schedules = PaymentScheduleSerializer(many=True, required=False, default=list)
    summary = StudentFeeSummarySerializer(required=False, default=dict)


class FeesTotalsSerializer(serializers.Serializer):
    total_students = serializers.IntegerField(default=0)
    total_assignments = serializers.IntegerField(default=0)
    total_amount_due = serializers.DecimalField(
        max_digits=14, decimal_places=2, default=0
    )


class StudentFeesResponseSerializer(serializers.Serializer):
    student_fees = StudentFeeDataSerializer(many=True, required=False, default=list)
    count = serializers.IntegerField(required=False, default=0)
    summary = FeesTotalsSerializer(required=False, default=dict)


def decode(serializer_class, payload, many=False, label="backend"):
    """Validate a payload and return the serializer (``.validated_data``/``.data``)."""
    ser = serializer_class(data=payload, many=many)
    if not ser.is_valid():
        logger.warning("Malformed %s payload: %s", label, str(ser.errors)[:500])
        raise BackendError(f"Malformed {label} payload")
    return ser


def to_student_record(row: dict) -> StudentRecord:
    school = row.get("schools") or {}
    return StudentRecord(
        id=row["id"],
        student_id=row.get("student_id") or "",
        first_name=row.get("first_name") or "",
        last_name=row.get("last_name") or "",
        grade_level=row.get("grade_level"),
        school_id=row["school_id"],
        school_name=school.get("name") or "",
        parent_name=row.get("parent_name"),
        parent_email=row.get("parent_email"),
        parent_phone=row.get("parent_phone"),
    )
