import logging

from .client import api_post, rest_get
from .serializers import (
    LinkedRowSerializer,
    StudentRowSerializer,
    decode,
    to_student_record,
)

logger = logging.getLogger(__name__)


STUDENT_FIELDS = (
    "id,student_id,first_name,last_name,grade_level,school_id,"
    "parent_name,parent_email,parent_phone,schools!inner(name)"
)


def _quoted(value: str) -> str:
    # PostgREST reserves , . ( ) inside logical filters unless double-quoted
    safe = (value or "").replace("\\", "\\\\").replace('"', '\\"')
    return f'"{safe}"'


def _ilike_contains(value: str) -> str:
    return f"*{(value or '').strip()}*"


class BackendDirectory:
    """Student directory and parent links held by the backend.

    Every call raises ``BackendError`` on failure; recovering from that is up
    to the caller.
    """

    def __init__(self, access_token: str):
        self.access_token = access_token

    def search_by_parent(self, parent_name: str, parent_email: str):
        clause = ",".join(
            [
                f"parent_name.ilike.{_quoted(_ilike_contains(parent_name))}",
                f"parent_email.ilike.{_quoted(_ilike_contains(parent_email))}",
            ]
        )
        rows = rest_get(
            self.access_token,
            "students",
            params={"select": STUDENT_FIELDS, "or": f"({clause})"},
        )
        ser = decode(StudentRowSerializer, rows, many=True, label="students")
        logger.info(
            "Directory parent search: name=%s email=%s matches=%d",
            parent_name,
            parent_email,
            len(ser.validated_data),
        )
        return [to_student_record(r) for r in ser.validated_data]

    def search_by_child(self, child_name: str, school_id: str):
        rows = rest_get(
            self.access_token,
            "students",
            params={
                "select": STUDENT_FIELDS,
                "school_id": f"eq.{school_id}",
                "first_name": f"ilike.{_ilike_contains(child_name)}",
            },
        )
        ser = decode(StudentRowSerializer, rows, many=True, label="students")
        logger.info(
            "Directory child search: child=%s school=%s matches=%d",
            child_name,
            school_id,
            len(ser.validated_data),
        )
        return [to_student_record(r) for r in ser.validated_data]

    def create_relationship(
        self, parent_id: str, student_id: str, relationship: str, is_primary: bool
    ):
        result = api_post(
            self.access_token,
            "parent/link-student",
            {
                "parent_id": parent_id,
                "student_id": student_id,
                "relationship": relationship,
                "is_primary": is_primary,
            },
        )
        logger.info(
            "Relationship created: parent=%s student=%s relationship=%s",
            parent_id,
            student_id,
            relationship,
        )
        return result

    def list_linked_students(self, parent_id: str):
        rows = rest_get(
            self.access_token,
            "parent_students",
            params={
                "select": f"student_id,students!inner({STUDENT_FIELDS})",
                "parent_id": f"eq.{parent_id}",
            },
        )
        ser = decode(LinkedRowSerializer, rows, many=True, label="parent_students")
        return [to_student_record(r["students"]) for r in ser.validated_data]
