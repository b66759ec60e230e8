from unittest.mock import Mock, patch

import requests
from django.test import SimpleTestCase, override_settings

from .auth import verify_parent
from .client import BackendAuthError, BackendError, api_post, auth_get_user, rest_get
from .directory import BackendDirectory


REST = "https://backend.test/rest/v1"
API = "https://portal.test/api"
AUTH = "https://backend.test/auth/v1"


def _response(payload=None, status=200, content=b"[]"):
    resp = Mock()
    resp.status_code = status
    resp.content = content
    resp.text = str(payload)
    resp.json.return_value = payload
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(response=resp)
    return resp


STUDENT_ROW = {
    "id": "0b6c",
    "student_id": "STU-001",
    "first_name": "Amani",
    "last_name": "Doe",
    "grade_level": "Grade 3",
    "school_id": "school-1",
    "parent_name": "Jane Doe",
    "parent_email": "jane@x.com",
    "parent_phone": None,
    "schools": {"name": "Hillside Academy"},
}


@override_settings(
    BACKEND_REST_URL=REST,
    BACKEND_API_URL=API,
    BACKEND_AUTH_URL=AUTH,
    BACKEND_ANON_KEY="anon-key",
    BACKEND_TIMEOUT_SECONDS=7,
)
class ClientTests(SimpleTestCase):
    @patch("backend.client.requests.request")
    def test_get_sends_bearer_and_timeout(self, request):
        request.return_value = _response([{"id": 1}])
        self.assertEqual(rest_get("tok", "students", {"select": "*"}), [{"id": 1}])
        args, kwargs = request.call_args
        self.assertEqual(args, ("GET", f"{REST}/students"))
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer tok")
        self.assertEqual(kwargs["headers"]["apikey"], "anon-key")
        self.assertEqual(kwargs["timeout"], 7)
        self.assertEqual(kwargs["params"], {"select": "*"})

    @patch("backend.client.requests.request")
    def test_post_sends_json(self, request):
        request.return_value = _response({"ok": True}, content=b"{}")
        api_post("tok", "parent/link-student", {"a": 1})
        args, kwargs = request.call_args
        self.assertEqual(args, ("POST", f"{API}/parent/link-student"))
        self.assertEqual(kwargs["json"], {"a": 1})
        self.assertEqual(kwargs["headers"]["Content-Type"], "application/json")

    @patch("backend.client.requests.request")
    def test_missing_token_never_calls_out(self, request):
        with self.assertRaises(BackendAuthError):
            rest_get("", "students")
        request.assert_not_called()

    @patch("backend.client.requests.request")
    def test_error_status_raises(self, request):
        request.return_value = _response({"message": "nope"}, status=500)
        with self.assertRaises(BackendError):
            rest_get("tok", "students")

    @patch("backend.client.requests.request")
    def test_transport_error_raises(self, request):
        request.side_effect = requests.ConnectionError("refused")
        with self.assertRaises(BackendError):
            rest_get("tok", "students")

    @patch("backend.client.requests.request")
    def test_non_json_body_raises(self, request):
        resp = _response(content=b"<html>")
        resp.json.side_effect = ValueError("no json")
        request.return_value = resp
        with self.assertRaises(BackendError):
            rest_get("tok", "students")

    @patch("backend.client.requests.request")
    def test_rejected_token_raises_auth_error(self, request):
        request.return_value = _response({"message": "JWT expired"}, status=401)
        with self.assertRaises(BackendAuthError):
            auth_get_user("expired")
        self.assertEqual(request.call_args.args, ("GET", f"{AUTH}/user"))

    @override_settings(BACKEND_REST_URL="")
    def test_unconfigured_rest_url_raises(self):
        with self.assertRaises(BackendError):
            rest_get("tok", "students")


class DirectoryTests(SimpleTestCase):
    def setUp(self):
        self.directory = BackendDirectory("tok")

    @patch("backend.directory.rest_get")
    def test_parent_search_builds_or_filter(self, rest_get_mock):
        rest_get_mock.return_value = [STUDENT_ROW]
        [record] = self.directory.search_by_parent("Jane Doe", "jane@x.com")
        params = rest_get_mock.call_args.kwargs["params"]
        self.assertEqual(
            params["or"],
            '(parent_name.ilike."*Jane Doe*",parent_email.ilike."*jane@x.com*")',
        )
        self.assertEqual(record.id, "0b6c")
        self.assertEqual(record.school_name, "Hillside Academy")
        self.assertEqual(record.full_name, "Amani Doe")

    @patch("backend.directory.rest_get")
    def test_child_search_is_scoped_to_school(self, rest_get_mock):
        rest_get_mock.return_value = []
        self.assertEqual(self.directory.search_by_child("Am", "school-1"), [])
        params = rest_get_mock.call_args.kwargs["params"]
        self.assertEqual(params["school_id"], "eq.school-1")
        self.assertEqual(params["first_name"], "ilike.*Am*")

    @patch("backend.directory.rest_get")
    def test_malformed_rows_raise(self, rest_get_mock):
        rest_get_mock.return_value = [{"first_name": "No id"}]
        with self.assertRaises(BackendError):
            self.directory.search_by_parent("Jane", "jane@x.com")

    @patch("backend.directory.rest_get")
    def test_non_list_payload_raises(self, rest_get_mock):
        rest_get_mock.return_value = {"message": "oops"}
        with self.assertRaises(BackendError):
            self.directory.search_by_child("Am", "school-1")

    @patch("backend.directory.rest_get")
    def test_linked_students_unwrap_join(self, rest_get_mock):
        rest_get_mock.return_value = [{"student_id": "0b6c", "students": STUDENT_ROW}]
        [record] = self.directory.list_linked_students("parent-1")
        self.assertEqual(record.student_id, "STU-001")
        self.assertEqual(rest_get_mock.call_args.kwargs["params"]["parent_id"], "eq.parent-1")

    @patch("backend.directory.api_post")
    def test_create_relationship_payload(self, api_post_mock):
        api_post_mock.return_value = {"ok": True}
        self.directory.create_relationship("parent-1", "0b6c", "guardian", False)
        api_post_mock.assert_called_once_with(
            "tok",
            "parent/link-student",
            {
                "parent_id": "parent-1",
                "student_id": "0b6c",
                "relationship": "guardian",
                "is_primary": False,
            },
        )


class VerifyParentTests(SimpleTestCase):
    @patch("backend.auth.rest_get")
    @patch("backend.auth.auth_get_user")
    def test_resolves_parent_profile(self, auth_get_user_mock, rest_get_mock):
        auth_get_user_mock.return_value = {"id": "user-1", "email": "jane@x.com"}
        rest_get_mock.return_value = [
            {"id": "parent-1", "user_id": "user-1", "first_name": "Jane", "last_name": "Doe", "phone": None}
        ]
        identity = verify_parent("tok")
        self.assertEqual(identity["parent_id"], "parent-1")
        self.assertEqual(identity["email"], "jane@x.com")
        self.assertEqual(identity["phone"], "")
        params = rest_get_mock.call_args.kwargs["params"]
        self.assertEqual(params["user_id"], "eq.user-1")
        self.assertEqual(params["role"], "eq.parent")

    @patch("backend.auth.rest_get", return_value=[])
    @patch("backend.auth.auth_get_user")
    def test_account_without_parent_profile(self, auth_get_user_mock, rest_get_mock):
        auth_get_user_mock.return_value = {"id": "user-1", "email": "admin@x.com"}
        with self.assertRaises(BackendAuthError):
            verify_parent("tok")

    @patch("backend.auth.auth_get_user", return_value=None)
    def test_empty_account_payload(self, auth_get_user_mock):
        with self.assertRaises(BackendError):
            verify_parent("tok")
