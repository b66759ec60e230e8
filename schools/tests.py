import json
from unittest.mock import patch

from django.test import TestCase
from django.urls import reverse

from accounts.models import User
from accounts.session import ParentSession
from backend.client import BackendError
from .service import get_available_schools, get_selected_school, refresh_schools, select_school


SCHOOL = {
    "id": "school-1",
    "name": "Hillside Academy",
    "address": "Nairobi",
    "contact_email": None,
    "contact_phone": "",
    "status": "approved",
    "verification_status": "verified",
}


class SchoolServiceTests(TestCase):
    @patch("schools.service.rest_get")
    def test_available_schools_filters_approved_and_verified(self, rest_get):
        rest_get.return_value = [SCHOOL]
        schools = get_available_schools("tok")
        self.assertEqual([s["name"] for s in schools], ["Hillside Academy"])
        params = rest_get.call_args.kwargs["params"]
        self.assertEqual(params["status"], "eq.approved")
        self.assertEqual(params["verification_status"], "eq.verified")
        self.assertEqual(params["order"], "name")

    @patch("schools.service.rest_get")
    def test_unknown_status_is_rejected(self, rest_get):
        rest_get.return_value = [dict(SCHOOL, status="closed")]
        with self.assertRaises(BackendError):
            get_available_schools("tok")

    @patch("schools.service.rest_patch")
    def test_select_school_patches_parent_profile(self, rest_patch):
        select_school("tok", "parent-1", "school-1")
        rest_patch.assert_called_once_with(
            "tok", "profiles", {"id": "eq.parent-1", "role": "eq.parent"}, {"school_id": "school-1"}
        )

    @patch("schools.service.rest_get")
    def test_selected_school(self, rest_get):
        rest_get.side_effect = [[{"school_id": "school-1"}], [SCHOOL]]
        self.assertEqual(get_selected_school("tok", "parent-1")["id"], "school-1")

    @patch("schools.service.rest_get")
    def test_no_selected_school(self, rest_get):
        rest_get.return_value = [{"school_id": None}]
        self.assertIsNone(get_selected_school("tok", "parent-1"))
        self.assertEqual(rest_get.call_count, 1)

    @patch("schools.service.rest_get")
    def test_selected_school_failure_is_none(self, rest_get):
        rest_get.side_effect = BackendError("down")
        self.assertIsNone(get_selected_school("tok", "parent-1"))


class RefreshSchoolsTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(email="jane@x.com")
        self.session = ParentSession.start(self.user, "tok", parent_id="parent-1")

    @patch("schools.service.rest_get")
    def test_second_call_is_served_from_cache(self, rest_get):
        rest_get.return_value = [SCHOOL]
        refresh_schools(self.session)
        schools = refresh_schools(self.session)
        self.assertEqual(rest_get.call_count, 1)
        self.assertEqual(schools[0]["id"], "school-1")

    @patch("schools.service.rest_get")
    def test_failure_returns_stored_schools(self, rest_get):
        self.session.cache.save_schools([SCHOOL])
        rest_get.side_effect = BackendError("down")
        self.assertEqual(refresh_schools(self.session, force=True), [SCHOOL])
        self.assertIsNotNone(self.session.cache.last_error)


class SchoolViewsTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(email="jane@x.com")
        self.client.force_login(self.user)

    def test_requires_parent_session(self):
        r = self.client.get(reverse("schools:index"))
        self.assertEqual(r.status_code, 401)

    @patch("schools.views.select_school")
    def test_select_without_parent_id(self, select_school_mock):
        ParentSession.start(self.user, "tok")
        r = self.client.post(
            reverse("schools:select"),
            data=json.dumps({"school_id": "school-1"}),
            content_type="application/json",
        )
        self.assertEqual(r.status_code, 400)
        select_school_mock.assert_not_called()

    @patch("schools.views.select_school")
    def test_select_numeric_school_id(self, select_school_mock):
        ParentSession.start(self.user, "tok", parent_id="parent-1")
        r = self.client.post(
            reverse("schools:select"),
            data=json.dumps({"school_id": 42}),
            content_type="application/json",
        )
        self.assertEqual(r.status_code, 200)
        select_school_mock.assert_called_once_with("tok", "parent-1", "42")

    @patch("schools.views.select_school")
    def test_select_non_object_body_clears_school(self, select_school_mock):
        ParentSession.start(self.user, "tok", parent_id="parent-1")
        r = self.client.post(reverse("schools:select"), data="[]", content_type="application/json")
        self.assertEqual(r.status_code, 200)
        self.assertIsNone(r.json()["school_id"])
        select_school_mock.assert_called_once_with("tok", "parent-1", "")

    @patch("schools.views.select_school")
    def test_select_backend_failure(self, select_school_mock):
        ParentSession.start(self.user, "tok", parent_id="parent-1")
        select_school_mock.side_effect = BackendError("down")
        r = self.client.post(
            reverse("schools:select"),
            data=json.dumps({"school_id": "school-1"}),
            content_type="application/json",
        )
        self.assertEqual(r.status_code, 502)
