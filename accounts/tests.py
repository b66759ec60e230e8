import json
from unittest.mock import patch

from django.test import RequestFactory, TestCase
from django.urls import reverse

from backend.client import BackendAuthError, BackendError
from localcache.cache import LocalCache
from .middleware import ParentSessionMiddleware
from .models import User
from .session import ParentSession


class ParentSessionTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(
            email="jane@x.com", first_name="Jane", last_name="Doe", phone="+254 700 111"
        )

    def test_start_persists_tokens_and_profile(self):
        session = ParentSession.start(self.user, "access", "refresh", parent_id="parent-1")
        cache = LocalCache(self.user)
        self.assertEqual(cache.get_auth_tokens(), ("access", "refresh"))
        self.assertEqual(cache.get_parent_id(), "parent-1")
        self.assertEqual(cache.get_profile()["email"], "jane@x.com")
        self.user.refresh_from_db()
        self.assertEqual(self.user.external_parent_id, "parent-1")
        self.assertEqual(session.parent_full_name, "Jane Doe")

    def test_resume_rebuilds_from_cache(self):
        ParentSession.start(self.user, "access", parent_id="parent-1")
        session = ParentSession.resume(self.user)
        self.assertTrue(session.active)
        self.assertEqual(session.access_token, "access")
        self.assertEqual(session.parent_id, "parent-1")

    def test_resume_without_tokens(self):
        self.assertIsNone(ParentSession.resume(self.user))

    def test_end_clears_cache(self):
        session = ParentSession.start(self.user, "access", parent_id="parent-1")
        session.end()
        self.assertFalse(session.active)
        self.assertIsNone(ParentSession.resume(self.user))
        self.assertIsNone(LocalCache(self.user).get_profile())


class MiddlewareTests(TestCase):
    def setUp(self):
        self.factory = RequestFactory()
        self.middleware = ParentSessionMiddleware(lambda request: request)

    def test_attaches_session_for_signed_in_parent(self):
        user = User.objects.create_user(email="jane@x.com")
        ParentSession.start(user, "access")
        request = self.factory.get("/")
        request.user = user
        self.middleware(request)
        self.assertEqual(request.parent_session.access_token, "access")

    def test_staff_users_get_no_session(self):
        admin = User.objects.create_superuser(email="admin@x.com", password="pw")
        ParentSession.start(admin, "access")
        request = self.factory.get("/")
        request.user = admin
        self.middleware(request)
        self.assertIsNone(request.parent_session)


IDENTITY = {
    "email": "jane@x.com",
    "parent_id": "parent-1",
    "first_name": "Jane",
    "last_name": "Doe",
    "phone": "+254 700 111",
}


class SignInViewTests(TestCase):
    def _post(self, name, body=None):
        return self.client.post(
            reverse(name), data=json.dumps(body or {}), content_type="application/json"
        )

    @patch("accounts.views.verify_parent", return_value=IDENTITY)
    def test_first_sign_in_creates_parent(self, verify):
        r = self._post("accounts:start_session", {"access_token": "access", "refresh_token": "r"})
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["profile"]["id"], "parent-1")
        verify.assert_called_once_with("access")
        user = User.objects.get(email="jane@x.com")
        self.assertTrue(user.is_parent)
        self.assertEqual(user.external_parent_id, "parent-1")
        self.assertEqual(self.client.session["_auth_user_id"], str(user.pk))
        self.assertEqual(LocalCache(user).get_auth_tokens(), ("access", "r"))

    @patch("accounts.views.verify_parent", return_value=IDENTITY)
    def test_signed_in_parent_reaches_parent_views(self, verify):
        self._post("accounts:start_session", {"access_token": "access"})
        with patch("schools.views.refresh_schools", return_value=[]), patch(
            "schools.views.get_selected_school", return_value=None
        ):
            r = self.client.get(reverse("schools:index"))
        self.assertEqual(r.status_code, 200)

    @patch("accounts.views.verify_parent", return_value=IDENTITY)
    def test_existing_parent_profile_is_refreshed(self, verify):
        User.objects.create_user(email="Jane@x.com", first_name="Old")
        self._post("accounts:start_session", {"access_token": "access"})
        self.assertEqual(User.objects.count(), 1)
        self.assertEqual(User.objects.get().first_name, "Jane")

    @patch("accounts.views.verify_parent", side_effect=BackendAuthError("rejected"))
    def test_rejected_token_is_401(self, verify):
        r = self._post("accounts:start_session", {"access_token": "bad"})
        self.assertEqual(r.status_code, 401)
        self.assertFalse(User.objects.exists())
        self.assertNotIn("_auth_user_id", self.client.session)

    @patch("accounts.views.verify_parent", side_effect=BackendError("down"))
    def test_backend_down_is_502(self, verify):
        r = self._post("accounts:start_session", {"access_token": "access"})
        self.assertEqual(r.status_code, 502)

    @patch("accounts.views.verify_parent", return_value=IDENTITY)
    def test_staff_account_is_refused(self, verify):
        User.objects.create_superuser(email="jane@x.com", password="pw")
        r = self._post("accounts:start_session", {"access_token": "access"})
        self.assertEqual(r.status_code, 403)

    def test_start_session_requires_token(self):
        r = self._post("accounts:start_session", {"parent_id": "parent-1"})
        self.assertEqual(r.status_code, 400)

    def test_non_object_body_is_400(self):
        r = self.client.post(
            reverse("accounts:start_session"), data="[]", content_type="application/json"
        )
        self.assertEqual(r.status_code, 400)

    def test_end_session_wipes_cache_but_keeps_settings(self):
        user = User.objects.create_user(email="jane@x.com")
        self.client.force_login(user)
        cache = LocalCache(user)
        ParentSession.start(user, "access", parent_id="parent-1")
        cache.save_app_settings({"language": "sw"})
        r = self._post("accounts:end_session")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(cache.get_auth_tokens(), (None, None))
        self.assertIsNone(cache.get_parent_id())
        self.assertEqual(cache.get_app_settings(), {"language": "sw"})

    def test_end_session_when_signed_out_is_401(self):
        r = self._post("accounts:end_session")
        self.assertEqual(r.status_code, 401)
