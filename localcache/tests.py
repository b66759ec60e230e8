from datetime import timedelta
from unittest.mock import Mock, patch

from django.db import DatabaseError
from django.test import TestCase
from django.utils import timezone

from accounts.models import User
from backend.client import BackendError
from students.records import Confidence, MatchCandidate, StudentRecord
from .cache import APP_SETTINGS, AUTH_TOKEN, LAST_SYNC, LINKED_STUDENTS, LocalCache
from .models import CacheSlot


def _candidate(sid):
    record = StudentRecord(
        id=sid,
        student_id=f"STU-{sid}",
        first_name="Amani",
        last_name="Doe",
        grade_level=None,
        school_id="school-1",
        school_name="Hillside",
    )
    return MatchCandidate(record, Confidence.HIGH, ["Already linked"])


class StalenessTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(email="jane@x.com")
        self.cache = LocalCache(self.user)

    def _refresh(self, fetch):
        store = {}
        result = self.cache.refresh_or_load(
            30, fetch, lambda: store.get("v", "cached"), lambda v: store.update(v=v)
        )
        return result, store

    def test_stale_without_any_sync(self):
        self.assertTrue(self.cache.is_stale(30))

    def test_fresh_after_refresh_then_stale_after_window(self):
        self._refresh(lambda: "fresh")
        self.assertFalse(self.cache.is_stale(30))
        later = timezone.now() + timedelta(minutes=31)
        with patch("localcache.cache.timezone.now", return_value=later):
            self.assertTrue(self.cache.is_stale(30))

    def test_stale_again_after_clear_all(self):
        self._refresh(lambda: "fresh")
        self.cache.clear_all()
        self.assertTrue(self.cache.is_stale(30))

    def test_refresh_saves_result(self):
        result, store = self._refresh(lambda: "fresh")
        self.assertEqual(result, "fresh")
        self.assertEqual(store["v"], "fresh")
        self.assertIsNone(self.cache.last_error)

    def test_fresh_data_skips_backend(self):
        self.cache.save_last_sync()
        fetch = Mock(return_value="fresh")
        result, _ = self._refresh(fetch)
        self.assertEqual(result, "cached")
        fetch.assert_not_called()

    def test_failed_fetch_falls_back_to_cache(self):
        fetch = Mock(side_effect=BackendError("down"))
        result, store = self._refresh(fetch)
        self.assertEqual(result, "cached")
        self.assertEqual(store, {})
        self.assertIsInstance(self.cache.last_error, BackendError)
        # a failed fetch does not count as a sync
        self.assertIsNone(self.cache.get_last_sync())

    def test_unsaved_refresh_stays_stale(self):
        self.cache.save_linked_students([_candidate("old")])
        update_or_create = CacheSlot.objects.update_or_create

        def failing_dataset_write(**kwargs):
            if kwargs["key"] == LINKED_STUDENTS:
                raise DatabaseError("disk full")
            return update_or_create(**kwargs)

        with patch.object(CacheSlot.objects, "update_or_create", side_effect=failing_dataset_write):
            result = self.cache.refresh_or_load(
                30,
                lambda: [_candidate("new")],
                self.cache.get_linked_students,
                self.cache.save_linked_students,
            )
        self.assertEqual([c.record.id for c in result], ["new"])
        self.assertIsNone(self.cache.get_last_sync())
        self.assertTrue(self.cache.is_stale(30))

    def test_force_refreshes_fresh_data(self):
        self.cache.save_last_sync()
        result = self.cache.refresh_or_load(
            30, lambda: "fresh", lambda: "cached", lambda v: None, force=True
        )
        self.assertEqual(result, "fresh")

    def test_reads_never_touch_last_sync(self):
        self.cache.save_linked_students([_candidate("s1")])
        self.cache.get_linked_students()
        self.assertIsNone(self.cache.get_last_sync())


class SlotTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(email="jane@x.com")
        self.cache = LocalCache(self.user)

    def test_linked_students_read_back_as_candidates(self):
        self.cache.save_linked_students([_candidate("s1"), _candidate("s2")])
        students = self.cache.get_linked_students()
        self.assertEqual([s.record.id for s in students], ["s1", "s2"])
        self.assertEqual(students[0].confidence, Confidence.HIGH)
        self.assertEqual(students[0].record.school_name, "Hillside")

    def test_defaults_when_empty(self):
        self.assertEqual(self.cache.get_linked_students(), [])
        self.assertEqual(self.cache.get_schools(), [])
        self.assertEqual(self.cache.get_auth_tokens(), (None, None))
        self.assertIsNone(self.cache.get_profile())

    def test_clear_all_keeps_app_settings(self):
        self.cache.save_auth_tokens("a", "r")
        self.cache.save_parent_id("parent-1")
        self.cache.save_schools([{"id": "school-1"}])
        self.cache.save_last_sync()
        self.cache.save_app_settings({"language": "fr"})
        self.cache.clear_all()
        keys = set(CacheSlot.objects.filter(owner=self.user).values_list("key", flat=True))
        self.assertEqual(keys, {APP_SETTINGS})
        self.assertEqual(self.cache.get_app_settings(), {"language": "fr"})

    def test_slots_are_scoped_per_parent(self):
        other = User.objects.create_user(email="other@x.com")
        self.cache.save_auth_tokens("mine", "")
        LocalCache(other).clear_all()
        self.assertEqual(self.cache.get_auth_tokens()[0], "mine")
        self.assertIsNone(LocalCache(other).get_auth_tokens()[0])

    def test_overwrite_keeps_one_row(self):
        self.cache.save_auth_tokens("a", "")
        self.cache.save_auth_tokens("b", "")
        self.assertEqual(CacheSlot.objects.filter(owner=self.user, key=AUTH_TOKEN).count(), 1)
        self.assertEqual(self.cache.get_auth_tokens()[0], "b")

    def test_get_all_stored_data(self):
        self.cache.save_parent_id("parent-1")
        self.cache.save_last_sync()
        data = self.cache.get_all_stored_data()
        self.assertEqual(data["parent_id"], "parent-1")
        self.assertIn(LAST_SYNC, data)
