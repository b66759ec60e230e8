"""Per-parent persisted slots and the shared staleness clock.

Every dataset the portal refreshes from the backend is stored in a named slot
owned by the signed-in parent. A single ``last_sync`` slot records when any
dataset was last fetched; ``refresh_or_load`` uses it to decide between the
backend and the stored copy.
"""
import logging
from datetime import timedelta

from django.db import DatabaseError
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from students.records import MatchCandidate
from .models import CacheSlot

logger = logging.getLogger(__name__)


AUTH_TOKEN = "auth_token"
REFRESH_TOKEN = "refresh_token"
USER_PROFILE = "user_profile"
LINKED_STUDENTS = "linked_students"
SCHOOLS = "schools"
PARENT_ID = "parent_id"
LAST_SYNC = "last_sync"
APP_SETTINGS = "app_settings"
STUDENT_FEES = "student_fees"

ALL_SLOTS = (
    AUTH_TOKEN,
    REFRESH_TOKEN,
    USER_PROFILE,
    LINKED_STUDENTS,
    SCHOOLS,
    PARENT_ID,
    LAST_SYNC,
    APP_SETTINGS,
    STUDENT_FEES,
)

# app settings outlive a sign-out
SIGN_OUT_SLOTS = tuple(s for s in ALL_SLOTS if s != APP_SETTINGS)

DEFAULT_MAX_AGE_MINUTES = 30


class LocalCache:
    def __init__(self, owner):
        self.owner = owner
        self.last_error = None

    # raw slot access

    def _read(self, key, default=None):
        try:
            slot = CacheSlot.objects.filter(owner=self.owner, key=key).first()
        except DatabaseError as e:
            logger.error("Cache read failed: owner=%s key=%s err=%s", self.owner.pk, key, str(e))
            return default
        if slot is None or slot.payload is None:
            return default
        return slot.payload

    def _write(self, key, payload):
        try:
            CacheSlot.objects.update_or_create(
                owner=self.owner, key=key, defaults={"payload": payload}
            )
        except DatabaseError as e:
            logger.error("Cache write failed: owner=%s key=%s err=%s", self.owner.pk, key, str(e))
            return False
        return True

    def _delete(self, *keys):
        try:
            CacheSlot.objects.filter(owner=self.owner, key__in=keys).delete()
        except DatabaseError as e:
            logger.error("Cache delete failed: owner=%s keys=%s err=%s", self.owner.pk, ",".join(keys), str(e))

    # auth tokens

    def save_auth_tokens(self, access_token: str, refresh_token: str = ""):
        saved = self._write(AUTH_TOKEN, access_token)
        return self._write(REFRESH_TOKEN, refresh_token) and saved

    def get_auth_tokens(self):
        return self._read(AUTH_TOKEN), self._read(REFRESH_TOKEN)

    # profile and parent id

    def save_profile(self, profile: dict):
        return self._write(USER_PROFILE, profile)

    def get_profile(self):
        return self._read(USER_PROFILE)

    def save_parent_id(self, parent_id: str):
        return self._write(PARENT_ID, parent_id)

    def get_parent_id(self):
        return self._read(PARENT_ID)

    # datasets

    def save_linked_students(self, candidates):
        return self._write(LINKED_STUDENTS, [c.to_dict() for c in candidates])

    def get_linked_students(self):
        rows = self._read(LINKED_STUDENTS, [])
        out = []
        for row in rows:
            try:
                out.append(MatchCandidate.from_dict(row))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning("Dropping unreadable cached student: %s", str(e))
        return out

    def save_schools(self, schools: list):
        return self._write(SCHOOLS, schools)

    def get_schools(self):
        return self._read(SCHOOLS, [])

    def save_student_fees(self, fees: dict):
        return self._write(STUDENT_FEES, fees)

    def get_student_fees(self):
        return self._read(STUDENT_FEES)

    def save_app_settings(self, app_settings: dict):
        return self._write(APP_SETTINGS, app_settings)

    def get_app_settings(self):
        return self._read(APP_SETTINGS)

    # staleness

    def save_last_sync(self, when=None):
        when = when or timezone.now()
        return self._write(LAST_SYNC, when.isoformat())

    def get_last_sync(self):
        raw = self._read(LAST_SYNC)
        if not raw:
            return None
        return parse_datetime(raw)

    def is_stale(self, max_age_minutes: int = DEFAULT_MAX_AGE_MINUTES) -> bool:
        try:
            last_sync = self.get_last_sync()
        except (TypeError, ValueError) as e:
            logger.error("Unreadable last sync for owner=%s: %s", self.owner.pk, str(e))
            return True
        if last_sync is None:
            return True
        return timezone.now() - last_sync > timedelta(minutes=max_age_minutes)

    def refresh_or_load(
        self,
        max_age_minutes,
        fetch_remote,
        get_cached,
        save_cached,
        force: bool = False,
    ):
        """Return fresh data when stale (or forced), otherwise the stored copy.

        A failed fetch never raises: the stored copy is returned instead and
        the failure is kept on ``last_error``.
        """
        self.last_error = None
        if not force and not self.is_stale(max_age_minutes):
            logger.debug("Serving cached data for owner=%s", self.owner.pk)
            return get_cached()
        try:
            result = fetch_remote()
        except Exception as e:
            self.last_error = e
            logger.warning(
                "Refresh failed for owner=%s, falling back to cache: %s",
                self.owner.pk,
                str(e),
            )
            return get_cached()
        if save_cached(result) is False:
            # the stored copy is still the old one, so it must stay stale
            logger.warning("Refreshed data not stored for owner=%s", self.owner.pk)
            return result
        self.save_last_sync()
        return result

    # sign-out and diagnostics

    def clear_all(self):
        self._delete(*SIGN_OUT_SLOTS)
        logger.info("Cleared cached data for owner=%s", self.owner.pk)

    def get_all_stored_data(self) -> dict:
        try:
            slots = CacheSlot.objects.filter(owner=self.owner, key__in=ALL_SLOTS)
            return {s.key: s.payload for s in slots if s.payload is not None}
        except DatabaseError as e:
            logger.error("Cache dump failed for owner=%s: %s", self.owner.pk, str(e))
            return {}
