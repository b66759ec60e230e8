"""The signed-in parent's session.

A ``ParentSession`` is created when the parent signs in with the backend,
rebuilt per request from the parent's local cache, and ended at sign-out,
which wipes the cache. Services receive it explicitly instead of reading
any global auth state.
"""
import logging

from backend.directory import BackendDirectory
from localcache.cache import LocalCache
from students.matching import Matcher

logger = logging.getLogger(__name__)


class ParentSession:
    def __init__(self, user, access_token, parent_id=None, cache=None):
        self.user = user
        self.access_token = access_token
        self.cache = cache or LocalCache(user)
        self.parent_id = parent_id or user.external_parent_id or self.cache.get_parent_id()

    @classmethod
    def start(cls, user, access_token, refresh_token="", parent_id=None):
        cache = LocalCache(user)
        cache.save_auth_tokens(access_token, refresh_token or "")
        if parent_id:
            cache.save_parent_id(parent_id)
            if user.external_parent_id != parent_id:
                user.external_parent_id = parent_id
                user.save(update_fields=["external_parent_id"])
        session = cls(user, access_token, parent_id=parent_id, cache=cache)
        cache.save_profile(session.profile)
        logger.info("Parent session started: user_id=%s parent_id=%s", user.pk, session.parent_id)
        return session

    @classmethod
    def resume(cls, user):
        if not getattr(user, "is_authenticated", False):
            return None
        cache = LocalCache(user)
        access_token, _ = cache.get_auth_tokens()
        if not access_token:
            return None
        return cls(user, access_token, cache=cache)

    @property
    def active(self):
        return bool(self.access_token)

    @property
    def profile(self):
        return {
            "id": self.parent_id,
            "first_name": self.user.first_name,
            "last_name": self.user.last_name,
            "email": self.user.email,
            "phone": self.user.phone,
        }

    @property
    def parent_full_name(self):
        return self.user.full_name

    def matcher(self):
        return Matcher(BackendDirectory(self.access_token), cache=self.cache)

    def end(self):
        self.cache.clear_all()
        self.access_token = None
        logger.info("Parent session ended: user_id=%s", self.user.pk)
