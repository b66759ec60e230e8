"""Match a parent to the students enrolled under their details.

Two strategies are offered. Automatic matching compares the parent's own
name, email and phone with the contact fields captured when the student was
enrolled. Manual matching looks a child up by name within one school. Both
return candidates ranked by confidence; the parent then confirms one and
``Matcher.link`` records the relationship with the backend.
"""
import logging
import re

from backend.client import BackendError
from .records import Confidence, MatchCandidate

logger = logging.getLogger(__name__)


ALREADY_LINKED = "Already linked"


class LinkingValidationError(ValueError):
    """A search or link was attempted without the details it needs."""


def normalize_name(name: str) -> str:
    return " ".join((name or "").lower().split())


def normalize_phone(phone: str) -> str:
    return re.sub(r"\D", "", phone or "")


def _at_least(current: Confidence, level: Confidence) -> Confidence:
    return level if level.rank > current.rank else current


def rank(candidates):
    # sorted() is stable, so equal confidence keeps backend order
    return sorted(candidates, key=lambda c: c.confidence.rank, reverse=True)


def score_parent_match(record, parent_name, parent_email, parent_phone=None):
    reasons = []
    confidence = Confidence.LOW
    wanted_name = normalize_name(parent_name)
    if record.parent_name:
        have_name = normalize_name(record.parent_name)
        if have_name == wanted_name:
            reasons.append("Parent name matches")
            confidence = Confidence.HIGH
        elif wanted_name in have_name:
            reasons.append("Parent name partially matches")
            confidence = _at_least(confidence, Confidence.MEDIUM)
    wanted_email = (parent_email or "").lower()
    if record.parent_email:
        have_email = record.parent_email.lower()
        if have_email == wanted_email:
            reasons.append("Email matches exactly")
            confidence = Confidence.HIGH
        elif wanted_email in have_email:
            reasons.append("Email partially matches")
            confidence = _at_least(confidence, Confidence.MEDIUM)
    wanted_phone = normalize_phone(parent_phone)
    if wanted_phone and record.parent_phone:
        if normalize_phone(record.parent_phone) == wanted_phone:
            reasons.append("Phone number matches")
            confidence = _at_least(confidence, Confidence.MEDIUM)
    return MatchCandidate(record=record, confidence=confidence, reasons=reasons)


def score_child_match(record, child_name):
    wanted = normalize_name(child_name)
    have = normalize_name(record.full_name)
    if wanted in have:
        return MatchCandidate(record, Confidence.HIGH, ["Student name matches"])
    if wanted.split(" ")[0] in have:
        return MatchCandidate(record, Confidence.MEDIUM, ["First name matches"])
    return MatchCandidate(record, Confidence.LOW, [])


def _require(**values):
    missing = [k for k, v in values.items() if not str(v or "").strip()]
    if missing:
        raise LinkingValidationError(f"Missing required value(s): {', '.join(missing)}")


class Matcher:
    """Searches the student directory and records confirmed links.

    ``directory`` is a ``backend.directory.BackendDirectory`` (or anything
    with the same methods). Remote failures never escape a search: the
    result is empty and the failure is kept on ``last_error`` so callers can
    tell "nothing found" from "search failed".
    """

    def __init__(self, directory, cache=None):
        self.directory = directory
        self.cache = cache
        self.last_error = None

    def search_automatic(self, parent_full_name, parent_email, parent_phone=None):
        _require(parent_full_name=parent_full_name, parent_email=parent_email)
        self.last_error = None
        try:
            records = self.directory.search_by_parent(parent_full_name, parent_email)
        except BackendError as e:
            self.last_error = e
            logger.warning("Automatic match search failed: %s", str(e))
            return []
        if not records:
            logger.info("No students found for automatic matching")
            return []
        return rank(
            score_parent_match(r, parent_full_name, parent_email, parent_phone)
            for r in records
        )

    def search_manual(self, child_name, school_id):
        _require(child_name=child_name, school_id=school_id)
        self.last_error = None
        try:
            records = self.directory.search_by_child(child_name.strip(), school_id)
        except BackendError as e:
            self.last_error = e
            logger.warning("Manual match search failed: %s", str(e))
            return []
        if not records:
            logger.info("No students found for manual matching")
            return []
        return rank(score_child_match(r, child_name) for r in records)

    def link(self, parent_id, student_id, relationship="parent", is_primary=True) -> bool:
        _require(parent_id=parent_id, student_id=student_id)
        try:
            self.directory.create_relationship(
                parent_id, student_id, relationship, is_primary
            )
        except BackendError as e:
            logger.error(
                "Creating relationship failed: parent=%s student=%s err=%s",
                parent_id,
                student_id,
                str(e),
            )
            return False
        return True

    def fetch_linked(self, parent_id):
        """Linked students straight from the backend; raises ``BackendError``."""
        records = self.directory.list_linked_students(parent_id)
        return [
            MatchCandidate(record=r, confidence=Confidence.HIGH, reasons=[ALREADY_LINKED])
            for r in records
        ]

    def list_linked(self, parent_id):
        _require(parent_id=parent_id)
        try:
            return self.fetch_linked(parent_id)
        except BackendError as e:
            logger.warning("Fetching linked students failed: parent=%s err=%s", parent_id, str(e))
            return []

    def refresh_linked(self, parent_id, max_age_minutes=30, force=False):
        """Linked students via the local cache, refetched only when stale."""
        if self.cache is None:
            return self.list_linked(parent_id)
        _require(parent_id=parent_id)
        return self.cache.refresh_or_load(
            max_age_minutes,
            lambda: self.fetch_linked(parent_id),
            self.cache.get_linked_students,
            self.cache.save_linked_students,
            force=force,
        )
