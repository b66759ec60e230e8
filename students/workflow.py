import logging

from django.conf import settings

from .matching import LinkingValidationError

logger = logging.getLogger(__name__)


IDLE = "idle"
SEARCHING = "searching"
RESULTS = "results"
EMPTY = "empty"
ERRORED = "errored"

PROFILE_MISSING = "Profile not found"
MANUAL_DETAILS_MISSING = "Please enter child name and select a school"
AUTOMATIC_EMPTY = "No students found matching your information"
MANUAL_EMPTY = "No students found with that name in the selected school"
SEARCH_FAILED = "Failed to search for students"


class SearchState:
    def __init__(self):
        self.reset()

    def reset(self):
        self.status = IDLE
        self.matches = []
        self.error = None

    def begin(self):
        self.status = SEARCHING
        self.error = None

    def fail(self, message):
        self.status = ERRORED
        self.error = message

    def finish(self, matches, empty_message, failed=False):
        self.matches = matches
        if failed:
            self.fail(SEARCH_FAILED)
        elif not matches:
            self.status = EMPTY
            self.error = empty_message
        else:
            self.status = RESULTS
            self.error = None

    def as_dict(self):
        return {
            "status": self.status,
            "matches": [m.to_dict() for m in self.matches],
            "error": self.error,
        }


class LinkingWorkflow:
    """Automatic and manual search state for one parent session."""

    def __init__(self, session, matcher=None):
        self.session = session
        self.matcher = matcher or session.matcher()
        self.automatic = SearchState()
        self.manual = SearchState()
        self.linked_students = []

    def search_automatic(self):
        state = self.automatic
        user = self.session.user
        if not (self.session.parent_full_name and user.email):
            state.fail(PROFILE_MISSING)
            return state
        state.begin()
        try:
            matches = self.matcher.search_automatic(
                self.session.parent_full_name, user.email, user.phone or None
            )
        except LinkingValidationError:
            state.fail(PROFILE_MISSING)
            return state
        state.finish(matches, AUTOMATIC_EMPTY, failed=self.matcher.last_error is not None)
        return state

    def search_manual(self, child_name, school_id):
        state = self.manual
        child_name = "" if child_name is None else str(child_name)
        school_id = "" if school_id is None else str(school_id)
        if not child_name.strip() or not school_id.strip():
            state.fail(MANUAL_DETAILS_MISSING)
            return state
        state.begin()
        matches = self.matcher.search_manual(child_name, school_id)
        state.finish(matches, MANUAL_EMPTY, failed=self.matcher.last_error is not None)
        return state

    def refresh_linked_students(self, force=False):
        parent_id = self.session.parent_id
        if not parent_id:
            return []
        self.linked_students = self.matcher.refresh_linked(
            parent_id,
            max_age_minutes=settings.LINKED_STUDENTS_MAX_AGE_MINUTES,
            force=force,
        )
        return self.linked_students

    def link(self, student_id) -> bool:
        parent_id = self.session.parent_id
        if not parent_id:
            logger.error("Parent ID not found for user_id=%s", self.session.user.pk)
            return False
        if not self.matcher.link(parent_id, student_id):
            return False
        self.refresh_linked_students(force=True)
        self.clear_matches()
        return True

    def clear_matches(self):
        self.automatic.reset()
        self.manual.reset()
