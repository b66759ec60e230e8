import json
from io import StringIO
from unittest.mock import patch

from django.core.management import CommandError, call_command
from django.test import SimpleTestCase, TestCase
from django.urls import reverse

from accounts.models import User
from accounts.session import ParentSession
from backend.client import BackendError
from .matching import (
    ALREADY_LINKED,
    LinkingValidationError,
    Matcher,
    normalize_name,
    normalize_phone,
    rank,
)
from .records import Confidence, MatchCandidate, StudentRecord
from .workflow import (
    AUTOMATIC_EMPTY,
    EMPTY,
    ERRORED,
    IDLE,
    MANUAL_DETAILS_MISSING,
    MANUAL_EMPTY,
    PROFILE_MISSING,
    RESULTS,
    SEARCH_FAILED,
    LinkingWorkflow,
)


def make_student(sid, first="John", last="Smith", school="school-1", **parent):
    return StudentRecord(
        id=sid,
        student_id=f"STU-{sid}",
        first_name=first,
        last_name=last,
        grade_level="Grade 3",
        school_id=school,
        school_name=f"School {school}",
        parent_name=parent.get("parent_name"),
        parent_email=parent.get("parent_email"),
        parent_phone=parent.get("parent_phone"),
    )


class FakeDirectory:
    """In-memory stand-in for BackendDirectory.

    Mirrors the backend's ILIKE filters unless ``match_all`` is set, in which
    case every student is returned so scoring can be exercised directly.
    """

    def __init__(self, students=(), fail=False, match_all=False):
        self.students = list(students)
        self.links = []
        self.fail = fail
        self.match_all = match_all
        self.calls = 0

    def _call(self):
        self.calls += 1
        if self.fail:
            raise BackendError("backend down")

    def search_by_parent(self, parent_name, parent_email):
        self._call()
        if self.match_all:
            return list(self.students)
        n = parent_name.lower().strip()
        e = parent_email.lower().strip()
        return [
            s
            for s in self.students
            if (s.parent_name and n in s.parent_name.lower())
            or (s.parent_email and e in s.parent_email.lower())
        ]

    def search_by_child(self, child_name, school_id):
        self._call()
        if self.match_all:
            return list(self.students)
        return [
            s
            for s in self.students
            if s.school_id == school_id and child_name.lower() in s.first_name.lower()
        ]

    def create_relationship(self, parent_id, student_id, relationship, is_primary):
        self._call()
        self.links.append((parent_id, student_id, relationship, is_primary))
        return {"ok": True}

    def list_linked_students(self, parent_id):
        self._call()
        by_id = {s.id: s for s in self.students}
        return [by_id[sid] for p, sid, _, _ in self.links if p == parent_id and sid in by_id]


class NormalizeTests(SimpleTestCase):
    def test_name_is_lowercased_trimmed_and_collapsed(self):
        self.assertEqual(normalize_name("  Jane \t  DOE\n"), "jane doe")

    def test_phone_keeps_digits_only(self):
        self.assertEqual(normalize_phone("+243 (81) 555-0100"), "243815550100")


class AutomaticSearchTests(SimpleTestCase):
    def test_exact_name_ignoring_case_is_high(self):
        d = FakeDirectory([make_student("1", parent_name="JANE   doe", parent_email="other@y.com")])
        matches = Matcher(d).search_automatic("Jane Doe", "jane@x.com")
        self.assertEqual(len(matches), 1)
        self.assertEqual(matches[0].confidence, Confidence.HIGH)
        self.assertIn("Parent name matches", matches[0].reasons)

    def test_no_match_returns_empty_list_without_error(self):
        d = FakeDirectory([make_student("1", parent_name="Someone Else", parent_email="se@y.com")])
        m = Matcher(d)
        self.assertEqual(m.search_automatic("Jane Doe", "jane@x.com"), [])
        self.assertIsNone(m.last_error)

    def test_backend_failure_returns_empty_and_records_error(self):
        m = Matcher(FakeDirectory(fail=True))
        self.assertEqual(m.search_automatic("Jane Doe", "jane@x.com"), [])
        self.assertIsInstance(m.last_error, BackendError)

    def test_missing_email_is_a_validation_error(self):
        d = FakeDirectory()
        with self.assertRaises(LinkingValidationError):
            Matcher(d).search_automatic("Jane Doe", "  ")
        self.assertEqual(d.calls, 0)

    def test_partial_email_does_not_lower_exact_name(self):
        d = FakeDirectory(
            [make_student("1", parent_name="Jane Doe", parent_email="jane@x.com.au")]
        )
        [match] = Matcher(d).search_automatic("jane doe", "jane@x.com")
        self.assertEqual(match.confidence, Confidence.HIGH)
        self.assertEqual(match.reasons, ["Parent name matches", "Email partially matches"])

    def test_partial_name_is_medium(self):
        d = FakeDirectory([make_student("1", parent_name="Mary Jane Doe")])
        [match] = Matcher(d).search_automatic("Jane Doe", "nobody@x.com")
        self.assertEqual(match.confidence, Confidence.MEDIUM)
        self.assertEqual(match.reasons, ["Parent name partially matches"])

    def test_exact_email_is_high(self):
        d = FakeDirectory([make_student("1", parent_name="J. Doe", parent_email="Jane@X.com")])
        [match] = Matcher(d).search_automatic("Jane Doe", "jane@x.com")
        self.assertEqual(match.confidence, Confidence.HIGH)
        self.assertEqual(match.reasons, ["Email matches exactly"])

    def test_phone_match_raises_to_medium(self):
        d = FakeDirectory(
            [make_student("1", parent_name="Other", parent_phone="+1 (555) 010-2000")],
            match_all=True,
        )
        [match] = Matcher(d).search_automatic("Jane Doe", "jane@x.com", "15550102000")
        self.assertEqual(match.confidence, Confidence.MEDIUM)
        self.assertEqual(match.reasons, ["Phone number matches"])

    def test_phone_ignored_when_not_supplied(self):
        d = FakeDirectory(
            [make_student("1", parent_name="Other", parent_phone="15550102000")],
            match_all=True,
        )
        [match] = Matcher(d).search_automatic("Jane Doe", "jane@x.com")
        self.assertEqual(match.confidence, Confidence.LOW)
        self.assertEqual(match.reasons, [])

    def test_results_sorted_by_confidence_with_stable_ties(self):
        students = [
            make_student("low", parent_name="Nobody"),
            make_student("high-1", parent_name="Jane Doe"),
            make_student("medium", parent_name="Mary Jane Doe"),
            make_student("high-2", parent_email="jane@x.com"),
        ]
        d = FakeDirectory(students, match_all=True)
        ids = [c.record.id for c in Matcher(d).search_automatic("Jane Doe", "jane@x.com")]
        self.assertEqual(ids, ["high-1", "high-2", "medium", "low"])


class ManualSearchTests(SimpleTestCase):
    def setUp(self):
        self.students = [
            make_student("1", "John", "Smith", school="school-1"),
            make_student("2", "John", "Smith", school="school-2"),
        ]

    def test_prefix_matches_only_in_the_selected_school(self):
        matches = Matcher(FakeDirectory(self.students)).search_manual("Jo", "school-1")
        self.assertEqual([m.record.id for m in matches], ["1"])
        self.assertGreaterEqual(matches[0].confidence.rank, Confidence.MEDIUM.rank)

    def test_full_name_contained_is_high(self):
        d = FakeDirectory(self.students[:1], match_all=True)
        [match] = Matcher(d).search_manual("john  SMITH", "school-1")
        self.assertEqual(match.confidence, Confidence.HIGH)
        self.assertEqual(match.reasons, ["Student name matches"])

    def test_first_token_match_is_medium(self):
        d = FakeDirectory(self.students[:1], match_all=True)
        [match] = Matcher(d).search_manual("Jo Smithers", "school-1")
        self.assertEqual(match.confidence, Confidence.MEDIUM)
        self.assertEqual(match.reasons, ["First name matches"])

    def test_unrelated_name_is_low(self):
        d = FakeDirectory(self.students[:1], match_all=True)
        [match] = Matcher(d).search_manual("Xavier", "school-1")
        self.assertEqual(match.confidence, Confidence.LOW)

    def test_missing_school_is_a_validation_error(self):
        with self.assertRaises(LinkingValidationError):
            Matcher(FakeDirectory(self.students)).search_manual("John", "")

    def test_empty_result_is_not_an_error(self):
        m = Matcher(FakeDirectory(self.students))
        self.assertEqual(m.search_manual("Zed", "school-1"), [])
        self.assertIsNone(m.last_error)


class RankTests(SimpleTestCase):
    def test_rank_is_stable(self):
        a = MatchCandidate(make_student("a"), Confidence.MEDIUM)
        b = MatchCandidate(make_student("b"), Confidence.LOW)
        c = MatchCandidate(make_student("c"), Confidence.MEDIUM)
        d = MatchCandidate(make_student("d"), Confidence.HIGH)
        self.assertEqual([x.record.id for x in rank([a, b, c, d])], ["d", "a", "c", "b"])


class LinkTests(SimpleTestCase):
    def test_linked_student_is_listed_as_high(self):
        d = FakeDirectory([make_student("s1"), make_student("s2")])
        m = Matcher(d)
        self.assertTrue(m.link("parent-1", "s2"))
        self.assertEqual(d.links, [("parent-1", "s2", "parent", True)])
        [linked] = m.list_linked("parent-1")
        self.assertEqual(linked.record.id, "s2")
        self.assertEqual(linked.confidence, Confidence.HIGH)
        self.assertEqual(linked.reasons, [ALREADY_LINKED])

    def test_link_failure_returns_false(self):
        self.assertFalse(Matcher(FakeDirectory(fail=True)).link("parent-1", "s1"))

    def test_link_requires_parent(self):
        with self.assertRaises(LinkingValidationError):
            Matcher(FakeDirectory()).link("", "s1")

    def test_list_linked_is_repeatable(self):
        d = FakeDirectory([make_student("s1"), make_student("s2")])
        m = Matcher(d)
        m.link("parent-1", "s1")
        m.link("parent-1", "s2")
        first = [c.to_dict() for c in m.list_linked("parent-1")]
        second = [c.to_dict() for c in m.list_linked("parent-1")]
        self.assertEqual(first, second)
        self.assertEqual(len(first), 2)

    def test_list_linked_failure_is_empty(self):
        self.assertEqual(Matcher(FakeDirectory(fail=True)).list_linked("parent-1"), [])


class WorkflowTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(
            email="jane@x.com",
            first_name="Jane",
            last_name="Doe",
            phone="+243 81 555 0100",
        )
        self.session = ParentSession.start(self.user, "token-abc", parent_id="parent-1")
        self.directory = FakeDirectory(
            [
                make_student("s1", "Amani", "Doe", parent_name="Jane Doe"),
                make_student("s2", "Baraka", "Doe", parent_email="jane@x.com"),
            ]
        )
        self.workflow = LinkingWorkflow(self.session, Matcher(self.directory, cache=self.session.cache))

    def test_automatic_search_moves_to_results(self):
        state = self.workflow.search_automatic()
        self.assertEqual(state.status, RESULTS)
        self.assertEqual(len(state.matches), 2)
        self.assertIsNone(state.error)

    def test_automatic_search_without_profile(self):
        self.user.first_name = ""
        self.user.last_name = ""
        state = self.workflow.search_automatic()
        self.assertEqual((state.status, state.error), (ERRORED, PROFILE_MISSING))
        self.assertEqual(self.directory.calls, 0)

    def test_automatic_search_empty(self):
        self.directory.students = []
        state = self.workflow.search_automatic()
        self.assertEqual((state.status, state.error), (EMPTY, AUTOMATIC_EMPTY))

    def test_search_failure_is_errored_not_empty(self):
        self.directory.fail = True
        state = self.workflow.search_automatic()
        self.assertEqual((state.status, state.error), (ERRORED, SEARCH_FAILED))

    def test_manual_search_validation(self):
        state = self.workflow.search_manual("", "school-1")
        self.assertEqual((state.status, state.error), (ERRORED, MANUAL_DETAILS_MISSING))
        self.assertEqual(self.directory.calls, 0)

    def test_manual_search_empty(self):
        state = self.workflow.search_manual("Zed", "school-1")
        self.assertEqual((state.status, state.error), (EMPTY, MANUAL_EMPTY))

    def test_link_refreshes_linked_and_clears_matches(self):
        self.workflow.search_automatic()
        self.assertTrue(self.workflow.link("s2"))
        self.assertEqual(self.workflow.automatic.status, IDLE)
        self.assertEqual(self.workflow.automatic.matches, [])
        self.assertEqual([c.record.id for c in self.workflow.linked_students], ["s2"])
        cached = self.session.cache.get_linked_students()
        self.assertEqual([c.record.id for c in cached], ["s2"])
        self.assertFalse(self.session.cache.is_stale(30))

    def test_link_without_parent_id(self):
        self.session.parent_id = None
        self.assertFalse(self.workflow.link("s2"))
        self.assertEqual(self.directory.links, [])

    def test_failed_link_keeps_matches(self):
        self.workflow.search_automatic()
        self.directory.fail = True
        self.assertFalse(self.workflow.link("s2"))
        self.assertEqual(self.workflow.automatic.status, RESULTS)


class StudentViewsTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(email="jane@x.com", first_name="Jane", last_name="Doe")
        ParentSession.start(self.user, "token-abc", parent_id="parent-1")
        self.client.force_login(self.user)
        self.directory = FakeDirectory(
            [make_student("s1", "Amani", "Doe", parent_name="Jane Doe")]
        )
        patcher = patch("accounts.session.BackendDirectory", return_value=self.directory)
        self.backend_directory = patcher.start()
        self.addCleanup(patcher.stop)

    def _post(self, name, payload=None):
        return self.client.post(
            reverse(name), data=json.dumps(payload or {}), content_type="application/json"
        )

    def test_requires_session(self):
        other = User.objects.create_user(email="nosession@x.com")
        self.client.force_login(other)
        resp = self.client.get(reverse("students:list"))
        self.assertEqual(resp.status_code, 401)

    def test_automatic_search(self):
        resp = self._post("students:search_automatic")
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["status"], RESULTS)
        self.assertEqual(body["matches"][0]["match_confidence"], "high")
        self.backend_directory.assert_called_with("token-abc")

    def test_manual_search_missing_details_is_400(self):
        resp = self._post("students:search_manual", {"child_name": "Amani"})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["error"], MANUAL_DETAILS_MISSING)

    def test_manual_search_numeric_school_id(self):
        self.directory.students.append(make_student("s9", "Jo", "Doe", school="42"))
        resp = self._post("students:search_manual", {"child_name": "Jo", "school_id": 42})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual([m["id"] for m in resp.json()["matches"]], ["s9"])

    def test_manual_search_non_object_body_is_400(self):
        resp = self.client.post(
            reverse("students:search_manual"), data="[]", content_type="application/json"
        )
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["error"], MANUAL_DETAILS_MISSING)

    def test_link_non_object_body_is_400(self):
        resp = self.client.post(
            reverse("students:link"), data="[1, 2]", content_type="application/json"
        )
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(self.directory.links, [])

    def test_link_then_list(self):
        resp = self._post("students:link", {"student_id": "s1"})
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.json()["ok"])
        resp = self.client.get(reverse("students:list"))
        students = resp.json()["students"]
        self.assertEqual([s["id"] for s in students], ["s1"])
        self.assertEqual(students[0]["match_reasons"], [ALREADY_LINKED])

    def test_link_failure_reports_not_ok(self):
        self.directory.fail = True
        resp = self._post("students:link", {"student_id": "s1"})
        self.assertFalse(resp.json()["ok"])

    def test_list_falls_back_to_cache_when_backend_down(self):
        self.client.get(reverse("students:list"))  # nothing linked yet, marks sync
        self.directory.fail = True
        resp = self.client.get(reverse("students:list") + "?refresh=1")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["students"], [])
        self.assertTrue(resp.json()["stale_fallback"])


class DiagnoseLinkingCommandTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(email="jane@x.com", first_name="Jane", last_name="Doe")
        self.directory = FakeDirectory(
            [make_student("s1", "Amani", "Doe", parent_name="Jane Doe")]
        )
        patcher = patch("accounts.session.BackendDirectory", return_value=self.directory)
        patcher.start()
        self.addCleanup(patcher.stop)

    def _run(self, *args):
        out = StringIO()
        call_command("diagnose_linking", *args, stdout=out, stderr=StringIO())
        return out.getvalue()

    def test_requires_stored_session(self):
        with self.assertRaises(CommandError):
            self._run("--email", "jane@x.com")

    def test_prints_automatic_matches(self):
        ParentSession.start(self.user, "token-abc", parent_id="parent-1")
        out = self._run("--email", "jane@x.com")
        self.assertIn("1 candidate(s)", out)
        self.assertIn("id=s1", out)
        self.assertIn("confidence=high", out)

    def test_apply_links_student(self):
        ParentSession.start(self.user, "token-abc", parent_id="parent-1")
        out = self._run("--email", "jane@x.com", "--apply", "--student-id", "s1")
        self.assertIn("Linked student s1", out)
        self.assertEqual(len(self.directory.links), 1)
