"""Tests for the concern lifecycle engine"""

import threading

import pytest

from concern_review.database import memory_repositories
from concern_review.database.models import (
    ConcernCategory,
    ConcernStatus,
    ReviewerProfile,
    ReviewerRole,
)
from concern_review.exceptions import (
    AccessDenied,
    InvalidTransition,
    MissingFacultyAssignment,
    NotFound,
    ValidationError,
)
from concern_review.workflow import build_services
from concern_review.workflow.lifecycle import (
    TRANSITIONS,
    ReviewAction,
    ReviewDecision,
    available_actions,
)
from concern_review.workflow.record_store import STATUS_GRAPH

from tests.conftest import make_submission


@pytest.fixture
def services():
    """Auto-assignment on: every submission goes to the least loaded class-level pair."""
    return build_services(memory_repositories(), auto_assign=True)


@pytest.fixture
def actors(hierarchy):
    return hierarchy


@pytest.fixture
def pending(services, hierarchy):
    """A named pending concern assigned to ssc-01 and ssc-02."""
    return services.submissions.submit(make_submission())


@pytest.fixture
def reviewing(services, actors, pending):
    return services.engine.mark_valid(pending.reference, actors["ssc-01"], notes="Checked").concern


@pytest.fixture
def escalated(services, actors, reviewing):
    return services.engine.assess(
        reviewing.reference, actors["usc-01"], severity=4, escalate=True, faculty_mentor_id="faculty-01"
    ).concern


def timeline_titles(services, reference):
    return [entry.title for entry in services.store.timeline(reference)]


class TestTransitionTable:
    """Test the transition table itself"""

    def test_rows(self):
        """Test exactly the six transitions exist"""
        keys = {(s.value, r.value, a.value) for s, r, a in TRANSITIONS}
        assert keys == {
            ("pending", "ssc", "mark_invalid"),
            ("pending", "ssc", "mark_valid"),
            ("reviewing", "usc", "resolve"),
            ("reviewing", "usc", "escalate"),
            ("escalated", "faculty", "add_remarks"),
            ("escalated", "usc", "final_resolution"),
        }

    def test_targets(self):
        targets = {key[2]: row.target for key, row in TRANSITIONS.items()}
        assert targets[ReviewAction.MARK_INVALID] == ConcernStatus.RESOLVED
        assert targets[ReviewAction.MARK_VALID] == ConcernStatus.REVIEWING
        assert targets[ReviewAction.ESCALATE] == ConcernStatus.ESCALATED
        assert targets[ReviewAction.ADD_REMARKS] == ConcernStatus.ESCALATED
        assert targets[ReviewAction.FINAL_RESOLUTION] == ConcernStatus.RESOLVED

    def test_nothing_leaves_resolved(self):
        assert not [key for key in TRANSITIONS if key[0] == ConcernStatus.RESOLVED]

    def test_rows_follow_status_graph(self):
        """Test every status-changing row is an edge the record store allows"""
        for row in TRANSITIONS.values():
            assert row.target == row.source or row.target in STATUS_GRAPH[row.source]


class TestAvailableActions:
    """Test offered actions follow status, role and guards"""

    def test_pending(self, pending):
        assert available_actions(pending, ReviewerRole.CLASS_LEVEL) == [
            ReviewAction.MARK_INVALID, ReviewAction.MARK_VALID
        ]
        assert available_actions(pending, ReviewerRole.DEPARTMENT_LEVEL) == []
        assert available_actions(pending, ReviewerRole.FACULTY) == []

    def test_escalated_before_remarks(self, escalated):
        """Test final resolution is not offered until remarks exist"""
        assert available_actions(escalated, ReviewerRole.DEPARTMENT_LEVEL) == []
        assert available_actions(escalated, ReviewerRole.FACULTY) == [ReviewAction.ADD_REMARKS]

    def test_escalated_after_remarks(self, services, actors, escalated):
        concern = services.engine.attach_remarks(escalated.reference, actors["faculty-01"], "Noted").concern

        assert available_actions(concern, ReviewerRole.DEPARTMENT_LEVEL) == [ReviewAction.FINAL_RESOLUTION]
        assert available_actions(concern, ReviewerRole.FACULTY) == []


class TestScenarios:
    """End-to-end lifecycle scenarios"""

    def test_full_escalation_path(self, services, actors):
        """Named concern: valid, escalated, remarks with flagship, final resolution"""
        concern = services.submissions.submit(make_submission(
            subject="Library closes too early", category=ConcernCategory.LIBRARY
        ))
        assert concern.status == ConcernStatus.PENDING
        assert concern.severity is None

        reviewing = services.engine.mark_valid(concern.reference, actors["ssc-01"], notes="Many students affected")
        assert reviewing.concern.status == ConcernStatus.REVIEWING

        escalation = services.engine.assess(
            concern.reference, actors["usc-01"], severity=4, escalate=True, faculty_mentor_id="faculty-01"
        )
        assert escalation.concern.status == ConcernStatus.ESCALATED
        assert escalation.concern.severity == 4
        assert escalation.assignment.reviewer_id == "faculty-01"
        assigned = [a.reviewer_id for a in services.repositories.assignments.list_for_concern(concern.id)]
        assert "faculty-01" in assigned

        remarks = services.engine.attach_remarks(
            concern.reference, actors["faculty-01"], "Extend hours during exams", is_flagship=True
        )
        assert remarks.concern.status == ConcernStatus.ESCALATED
        assert remarks.concern.is_flagship is True

        final = services.engine.resolve_final(concern.reference, actors["usc-01"], "Open until 10pm from next week")
        assert final.concern.status == ConcernStatus.RESOLVED
        assert final.concern.final_resolution == "Open until 10pm from next week"
        assert final.concern.is_flagship is True
        assert final.concern.faculty_remarks == "Extend hours during exams"

        assert timeline_titles(services, concern.reference) == [
            "Concern Submitted",
            "SSC Review: VALID",
            "USC Assessment: ESCALATED",
            "Faculty Remarks Added",
            "Final Resolution",
        ]

    def test_anonymous_invalid(self, services, actors):
        """Anonymous concern marked invalid goes straight to resolved"""
        concern = services.submissions.submit(make_submission(anonymous=True))
        assert concern.student_name is None

        result = services.engine.mark_invalid(concern.reference, actors["ssc-02"], notes="Duplicate of earlier report")

        assert result.concern.status == ConcernStatus.RESOLVED
        assert result.concern.severity is None
        entries = services.store.timeline(concern.reference)
        assert [e.title for e in entries] == ["Concern Submitted", "SSC Review: INVALID"]
        assert entries[1].actor_id == "ssc-02"

    def test_concurrent_assessments(self, services, actors, reviewing):
        """Two department reviewers race: one escalates, one resolves; one wins"""
        usc_02 = services.directory.register(ReviewerProfile(
            id="usc-02", display_name="Second USC", role=ReviewerRole.DEPARTMENT_LEVEL, parent_id="faculty-01"
        ))
        barrier = threading.Barrier(2)
        outcomes = {}

        def assess(name, actor, escalate):
            barrier.wait()
            try:
                outcomes[name] = services.engine.assess(
                    reviewing.reference, actor, severity=3 if escalate else 2,
                    escalate=escalate, faculty_mentor_id="faculty-01" if escalate else None
                )
            except InvalidTransition as e:
                outcomes[name] = e

        threads = [
            threading.Thread(target=assess, args=("escalate", actors["usc-01"], True)),
            threading.Thread(target=assess, args=("resolve", usc_02, False)),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        winners = [name for name, outcome in outcomes.items() if not isinstance(outcome, Exception)]
        losers = [name for name, outcome in outcomes.items() if isinstance(outcome, InvalidTransition)]
        assert len(winners) == 1
        assert len(losers) == 1

        final = services.store.get(reviewing.reference)
        expected = ConcernStatus.ESCALATED if winners[0] == "escalate" else ConcernStatus.RESOLVED
        assert final.status == expected
        assert final.severity == (3 if winners[0] == "escalate" else 2)

        assessments = [t for t in timeline_titles(services, reviewing.reference) if t.startswith("USC Assessment")]
        assert len(assessments) == 1
        faculty_assigned = [
            a for a in services.repositories.assignments.list_for_concern(final.id)
            if a.reviewer_id == "faculty-01"
        ]
        assert len(faculty_assigned) == (1 if winners[0] == "escalate" else 0)


class TestGuards:
    """Test rejected transitions"""

    def test_wrong_role(self, services, actors, pending):
        """Test a department reviewer can't take class-level actions"""
        with pytest.raises(InvalidTransition) as exc_info:
            services.engine.mark_valid(pending.reference, actors["usc-01"])
        assert exc_info.value.details["allowed"] == [{"status": "pending", "role": "ssc"}]

    def test_wrong_status(self, services, actors, pending):
        with pytest.raises(InvalidTransition):
            services.engine.assess(pending.reference, actors["usc-01"], severity=3, escalate=False)

    def test_unassigned_class_reviewer(self, services, actors, pending):
        """Test only assigned class-level reviewers may review"""
        with pytest.raises(AccessDenied):
            services.engine.mark_valid(pending.reference, actors["ssc-03"])
        assert services.store.get(pending.reference).status == ConcernStatus.PENDING

    def test_repeated_action_is_rejected(self, services, actors, reviewing):
        """Test the same action twice applies once"""
        with pytest.raises(InvalidTransition):
            services.engine.mark_valid(reviewing.reference, actors["ssc-02"])
        assert timeline_titles(services, reviewing.reference).count("SSC Review: VALID") == 1

    def test_escalate_without_mentor(self, services, actors, reviewing):
        with pytest.raises(MissingFacultyAssignment):
            services.engine.assess(reviewing.reference, actors["usc-01"], severity=4, escalate=True)
        assert services.store.get(reviewing.reference).status == ConcernStatus.REVIEWING

    def test_escalate_to_non_faculty(self, services, actors, reviewing):
        with pytest.raises(ValidationError):
            services.engine.assess(
                reviewing.reference, actors["usc-01"], severity=4, escalate=True, faculty_mentor_id="ssc-01"
            )

    def test_severity_required(self, services, actors, reviewing):
        with pytest.raises(ValidationError):
            services.engine.apply(
                reviewing.reference, actors["usc-01"], ReviewDecision(action=ReviewAction.RESOLVE)
            )
        assert services.store.get(reviewing.reference).severity is None

    def test_resolve_sets_severity(self, services, actors, reviewing):
        result = services.engine.assess(reviewing.reference, actors["usc-01"], severity=1, escalate=False)

        assert result.concern.status == ConcernStatus.RESOLVED
        assert result.concern.severity == 1
        assert result.assignment is None
        assert result.timeline_entry.title == "USC Assessment: RESOLVED"

    def test_final_resolution_before_remarks(self, services, actors, escalated):
        """Test final resolution needs faculty remarks first"""
        with pytest.raises(InvalidTransition) as exc_info:
            services.engine.resolve_final(escalated.reference, actors["usc-01"], "Closing")
        assert exc_info.value.details["missing"] == "faculty_remarks"
        assert services.store.get(escalated.reference).status == ConcernStatus.ESCALATED

    def test_remarks_only_once(self, services, actors, escalated):
        services.engine.attach_remarks(escalated.reference, actors["faculty-01"], "First")

        with pytest.raises(InvalidTransition):
            services.engine.attach_remarks(escalated.reference, actors["faculty-02"], "Second")
        assert services.store.get(escalated.reference).faculty_remarks == "First"

    def test_blank_remarks(self, services, actors, escalated):
        with pytest.raises(ValidationError):
            services.engine.attach_remarks(escalated.reference, actors["faculty-01"], "  ")

    def test_resolved_rejects_everything(self, services, actors, pending):
        services.engine.mark_invalid(pending.reference, actors["ssc-01"])

        for actor_id, action in (("ssc-01", ReviewAction.MARK_VALID), ("usc-01", ReviewAction.ESCALATE),
                                 ("faculty-01", ReviewAction.ADD_REMARKS)):
            with pytest.raises(InvalidTransition):
                services.engine.apply(
                    pending.reference, actors[actor_id],
                    ReviewDecision(action=action, severity=3, faculty_mentor_id="faculty-01", remarks="x")
                )

    def test_failed_transitions_leave_no_timeline(self, services, actors, pending):
        before = timeline_titles(services, pending.reference)
        with pytest.raises(InvalidTransition):
            services.engine.resolve_final(pending.reference, actors["usc-01"], "Nope")

        assert timeline_titles(services, pending.reference) == before

    def test_unknown_concern(self, services, actors, hierarchy):
        with pytest.raises(NotFound):
            services.engine.mark_valid("SC-NOPE-0000", actors["ssc-01"])


class TestTransitionAtomicity:
    """Test a transition's writes land together or not at all"""

    def test_failed_timeline_write_rolls_back_escalation(self, services, actors, reviewing, mocker):
        """Test escalation is undone when its timeline entry cannot be written"""
        mocker.patch.object(services.repositories.timeline, "append", side_effect=RuntimeError("disk full"))

        with pytest.raises(RuntimeError):
            services.engine.assess(
                reviewing.reference, actors["usc-01"], severity=4, escalate=True, faculty_mentor_id="faculty-01"
            )

        concern = services.store.get(reviewing.reference)
        assert concern.status == ConcernStatus.REVIEWING
        assert concern.severity is None
        mentors = [a.reviewer_id for a in services.repositories.assignments.list_for_concern(concern.id)]
        assert "faculty-01" not in mentors

    def test_escalation_retried_after_rollback(self, services, actors, reviewing, mocker):
        mocker.patch.object(
            services.repositories.assignments, "create", side_effect=RuntimeError("connection lost")
        )
        with pytest.raises(RuntimeError):
            services.engine.assess(
                reviewing.reference, actors["usc-01"], severity=4, escalate=True, faculty_mentor_id="faculty-01"
            )
        mocker.stopall()

        result = services.engine.assess(
            reviewing.reference, actors["usc-01"], severity=4, escalate=True, faculty_mentor_id="faculty-01"
        )

        assert result.concern.status == ConcernStatus.ESCALATED
        assert result.assignment.reviewer_id == "faculty-01"
        assert timeline_titles(services, reviewing.reference)[-1] == "USC Assessment: ESCALATED"

    def test_failed_submission_leaves_nothing(self, services, hierarchy, mocker):
        mocker.patch.object(services.repositories.timeline, "append", side_effect=RuntimeError("disk full"))

        with pytest.raises(RuntimeError):
            services.submissions.submit(make_submission())

        assert services.store.list() == []
        assert services.repositories.assignments.count_by_reviewer(["ssc-01"]) == {"ssc-01": 0}
