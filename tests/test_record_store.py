"""Tests for the concern record store"""

from datetime import timedelta

import pytest

from concern_review.database import memory_repositories
from concern_review.database.models import IDENTITY_FIELDS, ConcernStatus
from concern_review.exceptions import (
    InvalidTransition,
    NotFound,
    ReferenceCollision,
    ValidationError,
)
from concern_review.workflow.record_store import ConcernRecordStore, ConcernUpdate, STATUS_GRAPH

from tests.conftest import make_submission


@pytest.fixture
def store():
    return ConcernRecordStore(memory_repositories(), review_deadline_hours=24)


def move(store, reference, expected, **changes):
    return store.update(reference, ConcernUpdate(expected_status=expected, **changes))


class TestCreate:
    """Test concern creation"""

    def test_named_submission(self, store):
        concern = store.create(make_submission())

        assert concern.status == ConcernStatus.PENDING
        assert concern.severity is None
        assert concern.student_name == "Asha Verma"
        assert concern.reference.startswith("SC-")

    def test_review_deadline(self, store):
        """Test the class-level review deadline is set from creation time"""
        concern = store.create(make_submission())

        delta = concern.review_deadline - concern.created_at
        assert timedelta(hours=23, minutes=59) < delta <= timedelta(hours=24)

    def test_anonymous_drops_identity(self, store):
        """Test identity fields supplied with an anonymous submission are discarded"""
        concern = store.create(make_submission(
            anonymous=True,
            student_name="Should Vanish",
            student_email="vanish@example.edu",
            student_id="X1",
            department="Physics",
        ))

        for field in IDENTITY_FIELDS:
            assert getattr(concern, field) is None
        assert store.get(concern.reference).student_name is None

    def test_named_missing_identity(self, store):
        """Test named submissions need every identity field"""
        with pytest.raises(ValidationError) as exc_info:
            store.create(make_submission(student_email="  ", department=None))

        assert exc_info.value.details["missing_fields"] == ["student_email", "department"]

    def test_blank_subject_and_description(self, store):
        with pytest.raises(ValidationError) as exc_info:
            store.create(make_submission(anonymous=True, subject=" ", description=""))

        assert exc_info.value.details["missing_fields"] == ["subject", "description"]

    def test_text_is_trimmed(self, store):
        concern = store.create(make_submission(subject="  Broken fans  "))
        assert concern.subject == "Broken fans"

    def test_reference_retry(self):
        """Test a colliding reference is retried with a fresh one"""
        candidates = iter(["SC-1-AAAA", "SC-1-AAAA", "SC-1-BBBB"])
        store = ConcernRecordStore(memory_repositories(), reference_generator=lambda: next(candidates))

        first = store.create(make_submission())
        second = store.create(make_submission())

        assert first.reference == "SC-1-AAAA"
        assert second.reference == "SC-1-BBBB"

    def test_reference_collision(self):
        """Test the retry budget is bounded"""
        store = ConcernRecordStore(
            memory_repositories(), reference_generator=lambda: "SC-1-AAAA", retry_budget=3
        )
        store.create(make_submission())

        with pytest.raises(ReferenceCollision) as exc_info:
            store.create(make_submission())
        assert exc_info.value.details["attempts"] == 3

    def test_zero_retry_budget(self, mocker):
        """Test an explicit zero budget is kept rather than replaced by the default"""
        repositories = memory_repositories()
        create = mocker.spy(repositories.concerns, "create")
        store = ConcernRecordStore(repositories, retry_budget=0)

        assert store.retry_budget == 0
        with pytest.raises(ReferenceCollision) as exc_info:
            store.create(make_submission())
        assert exc_info.value.details["attempts"] == 0
        create.assert_not_called()


class TestGetAndTrack:
    """Test reads"""

    def test_get_unknown(self, store):
        with pytest.raises(NotFound):
            store.get("SC-NOPE-0000")

    def test_track_normalizes_reference(self, store):
        concern = store.create(make_submission())

        view = store.track(f"  {concern.reference.lower()} ")

        assert view.reference == concern.reference
        assert view.status == ConcernStatus.PENDING

    def test_track_has_no_identity(self, store):
        """Test the public view never exposes identity fields"""
        concern = store.create(make_submission())
        view = store.track(concern.reference)

        dumped = view.model_dump()
        for field in IDENTITY_FIELDS:
            assert field not in dumped

    def test_track_hides_reviewer_ids(self, store):
        """Test public timeline entries do not name the reviewer who wrote them"""
        concern = store.create(make_submission())
        store.append_timeline(concern, "SSC Review: VALID", "Checked", actor_id="ssc-01")

        view = store.track(concern.reference)

        assert [entry.title for entry in view.timeline] == ["SSC Review: VALID"]
        assert "actor_id" not in view.timeline[0].model_dump()
        assert "ssc-01" not in view.model_dump_json()

    def test_timeline_in_order(self, store):
        concern = store.create(make_submission())
        store.append_timeline(concern, "first")
        store.append_timeline(concern, "second", "details", actor_id="ssc-01")

        entries = store.timeline(concern.reference)

        assert [e.title for e in entries] == ["first", "second"]
        assert entries[1].actor_id == "ssc-01"


class TestUpdate:
    """Test guarded updates"""

    def test_status_graph_edges(self, store):
        concern = store.create(make_submission())

        updated = move(store, concern.reference, ConcernStatus.PENDING, status=ConcernStatus.REVIEWING)

        assert updated.status == ConcernStatus.REVIEWING

    def test_stale_expected_status(self, store):
        """Test an update based on an old read is refused"""
        concern = store.create(make_submission())
        move(store, concern.reference, ConcernStatus.PENDING, status=ConcernStatus.REVIEWING)

        with pytest.raises(InvalidTransition) as exc_info:
            move(store, concern.reference, ConcernStatus.PENDING, status=ConcernStatus.RESOLVED)
        assert exc_info.value.details["current_status"] == "reviewing"

    def test_edge_outside_graph(self, store):
        concern = store.create(make_submission())

        with pytest.raises(InvalidTransition):
            move(store, concern.reference, ConcernStatus.PENDING, status=ConcernStatus.ESCALATED)

    def test_resolved_is_terminal(self, store):
        """Test nothing leaves resolved"""
        concern = store.create(make_submission())
        move(store, concern.reference, ConcernStatus.PENDING, status=ConcernStatus.RESOLVED)

        assert STATUS_GRAPH[ConcernStatus.RESOLVED] == set()
        for target in (ConcernStatus.PENDING, ConcernStatus.REVIEWING, ConcernStatus.ESCALATED):
            with pytest.raises(InvalidTransition):
                move(store, concern.reference, ConcernStatus.RESOLVED, status=target)

    def test_severity_set_once(self, store):
        concern = store.create(make_submission())
        move(store, concern.reference, ConcernStatus.PENDING, status=ConcernStatus.REVIEWING)
        move(store, concern.reference, ConcernStatus.REVIEWING, severity=3)

        with pytest.raises(InvalidTransition):
            move(store, concern.reference, ConcernStatus.REVIEWING, severity=5)
        assert store.get(concern.reference).severity == 3

    def test_severity_only_while_reviewing(self, store):
        concern = store.create(make_submission())

        with pytest.raises(InvalidTransition):
            move(store, concern.reference, ConcernStatus.PENDING, severity=2)

    def test_severity_range(self, store):
        with pytest.raises(ValueError):
            ConcernUpdate(expected_status=ConcernStatus.REVIEWING, severity=9)

    def test_escalated_to_resolved_needs_remarks(self, store):
        """Test final resolution is gated on faculty remarks"""
        concern = store.create(make_submission())
        move(store, concern.reference, ConcernStatus.PENDING, status=ConcernStatus.REVIEWING)
        move(store, concern.reference, ConcernStatus.REVIEWING, status=ConcernStatus.ESCALATED, severity=4)

        with pytest.raises(InvalidTransition):
            move(store, concern.reference, ConcernStatus.ESCALATED,
                 status=ConcernStatus.RESOLVED, final_resolution="Done")

        move(store, concern.reference, ConcernStatus.ESCALATED, faculty_remarks="Fix by Friday")
        resolved = move(store, concern.reference, ConcernStatus.ESCALATED,
                        status=ConcernStatus.RESOLVED, final_resolution="Done")
        assert resolved.status == ConcernStatus.RESOLVED
        assert resolved.final_resolution == "Done"

    def test_remarks_set_once(self, store):
        concern = store.create(make_submission())
        move(store, concern.reference, ConcernStatus.PENDING, status=ConcernStatus.REVIEWING)
        move(store, concern.reference, ConcernStatus.REVIEWING, status=ConcernStatus.ESCALATED, severity=4)
        move(store, concern.reference, ConcernStatus.ESCALATED, faculty_remarks="First")

        with pytest.raises(InvalidTransition):
            move(store, concern.reference, ConcernStatus.ESCALATED, faculty_remarks="Second")
        assert store.get(concern.reference).faculty_remarks == "First"

    def test_blank_remarks(self, store):
        concern = store.create(make_submission())
        move(store, concern.reference, ConcernStatus.PENDING, status=ConcernStatus.REVIEWING)
        move(store, concern.reference, ConcernStatus.REVIEWING, status=ConcernStatus.ESCALATED, severity=4)

        with pytest.raises(ValidationError):
            move(store, concern.reference, ConcernStatus.ESCALATED, faculty_remarks="   ")

    def test_flags_only_while_escalated(self, store):
        concern = store.create(make_submission())

        with pytest.raises(InvalidTransition):
            move(store, concern.reference, ConcernStatus.PENDING, is_flagship=True)

    def test_empty_update(self, store):
        concern = store.create(make_submission())

        with pytest.raises(ValidationError):
            move(store, concern.reference, ConcernStatus.PENDING)

    def test_lost_race_reported_as_stale(self, store, monkeypatch):
        """Test a conditional write that matches no row is an InvalidTransition"""
        concern = store.create(make_submission())
        monkeypatch.setattr(store.repositories.concerns, "compare_and_set", lambda *args, **kwargs: None)

        with pytest.raises(InvalidTransition) as exc_info:
            move(store, concern.reference, ConcernStatus.PENDING, status=ConcernStatus.REVIEWING)
        assert exc_info.value.details["stale"] is True

    def test_update_unknown(self, store):
        with pytest.raises(NotFound):
            move(store, "SC-NOPE-0000", ConcernStatus.PENDING, status=ConcernStatus.REVIEWING)
