"""
Concern lifecycle engine.

Maps (current status, reviewer role, action) to the next status and the
side effects of the move. The table below is the only place transitions
are defined; the visibility resolver derives the actions it offers from it.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from concern_review.database.models import (
    Assignment,
    Concern,
    ConcernStatus,
    ReviewerProfile,
    ReviewerRole,
    TimelineEntry,
)
from concern_review.exceptions import (
    AccessDenied,
    ConcernReviewError,
    InvalidTransition,
    MissingFacultyAssignment,
    ValidationError,
)
from concern_review.logging_config import get_logger
from concern_review.metrics import TRANSITION_COUNT
from concern_review.workflow.directory import ReviewerDirectory
from concern_review.workflow.record_store import ConcernRecordStore, ConcernUpdate

logger = get_logger(__name__)


class ReviewAction(str, Enum):
    """Decision a reviewer can take on a concern."""
    MARK_INVALID = "mark_invalid"
    MARK_VALID = "mark_valid"
    RESOLVE = "resolve"
    ESCALATE = "escalate"
    ADD_REMARKS = "add_remarks"
    FINAL_RESOLUTION = "final_resolution"


@dataclass(frozen=True)
class Transition:
    """One row of the transition table."""
    source: ConcernStatus
    role: ReviewerRole
    action: ReviewAction
    target: ConcernStatus
    timeline_title: str
    requires_remarks: bool = False


_TRANSITION_ROWS = [
    Transition(ConcernStatus.PENDING, ReviewerRole.CLASS_LEVEL, ReviewAction.MARK_INVALID,
               ConcernStatus.RESOLVED, "SSC Review: INVALID"),
    Transition(ConcernStatus.PENDING, ReviewerRole.CLASS_LEVEL, ReviewAction.MARK_VALID,
               ConcernStatus.REVIEWING, "SSC Review: VALID"),
    Transition(ConcernStatus.REVIEWING, ReviewerRole.DEPARTMENT_LEVEL, ReviewAction.RESOLVE,
               ConcernStatus.RESOLVED, "USC Assessment: RESOLVED"),
    Transition(ConcernStatus.REVIEWING, ReviewerRole.DEPARTMENT_LEVEL, ReviewAction.ESCALATE,
               ConcernStatus.ESCALATED, "USC Assessment: ESCALATED"),
    Transition(ConcernStatus.ESCALATED, ReviewerRole.FACULTY, ReviewAction.ADD_REMARKS,
               ConcernStatus.ESCALATED, "Faculty Remarks Added"),
    Transition(ConcernStatus.ESCALATED, ReviewerRole.DEPARTMENT_LEVEL, ReviewAction.FINAL_RESOLUTION,
               ConcernStatus.RESOLVED, "Final Resolution", requires_remarks=True),
]

TRANSITIONS: Dict[Tuple[ConcernStatus, ReviewerRole, ReviewAction], Transition] = {
    (row.source, row.role, row.action): row for row in _TRANSITION_ROWS
}


def transition_is_open(transition: Transition, concern: Concern) -> bool:
    """Whether a transition's guards hold for the concern as given."""
    if concern.status != transition.source:
        return False
    if transition.requires_remarks and concern.faculty_remarks is None:
        return False
    if transition.action == ReviewAction.ADD_REMARKS and concern.faculty_remarks is not None:
        return False
    return True


def available_actions(concern: Concern, role: ReviewerRole) -> List[ReviewAction]:
    """Actions a reviewer of this role could take on the concern right now."""
    return [
        row.action for row in _TRANSITION_ROWS
        if row.role == role and transition_is_open(row, concern)
    ]


class ReviewDecision(BaseModel):
    """A reviewer's request to move a concern."""

    action: ReviewAction
    notes: str = ""
    severity: Optional[int] = Field(default=None, ge=1, le=5)
    faculty_mentor_id: Optional[str] = None
    remarks: Optional[str] = None
    is_open_forum: bool = False
    is_flagship: bool = False
    resolution: Optional[str] = None


class TransitionResult(BaseModel):
    """Outcome of an applied transition."""

    concern: Concern
    timeline_entry: TimelineEntry
    assignment: Optional[Assignment] = None


class LifecycleEngine:
    """
    Applies reviewer decisions to concerns.

    Guards are evaluated against state read fresh from the store, and the
    write itself is conditional on the status still being the one read, so
    of two reviewers acting on the same status only one can win. Failures
    are never retried here.
    """

    def __init__(self, record_store: ConcernRecordStore, directory: ReviewerDirectory):
        """
        Initialize the engine.

        Args:
            record_store: Store owning concern invariants
            directory: Reviewer hierarchy, used to check faculty mentors
        """
        self.store = record_store
        self.directory = directory
        self.assignments = record_store.repositories.assignments

    def apply(
        self,
        reference: str,
        actor: ReviewerProfile,
        decision: ReviewDecision
    ) -> TransitionResult:
        """
        Apply a decision.

        Args:
            reference: Concern reference
            actor: Reviewer taking the decision
            decision: What they decided

        Returns:
            TransitionResult with the updated concern and side effects

        Raises:
            NotFound: Unknown concern
            InvalidTransition: No transition for (status, role, action), a
                guard failed, or another reviewer got there first
            MissingFacultyAssignment: Escalation without a mentor
            AccessDenied: Class-level reviewer not assigned to the concern
            ValidationError: Decision lacks required data
        """
        try:
            result = self._apply(reference, actor, decision)
        except ConcernReviewError as e:
            TRANSITION_COUNT.labels(action=decision.action.value, outcome=type(e).__name__).inc()
            logger.info(
                "transition_rejected",
                reference=reference,
                actor=actor.id,
                role=actor.role.value,
                action=decision.action.value,
                reason=e.message,
            )
            raise
        TRANSITION_COUNT.labels(action=decision.action.value, outcome="applied").inc()
        return result

    def _apply(
        self,
        reference: str,
        actor: ReviewerProfile,
        decision: ReviewDecision
    ) -> TransitionResult:
        concern = self.store.get(reference)
        transition = self._lookup(concern, actor, decision.action)

        if actor.role == ReviewerRole.CLASS_LEVEL and not self._is_assigned(concern, actor):
            raise AccessDenied(
                f"Concern {reference} is not assigned to {actor.id}",
                {"reference": reference, "identity": actor.id}
            )

        update = ConcernUpdate(expected_status=concern.status)
        if transition.target != concern.status:
            update.status = transition.target
        mentor: Optional[ReviewerProfile] = None

        if decision.action in (ReviewAction.RESOLVE, ReviewAction.ESCALATE):
            if decision.severity is None:
                raise ValidationError(
                    "A severity rating between 1 and 5 is required",
                    {"field": "severity"}
                )
            update.severity = decision.severity
            if decision.action == ReviewAction.ESCALATE:
                mentor = self._faculty_mentor(decision.faculty_mentor_id)

        elif decision.action == ReviewAction.ADD_REMARKS:
            if not (decision.remarks or "").strip():
                raise ValidationError("Faculty remarks are required", {"field": "remarks"})
            update.faculty_remarks = decision.remarks
            update.is_open_forum = decision.is_open_forum
            update.is_flagship = decision.is_flagship

        elif decision.action == ReviewAction.FINAL_RESOLUTION:
            if not (decision.resolution or "").strip():
                raise ValidationError("A resolution message is required", {"field": "resolution"})
            update.final_resolution = decision.resolution

        # status change, mentor assignment and timeline entry commit together
        with self.store.repositories.transaction():
            updated = self.store.update(reference, update)

            assignment = None
            if mentor is not None:
                assignment = self.assignments.create(
                    Assignment(concern_id=updated.id, reviewer_id=mentor.id)
                )

            entry = self.store.append_timeline(
                updated,
                transition.timeline_title,
                self._describe(transition, decision, mentor),
                actor_id=actor.id,
            )

        logger.info(
            "transition_applied",
            reference=reference,
            actor=actor.id,
            role=actor.role.value,
            action=decision.action.value,
            from_status=concern.status.value,
            to_status=updated.status.value,
        )
        return TransitionResult(concern=updated, timeline_entry=entry, assignment=assignment)

    def _lookup(self, concern: Concern, actor: ReviewerProfile, action: ReviewAction) -> Transition:
        transition = TRANSITIONS.get((concern.status, actor.role, action))
        if transition is not None:
            if transition.requires_remarks and concern.faculty_remarks is None:
                raise InvalidTransition(
                    f"Concern {concern.reference} has no faculty remarks yet; "
                    f"final resolution is not possible",
                    {"reference": concern.reference, "current_status": concern.status.value,
                     "missing": "faculty_remarks"}
                )
            if action == ReviewAction.ADD_REMARKS and concern.faculty_remarks is not None:
                raise InvalidTransition(
                    f"Faculty remarks for {concern.reference} have already been attached",
                    {"reference": concern.reference, "current_status": concern.status.value}
                )
            return transition

        expected = [row for row in _TRANSITION_ROWS if row.action == action]
        requirements = ", ".join(
            f"a {row.role.value} reviewer on a `{row.source.value}` concern" for row in expected
        )
        raise InvalidTransition(
            f"Action {action.value} requires {requirements}; concern {concern.reference} "
            f"is `{concern.status.value}` and the caller is {actor.role.value}",
            {
                "reference": concern.reference,
                "action": action.value,
                "current_status": concern.status.value,
                "role": actor.role.value,
                "allowed": [
                    {"status": row.source.value, "role": row.role.value} for row in expected
                ],
            }
        )

    def _is_assigned(self, concern: Concern, actor: ReviewerProfile) -> bool:
        return any(
            a.reviewer_id == actor.id for a in self.assignments.list_for_concern(concern.id)
        )

    def _faculty_mentor(self, mentor_id: Optional[str]) -> ReviewerProfile:
        if not mentor_id:
            raise MissingFacultyAssignment(
                "Escalation requires a faculty mentor to be selected",
                {"field": "faculty_mentor_id"}
            )
        mentor = self.directory.find(mentor_id)
        if mentor is None or mentor.role != ReviewerRole.FACULTY:
            raise ValidationError(
                f"{mentor_id} is not a registered faculty mentor",
                {"field": "faculty_mentor_id", "value": mentor_id}
            )
        return mentor

    @staticmethod
    def _describe(
        transition: Transition,
        decision: ReviewDecision,
        mentor: Optional[ReviewerProfile]
    ) -> str:
        notes = decision.notes.strip()
        action = transition.action
        if action in (ReviewAction.RESOLVE, ReviewAction.ESCALATE):
            parts = [f"Severity {decision.severity}/5."]
            if mentor is not None:
                parts.append(f"Escalated to {mentor.display_name}.")
            if notes:
                parts.append(notes)
            return " ".join(parts)
        if action == ReviewAction.ADD_REMARKS:
            flags = [
                label for label, on in (("open forum", decision.is_open_forum),
                                        ("flagship", decision.is_flagship)) if on
            ]
            text = decision.remarks.strip()
            if flags:
                text += f" (flagged: {', '.join(flags)})"
            return text
        if action == ReviewAction.FINAL_RESOLUTION:
            return decision.resolution.strip()
        return notes

    def mark_valid(self, reference: str, actor: ReviewerProfile, notes: str = "") -> TransitionResult:
        return self.apply(reference, actor, ReviewDecision(action=ReviewAction.MARK_VALID, notes=notes))

    def mark_invalid(self, reference: str, actor: ReviewerProfile, notes: str = "") -> TransitionResult:
        return self.apply(reference, actor, ReviewDecision(action=ReviewAction.MARK_INVALID, notes=notes))

    def assess(
        self,
        reference: str,
        actor: ReviewerProfile,
        severity: int,
        escalate: bool,
        faculty_mentor_id: Optional[str] = None,
        notes: str = ""
    ) -> TransitionResult:
        """Department-level assessment: set severity, then escalate or resolve."""
        return self.apply(
            reference,
            actor,
            ReviewDecision(
                action=ReviewAction.ESCALATE if escalate else ReviewAction.RESOLVE,
                severity=severity,
                faculty_mentor_id=faculty_mentor_id,
                notes=notes,
            )
        )

    def attach_remarks(
        self,
        reference: str,
        actor: ReviewerProfile,
        remarks: str,
        is_open_forum: bool = False,
        is_flagship: bool = False
    ) -> TransitionResult:
        return self.apply(
            reference,
            actor,
            ReviewDecision(
                action=ReviewAction.ADD_REMARKS,
                remarks=remarks,
                is_open_forum=is_open_forum,
                is_flagship=is_flagship,
            )
        )

    def resolve_final(self, reference: str, actor: ReviewerProfile, resolution: str) -> TransitionResult:
        return self.apply(
            reference,
            actor,
            ReviewDecision(action=ReviewAction.FINAL_RESOLUTION, resolution=resolution)
        )
