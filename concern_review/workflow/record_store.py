"""
Concern record store: the owner of concern invariants.

Every write to a concern goes through this module. Status changes must
follow STATUS_GRAPH, severity/remarks/resolution are written at most once,
and each update is a single conditional write against the stored status.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Set

from pydantic import BaseModel, Field

from concern_review.config import settings
from concern_review.database import RepositoryBundle
from concern_review.database.models import (
    IDENTITY_FIELDS,
    Concern,
    ConcernCategory,
    ConcernFilter,
    ConcernStatus,
    TimelineEntry,
)
from concern_review.exceptions import (
    InvalidTransition,
    NotFound,
    ReferenceCollision,
    ValidationError,
)
from concern_review.logging_config import get_logger
from concern_review.workflow.reference import generate_reference

logger = get_logger(__name__)


STATUS_GRAPH: Dict[ConcernStatus, Set[ConcernStatus]] = {
    ConcernStatus.PENDING: {ConcernStatus.REVIEWING, ConcernStatus.RESOLVED},
    ConcernStatus.REVIEWING: {ConcernStatus.ESCALATED, ConcernStatus.RESOLVED},
    ConcernStatus.ESCALATED: {ConcernStatus.RESOLVED},
    ConcernStatus.RESOLVED: set(),
}


class ConcernSubmission(BaseModel):
    """Data entered on the submission form."""

    category: ConcernCategory
    subject: str = Field(max_length=200)
    description: str
    is_anonymous: bool = False
    student_name: Optional[str] = None
    student_email: Optional[str] = None
    student_id: Optional[str] = None
    department: Optional[str] = None
    evidence_url: Optional[str] = None


class ConcernUpdate(BaseModel):
    """Partial update guarded by the status the caller last observed."""

    expected_status: ConcernStatus
    status: Optional[ConcernStatus] = None
    severity: Optional[int] = Field(default=None, ge=1, le=5)
    is_open_forum: Optional[bool] = None
    is_flagship: Optional[bool] = None
    faculty_remarks: Optional[str] = None
    final_resolution: Optional[str] = None


class PublicTimelineEntry(BaseModel):
    """Timeline entry as shown on the public tracking page, without the actor."""

    title: str
    description: str = ""
    created_at: Optional[datetime] = None


class TrackingView(BaseModel):
    """What a student sees when tracking a concern. Carries no identity data."""

    reference: str
    subject: str
    category: ConcernCategory
    status: ConcernStatus
    severity: Optional[int] = None
    submitted_at: Optional[datetime] = None
    final_resolution: Optional[str] = None
    timeline: List[PublicTimelineEntry] = Field(default_factory=list)


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class ConcernRecordStore:
    """Creates, reads and updates concerns while enforcing their invariants."""

    def __init__(
        self,
        repositories: RepositoryBundle,
        reference_generator: Optional[Callable[[], str]] = None,
        retry_budget: Optional[int] = None,
        review_deadline_hours: Optional[int] = None
    ):
        """
        Initialize the store.

        Args:
            repositories: Backend repositories
            reference_generator: Produces candidate reference codes
            retry_budget: Attempts before giving up on a unique reference
            review_deadline_hours: Time allowed for class-level review
        """
        self.repositories = repositories
        self.reference_generator = reference_generator or generate_reference
        self.retry_budget = (
            retry_budget
            if retry_budget is not None
            else settings.workflow.reference_retry_budget
        )
        self.review_deadline_hours = (
            review_deadline_hours
            if review_deadline_hours is not None
            else settings.workflow.review_deadline_hours
        )

    def create(self, submission: ConcernSubmission) -> Concern:
        """
        Create a pending concern from a submission.

        Named submissions must carry every identity field; anonymous ones
        have them dropped before anything is written.

        Raises:
            ValidationError: Required fields missing
            ReferenceCollision: No unique reference within the retry budget
        """
        subject = _clean(submission.subject)
        description = _clean(submission.description)
        missing = [name for name, value in (("subject", subject), ("description", description)) if not value]

        identity = {field: _clean(getattr(submission, field)) for field in IDENTITY_FIELDS}
        if submission.is_anonymous:
            identity = {field: None for field in IDENTITY_FIELDS}
        else:
            missing.extend(field for field, value in identity.items() if not value)

        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                {"missing_fields": missing, "is_anonymous": submission.is_anonymous}
            )

        deadline = datetime.now(timezone.utc) + timedelta(hours=self.review_deadline_hours)

        for attempt in range(1, self.retry_budget + 1):
            candidate = Concern(
                reference=self.reference_generator(),
                category=submission.category,
                subject=subject,
                description=description,
                is_anonymous=submission.is_anonymous,
                evidence_url=_clean(submission.evidence_url),
                status=ConcernStatus.PENDING,
                review_deadline=deadline,
                **identity,
            )
            stored = self.repositories.concerns.create(candidate)
            if stored is not None:
                logger.info(
                    "concern_created",
                    reference=stored.reference,
                    category=stored.category.value,
                    anonymous=stored.is_anonymous,
                    attempts=attempt,
                )
                return stored
            logger.warning("reference_collision", reference=candidate.reference, attempt=attempt)

        raise ReferenceCollision(
            f"Could not generate a unique reference after {self.retry_budget} attempts",
            {"attempts": self.retry_budget}
        )

    def get(self, reference: str) -> Concern:
        """
        Get a concern by reference.

        Raises:
            NotFound: Unknown reference
        """
        concern = self.repositories.concerns.get_by_reference(reference)
        if concern is None:
            raise NotFound(f"Concern {reference} not found", {"reference": reference})
        return concern

    def update(self, reference: str, partial: ConcernUpdate) -> Concern:
        """
        Apply a guarded partial update.

        The checks below give a precise reason for the common failures; the
        conditional write then re-checks status and the set-once columns in
        the store itself, so a concurrent writer can't slip in between.

        Raises:
            NotFound: Unknown reference
            InvalidTransition: Stale status, edge outside STATUS_GRAPH,
                or a set-once field written twice
            ValidationError: Nothing to change
        """
        current = self.get(reference)
        expected = partial.expected_status

        if current.status != expected:
            raise InvalidTransition(
                f"Concern {reference} is no longer in `{expected.value}` state "
                f"(currently `{current.status.value}`)",
                {"reference": reference, "expected_status": expected.value,
                 "current_status": current.status.value}
            )

        changes: Dict[str, object] = {}
        require_null: List[str] = []
        require_not_null: List[str] = []

        def reject(reason: str) -> None:
            raise InvalidTransition(
                reason,
                {"reference": reference, "current_status": current.status.value}
            )

        if partial.status is not None and partial.status != current.status:
            if partial.status not in STATUS_GRAPH[current.status]:
                reject(
                    f"Status cannot move from `{current.status.value}` "
                    f"to `{partial.status.value}`"
                )
            if current.status == ConcernStatus.ESCALATED:
                if current.faculty_remarks is None and partial.faculty_remarks is None:
                    reject("Faculty remarks must be attached before final resolution")
                if partial.faculty_remarks is None:
                    require_not_null.append("faculty_remarks")
            changes["status"] = partial.status

        if partial.severity is not None:
            if current.status != ConcernStatus.REVIEWING:
                reject(f"Severity can only be set while `reviewing`, not `{current.status.value}`")
            if current.severity is not None:
                reject("Severity has already been set")
            changes["severity"] = partial.severity
            require_null.append("severity")

        for flag in ("is_open_forum", "is_flagship"):
            value = getattr(partial, flag)
            if value is not None:
                if current.status != ConcernStatus.ESCALATED:
                    reject(f"{flag} can only be set while `escalated`")
                changes[flag] = value

        for field in ("faculty_remarks", "final_resolution"):
            value = _clean(getattr(partial, field))
            if getattr(partial, field) is not None and value is None:
                raise ValidationError(f"{field} cannot be blank", {"field": field})
            if value is None:
                continue
            if current.status != ConcernStatus.ESCALATED:
                reject(f"{field} can only be set while `escalated`")
            if getattr(current, field) is not None:
                reject(f"{field} has already been set")
            changes[field] = value
            require_null.append(field)

        if not changes:
            raise ValidationError("Update carries no changes", {"reference": reference})

        updated = self.repositories.concerns.compare_and_set(
            reference,
            expected.value,
            changes,
            require_null=require_null,
            require_not_null=require_not_null,
        )
        if updated is None:
            latest = self.get(reference)
            logger.info(
                "concern_update_lost_race",
                reference=reference,
                expected_status=expected.value,
                current_status=latest.status.value,
            )
            raise InvalidTransition(
                f"Concern {reference} was changed by another reviewer "
                f"(now `{latest.status.value}`); refresh and try again",
                {"reference": reference, "expected_status": expected.value,
                 "current_status": latest.status.value, "stale": True}
            )

        logger.info(
            "concern_updated",
            reference=reference,
            from_status=current.status.value,
            to_status=updated.status.value,
            fields=sorted(changes),
        )
        return updated

    def list(self, filters: Optional[ConcernFilter] = None) -> List[Concern]:
        """List concerns matching a filter, newest first."""
        return self.repositories.concerns.list(filters)

    def append_timeline(
        self,
        concern: Concern,
        title: str,
        description: str = "",
        actor_id: Optional[str] = None
    ) -> TimelineEntry:
        """Append an immutable timeline entry to a concern."""
        return self.repositories.timeline.append(
            TimelineEntry(
                concern_id=concern.id,
                title=title,
                description=description,
                actor_id=actor_id,
            )
        )

    def timeline(self, reference: str) -> List[TimelineEntry]:
        """Timeline entries of a concern in insertion order."""
        concern = self.get(reference)
        return self.repositories.timeline.list_for_concern(concern.id)

    def track(self, reference: str) -> TrackingView:
        """
        Public tracking view of a concern.

        Raises:
            NotFound: Unknown reference
        """
        concern = self.get(reference.strip().upper())
        return TrackingView(
            reference=concern.reference,
            subject=concern.subject,
            category=concern.category,
            status=concern.status,
            severity=concern.severity,
            submitted_at=concern.created_at,
            final_resolution=concern.final_resolution,
            timeline=[
                PublicTimelineEntry(
                    title=entry.title,
                    description=entry.description,
                    created_at=entry.created_at,
                )
                for entry in self.repositories.timeline.list_for_concern(concern.id)
            ],
        )
