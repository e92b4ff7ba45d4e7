"""
Concern submission and reviewer assignment.
"""

from typing import List, Optional

from concern_review.config import settings
from concern_review.database.models import Assignment, Concern, ReviewerProfile, ReviewerRole
from concern_review.logging_config import get_logger
from concern_review.metrics import SUBMISSION_COUNT
from concern_review.workflow.directory import ReviewerDirectory
from concern_review.workflow.record_store import ConcernRecordStore, ConcernSubmission

logger = get_logger(__name__)

SUBMITTED_TITLE = "Concern Submitted"
ASSIGNED_TITLE = "Reviewer Assigned"


class SubmissionService:
    """Turns form submissions into concerns and hands them to reviewers."""

    def __init__(
        self,
        record_store: ConcernRecordStore,
        directory: ReviewerDirectory,
        auto_assign: Optional[bool] = None
    ):
        """
        Initialize the service.

        Args:
            record_store: Concern store
            directory: Reviewer hierarchy
            auto_assign: Assign a class-level pair on submission
                (defaults to settings.workflow.auto_assign_class_reviewers)
        """
        self.store = record_store
        self.directory = directory
        self.assignments = record_store.repositories.assignments
        self.auto_assign = (
            auto_assign if auto_assign is not None
            else settings.workflow.auto_assign_class_reviewers
        )

    def submit(self, submission: ConcernSubmission) -> Concern:
        """
        Record a new concern.

        Creates the concern, appends the submission timeline entry and, when
        enabled, assigns the least loaded class-level reviewer and partner.

        Returns:
            The pending concern
        """
        with self.store.repositories.transaction():
            concern = self.store.create(submission)
            self.store.append_timeline(
                concern,
                SUBMITTED_TITLE,
                "Your concern has been successfully submitted and recorded.",
            )
            if self.auto_assign:
                self._assign_class_pair(concern)

        SUBMISSION_COUNT.labels(mode="anonymous" if concern.is_anonymous else "named").inc()
        return concern

    def assign(
        self,
        reference: str,
        reviewer_id: str,
        assigned_by: Optional[ReviewerProfile] = None
    ) -> Assignment:
        """
        Add an assignment. Existing assignments are left untouched and
        duplicates are accepted.

        Raises:
            NotFound: Unknown concern
            RoleNotFound: Unknown reviewer
        """
        concern = self.store.get(reference)
        reviewer = self.directory.get(reviewer_id)
        with self.store.repositories.transaction():
            assignment = self.assignments.create(
                Assignment(concern_id=concern.id, reviewer_id=reviewer.id)
            )
            self.store.append_timeline(
                concern,
                ASSIGNED_TITLE,
                f"Assigned to {reviewer.display_name} ({reviewer.role.value.upper()}).",
                actor_id=assigned_by.id if assigned_by else None,
            )
        logger.info(
            "reviewer_assigned",
            reference=reference,
            reviewer=reviewer.id,
            assigned_by=assigned_by.id if assigned_by else None,
        )
        return assignment

    def _assign_class_pair(self, concern: Concern) -> List[Assignment]:
        reviewers = self.directory.list(ReviewerRole.CLASS_LEVEL)
        if not reviewers:
            logger.warning("no_class_reviewers", reference=concern.reference)
            return []

        load = self.assignments.count_by_reviewer([r.id for r in reviewers])
        chosen = min(reviewers, key=lambda r: (load[r.id], r.id))
        team = [chosen.id]
        if chosen.partner_id and chosen.partner_id != chosen.id:
            team.append(chosen.partner_id)

        created = [
            self.assignments.create(Assignment(concern_id=concern.id, reviewer_id=reviewer_id))
            for reviewer_id in team
        ]
        logger.info("concern_auto_assigned", reference=concern.reference, reviewers=team)
        return created
