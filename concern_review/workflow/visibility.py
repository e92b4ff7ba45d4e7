"""
Role-scoped visibility of concerns.

Decides which concerns a reviewer's views may enumerate and which actions
are offered on them. Nothing here enforces a transition; the lifecycle
engine re-validates every action it receives.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from concern_review.config import settings
from concern_review.database.models import (
    Concern,
    ConcernFilter,
    ConcernStatus,
    ReviewerProfile,
    ReviewerRole,
)
from concern_review.exceptions import AccessDenied, Unauthenticated, ValidationError
from concern_review.logging_config import get_logger
from concern_review.workflow.directory import ReviewerDirectory
from concern_review.workflow.lifecycle import ReviewAction, available_actions
from concern_review.workflow.record_store import ConcernRecordStore

logger = get_logger(__name__)


class ConcernCard(BaseModel):
    """A concern as listed on a reviewer view."""

    concern: Concern
    offered_actions: List[ReviewAction] = Field(default_factory=list)
    overdue: bool = False


class SubordinateGroup(BaseModel):
    """Concerns assigned to one class-level reviewer under a department reviewer."""

    reviewer: ReviewerProfile
    concerns: List[ConcernCard] = Field(default_factory=list)


class DashboardView(BaseModel):
    """Everything a reviewer dashboard renders."""

    reviewer: ReviewerProfile
    concerns: List[ConcernCard] = Field(default_factory=list)
    total_visible: int = 0
    stats: Dict[str, int] = Field(default_factory=dict)
    overdue_count: int = 0
    subordinate_groups: List[SubordinateGroup] = Field(default_factory=list)


def month_window(month: str):
    """
    Parse ``YYYY-MM`` into a [start, end) UTC window.

    Raises:
        ValidationError: Malformed month
    """
    try:
        start = datetime.strptime(month, "%Y-%m").replace(tzinfo=timezone.utc)
    except ValueError:
        raise ValidationError(f"Month must look like YYYY-MM, got '{month}'", {"month": month})
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


def is_overdue(concern: Concern, now: Optional[datetime] = None) -> bool:
    """A pending concern whose class-level review deadline has passed."""
    if concern.status != ConcernStatus.PENDING or concern.review_deadline is None:
        return False
    return (now or datetime.now(timezone.utc)) > concern.review_deadline


class VisibilityResolver:
    """Computes per-reviewer views over the concern store."""

    def __init__(
        self,
        record_store: ConcernRecordStore,
        directory: ReviewerDirectory,
        class_dashboard_cap: Optional[int] = None
    ):
        self.store = record_store
        self.directory = directory
        self.assignments = record_store.repositories.assignments
        self.class_dashboard_cap = (
            class_dashboard_cap
            if class_dashboard_cap is not None
            else settings.workflow.class_dashboard_cap
        )

    def resolve_profile(self, identity: Optional[str]) -> ReviewerProfile:
        """
        Turn a caller identity into a reviewer profile.

        Raises:
            Unauthenticated: No identity
            RoleNotFound: Identity without a profile
        """
        if identity is None or not identity.strip():
            raise Unauthenticated("No authenticated reviewer identity")
        return self.directory.get(identity)

    def _scope(self, profile: ReviewerProfile, filters: Optional[ConcernFilter] = None) -> ConcernFilter:
        scoped = (filters or ConcernFilter()).model_copy()
        if profile.role == ReviewerRole.CLASS_LEVEL:
            assigned = {a.concern_id for a in self.assignments.list_for_reviewer(profile.id)}
            if scoped.concern_ids is not None:
                assigned &= set(scoped.concern_ids)
            scoped.concern_ids = sorted(assigned, key=str)
        elif profile.role == ReviewerRole.FACULTY:
            scoped.escalated_or_flagged = True
        return scoped

    def _cards(self, profile: ReviewerProfile, concerns: List[Concern]) -> List[ConcernCard]:
        now = datetime.now(timezone.utc)
        return [
            ConcernCard(
                concern=concern,
                offered_actions=self.offered_actions(profile, concern),
                overdue=is_overdue(concern, now),
            )
            for concern in concerns
        ]

    def visible_concerns(
        self,
        identity: Optional[str],
        filters: Optional[ConcernFilter] = None
    ) -> List[Concern]:
        """
        All concerns the reviewer may enumerate, newest first.

        Class-level: assigned to them. Department-level: all.
        Faculty: escalated, flagship or open forum.
        """
        profile = self.resolve_profile(identity)
        return self.store.list(self._scope(profile, filters))

    def can_view(self, identity: Optional[str], reference: str) -> bool:
        """Whether the reviewer may open one concern by reference."""
        profile = self.resolve_profile(identity)
        concern = self.store.get(reference)
        return self._may_see(profile, concern)

    def require_view(self, identity: Optional[str], reference: str) -> Concern:
        """
        Fetch a concern the reviewer may open.

        Raises:
            NotFound: Unknown reference
            AccessDenied: Concern outside the reviewer's visible set
        """
        profile = self.resolve_profile(identity)
        concern = self.store.get(reference)
        if not self._may_see(profile, concern):
            raise AccessDenied(
                f"Concern {reference} is not visible to {profile.id}",
                {"reference": reference, "identity": profile.id, "role": profile.role.value}
            )
        return concern

    def _may_see(self, profile: ReviewerProfile, concern: Concern) -> bool:
        if profile.role == ReviewerRole.DEPARTMENT_LEVEL:
            return True
        if profile.role == ReviewerRole.FACULTY:
            return (
                concern.status == ConcernStatus.ESCALATED
                or concern.is_flagship
                or concern.is_open_forum
            )
        return any(a.reviewer_id == profile.id for a in self.assignments.list_for_concern(concern.id))

    def offered_actions(self, profile: ReviewerProfile, concern: Concern) -> List[ReviewAction]:
        """Actions to present: role and current status match a transition."""
        return available_actions(concern, profile.role)

    def dashboard(self, identity: Optional[str]) -> DashboardView:
        """
        Build the dashboard of a reviewer.

        Class-level dashboards list only the most recent assigned concerns
        (class_dashboard_cap); the others stay reachable by reference.
        """
        profile = self.resolve_profile(identity)
        visible = self.store.list(self._scope(profile))

        stats = {status.value: 0 for status in ConcernStatus}
        for concern in visible:
            stats[concern.status.value] += 1
        stats["total"] = len(visible)

        listed = visible
        if profile.role == ReviewerRole.CLASS_LEVEL:
            listed = visible[:self.class_dashboard_cap]

        view = DashboardView(
            reviewer=profile,
            concerns=self._cards(profile, listed),
            total_visible=len(visible),
            stats=stats,
            overdue_count=sum(1 for c in visible if is_overdue(c)),
        )

        if profile.role == ReviewerRole.DEPARTMENT_LEVEL:
            by_id = {c.id: c for c in visible}
            for subordinate in self.directory.subordinates(profile.id):
                if subordinate.role != ReviewerRole.CLASS_LEVEL:
                    continue
                seen = set()
                assigned = []
                for assignment in self.assignments.list_for_reviewer(subordinate.id):
                    concern = by_id.get(assignment.concern_id)
                    if concern is not None and concern.id not in seen:
                        seen.add(concern.id)
                        assigned.append(concern)
                assigned.sort(key=lambda c: c.created_at, reverse=True)
                view.subordinate_groups.append(
                    SubordinateGroup(reviewer=subordinate, concerns=self._cards(profile, assigned))
                )

        logger.info(
            "dashboard_built",
            identity=profile.id,
            role=profile.role.value,
            visible=len(visible),
            listed=len(listed),
        )
        return view

    def library(
        self,
        identity: Optional[str],
        status: Optional[ConcernStatus] = None,
        month: Optional[str] = None,
        search: Optional[str] = None,
        open_forum_only: bool = False
    ) -> List[ConcernCard]:
        """
        Searchable archive of the reviewer's visible concerns.

        Args:
            identity: Reviewer identity
            status: Only this status
            month: ``YYYY-MM`` submission month
            search: Case-insensitive match on subject or reference
            open_forum_only: Restrict to concerns flagged for the open forum
        """
        profile = self.resolve_profile(identity)
        filters = ConcernFilter(
            statuses=[status] if status else None,
            search=search.strip() if search and search.strip() else None,
            open_forum_only=open_forum_only,
        )
        if month:
            filters.created_from, filters.created_before = month_window(month)
        return self._cards(profile, self.store.list(self._scope(profile, filters)))

    def open_forum_library(
        self,
        identity: Optional[str],
        month: Optional[str] = None,
        search: Optional[str] = None
    ) -> List[ConcernCard]:
        """Concerns flagged for the open forum, within the reviewer's visible set."""
        return self.library(identity, month=month, search=search, open_forum_only=True)

    def overdue(self, identity: Optional[str]) -> List[ConcernCard]:
        """Visible pending concerns past their review deadline, oldest first."""
        profile = self.resolve_profile(identity)
        pending = self.store.list(self._scope(profile, ConcernFilter(statuses=[ConcernStatus.PENDING])))
        now = datetime.now(timezone.utc)
        late = sorted((c for c in pending if is_overdue(c, now)), key=lambda c: c.created_at)
        return self._cards(profile, late)
