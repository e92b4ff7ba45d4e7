"""
Reviewer hierarchy.

Class-level reviewers work in pairs and report to a department-level
reviewer; department-level reviewers report to a faculty mentor. Because
each role may only point at the role directly above it, the links always
form a two-level tree and can never contain a cycle.
"""

from typing import Dict, List, Optional

from concern_review.database import RepositoryBundle
from concern_review.database.models import ReviewerProfile, ReviewerRole
from concern_review.exceptions import RoleNotFound, ValidationError
from concern_review.logging_config import get_logger

logger = get_logger(__name__)

# role -> role its parent must have (None: no parent allowed)
PARENT_ROLE: Dict[ReviewerRole, Optional[ReviewerRole]] = {
    ReviewerRole.CLASS_LEVEL: ReviewerRole.DEPARTMENT_LEVEL,
    ReviewerRole.DEPARTMENT_LEVEL: ReviewerRole.FACULTY,
    ReviewerRole.FACULTY: None,
}


class ReviewerDirectory:
    """Registers reviewer profiles and answers hierarchy questions."""

    def __init__(self, repositories: RepositoryBundle):
        self.repositories = repositories

    def get(self, reviewer_id: str) -> ReviewerProfile:
        """
        Get a reviewer profile.

        Raises:
            RoleNotFound: No profile for this identity
        """
        profile = self.repositories.reviewers.get(reviewer_id)
        if profile is None:
            raise RoleNotFound(
                f"No reviewer profile for identity {reviewer_id}",
                {"identity": reviewer_id}
            )
        return profile

    def find(self, reviewer_id: str) -> Optional[ReviewerProfile]:
        return self.repositories.reviewers.get(reviewer_id)

    def register(self, profile: ReviewerProfile) -> ReviewerProfile:
        """
        Register a new reviewer.

        Args:
            profile: Profile to store; partner is linked both ways

        Returns:
            Stored profile

        Raises:
            ValidationError: Identity already registered, or a parent/partner
                link that breaks the hierarchy
        """
        existing = self.repositories.reviewers.get(profile.id)
        if existing is not None:
            if existing.role != profile.role:
                raise ValidationError(
                    f"Reviewer {profile.id} already holds role {existing.role.value}; roles are immutable",
                    {"identity": profile.id, "role": existing.role.value}
                )
            raise ValidationError(
                f"Reviewer {profile.id} is already registered",
                {"identity": profile.id}
            )

        self._check_parent(profile)
        if profile.partner_id is not None:
            self._check_partner(profile.id, profile.role, profile.partner_id)

        stored = self.repositories.reviewers.create(profile.model_copy(update={"partner_id": None}))
        if profile.partner_id is not None:
            self.repositories.reviewers.set_partner(stored.id, profile.partner_id)
            stored = self.get(stored.id)

        logger.info(
            "reviewer_registered",
            identity=stored.id,
            role=stored.role.value,
            parent=stored.parent_id,
            partner=stored.partner_id,
        )
        return stored

    def pair(self, reviewer_id: str, partner_id: str) -> ReviewerProfile:
        """
        Link two class-level reviewers as partners.

        Raises:
            RoleNotFound: Either identity unknown
            ValidationError: Not both class-level, or the same identity

        Former partners of either reviewer are left unpaired.
        """
        reviewer = self.get(reviewer_id)
        self._check_partner(reviewer.id, reviewer.role, partner_id)
        self.repositories.reviewers.set_partner(reviewer_id, partner_id)
        logger.info("reviewers_paired", identity=reviewer_id, partner=partner_id)
        return self.get(reviewer_id)

    def subordinates(self, reviewer_id: str) -> List[ReviewerProfile]:
        """Profiles whose parent link points at this reviewer."""
        return self.repositories.reviewers.list_subordinates(reviewer_id)

    def list(self, role: Optional[ReviewerRole] = None) -> List[ReviewerProfile]:
        return self.repositories.reviewers.list(role)

    def _check_parent(self, profile: ReviewerProfile) -> None:
        required = PARENT_ROLE[profile.role]
        if profile.parent_id is None:
            return
        if required is None:
            raise ValidationError(
                "Faculty mentors have no supervisor",
                {"identity": profile.id, "parent_id": profile.parent_id}
            )
        if profile.parent_id == profile.id:
            raise ValidationError("A reviewer cannot supervise themselves", {"identity": profile.id})
        parent = self.repositories.reviewers.get(profile.parent_id)
        if parent is None or parent.role != required:
            raise ValidationError(
                f"Supervisor of a {profile.role.value} reviewer must be a registered {required.value} reviewer",
                {"identity": profile.id, "parent_id": profile.parent_id}
            )

    def _check_partner(self, reviewer_id: str, role: ReviewerRole, partner_id: str) -> None:
        if role != ReviewerRole.CLASS_LEVEL:
            raise ValidationError(
                "Only class-level reviewers are paired",
                {"identity": reviewer_id, "role": role.value}
            )
        if partner_id == reviewer_id:
            raise ValidationError("A reviewer cannot partner themselves", {"identity": reviewer_id})
        partner = self.get(partner_id)
        if partner.role != ReviewerRole.CLASS_LEVEL:
            raise ValidationError(
                "Partner must be a class-level reviewer",
                {"identity": reviewer_id, "partner_id": partner_id}
            )
