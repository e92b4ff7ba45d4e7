"""Repository classes for PostgreSQL access."""

import logging
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

from concern_review.database.connection import DatabaseConnection
from concern_review.database.models import (
    Assignment,
    Concern,
    ConcernFilter,
    ReviewerProfile,
    ReviewerRole,
    TimelineEntry,
)

logger = logging.getLogger(__name__)

# Columns a lifecycle update may write. Everything else is fixed at insert.
UPDATABLE_COLUMNS = (
    "status",
    "severity",
    "is_open_forum",
    "is_flagship",
    "faculty_remarks",
    "final_resolution",
)


def _db_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


class BaseRepository:
    """Base repository with common database operations."""

    def __init__(self, db_connection: DatabaseConnection):
        """
        Initialize repository.

        Args:
            db_connection: Database connection instance
        """
        self.db = db_connection


class ConcernRepository(BaseRepository):
    """Repository for concerns table."""

    def create(self, concern: Concern) -> Optional[Concern]:
        """
        Insert a new concern.

        Args:
            concern: Concern model instance

        Returns:
            Stored concern, or None if the reference is already taken
        """
        with self.db.get_cursor() as cur:
            cur.execute(
                """
                INSERT INTO concerns (
                    reference, category, subject, description, is_anonymous,
                    student_name, student_email, student_id, department,
                    evidence_url, status, review_deadline
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (reference) DO NOTHING
                RETURNING *
                """,
                (
                    concern.reference,
                    _db_value(concern.category),
                    concern.subject,
                    concern.description,
                    concern.is_anonymous,
                    concern.student_name,
                    concern.student_email,
                    concern.student_id,
                    concern.department,
                    concern.evidence_url,
                    _db_value(concern.status),
                    concern.review_deadline,
                )
            )
            row = cur.fetchone()
            if row is None:
                logger.warning(f"Concern reference {concern.reference} already exists")
                return None
            logger.info(f"Created concern {row['reference']}")
            return Concern(**row)

    def get_by_reference(self, reference: str) -> Optional[Concern]:
        """
        Get concern by its public reference.

        Args:
            reference: Concern reference code

        Returns:
            Concern instance or None if not found
        """
        with self.db.get_cursor() as cur:
            cur.execute("SELECT * FROM concerns WHERE reference = %s", (reference,))
            row = cur.fetchone()
            return Concern(**row) if row else None

    def get_by_id(self, concern_id: UUID) -> Optional[Concern]:
        """Get concern by internal id."""
        with self.db.get_cursor() as cur:
            cur.execute("SELECT * FROM concerns WHERE id = %s", (concern_id,))
            row = cur.fetchone()
            return Concern(**row) if row else None

    def compare_and_set(
        self,
        reference: str,
        expected_status: str,
        changes: Dict[str, Any],
        require_null: Iterable[str] = (),
        require_not_null: Iterable[str] = ()
    ) -> Optional[Concern]:
        """
        Apply changes only if the stored row still matches the expectations.

        This is a single UPDATE statement, so two callers racing on the same
        status can never both succeed.

        Args:
            reference: Concern reference code
            expected_status: Status the row must currently have
            changes: Column -> new value, restricted to UPDATABLE_COLUMNS
            require_null: Columns that must still be NULL
            require_not_null: Columns that must already be set

        Returns:
            Updated concern, or None if no row matched
        """
        unknown = set(changes) - set(UPDATABLE_COLUMNS)
        if unknown:
            raise ValueError(f"Columns not updatable: {sorted(unknown)}")

        assignments = [f"{column} = %s" for column in changes]
        assignments.append("updated_at = NOW()")
        conditions = ["reference = %s", "status = %s"]
        conditions.extend(f"{column} IS NULL" for column in require_null)
        conditions.extend(f"{column} IS NOT NULL" for column in require_not_null)

        params = [_db_value(value) for value in changes.values()]
        params.extend([reference, _db_value(expected_status)])

        with self.db.get_cursor() as cur:
            cur.execute(
                f"""
                UPDATE concerns
                SET {', '.join(assignments)}
                WHERE {' AND '.join(conditions)}
                RETURNING *
                """,
                tuple(params)
            )
            row = cur.fetchone()
            if row is None:
                logger.info(f"Conditional update of {reference} matched no row")
                return None
            return Concern(**row)

    def list(self, filters: Optional[ConcernFilter] = None) -> List[Concern]:
        """
        List concerns matching a filter, newest first.

        Args:
            filters: Optional ConcernFilter

        Returns:
            List of Concern instances
        """
        filters = filters or ConcernFilter()
        if filters.concern_ids is not None and not filters.concern_ids:
            return []

        conditions: List[str] = []
        params: List[Any] = []

        if filters.statuses:
            conditions.append("status = ANY(%s)")
            params.append([_db_value(s) for s in filters.statuses])
        if filters.concern_ids is not None:
            conditions.append("id = ANY(%s)")
            params.append(list(filters.concern_ids))
        if filters.escalated_or_flagged:
            conditions.append("(status = 'escalated' OR is_flagship OR is_open_forum)")
        if filters.open_forum_only:
            conditions.append("is_open_forum")
        if filters.created_from is not None:
            conditions.append("created_at >= %s")
            params.append(filters.created_from)
        if filters.created_before is not None:
            conditions.append("created_at < %s")
            params.append(filters.created_before)
        if filters.search:
            conditions.append("(subject ILIKE %s OR reference ILIKE %s)")
            pattern = f"%{filters.search}%"
            params.extend([pattern, pattern])

        query = "SELECT * FROM concerns"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY created_at DESC"
        if filters.limit is not None:
            query += " LIMIT %s"
            params.append(filters.limit)

        with self.db.get_cursor() as cur:
            cur.execute(query, tuple(params))
            return [Concern(**row) for row in cur.fetchall()]


class TimelineRepository(BaseRepository):
    """Repository for concern_timeline table."""

    def append(self, entry: TimelineEntry) -> TimelineEntry:
        """
        Append a timeline entry. Entries are never updated or deleted.

        Args:
            entry: TimelineEntry model instance

        Returns:
            Stored entry with id and timestamp
        """
        with self.db.get_cursor() as cur:
            cur.execute(
                """
                INSERT INTO concern_timeline (concern_id, title, description, actor_id)
                VALUES (%s, %s, %s, %s)
                RETURNING *
                """,
                (entry.concern_id, entry.title, entry.description, entry.actor_id)
            )
            row = cur.fetchone()
            logger.debug(f"Appended timeline entry '{entry.title}' to {entry.concern_id}")
            return TimelineEntry(**row)

    def list_for_concern(self, concern_id: UUID) -> List[TimelineEntry]:
        """Get timeline entries in insertion order."""
        with self.db.get_cursor() as cur:
            cur.execute(
                """
                SELECT * FROM concern_timeline
                WHERE concern_id = %s
                ORDER BY created_at ASC, seq ASC
                """,
                (concern_id,)
            )
            return [TimelineEntry(**row) for row in cur.fetchall()]


class AssignmentRepository(BaseRepository):
    """Repository for concern_assignments table."""

    def create(self, assignment: Assignment) -> Assignment:
        """
        Record an assignment. Duplicates are accepted.

        Args:
            assignment: Assignment model instance

        Returns:
            Stored assignment
        """
        with self.db.get_cursor() as cur:
            cur.execute(
                """
                INSERT INTO concern_assignments (concern_id, reviewer_id)
                VALUES (%s, %s)
                RETURNING *
                """,
                (assignment.concern_id, assignment.reviewer_id)
            )
            row = cur.fetchone()
            logger.info(f"Assigned concern {assignment.concern_id} to {assignment.reviewer_id}")
            return Assignment(**row)

    def list_for_reviewer(self, reviewer_id: str) -> List[Assignment]:
        with self.db.get_cursor() as cur:
            cur.execute(
                "SELECT * FROM concern_assignments WHERE reviewer_id = %s ORDER BY created_at",
                (reviewer_id,)
            )
            return [Assignment(**row) for row in cur.fetchall()]

    def list_for_concern(self, concern_id: UUID) -> List[Assignment]:
        with self.db.get_cursor() as cur:
            cur.execute(
                "SELECT * FROM concern_assignments WHERE concern_id = %s ORDER BY created_at",
                (concern_id,)
            )
            return [Assignment(**row) for row in cur.fetchall()]

    def count_by_reviewer(self, reviewer_ids: List[str]) -> Dict[str, int]:
        """
        Count assignments per reviewer.

        Args:
            reviewer_ids: Reviewers to count for

        Returns:
            Mapping reviewer id -> number of assignments (0 included)
        """
        counts = {reviewer_id: 0 for reviewer_id in reviewer_ids}
        if not reviewer_ids:
            return counts
        with self.db.get_cursor() as cur:
            cur.execute(
                """
                SELECT reviewer_id, COUNT(*) AS total
                FROM concern_assignments
                WHERE reviewer_id = ANY(%s)
                GROUP BY reviewer_id
                """,
                (list(reviewer_ids),)
            )
            for row in cur.fetchall():
                counts[row["reviewer_id"]] = row["total"]
        return counts


class ReviewerProfileRepository(BaseRepository):
    """Repository for reviewer_profiles table."""

    def create(self, profile: ReviewerProfile) -> ReviewerProfile:
        with self.db.get_cursor() as cur:
            cur.execute(
                """
                INSERT INTO reviewer_profiles (
                    id, display_name, email, role, partner_id, parent_id
                )
                VALUES (%s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    profile.id,
                    profile.display_name,
                    profile.email,
                    _db_value(profile.role),
                    profile.partner_id,
                    profile.parent_id,
                )
            )
            row = cur.fetchone()
            logger.info(f"Created reviewer profile {profile.id} ({_db_value(profile.role)})")
            return ReviewerProfile(**row)

    def get(self, reviewer_id: str) -> Optional[ReviewerProfile]:
        with self.db.get_cursor() as cur:
            cur.execute("SELECT * FROM reviewer_profiles WHERE id = %s", (reviewer_id,))
            row = cur.fetchone()
            return ReviewerProfile(**row) if row else None

    def list(self, role: Optional[ReviewerRole] = None) -> List[ReviewerProfile]:
        with self.db.get_cursor() as cur:
            if role is not None:
                cur.execute(
                    "SELECT * FROM reviewer_profiles WHERE role = %s ORDER BY id",
                    (_db_value(role),)
                )
            else:
                cur.execute("SELECT * FROM reviewer_profiles ORDER BY id")
            return [ReviewerProfile(**row) for row in cur.fetchall()]

    def list_subordinates(self, parent_id: str) -> List[ReviewerProfile]:
        with self.db.get_cursor() as cur:
            cur.execute(
                "SELECT * FROM reviewer_profiles WHERE parent_id = %s ORDER BY id",
                (parent_id,)
            )
            return [ReviewerProfile(**row) for row in cur.fetchall()]

    def set_partner(self, reviewer_id: str, partner_id: str) -> bool:
        """
        Link two class-level reviewers to each other.

        Former partners of either reviewer are unpaired in the same
        transaction.

        Returns:
            True if both profiles exist and were linked
        """
        with self.db.get_cursor() as cur:
            cur.execute(
                "SELECT id FROM reviewer_profiles WHERE id IN (%s, %s) FOR UPDATE",
                (reviewer_id, partner_id)
            )
            if len(cur.fetchall()) != 2:
                return False
            cur.execute(
                """
                UPDATE reviewer_profiles
                SET partner_id = CASE id WHEN %s THEN %s WHEN %s THEN %s ELSE NULL END
                WHERE id IN (%s, %s) OR partner_id IN (%s, %s)
                """,
                (
                    reviewer_id, partner_id, partner_id, reviewer_id,
                    reviewer_id, partner_id, reviewer_id, partner_id,
                )
            )
            logger.debug(f"Paired reviewers {reviewer_id} and {partner_id}")
            return True
