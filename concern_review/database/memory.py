"""
In-process implementation of the repository interfaces.

Used by tests, local development and the CLI when no PostgreSQL server is
configured. Every mutation happens under one lock, which plays the part of
the database's statement atomicity, and transaction() groups several
mutations the way a database transaction does.
"""

import json
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID, uuid4

from concern_review.database.models import (
    Assignment,
    Concern,
    ConcernFilter,
    ConcernStatus,
    ReviewerProfile,
    ReviewerRole,
    TimelineEntry,
)
from concern_review.database.repositories import UPDATABLE_COLUMNS

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryDatabase:
    """Tables held in dictionaries, optionally snapshotted to a JSON file."""

    def __init__(self, snapshot_path: Optional[str] = None):
        """
        Initialize the in-memory database.

        Args:
            snapshot_path: JSON file to load from and save to after each write
        """
        self.snapshot_path = Path(snapshot_path) if snapshot_path else None
        self.lock = threading.RLock()

        self.concerns: Dict[UUID, Concern] = {}
        self.timeline: List[TimelineEntry] = []
        self.assignments: List[Assignment] = []
        self.reviewers: Dict[str, ReviewerProfile] = {}

        if self.snapshot_path is not None:
            self.snapshot_path.parent.mkdir(parents=True, exist_ok=True)
            self._load()

    @contextmanager
    def transaction(self):
        """
        Hold the lock for the whole block and restore the tables if it raises.

        Rows are replaced rather than mutated, so shallow copies are enough
        to roll back.
        """
        with self.lock:
            saved = (
                dict(self.concerns),
                list(self.timeline),
                list(self.assignments),
                dict(self.reviewers),
            )
            try:
                yield
            except Exception:
                self.concerns, self.timeline, self.assignments, self.reviewers = saved
                self.save()
                raise

    def _load(self) -> None:
        """Load tables from the snapshot file."""
        if not self.snapshot_path.exists():
            return
        with open(self.snapshot_path, "r") as f:
            data = json.load(f)
        for row in data.get("concerns", []):
            concern = Concern(**row)
            self.concerns[concern.id] = concern
        self.timeline = [TimelineEntry(**row) for row in data.get("timeline", [])]
        self.assignments = [Assignment(**row) for row in data.get("assignments", [])]
        for row in data.get("reviewers", []):
            profile = ReviewerProfile(**row)
            self.reviewers[profile.id] = profile
        logger.info(
            f"Loaded snapshot with {len(self.concerns)} concerns "
            f"and {len(self.reviewers)} reviewers"
        )

    def save(self) -> None:
        """Write tables to the snapshot file, if one is configured."""
        if self.snapshot_path is None:
            return
        data = {
            "concerns": [c.model_dump(mode="json") for c in self.concerns.values()],
            "timeline": [t.model_dump(mode="json") for t in self.timeline],
            "assignments": [a.model_dump(mode="json") for a in self.assignments],
            "reviewers": [r.model_dump(mode="json") for r in self.reviewers.values()],
            "last_updated": _utcnow().isoformat(),
        }
        tmp_path = self.snapshot_path.with_suffix(".tmp")
        with open(tmp_path, "w") as f:
            json.dump(data, f, indent=2)
        tmp_path.replace(self.snapshot_path)


class MemoryRepository:
    """Base class for repositories over an InMemoryDatabase."""

    def __init__(self, database: InMemoryDatabase):
        self.db = database


class InMemoryConcernRepository(MemoryRepository):
    """Concerns table."""

    def create(self, concern: Concern) -> Optional[Concern]:
        with self.db.lock:
            if any(c.reference == concern.reference for c in self.db.concerns.values()):
                logger.warning(f"Concern reference {concern.reference} already exists")
                return None
            now = _utcnow()
            stored = concern.model_copy(update={
                "id": uuid4(),
                "created_at": now,
                "updated_at": now,
            })
            self.db.concerns[stored.id] = stored
            self.db.save()
            return stored.model_copy()

    def get_by_reference(self, reference: str) -> Optional[Concern]:
        with self.db.lock:
            for concern in self.db.concerns.values():
                if concern.reference == reference:
                    return concern.model_copy()
            return None

    def get_by_id(self, concern_id: UUID) -> Optional[Concern]:
        with self.db.lock:
            concern = self.db.concerns.get(concern_id)
            return concern.model_copy() if concern else None

    def compare_and_set(
        self,
        reference: str,
        expected_status: str,
        changes: Dict[str, Any],
        require_null: Iterable[str] = (),
        require_not_null: Iterable[str] = ()
    ) -> Optional[Concern]:
        unknown = set(changes) - set(UPDATABLE_COLUMNS)
        if unknown:
            raise ValueError(f"Columns not updatable: {sorted(unknown)}")

        with self.db.lock:
            current = next(
                (c for c in self.db.concerns.values() if c.reference == reference),
                None
            )
            if current is None or current.status != ConcernStatus(expected_status):
                return None
            if any(getattr(current, column) is not None for column in require_null):
                return None
            if any(getattr(current, column) is None for column in require_not_null):
                return None

            updated = Concern(**{
                **current.model_dump(),
                **changes,
                "updated_at": _utcnow(),
            })
            self.db.concerns[updated.id] = updated
            self.db.save()
            return updated.model_copy()

    def list(self, filters: Optional[ConcernFilter] = None) -> List[Concern]:
        filters = filters or ConcernFilter()
        with self.db.lock:
            # newest insert first so equal timestamps keep newest-first order
            rows = [c.model_copy() for c in reversed(list(self.db.concerns.values()))]

        if filters.statuses:
            rows = [c for c in rows if c.status in filters.statuses]
        if filters.concern_ids is not None:
            wanted = set(filters.concern_ids)
            rows = [c for c in rows if c.id in wanted]
        if filters.escalated_or_flagged:
            rows = [
                c for c in rows
                if c.status == ConcernStatus.ESCALATED or c.is_flagship or c.is_open_forum
            ]
        if filters.open_forum_only:
            rows = [c for c in rows if c.is_open_forum]
        if filters.created_from is not None:
            rows = [c for c in rows if c.created_at >= filters.created_from]
        if filters.created_before is not None:
            rows = [c for c in rows if c.created_at < filters.created_before]
        if filters.search:
            needle = filters.search.lower()
            rows = [
                c for c in rows
                if needle in c.subject.lower() or needle in c.reference.lower()
            ]

        rows.sort(key=lambda c: c.created_at, reverse=True)
        if filters.limit is not None:
            rows = rows[:filters.limit]
        return rows


class InMemoryTimelineRepository(MemoryRepository):
    """Append-only timeline."""

    def append(self, entry: TimelineEntry) -> TimelineEntry:
        with self.db.lock:
            created_at = _utcnow()
            previous = [t.created_at for t in self.db.timeline if t.concern_id == entry.concern_id]
            if previous and max(previous) > created_at:
                created_at = max(previous)
            stored = entry.model_copy(update={"id": uuid4(), "created_at": created_at})
            self.db.timeline.append(stored)
            self.db.save()
            return stored.model_copy()

    def list_for_concern(self, concern_id: UUID) -> List[TimelineEntry]:
        with self.db.lock:
            # list order is insertion order; the sort is stable
            entries = [t.model_copy() for t in self.db.timeline if t.concern_id == concern_id]
        entries.sort(key=lambda t: t.created_at)
        return entries


class InMemoryAssignmentRepository(MemoryRepository):
    """Additive assignments."""

    def create(self, assignment: Assignment) -> Assignment:
        with self.db.lock:
            stored = assignment.model_copy(update={"id": uuid4(), "created_at": _utcnow()})
            self.db.assignments.append(stored)
            self.db.save()
            return stored.model_copy()

    def list_for_reviewer(self, reviewer_id: str) -> List[Assignment]:
        with self.db.lock:
            return [a.model_copy() for a in self.db.assignments if a.reviewer_id == reviewer_id]

    def list_for_concern(self, concern_id: UUID) -> List[Assignment]:
        with self.db.lock:
            return [a.model_copy() for a in self.db.assignments if a.concern_id == concern_id]

    def count_by_reviewer(self, reviewer_ids: List[str]) -> Dict[str, int]:
        counts = {reviewer_id: 0 for reviewer_id in reviewer_ids}
        with self.db.lock:
            for assignment in self.db.assignments:
                if assignment.reviewer_id in counts:
                    counts[assignment.reviewer_id] += 1
        return counts


class InMemoryReviewerProfileRepository(MemoryRepository):
    """Reviewer profiles."""

    def create(self, profile: ReviewerProfile) -> ReviewerProfile:
        with self.db.lock:
            if profile.id in self.db.reviewers:
                raise ValueError(f"Reviewer profile {profile.id} already exists")
            stored = profile.model_copy(update={"created_at": _utcnow()})
            self.db.reviewers[stored.id] = stored
            self.db.save()
            return stored.model_copy()

    def get(self, reviewer_id: str) -> Optional[ReviewerProfile]:
        with self.db.lock:
            profile = self.db.reviewers.get(reviewer_id)
            return profile.model_copy() if profile else None

    def list(self, role: Optional[ReviewerRole] = None) -> List[ReviewerProfile]:
        with self.db.lock:
            profiles = [p.model_copy() for p in self.db.reviewers.values()]
        if role is not None:
            profiles = [p for p in profiles if p.role == role]
        return sorted(profiles, key=lambda p: p.id)

    def list_subordinates(self, parent_id: str) -> List[ReviewerProfile]:
        with self.db.lock:
            profiles = [p.model_copy() for p in self.db.reviewers.values() if p.parent_id == parent_id]
        return sorted(profiles, key=lambda p: p.id)

    def set_partner(self, reviewer_id: str, partner_id: str) -> bool:
        with self.db.lock:
            first = self.db.reviewers.get(reviewer_id)
            second = self.db.reviewers.get(partner_id)
            if first is None or second is None:
                return False
            for other_id, other in list(self.db.reviewers.items()):
                if other.partner_id in (reviewer_id, partner_id):
                    self.db.reviewers[other_id] = other.model_copy(update={"partner_id": None})
            self.db.reviewers[reviewer_id] = first.model_copy(update={"partner_id": partner_id})
            self.db.reviewers[partner_id] = second.model_copy(update={"partner_id": reviewer_id})
            self.db.save()
            return True
