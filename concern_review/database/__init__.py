"""Database module for concern review."""

from dataclasses import dataclass
from typing import Any, Callable, ContextManager, Optional

from concern_review.config import settings
from concern_review.exceptions import ConfigurationError
from .connection import DatabaseConnection, get_db_connection
from .memory import (
    InMemoryDatabase,
    InMemoryAssignmentRepository,
    InMemoryConcernRepository,
    InMemoryReviewerProfileRepository,
    InMemoryTimelineRepository,
)
from .repositories import (
    AssignmentRepository,
    ConcernRepository,
    ReviewerProfileRepository,
    TimelineRepository,
)


@dataclass
class RepositoryBundle:
    """The four repositories the workflow layer needs, from one backend."""

    concerns: Any
    timeline: Any
    assignments: Any
    reviewers: Any
    # groups writes across repositories into one unit
    transaction: Callable[[], ContextManager]


def postgres_repositories(db_connection: Optional[DatabaseConnection] = None) -> RepositoryBundle:
    db = db_connection or get_db_connection()
    return RepositoryBundle(
        concerns=ConcernRepository(db),
        timeline=TimelineRepository(db),
        assignments=AssignmentRepository(db),
        reviewers=ReviewerProfileRepository(db),
        transaction=db.transaction,
    )


def memory_repositories(database: Optional[InMemoryDatabase] = None) -> RepositoryBundle:
    db = database or InMemoryDatabase()
    return RepositoryBundle(
        concerns=InMemoryConcernRepository(db),
        timeline=InMemoryTimelineRepository(db),
        assignments=InMemoryAssignmentRepository(db),
        reviewers=InMemoryReviewerProfileRepository(db),
        transaction=db.transaction,
    )


def build_repositories(backend: Optional[str] = None) -> RepositoryBundle:
    """
    Build repositories for the configured backend.

    Args:
        backend: "postgres" or "memory" (defaults to settings.database.backend)

    Returns:
        RepositoryBundle
    """
    backend = backend or settings.database.backend
    if backend == "postgres":
        return postgres_repositories()
    if backend == "memory":
        return memory_repositories(InMemoryDatabase(settings.database.snapshot_path))
    raise ConfigurationError(
        f"Unknown database backend '{backend}'",
        {"allowed": ["postgres", "memory"]}
    )


__all__ = [
    "DatabaseConnection",
    "get_db_connection",
    "InMemoryDatabase",
    "RepositoryBundle",
    "postgres_repositories",
    "memory_repositories",
    "build_repositories",
    "ConcernRepository",
    "TimelineRepository",
    "AssignmentRepository",
    "ReviewerProfileRepository",
]
