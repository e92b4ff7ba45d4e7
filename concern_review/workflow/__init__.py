"""Concern review workflow: record store, lifecycle, visibility"""

from dataclasses import dataclass
from typing import Optional

from concern_review.database import RepositoryBundle, build_repositories
from concern_review.workflow.directory import ReviewerDirectory
from concern_review.workflow.lifecycle import (
    LifecycleEngine,
    ReviewAction,
    ReviewDecision,
    TransitionResult,
    TRANSITIONS,
)
from concern_review.workflow.record_store import (
    ConcernRecordStore,
    ConcernSubmission,
    ConcernUpdate,
    PublicTimelineEntry,
    TrackingView,
)
from concern_review.workflow.submission import SubmissionService
from concern_review.workflow.visibility import DashboardView, VisibilityResolver


@dataclass
class ReviewServices:
    """The workflow components wired over one set of repositories."""

    repositories: RepositoryBundle
    store: ConcernRecordStore
    directory: ReviewerDirectory
    engine: LifecycleEngine
    resolver: VisibilityResolver
    submissions: SubmissionService


def build_services(
    repositories: Optional[RepositoryBundle] = None,
    auto_assign: Optional[bool] = None,
    **store_options
) -> ReviewServices:
    """
    Wire the workflow components.

    Args:
        repositories: Backend repositories (defaults to the configured backend)
        auto_assign: Override automatic class-level assignment on submission
        **store_options: Passed to ConcernRecordStore

    Returns:
        ReviewServices
    """
    repositories = repositories or build_repositories()
    store = ConcernRecordStore(repositories, **store_options)
    directory = ReviewerDirectory(repositories)
    return ReviewServices(
        repositories=repositories,
        store=store,
        directory=directory,
        engine=LifecycleEngine(store, directory),
        resolver=VisibilityResolver(store, directory),
        submissions=SubmissionService(store, directory, auto_assign=auto_assign),
    )


__all__ = [
    'ReviewServices',
    'build_services',
    'ConcernRecordStore',
    'ConcernSubmission',
    'ConcernUpdate',
    'PublicTimelineEntry',
    'TrackingView',
    'ReviewerDirectory',
    'LifecycleEngine',
    'ReviewAction',
    'ReviewDecision',
    'TransitionResult',
    'TRANSITIONS',
    'VisibilityResolver',
    'DashboardView',
    'SubmissionService',
]
