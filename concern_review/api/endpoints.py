"""Concern review API endpoints"""

import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from concern_review.api.auth import authenticator
from concern_review.api.models import (
    AssessmentRequest,
    AssignmentRequest,
    ClassReviewRequest,
    ConcernDetailResponse,
    ErrorResponse,
    FacultyRemarksRequest,
    FinalResolutionRequest,
    ReviewerResponse,
    SubmitConcernResponse,
    TokenRequest,
)
from concern_review.config import settings
from concern_review.database.models import Assignment, ConcernStatus, ReviewerProfile, ReviewerRole
from concern_review.exceptions import AccessDenied, Unauthenticated
from concern_review.workflow import ReviewServices, build_services
from concern_review.workflow.lifecycle import TransitionResult
from concern_review.workflow.record_store import ConcernSubmission, TrackingView
from concern_review.workflow.visibility import ConcernCard, DashboardView

logger = logging.getLogger(__name__)

router = APIRouter()

bearer_scheme = HTTPBearer(auto_error=False)

ERROR_RESPONSES = {
    401: {"model": ErrorResponse, "description": "Missing or invalid token"},
    403: {"model": ErrorResponse, "description": "No reviewer profile, or concern not visible"},
    404: {"model": ErrorResponse, "description": "Concern not found"},
}
TRANSITION_RESPONSES = {
    **ERROR_RESPONSES,
    409: {"model": ErrorResponse, "description": "Transition not allowed from the current state"},
}


# Workflow components (replaced in tests through set_services)
_services: Optional[ReviewServices] = None


def set_services(services: Optional[ReviewServices]) -> None:
    """Install the workflow components used by every endpoint."""
    global _services
    _services = services


def get_services() -> ReviewServices:
    global _services
    if _services is None:
        logger.info("Initializing workflow components")
        _services = build_services()
    return _services


def current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)
) -> str:
    """
    Identity carried by the bearer token.

    Raises:
        Unauthenticated: No token, or a token that fails verification
    """
    if credentials is None:
        raise Unauthenticated("A bearer token is required")

    auth_result = authenticator.verify_token(credentials.credentials)
    if not auth_result.authenticated:
        raise Unauthenticated(auth_result.error or "Invalid token")
    return auth_result.user_id


def current_reviewer(
    identity: str = Depends(current_identity),
    services: ReviewServices = Depends(get_services)
) -> ReviewerProfile:
    """Reviewer profile of the caller; RoleNotFound when none exists."""
    return services.resolver.resolve_profile(identity)


@router.post("/auth/token", tags=["Auth"])
def issue_token(request: TokenRequest):
    """
    Issue a bearer token for a reviewer identity.

    Only available in development or when SECURITY_ALLOW_DEV_TOKENS is set.
    """
    if not settings.dev_tokens_enabled:
        raise AccessDenied("Token issuing is disabled in this environment")

    expiry = request.expiry_minutes or authenticator.access_token_expire_minutes
    token = authenticator.generate_token(request.user_id, expiry_minutes=expiry)
    return {
        "access_token": token,
        "token_type": "bearer",
        "expires_in_minutes": expiry,
    }


@router.post(
    "/concerns",
    response_model=SubmitConcernResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Submission"],
    responses={400: {"model": ErrorResponse}, 503: {"model": ErrorResponse}}
)
def submit_concern(
    submission: ConcernSubmission,
    services: ReviewServices = Depends(get_services)
):
    """
    Submit a concern.

    Anonymous submissions are stored without any identity fields. The
    returned reference is the only way to track the concern later.
    """
    concern = services.submissions.submit(submission)
    return SubmitConcernResponse(
        reference=concern.reference,
        status=concern.status,
        submitted_at=concern.created_at,
        review_deadline=concern.review_deadline,
    )


@router.get(
    "/concerns/{reference}/track",
    response_model=TrackingView,
    tags=["Submission"],
    responses={404: {"model": ErrorResponse}}
)
def track_concern(reference: str, services: ReviewServices = Depends(get_services)):
    """Public tracking view: status, timeline and final resolution only."""
    return services.store.track(reference)


@router.get(
    "/concerns/{reference}",
    response_model=ConcernDetailResponse,
    tags=["Review"],
    responses=ERROR_RESPONSES
)
def get_concern(
    reference: str,
    reviewer: ReviewerProfile = Depends(current_reviewer),
    services: ReviewServices = Depends(get_services)
):
    concern = services.resolver.require_view(reviewer.id, reference)
    return ConcernDetailResponse(
        concern=concern,
        timeline=services.store.timeline(concern.reference),
        assignments=services.repositories.assignments.list_for_concern(concern.id),
        offered_actions=services.resolver.offered_actions(reviewer, concern),
    )


@router.post(
    "/concerns/{reference}/class-review",
    response_model=TransitionResult,
    tags=["Review"],
    responses=TRANSITION_RESPONSES
)
def class_review(
    reference: str,
    request: ClassReviewRequest,
    reviewer: ReviewerProfile = Depends(current_reviewer),
    services: ReviewServices = Depends(get_services)
):
    """Class-level review: a valid concern goes to review, an invalid one is resolved."""
    if request.valid:
        return services.engine.mark_valid(reference, reviewer, notes=request.notes)
    return services.engine.mark_invalid(reference, reviewer, notes=request.notes)


@router.post(
    "/concerns/{reference}/assessment",
    response_model=TransitionResult,
    tags=["Review"],
    responses={**TRANSITION_RESPONSES, 422: {"model": ErrorResponse}}
)
def assess_concern(
    reference: str,
    request: AssessmentRequest,
    reviewer: ReviewerProfile = Depends(current_reviewer),
    services: ReviewServices = Depends(get_services)
):
    """Department-level assessment: rate severity, then resolve or escalate."""
    return services.engine.assess(
        reference,
        reviewer,
        severity=request.severity,
        escalate=request.escalate,
        faculty_mentor_id=request.faculty_mentor_id,
        notes=request.notes,
    )


@router.post(
    "/concerns/{reference}/faculty-remarks",
    response_model=TransitionResult,
    tags=["Review"],
    responses=TRANSITION_RESPONSES
)
def add_faculty_remarks(
    reference: str,
    request: FacultyRemarksRequest,
    reviewer: ReviewerProfile = Depends(current_reviewer),
    services: ReviewServices = Depends(get_services)
):
    return services.engine.attach_remarks(
        reference,
        reviewer,
        remarks=request.remarks,
        is_open_forum=request.is_open_forum,
        is_flagship=request.is_flagship,
    )


@router.post(
    "/concerns/{reference}/final-resolution",
    response_model=TransitionResult,
    tags=["Review"],
    responses=TRANSITION_RESPONSES
)
def final_resolution(
    reference: str,
    request: FinalResolutionRequest,
    reviewer: ReviewerProfile = Depends(current_reviewer),
    services: ReviewServices = Depends(get_services)
):
    return services.engine.resolve_final(reference, reviewer, resolution=request.resolution)


@router.post(
    "/concerns/{reference}/assignments",
    response_model=Assignment,
    status_code=status.HTTP_201_CREATED,
    tags=["Review"],
    responses=ERROR_RESPONSES
)
def assign_reviewer(
    reference: str,
    request: AssignmentRequest,
    reviewer: ReviewerProfile = Depends(current_reviewer),
    services: ReviewServices = Depends(get_services)
):
    """Add a reviewer to a concern. Only department-level reviewers may assign."""
    if reviewer.role != ReviewerRole.DEPARTMENT_LEVEL:
        raise AccessDenied(
            "Only department-level reviewers may assign concerns",
            {"identity": reviewer.id, "role": reviewer.role.value}
        )
    return services.submissions.assign(reference, request.reviewer_id, assigned_by=reviewer)


@router.get("/reviewers/me", response_model=ReviewerResponse, tags=["Views"], responses=ERROR_RESPONSES)
def who_am_i(
    reviewer: ReviewerProfile = Depends(current_reviewer),
    services: ReviewServices = Depends(get_services)
):
    return ReviewerResponse(profile=reviewer, subordinates=services.directory.subordinates(reviewer.id))


@router.get("/dashboard", response_model=DashboardView, tags=["Views"], responses=ERROR_RESPONSES)
def dashboard(
    reviewer: ReviewerProfile = Depends(current_reviewer),
    services: ReviewServices = Depends(get_services)
):
    return services.resolver.dashboard(reviewer.id)


@router.get("/library", response_model=List[ConcernCard], tags=["Views"], responses=ERROR_RESPONSES)
def library(
    status_filter: Optional[ConcernStatus] = Query(None, alias="status"),
    month: Optional[str] = Query(None, description="Submission month, YYYY-MM"),
    search: Optional[str] = Query(None, description="Matches subject or reference"),
    reviewer: ReviewerProfile = Depends(current_reviewer),
    services: ReviewServices = Depends(get_services)
):
    """Searchable archive of the concerns visible to the caller."""
    return services.resolver.library(reviewer.id, status=status_filter, month=month, search=search)


@router.get("/open-forum", response_model=List[ConcernCard], tags=["Views"], responses=ERROR_RESPONSES)
def open_forum(
    month: Optional[str] = Query(None, description="Submission month, YYYY-MM"),
    search: Optional[str] = None,
    reviewer: ReviewerProfile = Depends(current_reviewer),
    services: ReviewServices = Depends(get_services)
):
    return services.resolver.open_forum_library(reviewer.id, month=month, search=search)


@router.get("/overdue", response_model=List[ConcernCard], tags=["Views"], responses=ERROR_RESPONSES)
def overdue(
    reviewer: ReviewerProfile = Depends(current_reviewer),
    services: ReviewServices = Depends(get_services)
):
    """Pending concerns past their class-level review deadline."""
    return services.resolver.overdue(reviewer.id)
