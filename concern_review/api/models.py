"""Pydantic models for API request/response validation"""

from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, field_validator

from concern_review.database.models import (
    Assignment,
    Concern,
    ConcernStatus,
    ReviewerProfile,
    TimelineEntry,
)
from concern_review.workflow.lifecycle import ReviewAction


def _not_blank(value: str) -> str:
    if not value or not value.strip():
        raise ValueError("must not be blank")
    return value.strip()


class SubmitConcernResponse(BaseModel):
    """Response returned to the student after submission"""
    reference: str = Field(..., description="Concern number to keep for tracking")
    status: ConcernStatus
    submitted_at: Optional[datetime] = None
    review_deadline: Optional[datetime] = None

    class Config:
        json_schema_extra = {
            "example": {
                "reference": "SC-MLCGEX8B-5W3W",
                "status": "pending",
                "submitted_at": "2026-01-15T10:30:00Z",
                "review_deadline": "2026-01-16T10:30:00Z"
            }
        }


class ClassReviewRequest(BaseModel):
    """Class-level validity decision"""
    valid: bool = Field(..., description="True marks the concern valid, False invalid")
    notes: str = Field(..., description="Review findings")

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, v: str) -> str:
        """Notes are mandatory on every review"""
        return _not_blank(v)


class AssessmentRequest(BaseModel):
    """Department-level severity assessment"""
    severity: int = Field(..., ge=1, le=5, description="Severity rating 1-5")
    escalate: bool = Field(..., description="Escalate to a faculty mentor")
    faculty_mentor_id: Optional[str] = Field(None, description="Required when escalating")
    notes: str = Field(..., description="Assessment notes")

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, v: str) -> str:
        """Notes are mandatory on every review"""
        return _not_blank(v)

    class Config:
        json_schema_extra = {
            "example": {
                "severity": 4,
                "escalate": True,
                "faculty_mentor_id": "faculty-01",
                "notes": "Affects all final year students during exams."
            }
        }


class FacultyRemarksRequest(BaseModel):
    """Faculty mentor remarks on an escalated concern"""
    remarks: str
    is_open_forum: bool = False
    is_flagship: bool = False

    @field_validator('remarks')
    @classmethod
    def validate_remarks(cls, v: str) -> str:
        return _not_blank(v)


class FinalResolutionRequest(BaseModel):
    """Department-level closing message"""
    resolution: str

    @field_validator('resolution')
    @classmethod
    def validate_resolution(cls, v: str) -> str:
        return _not_blank(v)


class AssignmentRequest(BaseModel):
    """Additional reviewer for a concern"""
    reviewer_id: str

    @field_validator('reviewer_id')
    @classmethod
    def validate_reviewer_id(cls, v: str) -> str:
        return _not_blank(v)


class TokenRequest(BaseModel):
    """Development token request"""
    user_id: str
    expiry_minutes: Optional[int] = Field(None, ge=1)


class ConcernDetailResponse(BaseModel):
    """Reviewer view of a single concern"""
    concern: Concern
    timeline: List[TimelineEntry]
    assignments: List[Assignment]
    offered_actions: List[ReviewAction]


class ReviewerResponse(BaseModel):
    """Current reviewer"""
    profile: ReviewerProfile
    subordinates: List[ReviewerProfile] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """Error response model"""
    error: str = Field(
        ...,
        description="Error type"
    )
    message: str = Field(
        ...,
        description="Error message"
    )
    details: Optional[Dict] = Field(
        None,
        description="Additional error details"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="Error timestamp"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "error": "InvalidTransition",
                "message": "Concern SC-MLCGEX8B-5W3W is no longer in `reviewing` state (currently `escalated`)",
                "details": {
                    "expected_status": "reviewing",
                    "current_status": "escalated"
                },
                "timestamp": "2026-01-15T10:30:00Z"
            }
        }
