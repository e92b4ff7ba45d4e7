"""Database models for concern review."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field


class ConcernStatus(str, Enum):
    """Lifecycle status of a concern."""
    PENDING = "pending"
    REVIEWING = "reviewing"
    ESCALATED = "escalated"
    RESOLVED = "resolved"


class ReviewerRole(str, Enum):
    """Tier of a reviewer in the review hierarchy."""
    CLASS_LEVEL = "ssc"
    DEPARTMENT_LEVEL = "usc"
    FACULTY = "faculty"


class ConcernCategory(str, Enum):
    """Fixed list of concern categories offered on the submission form."""
    ACADEMIC = "Academic Issues"
    INFRASTRUCTURE = "Infrastructure"
    FACULTY_RELATED = "Faculty Related"
    ADMINISTRATIVE = "Administrative"
    HOSTEL = "Hostel/Accommodation"
    CANTEEN = "Canteen/Mess"
    TRANSPORTATION = "Transportation"
    LIBRARY = "Library"
    SPORTS = "Sports & Recreation"
    EVENTS = "Events & Activities"
    SAFETY = "Safety & Security"
    OTHER = "Other"


IDENTITY_FIELDS = ("student_name", "student_email", "student_id", "department")


class Concern(BaseModel):
    """Concern record model."""

    id: Optional[UUID] = None
    reference: str
    category: ConcernCategory
    subject: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1)
    is_anonymous: bool = False
    student_name: Optional[str] = None
    student_email: Optional[str] = None
    student_id: Optional[str] = None
    department: Optional[str] = None
    evidence_url: Optional[str] = None
    status: ConcernStatus = ConcernStatus.PENDING
    severity: Optional[int] = Field(default=None, ge=1, le=5)
    is_open_forum: bool = False
    is_flagship: bool = False
    faculty_remarks: Optional[str] = None
    final_resolution: Optional[str] = None
    review_deadline: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TimelineEntry(BaseModel):
    """Concern timeline record model."""

    id: Optional[UUID] = None
    concern_id: UUID
    title: str
    description: str = ""
    actor_id: Optional[str] = None
    created_at: Optional[datetime] = None


class Assignment(BaseModel):
    """Concern to reviewer assignment model."""

    id: Optional[UUID] = None
    concern_id: UUID
    reviewer_id: str
    created_at: Optional[datetime] = None


class ReviewerProfile(BaseModel):
    """Reviewer profile model."""

    id: str
    display_name: str
    email: Optional[str] = None
    role: ReviewerRole
    partner_id: Optional[str] = None
    parent_id: Optional[str] = None
    created_at: Optional[datetime] = None


class ConcernFilter(BaseModel):
    """Query predicate for listing concerns.

    All set fields are combined with AND; ``escalated_or_flagged`` is itself
    the disjunction used by the faculty view.
    """

    statuses: Optional[list[ConcernStatus]] = None
    concern_ids: Optional[list[UUID]] = None
    escalated_or_flagged: bool = False
    open_forum_only: bool = False
    created_from: Optional[datetime] = None
    created_before: Optional[datetime] = None
    search: Optional[str] = None
    limit: Optional[int] = Field(default=None, ge=1)
