"""Shared fixtures: an in-memory backend with a small reviewer hierarchy."""

import pytest

from concern_review.database import memory_repositories
from concern_review.database.models import ConcernCategory, ReviewerProfile, ReviewerRole
from concern_review.workflow import build_services
from concern_review.workflow.record_store import ConcernSubmission


NAMED_STUDENT = {
    "student_name": "Asha Verma",
    "student_email": "asha@students.example.edu",
    "student_id": "CS21B004",
    "department": "Computer Science",
}


def make_submission(subject="Projector broken in LH-3", anonymous=False, **overrides):
    """Submission form data, named unless anonymous is set."""
    data = {
        "category": ConcernCategory.INFRASTRUCTURE,
        "subject": subject,
        "description": "The projector has not worked for two weeks.",
        "is_anonymous": anonymous,
    }
    if not anonymous:
        data.update(NAMED_STUDENT)
    data.update(overrides)
    return ConcernSubmission(**data)


@pytest.fixture
def services():
    """Workflow components over a fresh in-memory database, no auto-assignment."""
    return build_services(memory_repositories(), auto_assign=False)


@pytest.fixture
def hierarchy(services):
    """
    faculty-01 <- usc-01 <- (ssc-01, ssc-02 paired)
    faculty-02 stands alone; ssc-03 reports to usc-01 unpaired.
    """
    directory = services.directory
    directory.register(ReviewerProfile(id="faculty-01", display_name="Dr. Rao", role=ReviewerRole.FACULTY))
    directory.register(ReviewerProfile(id="faculty-02", display_name="Dr. Iyer", role=ReviewerRole.FACULTY))
    directory.register(ReviewerProfile(
        id="usc-01", display_name="Meera (USC)", role=ReviewerRole.DEPARTMENT_LEVEL, parent_id="faculty-01"
    ))
    directory.register(ReviewerProfile(
        id="ssc-01", display_name="Kiran (SSC)", role=ReviewerRole.CLASS_LEVEL, parent_id="usc-01"
    ))
    directory.register(ReviewerProfile(
        id="ssc-02", display_name="Farah (SSC)", role=ReviewerRole.CLASS_LEVEL,
        parent_id="usc-01", partner_id="ssc-01"
    ))
    directory.register(ReviewerProfile(
        id="ssc-03", display_name="Dev (SSC)", role=ReviewerRole.CLASS_LEVEL, parent_id="usc-01"
    ))
    return {profile.id: profile for profile in directory.list()}


@pytest.fixture
def submit(services, hierarchy):
    """Submit a concern and assign it to ssc-01 and ssc-02."""
    def _submit(subject="Projector broken in LH-3", anonymous=False, assign_to=("ssc-01", "ssc-02"), **overrides):
        concern = services.submissions.submit(make_submission(subject, anonymous, **overrides))
        for reviewer_id in assign_to:
            services.submissions.assign(concern.reference, reviewer_id)
        return services.store.get(concern.reference)
    return _submit
