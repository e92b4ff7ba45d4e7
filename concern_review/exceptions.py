"""Base exception classes for concern review error handling"""


class ConcernReviewError(Exception):
    """Base exception for all concern review errors"""

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(ConcernReviewError):
    """Raised when submitted or decision data is invalid"""
    pass


class NotFound(ConcernReviewError):
    """Raised when a concern reference does not exist"""
    pass


class Unauthenticated(ConcernReviewError):
    """Raised when no caller identity could be established"""
    pass


class RoleNotFound(ConcernReviewError):
    """Raised when an identity has no reviewer profile"""
    pass


class AccessDenied(ConcernReviewError):
    """Raised when a reviewer addresses a concern outside their visible set"""
    pass


class InvalidTransition(ConcernReviewError):
    """Raised when a status change or set-once field write is not permitted"""
    pass


class MissingFacultyAssignment(ConcernReviewError):
    """Raised when escalation is requested without naming a faculty mentor"""
    pass


class ReferenceCollision(ConcernReviewError):
    """Raised when no unique concern reference could be generated"""
    pass


class StoreTimeout(ConcernReviewError):
    """Raised when the backing store does not answer in time"""
    pass


class ConfigurationError(ConcernReviewError):
    """Raised when configuration is invalid or missing"""
    pass
