"""API layer components for concern review"""

from concern_review.api.app import app
from concern_review.api.auth import Authenticator, AuthResult, authenticator
from concern_review.api.endpoints import get_services, set_services
from concern_review.api.middleware import RequestLoggingMiddleware, TimeoutMiddleware
from concern_review.api.models import ErrorResponse

__all__ = [
    'app',
    'Authenticator',
    'AuthResult',
    'authenticator',
    'get_services',
    'set_services',
    'RequestLoggingMiddleware',
    'TimeoutMiddleware',
    'ErrorResponse',
]
