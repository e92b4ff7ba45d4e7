"""Prometheus metrics shared by the workflow and API layers"""

from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    'concern_review_http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

REQUEST_DURATION = Histogram(
    'concern_review_http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint']
)

SUBMISSION_COUNT = Counter(
    'concern_review_submissions_total',
    'Concerns submitted',
    ['mode']
)

TRANSITION_COUNT = Counter(
    'concern_review_transitions_total',
    'Lifecycle transitions attempted',
    ['action', 'outcome']
)

ERROR_COUNT = Counter(
    'concern_review_errors_total',
    'Errors reported to callers',
    ['error_type']
)
