from tinydomains.observability.logging import configure_logging
from tinydomains.observability.metrics import (
    CHECKS_IN_FLIGHT,
    HTTP_REQUESTS,
    LOOKUP_DURATION,
    ROUTE_DECISIONS,
    STATUS_TRANSITIONS,
    VERIFICATION_CHECKS,
    generate_metrics,
    get_content_type,
)

__all__ = [
    # Logging
    "configure_logging",
    # Metrics
    "HTTP_REQUESTS",
    "ROUTE_DECISIONS",
    "VERIFICATION_CHECKS",
    "STATUS_TRANSITIONS",
    "CHECKS_IN_FLIGHT",
    "LOOKUP_DURATION",
    "generate_metrics",
    "get_content_type",
]
