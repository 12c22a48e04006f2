from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

HTTP_REQUESTS = Counter(
    "tinydomains_http_requests_total",
    "Total HTTP requests handled by the edge",
    ["method", "status"],
)

# decision: pass_through/rewrite/not_found/server_error
ROUTE_DECISIONS = Counter(
    "tinydomains_route_decisions_total",
    "Routing decisions by kind",
    ["decision"],
)

VERIFICATION_CHECKS = Counter(
    "tinydomains_verification_checks_total",
    "Verification checks by outcome",
    ["outcome"],
)

STATUS_TRANSITIONS = Counter(
    "tinydomains_status_transitions_total",
    "Domain status transitions",
    ["from_status", "to_status"],
)

CHECKS_IN_FLIGHT = Gauge(
    "tinydomains_checks_in_flight",
    "Verifications currently running",
)

LOOKUP_DURATION = Histogram(
    "tinydomains_lookup_duration_seconds",
    "Request-time custom domain lookup latency",
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)


def generate_metrics() -> bytes:
    return generate_latest()


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST
