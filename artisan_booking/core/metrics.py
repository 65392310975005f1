from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status_code"],
)

REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "path"],
)

BOOKING_TRANSITIONS = Counter(
    "booking_transitions_total",
    "Booking lifecycle operations by outcome",
    ["transition", "outcome"],
)

SIDE_EFFECT_FAILURES = Counter(
    "booking_side_effect_failures_total",
    "Best-effort side effects that failed after a committed transition",
    ["effect"],
)


def render_metrics() -> tuple[bytes, str]:
    return generate_latest(), CONTENT_TYPE_LATEST
