"""Prometheus metrics for the orchestration engine."""

from prometheus_client import Counter, Gauge, Histogram, Info, generate_latest

from batchgpt.core.config import settings

# --- Metrics ---

LIB_INFO = Info("batchgpt", "batchgpt library info")
LIB_INFO.info({"version": "0.4.0", "name": "batchgpt"})

ATTEMPTS_TOTAL = Counter(
    "batchgpt_attempts_total",
    "Total model-call attempts",
    ["model", "status"],
)

REQUESTS_TOTAL = Counter(
    "batchgpt_requests_total",
    "Logical requests by terminal outcome",
    ["outcome"],
)

ATTEMPT_DURATION = Histogram(
    "batchgpt_attempt_duration_seconds",
    "Duration of a single model-call attempt in seconds",
    ["model"],
    buckets=[0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30, 60, 120, 300],
)

RETRY_WAIT_SECONDS = Counter(
    "batchgpt_retry_wait_seconds_total",
    "Total time spent waiting between attempts",
)

INFLIGHT_REQUESTS = Gauge(
    "batchgpt_inflight_requests",
    "Logical requests currently admitted by the dispatcher",
)


def record_attempt(model: str, status: str, duration_seconds: float) -> None:
    if not settings.metrics_enabled:
        return
    ATTEMPTS_TOTAL.labels(model=model, status=status).inc()
    ATTEMPT_DURATION.labels(model=model).observe(duration_seconds)


def record_outcome(outcome: str) -> None:
    if settings.metrics_enabled:
        REQUESTS_TOTAL.labels(outcome=outcome).inc()


def record_retry_wait(seconds: float) -> None:
    if settings.metrics_enabled and seconds > 0:
        RETRY_WAIT_SECONDS.inc(seconds)


def metrics_text() -> bytes:
    """Render the Prometheus exposition text for the default registry."""
    return generate_latest()
