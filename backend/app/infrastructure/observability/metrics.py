from __future__ import annotations

from contextlib import contextmanager
from time import perf_counter

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.responses import Response

REQUESTS_TOTAL = Counter(
    "total_requests",
    "Total HTTP requests",
    labelnames=("method", "path", "status"),
)
REQUEST_LATENCY_SECONDS = Histogram(
    "request_latency_seconds",
    "HTTP request latency in seconds",
    labelnames=("method", "path"),
)
DB_QUERY_DURATION_SECONDS = Histogram(
    "db_query_duration_seconds",
    "Database query duration in seconds",
    labelnames=("operation",),
)
REDIS_LATENCY_SECONDS = Histogram(
    "redis_latency_seconds",
    "Redis command latency in seconds",
    labelnames=("operation",),
)
ARTIFACT_UPLOAD_SECONDS = Histogram(
    "artifact_upload_seconds",
    "Object storage upload latency in seconds",
    labelnames=("kind",),
)
PUBLISH_ATTEMPTS_TOTAL = Counter(
    "publish_attempts_total",
    "Number of site publish attempts",
)
PUBLISH_FAILURES_TOTAL = Counter(
    "publish_failures_total",
    "Number of failed site publish attempts",
    labelnames=("error_code",),
)

# Celery workers run publishes in their own processes; they mirror their
# counts into Redis so the API process can expose them on /metrics.
BACKGROUND_COUNTER_KEYS = {
    "publish_attempts_total": "metrics:publish_attempts_total",
    "publish_failures_total": "metrics:publish_failures_total",
}
_last_background_counter_values: dict[str, float] = {
    metric_name: 0.0 for metric_name in BACKGROUND_COUNTER_KEYS
}


def record_request(method: str, path: str, status_code: int, duration_seconds: float) -> None:
    REQUESTS_TOTAL.labels(method=method, path=path, status=str(status_code)).inc()
    REQUEST_LATENCY_SECONDS.labels(method=method, path=path).observe(duration_seconds)


def observe_db_query(duration_seconds: float, operation: str = "sql") -> None:
    DB_QUERY_DURATION_SECONDS.labels(operation=operation).observe(duration_seconds)


def observe_redis_latency(duration_seconds: float, operation: str) -> None:
    REDIS_LATENCY_SECONDS.labels(operation=operation).observe(duration_seconds)


def record_publish_attempt() -> None:
    PUBLISH_ATTEMPTS_TOTAL.inc()


def record_publish_failure(error_code: str) -> None:
    PUBLISH_FAILURES_TOTAL.labels(error_code=error_code).inc()


def increment_background_counter(metric_name: str, amount: int = 1) -> None:
    redis_key = BACKGROUND_COUNTER_KEYS.get(metric_name)
    if redis_key is None:
        return
    try:
        from app.infrastructure.cache.redis_client import get_redis_client

        redis_client = get_redis_client()
        with measure_redis("metrics_background_counter_incr"):
            redis_client.incrby(redis_key, amount)
    except Exception:
        # Metrics must not fail a publish.
        return


def _sync_background_counters_from_redis() -> None:
    try:
        from app.infrastructure.cache.redis_client import get_redis_client

        redis_client = get_redis_client()
        with measure_redis("metrics_background_counter_sync"):
            raw_values = redis_client.mget(list(BACKGROUND_COUNTER_KEYS.values()))
    except Exception:
        return

    for idx, metric_name in enumerate(BACKGROUND_COUNTER_KEYS):
        raw_value = raw_values[idx] if raw_values else None
        current_value = float(raw_value or 0.0)
        delta = current_value - _last_background_counter_values.get(metric_name, 0.0)
        if delta > 0:
            if metric_name == "publish_attempts_total":
                PUBLISH_ATTEMPTS_TOTAL.inc(delta)
            else:
                PUBLISH_FAILURES_TOTAL.labels(error_code="background").inc(delta)
        _last_background_counter_values[metric_name] = current_value


@contextmanager
def measure_redis(operation: str):
    started_at = perf_counter()
    try:
        yield
    finally:
        observe_redis_latency(perf_counter() - started_at, operation=operation)


@contextmanager
def measure_upload(kind: str):
    started_at = perf_counter()
    try:
        yield
    finally:
        ARTIFACT_UPLOAD_SECONDS.labels(kind=kind).observe(perf_counter() - started_at)


def metrics_response() -> Response:
    _sync_background_counters_from_redis()
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
