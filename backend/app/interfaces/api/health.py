from time import perf_counter

from fastapi import APIRouter, Response, status
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.infrastructure.cache.redis_client import get_redis_client
from app.infrastructure.db.session import content_session
from app.infrastructure.observability.metrics import measure_redis, metrics_response

router = APIRouter()


def _elapsed_ms(started_at: float) -> float:
    return round((perf_counter() - started_at) * 1000, 2)


def _probe_content_store() -> dict:
    started_at = perf_counter()
    try:
        with content_session() as db:
            db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        return {"status": "down", "latency_ms": None}
    return {"status": "up", "latency_ms": _elapsed_ms(started_at)}


def _probe_coordinator() -> dict:
    started_at = perf_counter()
    try:
        redis_client = get_redis_client()
        with measure_redis("health_ping"):
            redis_client.ping()
        latency_ms = _elapsed_ms(started_at)
        with measure_redis("health_worker_heartbeat_check"):
            worker_alive = bool(redis_client.exists(settings.worker_heartbeat_key))
    except RedisError:
        return {"status": "down", "latency_ms": None, "worker_alive": False}
    return {"status": "up", "latency_ms": latency_ms, "worker_alive": worker_alive}


@router.get("/health", status_code=status.HTTP_200_OK)
def health_check() -> dict:
    content_store = _probe_content_store()
    coordinator = _probe_coordinator()
    storage_configured = settings.storage_configured

    healthy = content_store["status"] == "up" and coordinator["status"] == "up" and storage_configured
    return {
        "status": "ok" if healthy else "degraded",
        "services": {
            "api": "up",
            "content_store": content_store,
            "coordinator": {
                **coordinator,
                "lock_policy": "fail_open" if settings.publish_lock_fail_open else "fail_closed",
            },
            "object_storage": {
                "status": "configured" if storage_configured else "missing",
                "bucket": settings.supabase_bucket,
            },
        },
    }


@router.get("/ready", status_code=status.HTTP_200_OK)
def readiness_check(response: Response) -> dict:
    payload = health_check()
    # Publishes can run inline through the API, so a missing worker does not block readiness.
    if payload["status"] != "ok":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "not_ready", "services": payload["services"]}
    return {"status": "ready", "services": payload["services"]}


@router.get("/metrics", include_in_schema=False)
def metrics():
    return metrics_response()
