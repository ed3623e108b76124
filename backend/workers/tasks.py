import asyncio
import logging
from datetime import UTC, datetime

from celery.exceptions import MaxRetriesExceededError

from app.application.services.publishing_errors import (
    PublishError,
    PublishInProgressError,
    SiteNotFoundError,
)
from app.application.services.publishing_service import build_publishing_service, publish_site as publish_site_async
from app.core.config import settings
from app.infrastructure.cache.redis_client import get_redis_client
from app.infrastructure.db.session import content_session
from app.infrastructure.observability.metrics import increment_background_counter, measure_redis
from workers.celery_app import celery_app

logger = logging.getLogger(__name__)

MAX_RETRY_COUNTDOWN_SECONDS = 600


def _compute_retry_delay_seconds(attempt: int) -> int:
    normalized_attempt = max(1, attempt)
    delay = settings.publish_task_retry_delay_seconds * (2 ** (normalized_attempt - 1))
    return min(MAX_RETRY_COUNTDOWN_SECONDS, delay)


@celery_app.task(name="workers.tasks.ping")
def ping() -> str:
    return "pong"


@celery_app.task(name="workers.tasks.worker_heartbeat")
def worker_heartbeat() -> dict:
    redis_client = get_redis_client()
    now = datetime.now(UTC).isoformat()
    with measure_redis("worker_heartbeat_set"):
        redis_client.set(
            settings.worker_heartbeat_key,
            now,
            ex=max(15, settings.worker_heartbeat_ttl_seconds),
        )
    return {"heartbeat_at": now}


@celery_app.task(
    bind=True,
    name="workers.tasks.publish_site",
    max_retries=settings.publish_task_max_retries,
    acks_late=True,
)
def publish_site(self, site_id: int, trigger: str = "task") -> dict:
    increment_background_counter("publish_attempts_total")
    attempt = self.request.retries + 1
    try:
        service = build_publishing_service()
        with content_session() as db:
            result = asyncio.run(
                publish_site_async(
                    db,
                    int(site_id),
                    service=service,
                    metadata={"trigger": trigger, "attempt": attempt},
                )
            )
    except SiteNotFoundError as exc:
        increment_background_counter("publish_failures_total")
        logger.warning("publish_site_missing site_id=%s", site_id)
        return {"status": "failed", "site_id": site_id, "error_code": "site_not_found", "message": str(exc)}
    except PublishInProgressError:
        logger.info("publish_site_skipped_locked site_id=%s attempt=%s", site_id, attempt)
        return {"status": "skipped", "site_id": site_id, "reason": "lock_not_acquired"}
    except PublishError as exc:
        increment_background_counter("publish_failures_total")
        if not exc.retryable:
            logger.error("publish_site_failed_non_retryable site_id=%s error_code=%s", site_id, exc.error_code)
            return {"status": "failed", "site_id": site_id, **exc.to_payload()}

        countdown = _compute_retry_delay_seconds(attempt)
        logger.warning(
            "publish_site_retry site_id=%s attempt=%s countdown=%s error_code=%s error=%s",
            site_id,
            attempt,
            countdown,
            exc.error_code,
            str(exc),
        )
        try:
            raise self.retry(exc=exc, countdown=countdown)
        except MaxRetriesExceededError:
            logger.error("publish_site_max_retries site_id=%s error_code=%s", site_id, exc.error_code)
            return {"status": "failed", "site_id": site_id, "reason": "max_retries_exceeded", **exc.to_payload()}

    logger.info(
        "publish_site_completed site_id=%s version=%s attempt=%s duration_ms=%s",
        site_id,
        result.version,
        attempt,
        result.duration_ms,
    )
    return {"status": "published", "site_id": site_id, **result.to_dict()}
