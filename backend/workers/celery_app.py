from celery import Celery
from celery.schedules import schedule
from kombu import Queue

from app.core.config import settings

celery_app = Celery(
    "site_publisher",
    broker=settings.cache_redis_url,
    backend=settings.cache_redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_default_queue="publishing",
    task_queues=(
        Queue("publishing"),
        Queue("scheduler"),
    ),
    task_routes={
        "workers.tasks.publish_site": {"queue": "publishing"},
        "workers.tasks.worker_heartbeat": {"queue": "scheduler"},
    },
    beat_schedule={
        "worker-heartbeat-every-15s": {
            "task": "workers.tasks.worker_heartbeat",
            "schedule": schedule(15.0),
            "options": {"queue": "scheduler"},
        },
    },
)

celery_app.autodiscover_tasks(["workers"])
