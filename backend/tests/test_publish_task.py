import itertools
from contextlib import contextmanager

import pytest

from app.application.services.publishing_errors import StorageUploadError
from app.application.services.publishing_service import PublishingService
from workers import tasks


@pytest.fixture
def task_env(monkeypatch, db_session, content, coordinator, storage):
    site = content.site(3)
    live = content.section(site, "live")
    content.post(live, title="First", slug="first", blocks=[("image", "img/a.png", {})])

    ticks = itertools.count(1_700_000_000, 1)
    service = PublishingService(coordinator, storage, clock=lambda: next(ticks))
    counters: list[str] = []

    @contextmanager
    def _session():
        yield db_session

    monkeypatch.setattr(tasks, "content_session", _session)
    monkeypatch.setattr(tasks, "build_publishing_service", lambda: service)
    monkeypatch.setattr(tasks, "increment_background_counter", lambda name, amount=1: counters.append(name))
    return counters


def test_publish_site_task_publishes(task_env, coordinator) -> None:
    result = tasks.publish_site.apply(args=[3]).get()

    assert result["status"] == "published"
    assert result["version"] == coordinator.get_state(3).version
    assert task_env == ["publish_attempts_total"]


def test_publish_site_task_skips_when_locked(task_env, fake_redis) -> None:
    fake_redis.set("publish:lock:3", "other-worker")

    result = tasks.publish_site.apply(args=[3]).get()

    assert result == {"status": "skipped", "site_id": 3, "reason": "lock_not_acquired"}


def test_publish_site_task_reports_unknown_site(task_env) -> None:
    result = tasks.publish_site.apply(args=[404]).get()

    assert result["status"] == "failed"
    assert result["error_code"] == "site_not_found"
    assert task_env == ["publish_attempts_total", "publish_failures_total"]


def test_publish_site_task_does_not_retry_permanent_errors(task_env, storage) -> None:
    async def _rejecting_upload(path, content, **kwargs):
        raise StorageUploadError(f"Storage upload failed for {path}: 403", path=path, status_code=403)

    storage.upload = _rejecting_upload

    result = tasks.publish_site.apply(args=[3]).get()

    assert result["status"] == "failed"
    assert result["error_code"] == "storage_upload_failed"
    assert result["retryable"] is False
    assert result["site_id"] == 3


def test_retry_delay_grows_exponentially() -> None:
    delays = [tasks._compute_retry_delay_seconds(attempt) for attempt in range(1, 6)]

    assert delays[1] == delays[0] * 2
    assert delays == sorted(delays)
    assert delays[-1] <= tasks.MAX_RETRY_COUNTDOWN_SECONDS
