import pytest

from app.application.services.publishing_errors import CoordinatorUnavailableError
from app.infrastructure.cache.publish_coordinator import PublishCoordinator, PublishState


def test_lock_is_exclusive_until_released(coordinator, fake_redis) -> None:
    assert coordinator.acquire_lock(3, ttl_seconds=60) is True
    assert fake_redis.expirations["publish:lock:3"] == 60
    assert coordinator.acquire_lock(3) is False

    coordinator.release_lock(3)

    assert "publish:lock:3" not in fake_redis.values
    assert coordinator.acquire_lock(3) is True


def test_locks_are_per_site(coordinator) -> None:
    assert coordinator.acquire_lock(3) is True
    assert coordinator.acquire_lock(4) is True


def test_release_is_unconditional(coordinator, fake_redis) -> None:
    fake_redis.set("publish:lock:3", "someone-else")

    coordinator.release_lock(3)

    assert "publish:lock:3" not in fake_redis.values


def test_unavailable_coordinator_fails_closed(unavailable_redis) -> None:
    coordinator = PublishCoordinator(unavailable_redis)

    with pytest.raises(CoordinatorUnavailableError) as exc_info:
        coordinator.acquire_lock(3)

    assert exc_info.value.site_id == 3
    assert exc_info.value.retryable is True


def test_unavailable_coordinator_can_fail_open(unavailable_redis) -> None:
    coordinator = PublishCoordinator(unavailable_redis, fail_open=True)

    assert coordinator.acquire_lock(3) is True
    coordinator.release_lock(3)


def test_state_round_trip_overwrites_whole_value(coordinator, fake_redis) -> None:
    assert coordinator.get_state(3) is None

    coordinator.set_state(3, "1000", {"posts_bootstrap.json": "posts_bootstrap.1000.json", "posts.html": "posts.1000.html"})
    written = coordinator.set_state(3, "2000", {"posts_bootstrap.json": "posts_bootstrap.2000.json"})

    state = coordinator.get_state(3)
    assert state == written
    assert state.version == "2000"
    assert state.files == {"posts_bootstrap.json": "posts_bootstrap.2000.json"}
    assert state.updated_at > 0
    assert "publish:current:3" in fake_redis.values


def test_state_read_errors_are_raised(unavailable_redis) -> None:
    coordinator = PublishCoordinator(unavailable_redis)

    with pytest.raises(CoordinatorUnavailableError):
        coordinator.get_state(3)
    with pytest.raises(CoordinatorUnavailableError):
        coordinator.set_state(3, "1", {})


def test_latest_version_has_ttl(coordinator, fake_redis) -> None:
    coordinator.set_latest_version(3, "1700000000000", ttl_seconds=604800)

    assert coordinator.get_latest_version(3) == "1700000000000"
    assert fake_redis.expirations["publish:version:3"] == 604800
    assert coordinator.get_latest_version(4) is None


def test_key_prefix_is_configurable(fake_redis) -> None:
    coordinator = PublishCoordinator(fake_redis, key_prefix="staging:publish:")

    assert coordinator.lock_key(3) == "staging:publish:lock:3"
    assert coordinator.state_key(3) == "staging:publish:current:3"
    assert coordinator.version_key(3) == "staging:publish:version:3"


def test_publish_state_payload_shape() -> None:
    state = PublishState.from_dict({"version": "12", "files": {"a.json": "a.12.json"}, "updatedAt": 34})

    assert state.to_dict() == {"version": "12", "files": {"a.json": "a.12.json"}, "updatedAt": 34}
