import json
import logging
import time
from dataclasses import dataclass, field
from uuid import uuid4

from redis import Redis
from redis.exceptions import RedisError

from app.application.services.publishing_errors import CoordinatorUnavailableError
from app.infrastructure.observability.metrics import measure_redis

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TTL_SECONDS = 60
DEFAULT_LATEST_VERSION_TTL_SECONDS = 86400 * 7


@dataclass(frozen=True)
class PublishState:
    version: str
    files: dict[str, str] = field(default_factory=dict)
    updated_at: int = 0

    def to_dict(self) -> dict:
        return {"version": self.version, "files": dict(self.files), "updatedAt": self.updated_at}

    @classmethod
    def from_dict(cls, payload: dict) -> "PublishState":
        files = payload.get("files") or {}
        return cls(
            version=str(payload.get("version") or ""),
            files={str(key): str(value) for key, value in files.items()},
            updated_at=int(payload.get("updatedAt") or 0),
        )


class PublishCoordinator:
    """Per-site publish lock and current-version pointer kept in Redis.

    Only single-key atomicity is relied on: the lock is ``SET NX EX`` and the
    state is a whole-value overwrite.

    When Redis cannot be reached while taking the lock the coordinator fails
    closed and raises ``CoordinatorUnavailableError``. With ``fail_open`` the
    publish proceeds without mutual exclusion instead, so two publishes of the
    same site may interleave their uploads during the outage.
    """

    def __init__(self, redis_client: Redis, *, key_prefix: str = "publish", fail_open: bool = False) -> None:
        self.redis = redis_client
        self.key_prefix = key_prefix.rstrip(":")
        self.fail_open = fail_open

    def lock_key(self, site_id: int) -> str:
        return f"{self.key_prefix}:lock:{site_id}"

    def state_key(self, site_id: int) -> str:
        return f"{self.key_prefix}:current:{site_id}"

    def version_key(self, site_id: int) -> str:
        return f"{self.key_prefix}:version:{site_id}"

    def acquire_lock(self, site_id: int, ttl_seconds: int = DEFAULT_LOCK_TTL_SECONDS) -> bool:
        token = str(uuid4())
        try:
            with measure_redis("publish_lock_acquire"):
                acquired = self.redis.set(self.lock_key(site_id), token, nx=True, ex=max(1, int(ttl_seconds)))
        except RedisError as exc:
            if self.fail_open:
                logger.warning("publish_lock_unavailable_fail_open site_id=%s error=%s", site_id, exc)
                return True
            logger.error("publish_lock_unavailable site_id=%s error=%s", site_id, exc)
            raise CoordinatorUnavailableError(
                f"Lock coordinator unavailable for site {site_id}: {exc}", site_id=site_id
            ) from exc

        if not acquired:
            logger.warning("publish_lock_held site_id=%s", site_id)
            return False
        logger.info("publish_lock_acquired site_id=%s ttl_seconds=%s", site_id, ttl_seconds)
        return True

    def release_lock(self, site_id: int) -> None:
        try:
            with measure_redis("publish_lock_release"):
                self.redis.delete(self.lock_key(site_id))
        except RedisError:
            # The key still expires through its TTL.
            logger.exception("publish_lock_release_failed site_id=%s", site_id)
            return
        logger.info("publish_lock_released site_id=%s", site_id)

    def set_state(self, site_id: int, version: str, files: dict[str, str]) -> PublishState:
        state = PublishState(version=version, files=dict(files), updated_at=int(time.time() * 1000))
        try:
            with measure_redis("publish_state_set"):
                self.redis.set(self.state_key(site_id), json.dumps(state.to_dict(), separators=(",", ":")))
        except RedisError as exc:
            logger.error("publish_state_write_failed site_id=%s version=%s error=%s", site_id, version, exc)
            raise CoordinatorUnavailableError(
                f"Unable to write publish state for site {site_id}: {exc}", site_id=site_id, version=version
            ) from exc
        logger.info("publish_state_updated site_id=%s version=%s files=%s", site_id, version, len(files))
        return state

    def get_state(self, site_id: int) -> PublishState | None:
        try:
            with measure_redis("publish_state_get"):
                raw = self.redis.get(self.state_key(site_id))
        except RedisError as exc:
            raise CoordinatorUnavailableError(
                f"Unable to read publish state for site {site_id}: {exc}", site_id=site_id
            ) from exc
        if not raw:
            return None
        return PublishState.from_dict(json.loads(raw))

    def set_latest_version(
        self, site_id: int, version: str, ttl_seconds: int = DEFAULT_LATEST_VERSION_TTL_SECONDS
    ) -> None:
        try:
            with measure_redis("publish_version_set"):
                self.redis.set(self.version_key(site_id), version, ex=max(1, int(ttl_seconds)))
        except RedisError as exc:
            raise CoordinatorUnavailableError(
                f"Unable to write latest version for site {site_id}: {exc}", site_id=site_id, version=version
            ) from exc

    def get_latest_version(self, site_id: int) -> str | None:
        try:
            with measure_redis("publish_version_get"):
                raw = self.redis.get(self.version_key(site_id))
        except RedisError as exc:
            raise CoordinatorUnavailableError(
                f"Unable to read latest version for site {site_id}: {exc}", site_id=site_id
            ) from exc
        if raw is None:
            return None
        return raw.decode("utf-8") if isinstance(raw, bytes) else str(raw)
