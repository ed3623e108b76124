import asyncio
import json
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from time import perf_counter

from sqlalchemy.orm import Session

from app.application.services.artifact_generator import generate_artifacts
from app.application.services.publishing_errors import (
    ManifestWriteError,
    PublishError,
    PublishInProgressError,
)
from app.core.config import settings
from app.infrastructure.cache.publish_coordinator import PublishCoordinator, PublishState
from app.infrastructure.cache.redis_client import get_publish_coordinator
from app.infrastructure.logging.context import reset_site_id, set_site_id
from app.infrastructure.observability.metrics import (
    record_publish_attempt,
    record_publish_failure,
)
from app.integrations.object_storage import (
    IMMUTABLE_CACHE_CONTROL,
    MANIFEST_CACHE_CONTROL,
    ObjectStorage,
    get_object_storage,
)

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"


@dataclass(frozen=True)
class PublishResult:
    site_id: int
    version: str
    files: dict[str, str]
    duration_ms: int
    metadata: dict = field(default_factory=dict)
    success: bool = True

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "version": self.version,
            "files": dict(self.files),
            "duration": self.duration_ms,
        }


def versioned_name(filename: str, version: str) -> str:
    if "." not in filename:
        return f"{filename}.{version}"
    base_name, extension = filename.rsplit(".", 1)
    return f"{base_name}.{version}.{extension}"


def content_type_for(filename: str) -> str:
    extension = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    return "application/json" if extension == "json" else "text/html"


def storage_path(site_id: int, name: str) -> str:
    return f"{site_id}/{name}"


def build_manifest(state: PublishState) -> dict:
    return {
        "version": state.version,
        "filesMap": dict(state.files),
        "files": [{"name": versioned, "key": logical} for logical, versioned in state.files.items()],
        "updatedAt": state.updated_at,
    }


class PublishingService:
    """Sole writer of publish state.

    Sequence per call: lock, upload versioned artifacts, write state, write
    manifest, refresh the latest-version key, unlock. State is written only
    after every upload of the attempt succeeded, so readers never see a
    version whose files are incomplete.

    Coordinator calls are blocking redis-py calls and run in worker threads.
    """

    def __init__(
        self,
        coordinator: PublishCoordinator,
        storage: ObjectStorage,
        *,
        lock_ttl_seconds: int = 60,
        latest_version_ttl_seconds: int = 86400 * 7,
        max_concurrent_uploads: int = 4,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.coordinator = coordinator
        self.storage = storage
        self.lock_ttl_seconds = lock_ttl_seconds
        self.latest_version_ttl_seconds = latest_version_ttl_seconds
        self.max_concurrent_uploads = max(1, max_concurrent_uploads)
        self.clock = clock

    def new_version(self) -> str:
        return str(int(self.clock() * 1000))

    async def _upload_artifacts(self, site_id: int, version: str, artifacts: Mapping[str, str | bytes]) -> dict[str, str]:
        semaphore = asyncio.Semaphore(self.max_concurrent_uploads)
        names = {filename: versioned_name(filename, version) for filename in artifacts}

        async def _upload(filename: str, content: str | bytes) -> None:
            async with semaphore:
                await self.storage.upload(
                    storage_path(site_id, names[filename]),
                    content,
                    content_type=content_type_for(filename),
                    cache_control=IMMUTABLE_CACHE_CONTROL,
                    upsert=True,
                )

        results = await asyncio.gather(
            *(_upload(filename, content) for filename, content in artifacts.items()),
            return_exceptions=True,
        )
        for filename, result in zip(artifacts, results):
            if isinstance(result, BaseException):
                logger.error(
                    "publish_artifact_upload_failed site_id=%s version=%s artifact=%s error=%s",
                    site_id,
                    version,
                    filename,
                    result,
                    extra={"version": version, "artifact": filename},
                )
                if isinstance(result, PublishError):
                    result.site_id = result.site_id if result.site_id is not None else site_id
                    result.version = result.version or version
                raise result
        return names

    async def write_manifest(self, site_id: int) -> dict:
        state = await asyncio.to_thread(self.coordinator.get_state, site_id)
        if state is None:
            raise ManifestWriteError(f"No publish state found for site {site_id}", site_id=site_id)

        manifest = build_manifest(state)
        try:
            await self.storage.upload(
                storage_path(site_id, MANIFEST_NAME),
                json.dumps(manifest, indent=2),
                content_type="application/json",
                cache_control=MANIFEST_CACHE_CONTROL,
                upsert=True,
            )
        except Exception as exc:
            logger.error(
                "publish_manifest_write_failed site_id=%s version=%s error=%s", site_id, state.version, exc
            )
            raise ManifestWriteError(
                f"Publish state for site {site_id} is at version {state.version} "
                f"but manifest.json could not be written: {exc}",
                site_id=site_id,
                version=state.version,
            ) from exc
        logger.info("publish_manifest_written site_id=%s version=%s", site_id, state.version)
        return manifest

    async def publish_artifacts(
        self,
        site_id: int,
        artifacts: Mapping[str, str | bytes],
        metadata: dict | None = None,
    ) -> PublishResult:
        started_at = perf_counter()
        version = self.new_version()
        site_token = set_site_id(str(site_id))
        record_publish_attempt()
        logger.info(
            "publish_started site_id=%s version=%s artifacts=%s", site_id, version, ",".join(artifacts)
        )
        try:
            if not await asyncio.to_thread(self.coordinator.acquire_lock, site_id, self.lock_ttl_seconds):
                raise PublishInProgressError(
                    f"Publish already in progress for site {site_id}", site_id=site_id, version=version
                )
            try:
                files = await self._upload_artifacts(site_id, version, artifacts)
                await asyncio.to_thread(self.coordinator.set_state, site_id, version, files)
                await self.write_manifest(site_id)
                await asyncio.to_thread(
                    self.coordinator.set_latest_version, site_id, version, self.latest_version_ttl_seconds
                )
            finally:
                await asyncio.to_thread(self.coordinator.release_lock, site_id)
        except Exception as exc:
            error_code = exc.error_code if isinstance(exc, PublishError) else "unhandled_publish_exception"
            record_publish_failure(error_code)
            logger.error(
                "publish_failed site_id=%s version=%s error_code=%s error=%s",
                site_id,
                version,
                error_code,
                exc,
                extra={"version": version, "error_code": error_code},
            )
            raise
        finally:
            reset_site_id(site_token)

        duration_ms = int((perf_counter() - started_at) * 1000)
        logger.info(
            "publish_completed site_id=%s version=%s files=%s duration_ms=%s",
            site_id,
            version,
            len(files),
            duration_ms,
            extra={"version": version},
        )
        return PublishResult(
            site_id=site_id,
            version=version,
            files=files,
            duration_ms=duration_ms,
            metadata=dict(metadata or {}),
        )


def build_publishing_service(
    coordinator: PublishCoordinator | None = None,
    storage: ObjectStorage | None = None,
) -> PublishingService:
    return PublishingService(
        coordinator or get_publish_coordinator(),
        storage or get_object_storage(),
        lock_ttl_seconds=settings.publish_lock_ttl_seconds,
        latest_version_ttl_seconds=settings.publish_latest_version_ttl_seconds,
        max_concurrent_uploads=settings.publish_max_concurrent_uploads,
    )


async def publish_site(
    db: Session,
    site_id: int,
    *,
    service: PublishingService,
    metadata: dict | None = None,
) -> PublishResult:
    """Generate a fresh snapshot of the site and publish it."""
    artifacts = generate_artifacts(db, site_id)
    return await service.publish_artifacts(site_id, artifacts, metadata=metadata)
