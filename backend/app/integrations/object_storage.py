import logging
from typing import Protocol
from urllib.parse import quote

import httpx

from app.application.services.publishing_errors import StorageNotConfiguredError, StorageUploadError
from app.core.config import settings
from app.infrastructure.observability.metrics import measure_upload

logger = logging.getLogger(__name__)

IMMUTABLE_CACHE_CONTROL = "public, max-age=31536000, immutable"
MANIFEST_CACHE_CONTROL = "public, max-age=30"


class ObjectStorage(Protocol):
    async def upload(
        self,
        path: str,
        content: bytes | str,
        *,
        content_type: str,
        cache_control: str,
        upsert: bool = True,
    ) -> dict: ...

    def public_url(self, path: str) -> str | None: ...


class SupabaseStorageClient:
    """Uploads objects to a public Supabase Storage bucket over its REST API."""

    def __init__(
        self,
        *,
        base_url: str,
        service_role_key: str,
        bucket: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.service_role_key = service_role_key
        self.bucket = bucket
        self.timeout = timeout
        self._transport = transport

    def _object_url(self, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/{self.bucket}/{quote(path.lstrip('/'))}"

    def public_url(self, path: str) -> str | None:
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{quote(path.lstrip('/'))}"

    async def upload(
        self,
        path: str,
        content: bytes | str,
        *,
        content_type: str,
        cache_control: str,
        upsert: bool = True,
    ) -> dict:
        body = content.encode("utf-8") if isinstance(content, str) else content
        headers = {
            "Authorization": f"Bearer {self.service_role_key}",
            "apikey": self.service_role_key,
            "Content-Type": content_type,
            "Cache-Control": cache_control,
            "x-upsert": "true" if upsert else "false",
        }
        kind = "manifest" if path.endswith("manifest.json") else "artifact"
        try:
            with measure_upload(kind):
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    response = await client.post(self._object_url(path), headers=headers, content=body)
        except httpx.HTTPError as exc:
            logger.error("storage_upload_network_error path=%s error=%s", path, exc)
            raise StorageUploadError(f"Storage upload failed for {path}: {exc}", path=path, retryable=True) from exc

        if response.status_code >= 400:
            retryable = response.status_code == 429 or response.status_code >= 500
            logger.error(
                "storage_upload_failed path=%s status=%s body=%s",
                path,
                response.status_code,
                response.text[:500],
            )
            raise StorageUploadError(
                f"Storage upload failed for {path}: {response.status_code} {response.text[:200]}",
                path=path,
                status_code=response.status_code,
                retryable=retryable,
            )

        logger.info("storage_uploaded path=%s bytes=%s", path, len(body))
        try:
            return response.json()
        except ValueError:
            return {"Key": f"{self.bucket}/{path}"}


def get_object_storage() -> SupabaseStorageClient:
    if not settings.storage_configured:
        raise StorageNotConfiguredError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be configured")
    return SupabaseStorageClient(
        base_url=settings.supabase_url or "",
        service_role_key=settings.supabase_service_role_key or "",
        bucket=settings.supabase_bucket,
        timeout=settings.storage_timeout_seconds,
    )
