import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.application.services.artifact_generator import generate_artifacts
from app.application.services.publishing_errors import (
    CoordinatorUnavailableError,
    ManifestWriteError,
    PublishError,
    PublishInProgressError,
    SiteNotFoundError,
    StorageNotConfiguredError,
    StorageUploadError,
)
from app.application.services.publishing_service import (
    MANIFEST_NAME,
    PublishingService,
    content_type_for,
    storage_path,
)
from app.infrastructure.cache.publish_coordinator import PublishCoordinator
from app.infrastructure.db.session import get_db
from app.integrations.object_storage import ObjectStorage
from app.interfaces.api.deps import (
    get_coordinator,
    get_optional_storage,
    get_publishing_service,
    require_site_access,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sites", tags=["publishing"])

PUBLISH_ERROR_STATUS: dict[type[PublishError], int] = {
    PublishInProgressError: status.HTTP_409_CONFLICT,
    CoordinatorUnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
    StorageNotConfiguredError: status.HTTP_503_SERVICE_UNAVAILABLE,
    StorageUploadError: status.HTTP_502_BAD_GATEWAY,
    ManifestWriteError: status.HTTP_502_BAD_GATEWAY,
}


def status_code_for(exc: PublishError) -> int:
    return next(
        (code for error_cls, code in PUBLISH_ERROR_STATUS.items() if isinstance(exc, error_cls)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def _http_error_for(exc: PublishError) -> HTTPException:
    return HTTPException(status_code=status_code_for(exc), detail={"error_code": exc.error_code, "message": str(exc)})


def _site_not_found(exc: SiteNotFoundError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={"error_code": "site_not_found", "message": str(exc)},
    )


@router.post("/{site_id}/publish", status_code=status.HTTP_200_OK)
async def publish_site_artifacts(
    site_id: int = Depends(require_site_access),
    db: Session = Depends(get_db),
    service: PublishingService = Depends(get_publishing_service),
) -> dict:
    try:
        artifacts = await run_in_threadpool(generate_artifacts, db, site_id)
        result = await service.publish_artifacts(site_id, artifacts, metadata={"trigger": "api"})
    except SiteNotFoundError as exc:
        raise _site_not_found(exc) from exc
    except PublishError as exc:
        raise _http_error_for(exc) from exc
    return {"site_id": site_id, **result.to_dict()}


@router.get("/{site_id}/publish-state", status_code=status.HTTP_200_OK)
def get_publish_state(
    site_id: int = Depends(require_site_access),
    coordinator: PublishCoordinator = Depends(get_coordinator),
    storage: ObjectStorage | None = Depends(get_optional_storage),
) -> dict:
    try:
        state = coordinator.get_state(site_id)
        latest_version = coordinator.get_latest_version(site_id)
    except PublishError as exc:
        raise _http_error_for(exc) from exc
    if state is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error_code": "not_published", "message": f"Site {site_id} has not been published"},
        )

    def _public_url(name: str) -> str | None:
        return storage.public_url(storage_path(site_id, name)) if storage is not None else None

    return {
        "site_id": site_id,
        **state.to_dict(),
        "latestVersion": latest_version,
        "manifestUrl": _public_url(MANIFEST_NAME),
        "fileUrls": {logical: _public_url(versioned) for logical, versioned in state.files.items()},
    }


@router.get("/{site_id}/artifacts/preview", status_code=status.HTTP_200_OK)
def preview_artifacts(
    site_id: int = Depends(require_site_access),
    name: str | None = Query(default=None),
    db: Session = Depends(get_db),
):
    try:
        artifacts = generate_artifacts(db, site_id)
    except SiteNotFoundError as exc:
        raise _site_not_found(exc) from exc

    if name is None:
        return {
            "site_id": site_id,
            "artifacts": [
                {"name": filename, "bytes": len(content.encode("utf-8"))}
                for filename, content in artifacts.items()
            ],
        }
    if name not in artifacts:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error_code": "artifact_not_found", "message": f"Artifact {name} not generated for site"},
        )
    return Response(content=artifacts[name], media_type=content_type_for(name))
