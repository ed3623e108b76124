class PublishError(RuntimeError):
    retryable: bool = False
    error_code: str = "publish_error"

    def __init__(self, message: str, *, site_id: int | None = None, version: str | None = None) -> None:
        super().__init__(message)
        self.site_id = site_id
        self.version = version

    def to_payload(self) -> dict:
        return {
            "error_code": self.error_code,
            "message": str(self),
            "site_id": self.site_id,
            "version": self.version,
            "retryable": self.retryable,
        }


class PublishInProgressError(PublishError):
    retryable = True
    error_code = "publish_in_progress"


class CoordinatorUnavailableError(PublishError):
    retryable = True
    error_code = "coordinator_unavailable"


class StorageUploadError(PublishError):
    error_code = "storage_upload_failed"

    def __init__(
        self,
        message: str,
        *,
        path: str,
        status_code: int | None = None,
        retryable: bool = False,
        site_id: int | None = None,
        version: str | None = None,
    ) -> None:
        super().__init__(message, site_id=site_id, version=version)
        self.path = path
        self.status_code = status_code
        self.retryable = retryable


class StorageNotConfiguredError(PublishError):
    error_code = "storage_not_configured"


class ManifestWriteError(PublishError):
    """State already points at ``version`` but the public manifest still advertises the previous one."""

    retryable = True
    error_code = "manifest_write_failed"


class SiteNotFoundError(LookupError):
    def __init__(self, site_id: int) -> None:
        super().__init__(f"Site {site_id} not found")
        self.site_id = site_id
