import jwt
from fastapi import Depends, HTTPException, Path, status
from fastapi.security import OAuth2PasswordBearer

from app.application.services.publishing_errors import StorageNotConfiguredError
from app.application.services.publishing_service import PublishingService, build_publishing_service
from app.core.security import PUBLISHER_TOKEN_TYPE, decode_token, token_allows_site
from app.infrastructure.cache.publish_coordinator import PublishCoordinator
from app.infrastructure.cache.redis_client import get_publish_coordinator
from app.integrations.object_storage import ObjectStorage, get_object_storage

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")


def get_publisher_claims(token: str = Depends(oauth2_scheme)) -> dict:
    try:
        claims = decode_token(token)
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc

    if claims.get("type") != PUBLISHER_TOKEN_TYPE:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token type")
    return claims


def require_site_access(
    site_id: int = Path(ge=1),
    claims: dict = Depends(get_publisher_claims),
) -> int:
    if not token_allows_site(claims, site_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied for site")
    return site_id


def get_coordinator() -> PublishCoordinator:
    return get_publish_coordinator()


def get_storage() -> ObjectStorage:
    return get_object_storage()


def get_optional_storage() -> ObjectStorage | None:
    try:
        return get_object_storage()
    except StorageNotConfiguredError:
        return None


def get_publishing_service(
    coordinator: PublishCoordinator = Depends(get_coordinator),
    storage: ObjectStorage = Depends(get_storage),
) -> PublishingService:
    return build_publishing_service(coordinator=coordinator, storage=storage)
