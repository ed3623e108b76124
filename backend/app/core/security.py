from datetime import datetime, timedelta, timezone
from uuid import uuid4

import jwt

from app.core.config import settings

PUBLISHER_TOKEN_TYPE = "publisher"
ALL_SITES = "*"


def create_publisher_token(subject: str, site_ids: list[int] | str, expires_minutes: int | None = None) -> str:
    """Token for a trigger (CI job, admin panel, webhook relay) allowed to publish the given sites."""
    minutes = expires_minutes if expires_minutes is not None else settings.jwt_publisher_token_expire_minutes
    expire = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    payload = {
        "sub": subject,
        "sites": site_ids if site_ids == ALL_SITES else [int(site_id) for site_id in site_ids],
        "exp": expire,
        "type": PUBLISHER_TOKEN_TYPE,
        "jti": str(uuid4()),
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])


def token_allows_site(claims: dict, site_id: int) -> bool:
    sites = claims.get("sites")
    if sites == ALL_SITES:
        return True
    if not isinstance(sites, list):
        return False
    try:
        return int(site_id) in {int(value) for value in sites}
    except (TypeError, ValueError):
        return False
