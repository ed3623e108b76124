import re
from collections.abc import Iterable, Mapping
from typing import Any

from app.core.config import DEFAULT_SECTION_ROLE_SLUGS
from app.domain.models import Section

ABSOLUTE_URL_PATTERN = re.compile(r"^(https?:)?//", re.IGNORECASE)
EXTERNAL_HREF_PATTERN = re.compile(r"^(https?://|mailto:|tel:)", re.IGNORECASE)
IFRAME_VIDEO_PATTERN = re.compile(r"youtube\.com|youtu\.be|vimeo\.com|player\.vimeo\.com")
VIDEO_FILE_PATTERN = re.compile(r"\.(mp4|mov|webm|ogg)(\?.*)?$")


def resolve_media_url(url: str | None, media_base_url: str | None = None) -> str:
    if not url:
        return ""
    if ABSOLUTE_URL_PATTERN.match(url):
        return url
    if media_base_url:
        return f"{media_base_url.rstrip('/')}/{url.lstrip('/')}"
    return url


def is_external_href(href: str | None) -> bool:
    return bool(EXTERNAL_HREF_PATTERN.match(str(href or "")))


def classify_video(source: str | None, *, title: str, media_base_url: str | None = None) -> dict[str, Any] | None:
    src = str(source or "").strip()
    if not src:
        return None
    if IFRAME_VIDEO_PATTERN.search(src):
        return {"type": "iframe", "src": src, "title": title}
    if VIDEO_FILE_PATTERN.search(src) or src.startswith("/"):
        return {"type": "video", "src": resolve_media_url(src, media_base_url), "title": title}
    return None


def merge_role_slugs(overrides: Mapping[str, Iterable[str]] | None) -> dict[str, list[str]]:
    merged = {role: list(candidates) for role, candidates in DEFAULT_SECTION_ROLE_SLUGS.items()}
    for role, candidates in (overrides or {}).items():
        merged[role] = [str(candidate) for candidate in candidates]
    return merged


def resolve_section_roles(
    sections: Iterable[Section],
    role_slugs: Mapping[str, Iterable[str]] | None = None,
) -> dict[str, Section | None]:
    """Map each semantic role to the first section whose slug matches one of its candidates."""
    by_slug: dict[str, Section] = {}
    for section in sections:
        if section.slug and section.slug not in by_slug:
            by_slug[section.slug] = section

    resolved: dict[str, Section | None] = {}
    for role, candidates in merge_role_slugs(role_slugs).items():
        resolved[role] = next((by_slug[slug] for slug in candidates if slug in by_slug), None)
    return resolved
