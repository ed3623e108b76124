import json
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from app.application.services.artifact_html import render_sessions_document
from app.application.services.content_resolution import (
    classify_video,
    is_external_href,
    resolve_media_url,
    resolve_section_roles,
)
from app.application.services.publishing_errors import SiteNotFoundError
from app.core.config import settings
from app.domain.blocks import BaseBlock, Block, ImageBlock, LinkBlock, SlideshowBlock, TextBlock, VideoBlock, parse_blocks
from app.domain.models import Post, Section, Site

logger = logging.getLogger(__name__)

BOOTSTRAP_ARTIFACT = "posts_bootstrap.json"
MIN_BOOTSTRAP_ARTIFACT = "posts_bootstrap.min.json"
HTML_ARTIFACT = "posts.html"
MIN_BOOTSTRAP_TOP_N = 3
MIN_DESCRIPTION_LENGTH = 160
WHITESPACE_PATTERN = re.compile(r"\s+")

BlockT = TypeVar("BlockT", bound=BaseBlock)


@dataclass(frozen=True)
class PostSnapshot:
    id: int
    slug: str | None
    title: str
    content: str
    order: int
    metadata: dict[str, Any]
    created_at: str | None
    updated_at: str | None
    blocks: list[Block] = field(default_factory=list)

    def blocks_of(self, block_cls: type[BlockT]) -> list[BlockT]:
        return [block for block in self.blocks if isinstance(block, block_cls)]

    def first_block(self, block_cls: type[BlockT]) -> BlockT | None:
        matches = self.blocks_of(block_cls)
        return matches[0] if matches else None


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _snapshot(post: Post) -> PostSnapshot:
    metadata = post.metadata_json if isinstance(post.metadata_json, dict) else {}
    return PostSnapshot(
        id=post.id,
        slug=post.slug,
        title=post.title or "",
        content=post.content or "",
        order=post.order if post.order is not None else 0,
        metadata=metadata,
        created_at=_isoformat(post.created_at),
        updated_at=_isoformat(post.updated_at),
        blocks=parse_blocks(list(post.blocks)),
    )


def fetch_sections(db: Session, site_id: int) -> list[Section]:
    return list(
        db.execute(
            select(Section).where(Section.site_id == site_id).order_by(Section.created_at.asc(), Section.id.asc())
        ).scalars().all()
    )


def fetch_published_posts(db: Session, *, site_id: int, section_id: int) -> list[PostSnapshot]:
    rows = db.execute(
        select(Post)
        .options(selectinload(Post.blocks))
        .where(
            Post.site_id == site_id,
            Post.section_id == section_id,
            Post.published.is_(True),
        )
        .order_by(Post.order.asc(), Post.updated_at.desc(), Post.id.asc())
    ).scalars().all()
    logger.info("artifact_posts_fetched site_id=%s section_id=%s count=%s", site_id, section_id, len(rows))
    return [_snapshot(row) for row in rows]


def _by_order(item: dict[str, Any]) -> int:
    return item.get("order") or 0


def build_landing_slides(posts: list[PostSnapshot], media_base_url: str | None) -> list[str]:
    if not posts:
        return []
    slideshow = posts[0].first_block(SlideshowBlock)
    if slideshow is None:
        return []
    return [resolve_media_url(url, media_base_url) for url in slideshow.image_urls()]


def build_releases(posts: list[PostSnapshot], media_base_url: str | None) -> list[dict[str, Any]]:
    releases = []
    for post in posts:
        image = post.first_block(ImageBlock)
        link = post.first_block(LinkBlock)
        href = link.content if link else ""
        if not (href and post.title):
            continue
        releases.append(
            {
                "href": href,
                "title": post.title,
                "image": resolve_media_url(image.content if image else "", media_base_url),
                "order": post.order,
            }
        )
    return sorted(releases, key=_by_order)


def build_live_projects(posts: list[PostSnapshot], media_base_url: str | None) -> list[dict[str, Any]]:
    projects = []
    for post in posts:
        if not post.slug:
            continue
        image = post.first_block(ImageBlock)
        projects.append(
            {
                "slug": post.slug,
                "title": post.title,
                "image": resolve_media_url(image.content if image else "", media_base_url),
                "order": post.order,
            }
        )
    return sorted(projects, key=_by_order)


def build_live_detail(post: PostSnapshot, media_base_url: str | None) -> dict[str, Any]:
    slideshows = post.blocks_of(SlideshowBlock)
    primary_images = (
        [resolve_media_url(url, media_base_url) for url in slideshows[0].image_urls()] if slideshows else None
    )
    secondary_images = (
        [resolve_media_url(url, media_base_url) for url in slideshows[1].image_urls()]
        if len(slideshows) > 1
        else None
    )
    video_block = post.first_block(VideoBlock)
    video = (
        classify_video(video_block.content, title=post.title, media_base_url=media_base_url)
        if video_block
        else None
    )
    text_contents = [block.content for block in post.blocks_of(TextBlock) if block.content]
    images = [
        resolve_media_url(block.content, media_base_url) for block in post.blocks_of(ImageBlock) if block.content
    ]
    return {
        "title": post.title or post.slug,
        "video": video,
        "primaryImages": primary_images,
        "secondaryImages": secondary_images,
        "description": "\n".join(text_contents) or post.content,
        "images": images,
        "blocks": [block.as_payload() for block in post.blocks],
        "content": post.content,
        "metadata": post.metadata,
        "order": post.order,
        "createdAt": post.created_at,
        "updatedAt": post.updated_at,
    }


def build_bio_sections(posts: list[PostSnapshot]) -> list[dict[str, Any]]:
    sections = []
    for post in posts:
        if not post.title:
            continue
        text = post.first_block(TextBlock)
        sections.append({"order": post.order, "title": post.title, "html": text.content if text else ""})
    return sorted(sections, key=_by_order)


def build_contact_links(posts: list[PostSnapshot]) -> list[dict[str, Any]]:
    links = []
    for post in posts:
        link = post.first_block(LinkBlock)
        href = link.content if link else ""
        if not (post.title and href):
            continue
        links.append(
            {
                "order": post.order,
                "label": post.title,
                "href": href,
                "is_external": is_external_href(href),
            }
        )
    return sorted(links, key=_by_order)


def truncate_description(text: str | None, limit: int = MIN_DESCRIPTION_LENGTH) -> str:
    collapsed = WHITESPACE_PATTERN.sub(" ", str(text or ""))
    return collapsed[:limit].strip()


def build_minimal_bootstrap(bootstrap: dict[str, Any], *, site_id: int) -> dict[str, Any]:
    top_projects = bootstrap["liveProjects"][:MIN_BOOTSTRAP_TOP_N]
    detail_map: dict[str, Any] = {}
    for project in top_projects:
        detail = bootstrap["liveDetailMap"].get(project["slug"])
        if detail is None:
            continue
        detail_map[project["slug"]] = {
            "title": detail["title"],
            "description": truncate_description(detail["description"]),
            "order": detail["order"] or 0,
        }
    return {
        "liveProjects": [
            {
                "slug": project["slug"],
                "title": project["title"],
                "order": project["order"] or 0,
                "image": project["image"] or "",
            }
            for project in top_projects
        ],
        "liveDetailMap": detail_map,
        "_meta": {"siteId": site_id, "minimal": True},
    }


class _SectionPostCache:
    def __init__(self, db: Session, site_id: int) -> None:
        self.db = db
        self.site_id = site_id
        self._posts: dict[int, list[PostSnapshot]] = {}

    def posts_for(self, section: Section | None) -> list[PostSnapshot]:
        if section is None:
            return []
        if section.id not in self._posts:
            self._posts[section.id] = fetch_published_posts(self.db, site_id=self.site_id, section_id=section.id)
        return self._posts[section.id]

    def content_updated_at(self) -> str | None:
        timestamps = [post.updated_at for posts in self._posts.values() for post in posts if post.updated_at]
        return max(timestamps) if timestamps else None


def build_bootstrap(
    db: Session,
    site_id: int,
    *,
    media_base_url: str | None = None,
    role_slugs: Mapping[str, list[str]] | None = None,
) -> tuple[dict[str, Any], dict[str, Section | None], _SectionPostCache]:
    roles = resolve_section_roles(fetch_sections(db, site_id), role_slugs)
    logger.info(
        "artifact_roles_resolved site_id=%s %s",
        site_id,
        " ".join(f"{role}={section.id if section else None}" for role, section in roles.items()),
    )
    cache = _SectionPostCache(db, site_id)
    live_posts = cache.posts_for(roles["live"])
    bootstrap = {
        "landingSlides": build_landing_slides(cache.posts_for(roles["landing"]), media_base_url),
        "releases": build_releases(cache.posts_for(roles["releases"]), media_base_url),
        "liveProjects": build_live_projects(live_posts, media_base_url),
        "liveDetailMap": {
            post.slug: build_live_detail(post, media_base_url) for post in live_posts if post.slug
        },
        "bioSections": build_bio_sections(cache.posts_for(roles["bio"])),
        "contactLinks": build_contact_links(cache.posts_for(roles["contact"])),
    }
    bootstrap["_meta"] = {"siteId": site_id, "contentUpdatedAt": cache.content_updated_at()}
    return bootstrap, roles, cache


def generate_artifacts(
    db: Session,
    site_id: int,
    *,
    media_base_url: str | None = None,
    role_slugs: Mapping[str, list[str]] | None = None,
) -> dict[str, str]:
    """Build the named artifacts for one site's published content.

    Either every artifact is returned or the content read error propagates.
    """
    if media_base_url is None:
        media_base_url = settings.prerender_media_base_url
    if role_slugs is None:
        role_slugs = settings.section_role_slugs

    logger.info("artifact_generation_started site_id=%s", site_id)
    try:
        site = db.get(Site, site_id)
        if site is None:
            raise SiteNotFoundError(site_id)

        bootstrap, roles, cache = build_bootstrap(db, site_id, media_base_url=media_base_url, role_slugs=role_slugs)
        artifacts = {
            BOOTSTRAP_ARTIFACT: json.dumps(bootstrap, indent=2, ensure_ascii=False),
            MIN_BOOTSTRAP_ARTIFACT: json.dumps(
                build_minimal_bootstrap(bootstrap, site_id=site_id),
                separators=(",", ":"),
                ensure_ascii=False,
            ),
        }

        if site.produces_html_fragment:
            sessions_section = roles.get("sessions")
            if sessions_section is None:
                logger.info("artifact_html_skipped site_id=%s reason=no_sessions_section", site_id)
            else:
                artifacts[HTML_ARTIFACT] = render_sessions_document(
                    cache.posts_for(sessions_section),
                    site_name=site.name,
                    content_updated_at=cache.content_updated_at(),
                    media_base_url=media_base_url,
                )
    except SQLAlchemyError:
        logger.exception("artifact_generation_failed site_id=%s", site_id)
        raise

    logger.info("artifact_generation_completed site_id=%s artifacts=%s", site_id, ",".join(sorted(artifacts)))
    return artifacts
