import re
from collections.abc import Sequence
from html import escape
from typing import TYPE_CHECKING

from app.application.services.content_resolution import resolve_media_url
from app.domain.blocks import ImageBlock, TextBlock

if TYPE_CHECKING:
    from app.application.services.artifact_generator import PostSnapshot

PARAGRAPH_BREAK_PATTERN = re.compile(r"</p>\s*<p>", re.IGNORECASE)
LEADING_PARAGRAPH_PATTERN = re.compile(r"^<p>")
TRAILING_PARAGRAPH_PATTERN = re.compile(r"</p>$")


def format_title(title: str | None) -> str:
    formatted = PARAGRAPH_BREAK_PATTERN.sub("<br>", title or "")
    formatted = LEADING_PARAGRAPH_PATTERN.sub("", formatted)
    return TRAILING_PARAGRAPH_PATTERN.sub("", formatted)


def session_label(order: int | None, index: int) -> str:
    if order is not None and order >= 0:
        return f"Sessão {order + 1}"
    return f"Sessão {index + 1}"


def _attr(value: object) -> str:
    return escape("" if value is None else str(value), quote=True)


def render_session(post: "PostSnapshot", index: int, *, media_base_url: str | None = None) -> str:
    text_blocks = post.blocks_of(TextBlock)
    schedule_text = (text_blocks[0].content if text_blocks else "") or str(post.metadata.get("horario") or "")
    if len(text_blocks) > 1 and text_blocks[1].content:
        description = text_blocks[1].content
    elif text_blocks and text_blocks[0].content:
        description = text_blocks[0].content
    else:
        description = post.content or ""

    images = [block for block in post.blocks_of(ImageBlock) if block.content.strip()]
    container_class = "imagem-sessao imagem-sessao--two" if len(images) == 2 else "imagem-sessao"
    primary_thumb = images[0].content if images else ""

    lines = [
        (
            f'<section class="session" data-post-id="{_attr(post.id)}" data-slug="{_attr(post.slug or "")}"'
            f' data-updated-at="{_attr(post.updated_at or "")}" data-thumb="{_attr(primary_thumb)}">'
        ),
        f'  <p class="session-num">{session_label(post.order, index)}</p>',
    ]
    if schedule_text:
        lines.append(f'  <p class="horario">{schedule_text}</p>')
    lines.append(f'  <h2 class="filme">{format_title(post.title)}</h2>')
    if description:
        lines.append(f'  <div class="descricao">{description}</div>')
    if images:
        lines.append(f'  <div class="{container_class}">')
        for position, image in enumerate(images):
            eager = position == 0
            lines.append(
                f'    <img src="{_attr(resolve_media_url(image.content, media_base_url))}"'
                f' alt="{_attr(image.alt or post.title or "")}" class="movie-img"'
                f' loading="{"eager" if eager else "lazy"}" fetchpriority="{"high" if eager else "auto"}">'
            )
        lines.append("  </div>")
    lines.append("</section>")
    return "\n".join(lines)


def render_sessions_document(
    posts: Sequence["PostSnapshot"],
    *,
    site_name: str,
    content_updated_at: str | None,
    media_base_url: str | None = None,
) -> str:
    sessions = "\n".join(
        render_session(post, index, media_base_url=media_base_url) for index, post in enumerate(posts)
    )
    return (
        "<!DOCTYPE html>\n"
        '<html lang="pt">\n'
        "<head>\n"
        '  <meta charset="UTF-8">\n'
        '  <meta name="viewport" content="width=device-width, initial-scale=1.0">\n'
        f"  <title>Sessões - {escape(site_name)}</title>\n"
        f'  <meta name="content-updated-at" content="{_attr(content_updated_at or "")}">\n'
        "</head>\n"
        "<body>\n"
        f"{sessions}\n"
        "</body>\n"
        "</html>\n"
    )
