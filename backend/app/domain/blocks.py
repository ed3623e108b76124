"""Typed views over ``PostBlock`` rows.

Block ``metadata`` is stored as a free-form JSON bag; the publishing pipeline
reads it through these models so each block kind only exposes the fields that
kind actually carries.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class BaseBlock(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int | None = None
    type: str
    content: str = ""
    order: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("content", mode="before")
    @classmethod
    def _coerce_content(cls, value: Any) -> str:
        return "" if value is None else str(value)

    def as_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "content": self.content,
            "order": self.order,
            "metadata": self.metadata,
        }


class TextBlock(BaseBlock):
    type: Literal["text"] = "text"


class ImageBlock(BaseBlock):
    type: Literal["image"] = "image"

    @property
    def alt(self) -> str:
        return str(self.metadata.get("alt") or "")

    @property
    def caption(self) -> str:
        return str(self.metadata.get("caption") or "")


class VideoBlock(BaseBlock):
    type: Literal["video"] = "video"


class LinkBlock(BaseBlock):
    type: Literal["link"] = "link"


class SlideshowImage(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str = ""
    caption: str = ""


class SlideshowBlock(BaseBlock):
    type: Literal["slideshow"] = "slideshow"

    @property
    def images(self) -> list[SlideshowImage]:
        raw_images = self.metadata.get("images")
        if not isinstance(raw_images, list):
            return []
        images: list[SlideshowImage] = []
        for item in raw_images:
            if not isinstance(item, dict):
                continue
            images.append(SlideshowImage(url=str(item.get("url") or ""), caption=str(item.get("caption") or "")))
        return images

    def image_urls(self) -> list[str]:
        return [image.url for image in self.images if image.url]


class EmbedBlock(BaseBlock):
    """Any ``embed_*`` block (embed_youtube, embed_spotify, ...)."""


class UnknownBlock(BaseBlock):
    pass


Block = TextBlock | ImageBlock | VideoBlock | LinkBlock | SlideshowBlock | EmbedBlock | UnknownBlock

BLOCK_TYPES: dict[str, type[BaseBlock]] = {
    "text": TextBlock,
    "image": ImageBlock,
    "video": VideoBlock,
    "link": LinkBlock,
    "slideshow": SlideshowBlock,
}
EMBED_PREFIX = "embed_"


def parse_block(row: Any) -> Block:
    block_type = str(getattr(row, "type", "") or "").strip().lower()
    metadata = getattr(row, "metadata_json", None)
    values = {
        "id": getattr(row, "id", None),
        "type": block_type,
        "content": getattr(row, "content", ""),
        "order": getattr(row, "order", 0) or 0,
        "metadata": metadata if isinstance(metadata, dict) else {},
    }
    block_cls = BLOCK_TYPES.get(block_type)
    if block_cls is None:
        block_cls = EmbedBlock if block_type.startswith(EMBED_PREFIX) else UnknownBlock
    return block_cls(**values)


def parse_blocks(rows: list[Any]) -> list[Block]:
    ordered = sorted(rows, key=lambda row: (getattr(row, "order", 0) or 0, getattr(row, "id", 0) or 0))
    return [parse_block(row) for row in ordered]
