from app.domain.models.post import Post
from app.domain.models.post_block import PostBlock
from app.domain.models.section import Section
from app.domain.models.site import Site

__all__ = [
    "Site",
    "Section",
    "Post",
    "PostBlock",
]
