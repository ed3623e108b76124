from sqlalchemy import select

from app.domain.models.post import Post
from app.domain.models.post_block import PostBlock
from app.domain.models.section import Section
from app.domain.models.site import Site
from app.infrastructure.db.base import Base
from app.infrastructure.db.session import SessionLocal, engine


DEFAULT_SITE_NAME = "Cinema Dev"
DEFAULT_SITE_SLUG = "cinema-dev"


def _post(site: Site, section: Section, *, title: str, slug: str | None, order: int, blocks: list[PostBlock]) -> Post:
    return Post(
        site_id=site.id,
        section_id=section.id,
        title=title,
        slug=slug,
        order=order,
        published=True,
        metadata_json={},
        blocks=blocks,
    )


def seed_dev_data() -> None:
    # The publisher never writes content; a dev database gets its schema here.
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as db:
        existing_site = db.execute(select(Site).where(Site.slug == DEFAULT_SITE_SLUG)).scalar_one_or_none()
        if existing_site is not None:
            print(f"Seed exists: site_id={existing_site.id}")
            return

        site = Site(name=DEFAULT_SITE_NAME, slug=DEFAULT_SITE_SLUG, produces_html_fragment=True)
        db.add(site)
        db.flush()

        sections = {
            slug: Section(site_id=site.id, slug=slug, name=slug.title())
            for slug in ["landing", "releases", "live", "sobre", "contato", "sessoes"]
        }
        db.add_all(sections.values())
        db.flush()

        db.add_all(
            [
                _post(
                    site,
                    sections["landing"],
                    title="Landing",
                    slug=None,
                    order=0,
                    blocks=[
                        PostBlock(
                            type="slideshow",
                            content="",
                            order=0,
                            metadata_json={"images": [{"url": "landing/1.jpg"}, {"url": "landing/2.jpg"}]},
                        )
                    ],
                ),
                _post(
                    site,
                    sections["releases"],
                    title="First Release",
                    slug="first-release",
                    order=0,
                    blocks=[
                        PostBlock(type="image", content="releases/first.jpg", order=0, metadata_json={}),
                        PostBlock(type="link", content="https://example.com/first", order=1, metadata_json={}),
                    ],
                ),
                _post(
                    site,
                    sections["live"],
                    title="Live at the Park",
                    slug="live-at-the-park",
                    order=0,
                    blocks=[
                        PostBlock(type="image", content="live/park.jpg", order=0, metadata_json={}),
                        PostBlock(type="video", content="https://youtu.be/dQw4w9WgXcQ", order=1, metadata_json={}),
                        PostBlock(type="text", content="<p>Recorded outdoors.</p>", order=2, metadata_json={}),
                    ],
                ),
                _post(
                    site,
                    sections["sobre"],
                    title="Quem somos",
                    slug=None,
                    order=0,
                    blocks=[PostBlock(type="text", content="<p>A small cinema club.</p>", order=0, metadata_json={})],
                ),
                _post(
                    site,
                    sections["contato"],
                    title="Email",
                    slug=None,
                    order=0,
                    blocks=[PostBlock(type="link", content="mailto:hello@example.com", order=0, metadata_json={})],
                ),
                _post(
                    site,
                    sections["sessoes"],
                    title="<p>Metropolis</p>",
                    slug="metropolis",
                    order=0,
                    blocks=[
                        PostBlock(type="text", content="Sábado 21h", order=0, metadata_json={}),
                        PostBlock(type="text", content="<p>Fritz Lang, 1927.</p>", order=1, metadata_json={}),
                        PostBlock(type="image", content="sessions/metropolis.jpg", order=2, metadata_json={}),
                    ],
                ),
            ]
        )

        db.commit()

        print("Created dev seed data:")
        print(f"- site_id: {site.id}")
        print(f"- site_slug: {site.slug}")
        print(f"- sections: {', '.join(sections)}")


if __name__ == "__main__":
    seed_dev_data()
