import asyncio
import os
import threading
from datetime import UTC, datetime, timedelta

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.application.services.publishing_errors import StorageUploadError
from app.domain.models.post import Post
from app.domain.models.post_block import PostBlock
from app.domain.models.section import Section
from app.domain.models.site import Site
from app.infrastructure.cache.publish_coordinator import PublishCoordinator
from app.infrastructure.db.base import Base

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite+pysqlite://")
BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


class FakeRedis:
    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.expirations: dict[str, int] = {}
        self._guard = threading.Lock()

    def set(self, key, value, nx=False, ex=None):
        with self._guard:
            if nx and key in self.values:
                return None
            self.values[key] = str(value)
            if ex is not None:
                self.expirations[key] = ex
            return True

    def get(self, key):
        return self.values.get(key)

    def delete(self, *keys):
        removed = 0
        with self._guard:
            for key in keys:
                if key in self.values:
                    removed += 1
                    self.values.pop(key)
                    self.expirations.pop(key, None)
        return removed

    def exists(self, *keys):
        return sum(1 for key in keys if key in self.values)

    def incrby(self, key, amount=1):
        self.values[key] = str(int(self.values.get(key, 0)) + amount)
        return int(self.values[key])

    def mget(self, keys):
        return [self.values.get(key) for key in keys]

    def ping(self):
        return True


class UnavailableRedis:
    def _fail(self, *args, **kwargs):
        raise RedisConnectionError("Connection refused")

    set = get = delete = exists = incrby = mget = ping = _fail


class RecordingStorage:
    def __init__(self, base_url: str = "https://storage.test/public/prerender") -> None:
        self.base_url = base_url
        self.uploads: list[dict] = []
        self.objects: dict[str, str | bytes] = {}
        self.fail_when = None

    async def upload(self, path, content, *, content_type, cache_control, upsert=True):
        await asyncio.sleep(0)
        if self.fail_when is not None and self.fail_when(path):
            raise StorageUploadError(f"Storage upload failed for {path}: 500", path=path, status_code=500, retryable=True)
        self.uploads.append(
            {"path": path, "content_type": content_type, "cache_control": cache_control, "upsert": upsert}
        )
        self.objects[path] = content
        return {"Key": path}

    def public_url(self, path):
        return f"{self.base_url}/{path}"


class ContentBuilder:
    """Inserts sites, sections and posts with fixed timestamps."""

    def __init__(self, db) -> None:
        self.db = db
        self._tick = 0

    def _next_time(self) -> datetime:
        self._tick += 1
        return BASE_TIME + timedelta(minutes=self._tick)

    def site(self, site_id: int, *, name: str = "Demo", produces_html_fragment: bool = False) -> Site:
        site = Site(
            id=site_id,
            name=name,
            slug=f"site-{site_id}",
            produces_html_fragment=produces_html_fragment,
            created_at=BASE_TIME,
        )
        self.db.add(site)
        self.db.flush()
        return site

    def section(self, site: Site, slug: str) -> Section:
        section = Section(site_id=site.id, slug=slug, name=slug.title(), created_at=self._next_time())
        self.db.add(section)
        self.db.flush()
        return section

    def post(
        self,
        section: Section,
        *,
        title: str,
        slug: str | None = None,
        order: int = 0,
        published: bool = True,
        content: str | None = None,
        metadata: dict | None = None,
        blocks: list[tuple[str, str, dict]] | None = None,
    ) -> Post:
        timestamp = self._next_time()
        post = Post(
            site_id=section.site_id,
            section_id=section.id,
            title=title,
            slug=slug,
            order=order,
            published=published,
            content=content,
            metadata_json=metadata or {},
            created_at=timestamp,
            updated_at=timestamp,
            blocks=[
                PostBlock(type=block_type, content=block_content, order=index, metadata_json=block_metadata)
                for index, (block_type, block_content, block_metadata) in enumerate(blocks or [])
            ],
        )
        self.db.add(post)
        self.db.flush()
        return post


@pytest.fixture
def db_engine():
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False} if TEST_DATABASE_URL.startswith("sqlite") else {},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def content(db_session) -> ContentBuilder:
    return ContentBuilder(db_session)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def coordinator(fake_redis) -> PublishCoordinator:
    return PublishCoordinator(fake_redis, key_prefix="publish")


@pytest.fixture
def storage() -> RecordingStorage:
    return RecordingStorage()


@pytest.fixture
def unavailable_redis() -> UnavailableRedis:
    return UnavailableRedis()
