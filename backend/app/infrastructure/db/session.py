from collections.abc import Generator, Iterator
from contextlib import contextmanager
from time import perf_counter

from sqlalchemy import Engine, create_engine
from sqlalchemy import event
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import settings
from app.infrastructure.observability.metrics import observe_db_query


def instrument_engine(target: Engine, *, operation: str = "content_read") -> Engine:
    @event.listens_for(target, "before_cursor_execute")
    def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        conn.info.setdefault("query_started_at_stack", []).append(perf_counter())

    @event.listens_for(target, "after_cursor_execute")
    def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        stack = conn.info.get("query_started_at_stack", [])
        if not stack:
            return
        started_at = stack.pop(-1)
        observe_db_query(perf_counter() - started_at, operation=operation)

    return target


engine = instrument_engine(create_engine(settings.sqlalchemy_database_uri, pool_pre_ping=True))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def content_session(factory: sessionmaker = SessionLocal) -> Iterator[Session]:
    """Session for the publishing pipeline; the content store is only read, so
    whatever the session touched is rolled back on exit."""
    db = factory()
    try:
        yield db
    finally:
        db.rollback()
        db.close()


def get_db() -> Generator[Session, None, None]:
    with content_session() as db:
        yield db
