import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from image_builder.config import get_settings


logger = logging.getLogger(__name__)

Base = declarative_base()

SQLITE_BUSY_TIMEOUT_MS = 30000


def _sqlite_file(database_url: str) -> str | None:
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return None
    if not url.database or url.database == ":memory:":
        return None
    return url.database


def build_engine(database_url: str) -> Engine:
    if make_url(database_url).get_backend_name() != "sqlite":
        return create_engine(database_url, pool_pre_ping=True)

    path = _sqlite_file(database_url)
    if path:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    # Build workers share this engine from their own threads.
    sqlite_engine = create_engine(database_url, connect_args={"check_same_thread": False})

    @event.listens_for(sqlite_engine, "connect")
    def _apply_pragmas(dbapi_connection, connection_record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return sqlite_engine


engine = build_engine(get_settings().database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db() -> None:
    """Create the build tables; file-backed sqlite is switched to WAL first."""
    # Models register their tables on Base at import time.
    from image_builder import models  # noqa: F401

    if _sqlite_file(get_settings().database_url):
        with engine.begin() as conn:
            conn.exec_driver_sql("PRAGMA journal_mode=WAL")
    Base.metadata.create_all(bind=engine)
    logger.info("database ready url=%s", engine.url.render_as_string(hide_password=True))


@contextmanager
def session_scope() -> Iterator[Session]:
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
