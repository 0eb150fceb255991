"""Database initialization and session handling."""
import logging
import os
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from cloudadaptor.config import Settings
from cloudadaptor.models import Base
from cloudadaptor.utils import RetryError, retry

logger = logging.getLogger("cloudadaptor.datastore")

CONNECT_ATTEMPTS = 10
CONNECT_DELAY = 3.0


class Database:
    """Engine plus session factory shared by every store."""

    def __init__(self, url: str, **engine_kwargs):
        if url.startswith("sqlite"):
            engine_kwargs.setdefault("connect_args", {"check_same_thread": False})
        else:
            engine_kwargs.setdefault("pool_recycle", 3600)
        self.url = url
        self.engine = create_engine(url, pool_pre_ping=True, **engine_kwargs)
        self.session_factory = sessionmaker(self.engine, expire_on_commit=False)

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        """Open the configured store.

        The embedded directory is created when missing. A remote store is
        polled until it answers; startup aborts with ``RetryError`` after
        ten failed attempts.
        """
        if settings.db.type == "sqlite3":
            os.makedirs(settings.db.path, exist_ok=True)
            logger.info(f"using embedded database in {settings.db.path}")
            return cls(settings.database_url)

        db = cls(settings.database_url)
        logger.info(f"using mysql database {settings.db.host}:{settings.db.port}/{settings.db.name}")
        db.wait_ready()
        return db

    @retry(max_attempts=CONNECT_ATTEMPTS, delay=CONNECT_DELAY, exceptions=(OperationalError,))
    def wait_ready(self) -> None:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    def migrate(self) -> None:
        """Create all tables that do not exist yet."""
        Base.metadata.create_all(self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Yield a session that commits on success and rolls back on error."""
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()


def open_database(settings: Settings) -> Database:
    try:
        db = Database.from_settings(settings)
    except RetryError as e:
        logger.error(f"database is not reachable: {e}")
        raise
    db.migrate()
    return db
