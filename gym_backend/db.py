from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .config import Settings, load_settings
from .errors import TransientError

log = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """ORM base for every model."""
    pass


def make_engine(database_url: str, echo: bool = False) -> Engine:
    connect_args = {}
    if database_url.startswith("sqlite"):
        # sessions are opened from FastAPI's threadpool and from test threads
        connect_args = {"check_same_thread": False, "timeout": 30}
    return create_engine(database_url, echo=echo, future=True, connect_args=connect_args)


class Database:
    """
    Record store handed to every service.

    Wraps one engine and its session factory; there is no module-level
    instance, callers build one from settings (or a URL) and pass it along.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self.session_factory = sessionmaker(
            bind=engine,
            autoflush=False,
            autocommit=False,
            future=True,
            expire_on_commit=False,
        )

    @classmethod
    def from_url(cls, database_url: str, echo: bool = False) -> "Database":
        return cls(make_engine(database_url, echo=echo))

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "Database":
        settings = settings or load_settings()
        return cls.from_url(settings.database_url, echo=settings.sql_echo)

    def create_all(self) -> None:
        """Create the tables if they do not exist."""
        # models must be imported so their tables are registered on Base.metadata
        from . import models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    @contextmanager
    def session(self) -> Iterator[Session]:
        """
        One unit of work:
        - commit if everything went fine
        - rollback on any exception
        - always close

        Driver failures (lost connection, lock timeout, ...) surface as
        TransientError so callers may retry. Integrity errors are left
        untouched for the service layer to translate.
        """
        session: Session = self.session_factory()
        try:
            yield session
            session.commit()
        except IntegrityError:
            session.rollback()
            raise
        except DBAPIError as exc:
            session.rollback()
            log.warning("unit of work aborted by the database: %s", exc.orig)
            raise TransientError(f"database unavailable: {exc.orig}") from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
