"""SQLAlchemy schema and engine management for the face record store."""

from __future__ import annotations

from pathlib import Path
from threading import Lock, RLock
from typing import Any

from sqlalchemy import BigInteger, Float, Index, Integer, String, Text, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column
from sqlalchemy.pool import StaticPool

from face_index.db_helpers import is_sqlite_memory, normalize_database_url
from face_index.migrations import upgrade_schema
from utils.logging import get_logger

LOGGER = get_logger(__name__)


class Base(DeclarativeBase):
    """Declarative base for ORM models.

    Tables are created and evolved by :mod:`face_index.migrations`, never by
    ``Base.metadata.create_all``.
    """


class FaceRow(Base):
    """Persistent face record (schema version 3)."""

    __tablename__ = "faces"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    image_path: Mapped[str] = mapped_column(String, nullable=False)
    embedding: Mapped[str] = mapped_column(Text, nullable=False)
    age: Mapped[str] = mapped_column(String, nullable=False, default="")
    image_hash: Mapped[str] = mapped_column(String, nullable=False, default="")
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __table_args__ = (
        Index("idx_faces_image_path", "image_path"),
        Index("idx_faces_image_hash", "image_hash"),
        Index("idx_faces_name", "name"),
        {"sqlite_autoincrement": True},
    )


class SchemaMigration(Base):
    """Append-only log of applied schema versions."""

    __tablename__ = "schema_migrations"

    version: Mapped[int] = mapped_column(Integer, primary_key=True)
    description: Mapped[str] = mapped_column(String, nullable=False)
    applied_at: Mapped[float] = mapped_column(Float, nullable=False)


_ENGINE_CACHE: dict[str, Engine] = {}
_ENGINE_LOCK = Lock()
_WRITE_LOCKS: dict[str, RLock] = {}


def _ensure_parent_directory(path: Path) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        LOGGER.error("db_parent_directory_error", extra={"path": str(path), "error": str(exc)})
        raise


def _create_engine(normalized: str) -> Engine:
    sa_url = make_url(normalized)
    is_sqlite = sa_url.drivername.startswith("sqlite")

    engine_kwargs: dict[str, Any] = {}
    if is_sqlite:
        connect_args: dict[str, Any] = {"timeout": 30.0, "check_same_thread": False}
        engine_kwargs["connect_args"] = connect_args
        if is_sqlite_memory(sa_url):
            # A single shared connection, otherwise every checkout sees an empty database.
            engine_kwargs["poolclass"] = StaticPool
        else:
            _ensure_parent_directory(Path(sa_url.database or ""))
    else:
        engine_kwargs["pool_pre_ping"] = True

    engine = create_engine(normalized, **engine_kwargs)

    if is_sqlite:

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
            """WAL lets readers see a committed snapshot while a write is in flight."""

            cursor = dbapi_connection.cursor()
            try:
                cursor.execute("PRAGMA journal_mode=WAL")
                cursor.execute("PRAGMA busy_timeout = 30000")
            finally:
                cursor.close()

    return engine


def get_engine(target: str | Path) -> Engine:
    """Return the engine for ``target``, creating and migrating it on first use.

    Initialization runs once per normalized URL while holding a module lock,
    so concurrent first callers never race on schema creation.
    """

    normalized = normalize_database_url(target)
    with _ENGINE_LOCK:
        engine = _ENGINE_CACHE.get(normalized)
        if engine is None:
            engine = _create_engine(normalized)
            upgrade_schema(engine)
            _ENGINE_CACHE[normalized] = engine
            LOGGER.info("db_engine_ready", extra={"url": make_url(normalized).render_as_string()})
        return engine


def dispose_engine(target: str | Path) -> None:
    """Drop a cached engine, closing its pooled connections."""

    normalized = normalize_database_url(target)
    with _ENGINE_LOCK:
        engine = _ENGINE_CACHE.pop(normalized, None)
    if engine is not None:
        engine.dispose()


def get_write_lock(target: str | Path) -> RLock:
    """Return the single-writer lock shared by every store on the same database.

    Locks outlive ``dispose_engine`` so stores created before and after a
    dispose still serialize against each other. Separate processes are not
    covered.
    """

    normalized = normalize_database_url(target)
    with _ENGINE_LOCK:
        return _WRITE_LOCKS.setdefault(normalized, RLock())


def open_session(target: str | Path) -> Session:
    """Open a SQLAlchemy session bound to the store database."""

    return Session(get_engine(target))


__all__ = [
    "Base",
    "FaceRow",
    "SchemaMigration",
    "dispose_engine",
    "get_engine",
    "get_write_lock",
    "open_session",
]
