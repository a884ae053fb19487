"""Ordered, additive schema migrations for the ``faces`` table.

Each :class:`Migration` upgrades the schema by exactly one version. The
runner applies every migration above the database's current version in
strict order, one transaction per step, and appends a row to
``schema_migrations`` after each step. Table layouts are spelled out per
version here instead of being taken from the ORM models, so the history
stays fixed when the models move on.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from sqlalchemy import (
    BigInteger,
    Column,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    func,
    inspect,
    insert,
    select,
    text,
)
from sqlalchemy.engine import Connection, Engine

from face_index.db_helpers import sync_id_sequence
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "migrations"})

_LOG_METADATA = MetaData()
MIGRATION_LOG = Table(
    "schema_migrations",
    _LOG_METADATA,
    Column("version", Integer, primary_key=True, autoincrement=False),
    Column("description", String, nullable=False),
    Column("applied_at", Float, nullable=False),
)


@dataclass(frozen=True)
class Migration:
    version: int
    description: str
    upgrade: Callable[[Connection], None]


def _create_faces_v1(conn: Connection) -> None:
    metadata = MetaData()
    Table(
        "faces",
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("name", String, nullable=False),
        Column("image_path", String, nullable=False),
        Column("embedding", Text, nullable=False),
        sqlite_autoincrement=True,
    )
    metadata.create_all(conn)
    conn.execute(text("CREATE INDEX IF NOT EXISTS idx_faces_image_path ON faces (image_path)"))


def _add_age_column(conn: Connection) -> None:
    conn.execute(text("ALTER TABLE faces ADD COLUMN age TEXT NOT NULL DEFAULT ''"))


def _rebuild_with_hash_and_timestamp(conn: Connection) -> None:
    """Rebuild ``faces`` with ``image_hash`` and ``timestamp`` columns.

    Existing rows keep their id and every column value; they get an empty
    hash and the migration time as their timestamp.
    """

    metadata = MetaData()
    Table(
        "faces_v3",
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("name", String, nullable=False),
        Column("image_path", String, nullable=False),
        Column("embedding", Text, nullable=False),
        Column("age", String, nullable=False, server_default=""),
        Column("image_hash", String, nullable=False, server_default=""),
        Column("timestamp", BigInteger, nullable=False),
        sqlite_autoincrement=True,
    )
    metadata.create_all(conn)

    migrated_at = int(time.time() * 1000)
    conn.execute(
        text(
            "INSERT INTO faces_v3 (id, name, image_path, embedding, age, image_hash, timestamp) "
            "SELECT id, name, image_path, embedding, age, '', :migrated_at FROM faces"
        ),
        {"migrated_at": migrated_at},
    )
    conn.execute(text("DROP TABLE faces"))
    conn.execute(text("ALTER TABLE faces_v3 RENAME TO faces"))

    conn.execute(text("CREATE INDEX IF NOT EXISTS idx_faces_image_path ON faces (image_path)"))
    conn.execute(text("CREATE INDEX IF NOT EXISTS idx_faces_image_hash ON faces (image_hash)"))
    conn.execute(text("CREATE INDEX IF NOT EXISTS idx_faces_name ON faces (name)"))
    sync_id_sequence(conn, "faces")


MIGRATIONS: tuple[Migration, ...] = (
    Migration(1, "create faces table", _create_faces_v1),
    Migration(2, "add age column", _add_age_column),
    Migration(3, "rebuild faces with image_hash and timestamp", _rebuild_with_hash_and_timestamp),
)

SCHEMA_VERSION: int = MIGRATIONS[-1].version


def _check_ordering(migrations: Sequence[Migration]) -> None:
    expected = 1
    for migration in migrations:
        if migration.version != expected:
            raise RuntimeError(
                f"migrations must be contiguous from 1; expected version {expected}, got {migration.version}"
            )
        expected += 1


def _infer_legacy_version(conn: Connection) -> int:
    """Guess the version of a ``faces`` table created before the migration log existed."""

    inspector = inspect(conn)
    if not inspector.has_table("faces"):
        return 0
    columns = {column["name"] for column in inspector.get_columns("faces")}
    if {"image_hash", "timestamp"} <= columns:
        return 3
    if "age" in columns:
        return 2
    return 1


def current_version(conn: Connection) -> int:
    """Return the highest logged schema version, or 0 for a fresh database."""

    version = conn.execute(select(func.max(MIGRATION_LOG.c.version))).scalar()
    return int(version or 0)


def upgrade_schema(engine: Engine, migrations: Sequence[Migration] = MIGRATIONS) -> int:
    """Bring the database up to the latest version and return that version."""

    _check_ordering(migrations)

    with engine.begin() as conn:
        _LOG_METADATA.create_all(conn)
        version = current_version(conn)
        if version == 0:
            legacy_version = _infer_legacy_version(conn)
            if legacy_version:
                now = time.time()
                for migration in migrations[:legacy_version]:
                    conn.execute(
                        insert(MIGRATION_LOG).values(
                            version=migration.version,
                            description=f"{migration.description} (pre-existing)",
                            applied_at=now,
                        )
                    )
                version = legacy_version
                LOGGER.info("schema_legacy_baseline", extra={"version": legacy_version})

    start_version = version
    for migration in migrations:
        if migration.version <= version:
            continue
        with engine.begin() as conn:
            migration.upgrade(conn)
            conn.execute(
                insert(MIGRATION_LOG).values(
                    version=migration.version,
                    description=migration.description,
                    applied_at=time.time(),
                )
            )
        version = migration.version
        LOGGER.info(
            "schema_migration_applied",
            extra={"version": migration.version, "description": migration.description},
        )

    if version != start_version:
        LOGGER.info("schema_upgrade_complete", extra={"from_version": start_version, "to_version": version})
    return version


__all__ = ["MIGRATIONS", "MIGRATION_LOG", "Migration", "SCHEMA_VERSION", "current_version", "upgrade_schema"]
