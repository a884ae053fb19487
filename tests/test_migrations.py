"""Tests for the ordered schema migration runner."""

from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy import create_engine, inspect, select, text

from face_index.db import get_engine
from face_index.migrations import (
    MIGRATION_LOG,
    MIGRATIONS,
    SCHEMA_VERSION,
    Migration,
    current_version,
    upgrade_schema,
)
from face_index.store import FaceRecordStore


def _legacy_engine(path: Path, statements: list[str]):
    engine = create_engine(f"sqlite:///{path}")
    with engine.begin() as conn:
        for statement in statements:
            conn.execute(text(statement))
    return engine


def _logged_versions(engine) -> list[int]:
    with engine.connect() as conn:
        return [row.version for row in conn.execute(select(MIGRATION_LOG).order_by(MIGRATION_LOG.c.version))]


def test_fresh_database_runs_every_migration(tmp_path: Path) -> None:
    engine = get_engine(tmp_path / "fresh.db")

    assert SCHEMA_VERSION == 3
    assert _logged_versions(engine) == [1, 2, 3]
    columns = {column["name"] for column in inspect(engine).get_columns("faces")}
    assert columns == {"id", "name", "image_path", "embedding", "age", "image_hash", "timestamp"}
    indexes = {index["name"] for index in inspect(engine).get_indexes("faces")}
    assert {"idx_faces_image_path", "idx_faces_image_hash", "idx_faces_name"} <= indexes


def test_upgrade_is_idempotent(tmp_path: Path) -> None:
    engine = create_engine(f"sqlite:///{tmp_path / 'twice.db'}")

    assert upgrade_schema(engine) == 3
    assert upgrade_schema(engine) == 3
    assert _logged_versions(engine) == [1, 2, 3]


def test_v1_database_without_log_is_upgraded_in_place(tmp_path: Path) -> None:
    path = tmp_path / "v1.db"
    legacy = _legacy_engine(
        path,
        [
            "CREATE TABLE faces (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT NOT NULL, "
            "image_path TEXT NOT NULL, embedding TEXT NOT NULL)",
            "INSERT INTO faces (id, name, image_path, embedding) VALUES (7, 'ann', 'archive/ann.jpg', '[1.0,0.0]')",
        ],
    )
    legacy.dispose()

    store = FaceRecordStore(path)
    records = store.list_all()

    assert store.schema_version() == 3
    assert len(records) == 1
    record = records[0]
    assert record.id == 7
    assert record.name == "ann"
    assert record.image_path == "archive/ann.jpg"
    assert record.embedding == (1.0, 0.0)
    assert record.age == ""
    assert record.image_hash == ""
    assert record.timestamp is not None and record.timestamp > 0


def test_v2_database_keeps_age_and_ids_keep_growing(tmp_path: Path) -> None:
    path = tmp_path / "v2.db"
    legacy = _legacy_engine(
        path,
        [
            "CREATE TABLE faces (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT NOT NULL, "
            "image_path TEXT NOT NULL, embedding TEXT NOT NULL, age TEXT NOT NULL DEFAULT '')",
            "INSERT INTO faces (name, image_path, embedding, age) VALUES ('bo', '/tmp/bo.jpg', '[0.5]', '42')",
            "INSERT INTO faces (name, image_path, embedding, age) VALUES ('cy', '/tmp/cy.jpg', '[0.25]', '')",
        ],
    )
    legacy.dispose()

    store = FaceRecordStore(path)
    records = store.list_all()

    assert [(record.id, record.name, record.age) for record in records] == [(1, "bo", "42"), (2, "cy", "")]
    assert _logged_versions(get_engine(path)) == [1, 2, 3]


def test_partially_migrated_database_resumes_from_log(tmp_path: Path) -> None:
    engine = create_engine(f"sqlite:///{tmp_path / 'partial.db'}")
    assert upgrade_schema(engine, MIGRATIONS[:1]) == 1
    with engine.begin() as conn:
        conn.execute(text("INSERT INTO faces (name, image_path, embedding) VALUES ('dee', 'p', '[]')"))
        assert current_version(conn) == 1

    assert upgrade_schema(engine) == 3
    with engine.connect() as conn:
        row = conn.execute(text("SELECT name, age, image_hash FROM faces")).one()
    assert tuple(row) == ("dee", "", "")


def test_migrations_must_be_contiguous(tmp_path: Path) -> None:
    engine = create_engine(f"sqlite:///{tmp_path / 'gap.db'}")
    gap = (MIGRATIONS[0], Migration(3, "skip ahead", MIGRATIONS[2].upgrade))

    with pytest.raises(RuntimeError):
        upgrade_schema(engine, gap)
