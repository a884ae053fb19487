"""Tests for the SQLAlchemy-backed face record store."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest
from sqlalchemy.exc import OperationalError

from face_index.errors import StoreError
from face_index.records import FaceRecord
from face_index.store import FaceRecordStore


def _store(tmp_path: Path, name: str = "faces.db", clock=None) -> FaceRecordStore:
    if clock is None:
        return FaceRecordStore(tmp_path / name)
    return FaceRecordStore(tmp_path / name, clock=clock)


def _face(path: str, embedding=(1.0, 0.0), **kwargs) -> FaceRecord:
    return FaceRecord(name=kwargs.pop("name", "ann"), image_path=path, embedding=embedding, **kwargs)


def test_insert_assigns_increasing_ids_and_timestamps(tmp_path: Path) -> None:
    ticks = iter([1_000, 2_000])
    store = _store(tmp_path, clock=lambda: next(ticks))

    first = store.insert(_face("archive/a.jpg"))
    second = store.insert(_face("archive/b.jpg", id=99))

    assert second > first
    stored = store.list_all()
    assert [record.id for record in stored] == [first, second]
    assert [record.timestamp for record in stored] == [1_000, 2_000]


def test_insert_keeps_explicit_timestamp_and_all_fields(tmp_path: Path) -> None:
    store = _store(tmp_path)

    record_id = store.insert(
        FaceRecord(
            name="bo",
            image_path="/blobs/ab/abcd.jpg",
            embedding=(0.1, 0.2, 0.3),
            age="31",
            image_hash="ffee",
            timestamp=123,
        )
    )

    assert store.get_by_id(record_id) == FaceRecord(
        id=record_id,
        name="bo",
        image_path="/blobs/ab/abcd.jpg",
        embedding=(0.1, 0.2, 0.3),
        age="31",
        image_hash="ffee",
        timestamp=123,
    )
    assert store.get_by_id(record_id + 1) is None


def test_insert_never_deduplicates(tmp_path: Path) -> None:
    store = _store(tmp_path)

    store.insert(_face("archive/a.jpg"))
    store.insert(_face("archive/a.jpg"))

    assert store.count() == 2


def test_exists_queries(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.insert(_face("archive/a.jpg", image_hash="abcd"))
    store.insert(_face("archive/b.jpg"))

    assert store.exists_by_path("archive/a.jpg")
    assert not store.exists_by_path("archive/c.jpg")
    assert store.exists_by_hash("abcd")
    assert not store.exists_by_hash("0000")
    assert not store.exists_by_hash("")


def test_count_by_name(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.insert(_face("a", name="ann"))
    store.insert(_face("b", name="ann"))
    store.insert(_face("c", name="bo"))

    assert store.count_by_name("ann") == 2
    assert store.count_by_name("cy") == 0
    assert store.count() == 3


def test_delete_by_id_and_delete(tmp_path: Path) -> None:
    store = _store(tmp_path)
    first = store.insert(_face("a"))
    second = store.insert(_face("b"))

    assert store.delete_by_id(first)
    assert not store.delete_by_id(first)
    assert store.delete(store.get_by_id(second))
    assert not store.delete(_face("unsaved"))
    assert store.count() == 0


def test_clear_returns_removed_count_and_ids_are_not_reused(tmp_path: Path) -> None:
    store = _store(tmp_path)
    ids = [store.insert(_face(f"p{index}")) for index in range(3)]

    assert store.clear() == 3
    assert store.list_all() == []
    assert store.clear() == 0

    assert store.insert(_face("p-new")) > max(ids)


def test_restore_keeps_ids_and_timestamps(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.insert(_face("a", timestamp=5))
    store.insert(_face("b", timestamp=6))
    snapshot = store.list_all()

    store.clear()
    assert store.restore(snapshot) == 2

    assert store.list_all() == snapshot
    assert store.insert(_face("c")) > snapshot[-1].id


def test_restore_is_all_or_nothing(tmp_path: Path) -> None:
    store = _store(tmp_path)
    existing = store.insert(_face("a"))
    clash = store.get_by_id(existing)

    with pytest.raises(StoreError):
        store.restore([_face("b", id=existing + 10), clash])

    assert [record.id for record in store.list_all()] == [existing]


def test_sqlalchemy_errors_surface_as_store_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    store = _store(tmp_path)

    def _boom(*_args, **_kwargs):
        raise OperationalError("SELECT 1", {}, Exception("disk I/O error"))

    monkeypatch.setattr("sqlalchemy.orm.Session.execute", _boom)

    with pytest.raises(StoreError):
        store.count()


def test_write_lock_is_reentrant_and_blocks_other_writers(tmp_path: Path) -> None:
    store = _store(tmp_path)
    inserted = threading.Event()

    def _writer() -> None:
        store.insert(_face("from-thread"))
        inserted.set()

    with store.write_lock():
        store.insert(_face("inside-lock"))
        thread = threading.Thread(target=_writer)
        thread.start()
        assert not inserted.wait(0.2)
        assert store.count() == 1

    thread.join(5)
    assert inserted.is_set()
    assert [record.image_path for record in store.list_all()] == ["inside-lock", "from-thread"]



def test_stores_on_the_same_database_share_the_write_lock(tmp_path: Path) -> None:
    first = _store(tmp_path)
    second = _store(tmp_path)
    inserted = threading.Event()

    def _writer() -> None:
        second.insert(_face("from-second"))
        inserted.set()

    with first.write_lock():
        thread = threading.Thread(target=_writer)
        thread.start()
        assert not inserted.wait(0.2)

    thread.join(5)
    assert inserted.is_set()
    assert first.count() == 1


def test_schema_version(tmp_path: Path) -> None:
    assert _store(tmp_path).schema_version() == 3
