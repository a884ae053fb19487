"""Durable face record store with single-writer semantics."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from face_index.config import Settings
from face_index.db import FaceRow, get_engine, get_write_lock
from face_index.db_helpers import sync_id_sequence
from face_index.errors import StoreError
from face_index.migrations import current_version
from face_index.records import FaceRecord, decode_embedding, encode_embedding, now_millis
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "store"})


def _to_record(row: FaceRow) -> FaceRecord:
    return FaceRecord(
        id=row.id,
        name=row.name,
        image_path=row.image_path,
        embedding=decode_embedding(row.embedding),
        age=row.age,
        image_hash=row.image_hash,
        timestamp=row.timestamp,
    )


class FaceRecordStore:
    """CRUD over the ``faces`` table.

    All mutations are serialized through one re-entrant lock, shared by every
    store opened on the same database within the process. Callers that
    need a check-then-act sequence (duplicate check followed by insert, or a
    full reset and reload) hold :meth:`write_lock` around the whole sequence.
    Reads run without the lock; each read is a single statement and sees the
    last committed state.

    The store never deduplicates on its own: that is the duplicate
    resolver's job.
    """

    def __init__(self, target: str | Path, *, clock: Callable[[], int] = now_millis) -> None:
        self._target = target
        self._engine = get_engine(target)
        self._clock = clock
        self._lock = get_write_lock(target)

    @classmethod
    def from_settings(cls, settings: Settings) -> FaceRecordStore:
        return cls(settings.databases.url)

    @contextmanager
    def write_lock(self) -> Iterator[None]:
        """Hold the single-writer lock for a multi-step mutation."""

        with self._lock:
            yield

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        try:
            with Session(self._engine) as session:
                yield session
        except SQLAlchemyError as exc:
            LOGGER.error("store_operation_error", extra={"operation": operation, "error": str(exc)})
            raise StoreError(f"{operation} failed: {exc}") from exc

    @contextmanager
    def _write(self, operation: str) -> Iterator[Session]:
        with self._lock, self._session(operation) as session, session.begin():
            yield session

    def insert(self, record: FaceRecord) -> int:
        """Append ``record`` and return its new id.

        ``record.id`` is ignored; the timestamp defaults to now when unset.
        """

        with self._write("insert") as session:
            row = FaceRow(
                name=record.name,
                image_path=record.image_path,
                embedding=encode_embedding(record.embedding),
                age=record.age,
                image_hash=record.image_hash,
                timestamp=record.timestamp if record.timestamp is not None else self._clock(),
            )
            session.add(row)
            session.flush()
            record_id = int(row.id)

        LOGGER.debug("face_inserted", extra={"record_id": record_id, "image_path": record.image_path})
        return record_id

    def restore(self, records: Iterable[FaceRecord]) -> int:
        """Re-insert previously stored records, keeping their ids and timestamps.

        Runs as one transaction: either every record comes back or none does.
        Records without an id get a fresh one.
        """

        restored = 0
        with self._write("restore") as session:
            for record in records:
                session.add(
                    FaceRow(
                        id=record.id,
                        name=record.name,
                        image_path=record.image_path,
                        embedding=encode_embedding(record.embedding),
                        age=record.age,
                        image_hash=record.image_hash,
                        timestamp=record.timestamp if record.timestamp is not None else self._clock(),
                    )
                )
                restored += 1
            session.flush()
            sync_id_sequence(session.connection(), FaceRow.__tablename__)

        LOGGER.info("faces_restored", extra={"count": restored})
        return restored

    def get_by_id(self, record_id: int) -> FaceRecord | None:
        with self._session("get_by_id") as session:
            row = session.get(FaceRow, record_id)
            return _to_record(row) if row is not None else None

    def list_all(self) -> list[FaceRecord]:
        """Return every record in insertion (ascending id) order."""

        with self._session("list_all") as session:
            rows = session.execute(select(FaceRow).order_by(FaceRow.id)).scalars()
            return [_to_record(row) for row in rows]

    def exists_by_path(self, image_path: str) -> bool:
        with self._session("exists_by_path") as session:
            found = session.execute(
                select(FaceRow.id).where(FaceRow.image_path == image_path).limit(1)
            ).first()
            return found is not None

    def exists_by_hash(self, image_hash: str) -> bool:
        """Whether any record carries ``image_hash``; an empty hash never matches."""

        if not image_hash:
            return False
        with self._session("exists_by_hash") as session:
            found = session.execute(
                select(FaceRow.id).where(FaceRow.image_hash == image_hash).limit(1)
            ).first()
            return found is not None

    def count_by_name(self, name: str) -> int:
        with self._session("count_by_name") as session:
            return int(session.execute(select(func.count()).where(FaceRow.name == name)).scalar_one())

    def count(self) -> int:
        with self._session("count") as session:
            return int(session.execute(select(func.count()).select_from(FaceRow)).scalar_one())

    def delete_by_id(self, record_id: int) -> bool:
        with self._write("delete") as session:
            result = session.execute(delete(FaceRow).where(FaceRow.id == record_id))
            deleted = bool(result.rowcount)

        if deleted:
            LOGGER.debug("face_deleted", extra={"record_id": record_id})
        return deleted

    def delete(self, record: FaceRecord) -> bool:
        if record.id is None:
            LOGGER.warning("face_delete_without_id", extra={"image_path": record.image_path})
            return False
        return self.delete_by_id(record.id)

    def clear(self) -> int:
        """Delete every record and return how many were removed.

        Ids are not recycled afterwards.
        """

        with self._write("clear") as session:
            result = session.execute(delete(FaceRow))
            removed = int(result.rowcount or 0)

        LOGGER.info("faces_cleared", extra={"removed": removed})
        return removed

    def schema_version(self) -> int:
        try:
            with self._engine.connect() as conn:
                return current_version(conn)
        except SQLAlchemyError as exc:
            raise StoreError(f"schema_version failed: {exc}") from exc


__all__ = ["FaceRecordStore"]
