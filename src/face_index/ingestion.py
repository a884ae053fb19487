"""Bulk loading of the bundled image library into the face record store."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePosixPath

from PIL import Image

from face_index.config import Settings, load_settings
from face_index.duplicates import DuplicateResolver
from face_index.errors import ItemError, StoreError
from face_index.hasher import PHASH_ALGO, compute_perceptual_hash, decode_image
from face_index.records import FaceRecord, ImageSourceKind, image_source_kind
from face_index.sources import DetectedFace, EmbeddingExtractor, ImageSource, PerceptualHasher
from face_index.store import FaceRecordStore
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "ingestion"})

ProgressObserver = Callable[[int, int], None]


class ItemState(str, Enum):
    PENDING = "pending"
    EXTRACTED = "extracted"
    INSERTED = "inserted"
    SKIPPED_DUPLICATE = "skipped_duplicate"
    SKIPPED_EXISTING = "skipped_existing"
    NO_FACES = "no_faces"
    FAILED = "failed"


@dataclass
class ItemResult:
    """Outcome of one library image."""

    identifier: str
    image_path: str
    state: ItemState = ItemState.PENDING
    faces_detected: int = 0
    faces_inserted: int = 0
    error: str | None = None


@dataclass
class IngestionReport:
    items: list[ItemResult] = field(default_factory=list)

    def _count(self, state: ItemState) -> int:
        return sum(1 for item in self.items if item.state is state)

    @property
    def total(self) -> int:
        return len(self.items)

    @property
    def inserted(self) -> int:
        return self._count(ItemState.INSERTED)

    @property
    def skipped_existing(self) -> int:
        return self._count(ItemState.SKIPPED_EXISTING)

    @property
    def skipped_duplicate(self) -> int:
        return self._count(ItemState.SKIPPED_DUPLICATE)

    @property
    def no_faces(self) -> int:
        return self._count(ItemState.NO_FACES)

    @property
    def failed(self) -> int:
        return self._count(ItemState.FAILED)

    @property
    def faces_inserted(self) -> int:
        return sum(item.faces_inserted for item in self.items)

    def summary(self) -> dict[str, int]:
        return {
            "total": self.total,
            "inserted": self.inserted,
            "skipped_existing": self.skipped_existing,
            "skipped_duplicate": self.skipped_duplicate,
            "no_faces": self.no_faces,
            "failed": self.failed,
            "faces_inserted": self.faces_inserted,
        }


class LibraryIngestionPipeline:
    """Load every image of a library, one face record per unique face.

    Each item moves ``PENDING -> EXTRACTED -> {INSERTED, SKIPPED_DUPLICATE,
    NO_FACES}``, or short-cuts to ``SKIPPED_EXISTING`` when its path is already
    stored, or to ``FAILED`` on an :class:`ItemError`. Item failures are
    logged and the run goes on; store failures propagate.

    Every candidate commits on its own, so an interrupted run leaves a valid,
    partially loaded store and re-running it picks up where it stopped.
    """

    def __init__(
        self,
        store: FaceRecordStore,
        resolver: DuplicateResolver,
        source: ImageSource,
        extractor: EmbeddingExtractor,
        *,
        hasher: PerceptualHasher = compute_perceptual_hash,
        settings: Settings | None = None,
        progress: ProgressObserver | None = None,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._source = source
        self._extractor = extractor
        self._hasher = hasher
        self._settings = settings or load_settings()
        self._progress = progress

    @property
    def path_prefix(self) -> str:
        return self._settings.library.path_prefix

    def _list(self, library_id: str) -> list[str]:
        allowed = set(self._settings.library.extensions)
        return [
            identifier
            for identifier in self._source.list(library_id)
            if PurePosixPath(identifier).suffix.lower() in allowed
        ]

    def ingest(self, library_id: str) -> IngestionReport:
        """Load ``library_id`` and report what happened to each image.

        A failing listing is raised before anything is written.
        """

        return self._ingest_identifiers(library_id, self._list(library_id))

    def _ingest_identifiers(self, library_id: str, identifiers: Sequence[str]) -> IngestionReport:
        total = len(identifiers)
        LOGGER.info(
            "library_ingest_start",
            extra={"library_id": library_id, "total": total, "phash_algo": PHASH_ALGO},
        )

        report = IngestionReport()
        for processed, identifier in enumerate(identifiers, start=1):
            report.items.append(self._ingest_item(identifier))
            if self._progress is not None:
                self._progress(processed, total)

        LOGGER.info("library_ingest_complete", extra={"library_id": library_id, **report.summary()})
        return report

    def _load(self, identifier: str) -> tuple[Image.Image, str]:
        try:
            data = self._source.open(identifier)
        except StoreError:
            raise
        except Exception as exc:
            raise ItemError(identifier, f"cannot read image: {exc}") from exc
        try:
            image = decode_image(data)
        except (OSError, ValueError, Image.DecompressionBombError) as exc:
            raise ItemError(identifier, f"cannot decode image: {exc}") from exc
        try:
            return image, self._hasher(image)
        except Exception as exc:
            raise ItemError(identifier, f"cannot hash image: {exc}") from exc

    def _extract(self, identifier: str, image: Image.Image) -> Sequence[DetectedFace]:
        try:
            return list(self._extractor.extract(image))
        except Exception as exc:
            raise ItemError(identifier, f"extractor failed: {exc}") from exc

    def _ingest_item(self, identifier: str) -> ItemResult:
        result = ItemResult(identifier=identifier, image_path=f"{self.path_prefix}{identifier}")

        if self._store.exists_by_path(result.image_path):
            result.state = ItemState.SKIPPED_EXISTING
            return result

        try:
            image, image_hash = self._load(identifier)
            faces = self._extract(identifier, image)
        except ItemError as exc:
            result.state = ItemState.FAILED
            result.error = exc.reason
            LOGGER.error(
                "library_item_failed",
                extra={"identifier": identifier, "image_path": result.image_path, "error": exc.reason},
            )
            return result

        result.state = ItemState.EXTRACTED
        result.faces_detected = len(faces)
        if not faces:
            result.state = ItemState.NO_FACES
            LOGGER.info("library_item_no_faces", extra={"identifier": identifier})
            return result

        face_name = PurePosixPath(identifier).stem
        for face in faces:
            candidate = FaceRecord(
                name=face_name,
                image_path=result.image_path,
                embedding=face.embedding,
                image_hash=image_hash,
            )
            if self._resolver.insert_if_unique(candidate) is not None:
                result.faces_inserted += 1

        result.state = ItemState.INSERTED if result.faces_inserted else ItemState.SKIPPED_DUPLICATE
        return result

    def reset_and_reload(self, library_id: str) -> IngestionReport:
        """Rebuild the library part of the store and keep everything users added.

        The whole sequence holds the store's write lock. If loading or the
        restore of user records fails or is interrupted, the store is put back
        to the snapshot taken before the clear and the error is re-raised.
        """

        with self._store.write_lock():
            identifiers = self._list(library_id)
            snapshot = self._store.list_all()
            user_records = [
                record
                for record in snapshot
                if image_source_kind(record.image_path, self.path_prefix) is not ImageSourceKind.LIBRARY
            ]
            LOGGER.info(
                "library_reload_start",
                extra={"library_id": library_id, "records": len(snapshot), "user_records": len(user_records)},
            )

            self._store.clear()
            try:
                report = self._ingest_identifiers(library_id, identifiers)
                self._store.restore(user_records)
            except BaseException as exc:
                LOGGER.error("library_reload_failed", extra={"library_id": library_id, "error": str(exc)})
                self._rollback(snapshot)
                raise

        LOGGER.info(
            "library_reload_complete",
            extra={"library_id": library_id, "user_records": len(user_records), **report.summary()},
        )
        return report

    def _rollback(self, snapshot: Sequence[FaceRecord]) -> None:
        try:
            self._store.clear()
            self._store.restore(snapshot)
        except Exception as exc:
            LOGGER.error("library_reload_rollback_failed", extra={"records": len(snapshot), "error": str(exc)})
            return
        LOGGER.info("library_reload_rolled_back", extra={"records": len(snapshot)})


__all__ = ["IngestionReport", "ItemResult", "ItemState", "LibraryIngestionPipeline", "ProgressObserver"]
