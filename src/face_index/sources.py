"""Collaborator protocols for ingestion and their local filesystem implementations."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from PIL import Image

from face_index.hasher import CONTENT_HASH_ALGO, compute_content_hash
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "sources"})

PerceptualHasher = Callable[[Image.Image], str]


@dataclass(frozen=True)
class DetectedFace:
    """One face found by an extractor: its embedding plus free-form metadata (box, score, ...)."""

    embedding: Sequence[float]
    metadata: dict[str, Any] = field(default_factory=dict)


class EmbeddingExtractor(Protocol):
    """Protocol for face detectors that also produce embeddings."""

    def extract(self, image: Image.Image) -> Sequence[DetectedFace]:
        """Return every face found in ``image``; an empty sequence when there are none."""


class ImageSource(Protocol):
    """Protocol for image libraries addressed by relative identifiers."""

    def list(self, library_id: str) -> Sequence[str]:
        """Return the identifiers in ``library_id``."""

    def open(self, identifier: str) -> bytes:
        """Return the raw bytes behind ``identifier``."""


class BlobStore(Protocol):
    """Protocol for durable storage of user-supplied image bytes."""

    def put(self, data: bytes, filename: str | None = None) -> str:
        """Persist ``data`` and return a stable path or URI for it."""


class DirectoryImageSource:
    """Image library backed by a directory tree.

    ``library_id`` names a sub-directory of ``root`` (the empty string is the
    root itself). Identifiers are POSIX paths relative to ``root``, so they
    look the same on every platform and can be opened without knowing which
    library they were listed from.
    """

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root)

    def _library_dir(self, library_id: str) -> Path:
        return self._root / library_id if library_id else self._root

    def list(self, library_id: str) -> list[str]:
        library_dir = self._library_dir(library_id)
        if not library_dir.is_dir():
            raise FileNotFoundError(f"library directory not found: {library_dir}")

        identifiers = [
            path.relative_to(self._root).as_posix() for path in library_dir.rglob("*") if path.is_file()
        ]
        identifiers.sort()
        LOGGER.info("library_listed", extra={"library": str(library_dir), "files": len(identifiers)})
        return identifiers

    def open(self, identifier: str) -> bytes:
        return (self._root / identifier).read_bytes()


class LocalBlobStore:
    """Content-addressed blob store on the local filesystem.

    Blobs are named by the xxhash64 of their bytes plus the original suffix,
    so storing the same bytes twice returns the same path.
    """

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root)

    def put(self, data: bytes, filename: str | None = None) -> str:
        digest = compute_content_hash(data)
        suffix = Path(filename).suffix.lower() if filename else ""
        target = (self._root / digest[:2] / f"{digest}{suffix}").resolve()

        if not target.exists():
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
            LOGGER.info(
                "blob_stored",
                extra={"path": str(target), "size_bytes": len(data), "hash_algo": CONTENT_HASH_ALGO},
            )
        return str(target)


__all__ = [
    "BlobStore",
    "DetectedFace",
    "DirectoryImageSource",
    "EmbeddingExtractor",
    "ImageSource",
    "LocalBlobStore",
    "PerceptualHasher",
]
