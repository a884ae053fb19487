"""Adding user-supplied photos to the face record store."""

from __future__ import annotations

from dataclasses import dataclass

from PIL import Image

from face_index.duplicates import DuplicateResolver
from face_index.errors import ItemError
from face_index.hasher import compute_perceptual_hash, decode_image
from face_index.records import FaceRecord
from face_index.sources import BlobStore, EmbeddingExtractor, PerceptualHasher
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "enrollment"})


@dataclass(frozen=True)
class EnrollmentResult:
    image_path: str
    inserted: list[FaceRecord]
    duplicates: int


class FaceEnrollmentService:
    """Store a user's photo and register every new face found in it.

    Unlike library ingestion this is a single user action, so decode and
    extraction failures are raised to the caller as :class:`ItemError`.
    """

    def __init__(
        self,
        resolver: DuplicateResolver,
        extractor: EmbeddingExtractor,
        blobs: BlobStore,
        *,
        hasher: PerceptualHasher = compute_perceptual_hash,
    ) -> None:
        self._resolver = resolver
        self._extractor = extractor
        self._blobs = blobs
        self._hasher = hasher

    def enroll(
        self,
        image_bytes: bytes,
        name: str,
        age: str = "",
        filename: str | None = None,
    ) -> EnrollmentResult:
        identifier = filename or "<upload>"
        try:
            image = decode_image(image_bytes)
        except (OSError, ValueError, Image.DecompressionBombError) as exc:
            raise ItemError(identifier, f"cannot decode image: {exc}") from exc

        try:
            faces = list(self._extractor.extract(image))
        except Exception as exc:
            raise ItemError(identifier, f"extractor failed: {exc}") from exc

        image_hash = self._hasher(image)
        image_path = self._blobs.put(image_bytes, filename)

        inserted: list[FaceRecord] = []
        duplicates = 0
        for face in faces:
            candidate = FaceRecord(
                name=name,
                image_path=image_path,
                embedding=face.embedding,
                age=age,
                image_hash=image_hash,
            )
            stored = self._resolver.insert_if_unique(candidate)
            if stored is None:
                duplicates += 1
            else:
                inserted.append(stored)

        LOGGER.info(
            "face_enrolled",
            extra={
                "face_name": name,
                "image_path": image_path,
                "faces_detected": len(faces),
                "inserted": len(inserted),
                "duplicates": duplicates,
            },
        )
        return EnrollmentResult(image_path=image_path, inserted=inserted, duplicates=duplicates)


__all__ = ["EnrollmentResult", "FaceEnrollmentService"]
