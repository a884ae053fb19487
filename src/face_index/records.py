"""Face record value type and embedding serialization."""

from __future__ import annotations

import json
import time
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from utils.logging import get_logger

LOGGER = get_logger(__name__)

Embedding = tuple[float, ...]

URL_PREFIX = "http"


class ImageSourceKind(str, Enum):
    """Where the bytes behind an ``image_path`` live."""

    LIBRARY = "library"
    REMOTE = "remote"
    LOCAL = "local"


def as_embedding(values: Iterable[float]) -> Embedding:
    """Coerce any numeric iterable (list, numpy array, tuple) into an :data:`Embedding`."""

    return tuple(float(value) for value in values)


def now_millis() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class FaceRecord:
    """One detected face and the image it came from.

    Records are immutable; equality is structural, including the embedding.
    ``id`` is ``None`` until the store assigns one, and ``timestamp`` is
    ``None`` until insertion fills in the current time in epoch milliseconds.
    """

    name: str
    image_path: str
    embedding: Embedding
    age: str = ""
    image_hash: str = ""
    timestamp: int | None = None
    id: int | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.embedding, tuple):
            object.__setattr__(self, "embedding", as_embedding(self.embedding))


def image_source_kind(image_path: str, library_prefix: str = "archive/") -> ImageSourceKind:
    """Classify an image path by prefix: library bundle, remote URL, or local file."""

    if library_prefix and image_path.startswith(library_prefix):
        return ImageSourceKind.LIBRARY
    if image_path.startswith(URL_PREFIX):
        return ImageSourceKind.REMOTE
    return ImageSourceKind.LOCAL


def encode_embedding(embedding: Embedding) -> str:
    """Serialize an embedding as a compact JSON array."""

    return json.dumps(list(embedding), separators=(",", ":"))


def decode_embedding(payload: str | None) -> Embedding:
    """Parse a stored JSON embedding.

    Malformed payloads decode to an empty embedding so that one bad legacy
    row cannot break a full-store scan; an empty embedding compares as 0.0
    against everything.
    """

    if not payload:
        return ()
    try:
        raw = json.loads(payload)
        if not isinstance(raw, list):
            raise ValueError(f"expected a JSON array, got {type(raw).__name__}")
        return as_embedding(raw)
    except (TypeError, ValueError) as exc:
        LOGGER.error("embedding_decode_error", extra={"error": str(exc), "payload_prefix": payload[:32]})
        return ()


__all__ = [
    "Embedding",
    "FaceRecord",
    "ImageSourceKind",
    "as_embedding",
    "decode_embedding",
    "encode_embedding",
    "image_source_kind",
    "now_millis",
]
