"""Nearest-neighbour search over stored face embeddings."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from face_index.records import FaceRecord
from face_index.similarity import cosine_similarity
from face_index.store import FaceRecordStore
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "search"})

DEFAULT_LIMIT = 5


@dataclass(frozen=True)
class SimilarFace:
    record: FaceRecord
    similarity: float


class SimilaritySearch:
    """Rank stored faces by cosine similarity to a target.

    The scan is a full pass over the store; ties keep insertion order because
    Python's sort is stable and :meth:`FaceRecordStore.list_all` returns
    records by ascending id.
    """

    def __init__(self, store: FaceRecordStore, default_limit: int = DEFAULT_LIMIT) -> None:
        self._store = store
        self._default_limit = default_limit

    def _rank(self, embedding: Sequence[float], exclude_id: int | None, limit: int | None) -> list[SimilarFace]:
        effective = self._default_limit if limit is None else limit
        if effective <= 0:
            return []

        scored = [
            SimilarFace(record, cosine_similarity(embedding, record.embedding))
            for record in self._store.list_all()
            if exclude_id is None or record.id != exclude_id
        ]
        scored.sort(key=lambda item: item.similarity, reverse=True)
        return scored[:effective]

    def find_similar(self, target: FaceRecord, limit: int | None = None) -> list[SimilarFace]:
        """Return up to ``limit`` stored faces most similar to ``target``, excluding itself."""

        results = self._rank(target.embedding, target.id, limit)
        LOGGER.debug("similar_faces_found", extra={"target_id": target.id, "results": len(results)})
        return results

    def find_similar_to_embedding(self, embedding: Sequence[float], limit: int | None = None) -> list[SimilarFace]:
        """Rank the whole store against a query embedding that is not stored."""

        return self._rank(embedding, None, limit)


__all__ = ["DEFAULT_LIMIT", "SimilarFace", "SimilaritySearch"]
