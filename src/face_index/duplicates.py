"""Duplicate detection and removal over the face record store."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from face_index.config import DEFAULT_DUPLICATE_THRESHOLD
from face_index.records import FaceRecord
from face_index.similarity import cosine_similarity
from face_index.store import FaceRecordStore
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "duplicates"})


class MatchReason(str, Enum):
    PATH = "path"
    HASH = "hash"
    EMBEDDING = "embedding"


@dataclass(frozen=True)
class DuplicateMatch:
    """Why a candidate was judged a duplicate.

    ``record`` is only known for embedding matches; path and hash matches are
    answered by an existence query.
    """

    reason: MatchReason
    similarity: float
    record: FaceRecord | None = None


@dataclass(frozen=True)
class DuplicatePair:
    first: FaceRecord
    second: FaceRecord
    similarity: float
    reason: MatchReason


def _pair_match(lhs: FaceRecord, rhs: FaceRecord, threshold: float) -> tuple[float, MatchReason] | None:
    if lhs.image_path == rhs.image_path:
        return 1.0, MatchReason.PATH
    if lhs.image_hash and lhs.image_hash == rhs.image_hash:
        return 1.0, MatchReason.HASH
    score = cosine_similarity(lhs.embedding, rhs.embedding)
    if score >= threshold:
        return score, MatchReason.EMBEDDING
    return None


def _select_survivor(members: Sequence[FaceRecord]) -> FaceRecord:
    return max(members, key=lambda record: (record.timestamp or 0, record.id or 0))


class DuplicateResolver:
    """Decides whether a candidate face is already in the store.

    A candidate is a duplicate when any of these hold, checked in order and
    short-circuiting on the first hit:

    1. a stored record has the same ``image_path``;
    2. a stored record has the same non-empty ``image_hash``;
    3. a stored embedding has cosine similarity ``>= threshold``.
    """

    def __init__(
        self,
        store: FaceRecordStore,
        threshold: float = DEFAULT_DUPLICATE_THRESHOLD,
        removal_threshold: float | None = None,
    ) -> None:
        self._store = store
        self._threshold = threshold
        self._removal_threshold = removal_threshold

    def check(self, candidate: FaceRecord, threshold: float | None = None) -> DuplicateMatch | None:
        limit = self._threshold if threshold is None else threshold

        if self._store.exists_by_path(candidate.image_path):
            return DuplicateMatch(MatchReason.PATH, 1.0)
        if candidate.image_hash and self._store.exists_by_hash(candidate.image_hash):
            return DuplicateMatch(MatchReason.HASH, 1.0)

        for stored in self._store.list_all():
            score = cosine_similarity(candidate.embedding, stored.embedding)
            if score >= limit:
                return DuplicateMatch(MatchReason.EMBEDDING, score, stored)
        return None

    def is_duplicate(self, candidate: FaceRecord, threshold: float | None = None) -> bool:
        return self.check(candidate, threshold) is not None

    def insert_if_unique(self, candidate: FaceRecord, threshold: float | None = None) -> FaceRecord | None:
        """Insert ``candidate`` unless it duplicates a stored record.

        The check and the insert run under the store's write lock, so two
        near-identical candidates racing each other cannot both land.
        """

        with self._store.write_lock():
            match = self.check(candidate, threshold)
            if match is not None:
                LOGGER.info(
                    "duplicate_skipped",
                    extra={
                        "image_path": candidate.image_path,
                        "reason": match.reason.value,
                        "similarity": round(match.similarity, 6),
                        "matched_id": match.record.id if match.record is not None else None,
                    },
                )
                return None
            record_id = self._store.insert(candidate)
            return self._store.get_by_id(record_id)

    def find_duplicate_pairs(self, threshold: float | None = None) -> list[DuplicatePair]:
        """Every duplicate pair in one snapshot of the store, ordered by position."""

        limit = self._threshold if threshold is None else threshold
        records = self._store.list_all()
        pairs: list[DuplicatePair] = []
        for i, lhs in enumerate(records):
            for rhs in records[i + 1 :]:
                matched = _pair_match(lhs, rhs, limit)
                if matched is None:
                    continue
                score, reason = matched
                pairs.append(DuplicatePair(lhs, rhs, score, reason))
        return pairs

    @staticmethod
    def duplicate_clusters(pairs: Sequence[DuplicatePair]) -> list[list[FaceRecord]]:
        """Group paired records into connected components, each sorted by id."""

        graph: dict[int, set[int]] = defaultdict(set)
        by_id: dict[int, FaceRecord] = {}
        for pair in pairs:
            first_id = pair.first.id
            second_id = pair.second.id
            if first_id is None or second_id is None:
                continue
            by_id[first_id] = pair.first
            by_id[second_id] = pair.second
            graph[first_id].add(second_id)
            graph[second_id].add(first_id)

        visited: set[int] = set()
        clusters: list[list[FaceRecord]] = []
        for node in sorted(graph):
            if node in visited:
                continue

            component: list[int] = []
            stack = [node]
            while stack:
                current = stack.pop()
                if current in visited:
                    continue
                visited.add(current)
                component.append(current)
                stack.extend(graph.get(current, []))

            if len(component) < 2:
                continue
            clusters.append([by_id[record_id] for record_id in sorted(component)])
        return clusters

    def remove_duplicates(self, threshold: float | None = None) -> int:
        """Keep one record per duplicate cluster and delete the rest.

        The survivor is the newest record by ``timestamp``, ties going to the
        higher id. Returns the number of records removed.
        """

        if threshold is None:
            threshold = self._removal_threshold if self._removal_threshold is not None else self._threshold

        removed = 0
        with self._store.write_lock():
            pairs = self.find_duplicate_pairs(threshold)
            clusters = self.duplicate_clusters(pairs)
            for members in clusters:
                survivor = _select_survivor(members)
                for record in members:
                    if record.id == survivor.id:
                        continue
                    if self._store.delete(record):
                        removed += 1

        LOGGER.info(
            "duplicates_removed",
            extra={
                "threshold": threshold,
                "pairs": len(pairs),
                "clusters": len(clusters),
                "removed": removed,
            },
        )
        return removed


__all__ = ["DuplicateMatch", "DuplicatePair", "DuplicateResolver", "MatchReason"]
