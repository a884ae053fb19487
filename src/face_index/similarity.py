"""Similarity measures for face embeddings and perceptual hashes.

Every component compares embeddings and hashes through these two functions;
thresholds live in configuration, not here.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Return the cosine similarity of two vectors in ``[-1.0, 1.0]``.

    Vectors of different length, empty vectors, and zero-norm vectors all
    compare as ``0.0``. Prefixes of mismatched vectors are never compared.
    """

    if len(a) != len(b) or len(a) == 0:
        return 0.0

    lhs = np.asarray(a, dtype=np.float64)
    rhs = np.asarray(b, dtype=np.float64)

    norm = float(np.linalg.norm(lhs)) * float(np.linalg.norm(rhs))
    if norm == 0.0 or not np.isfinite(norm):
        return 0.0

    score = float(np.dot(lhs, rhs)) / norm
    return float(np.clip(score, -1.0, 1.0))


def hash_similarity(h1: str, h2: str) -> float:
    """Return the normalized Hamming similarity of two equal-length hash strings.

    The score is ``1 - differing_characters / length``. Strings of different
    length (including two empty strings) score ``0.0``.
    """

    if len(h1) != len(h2) or not h1:
        return 0.0

    differing = sum(1 for left, right in zip(h1, h2) if left != right)
    return 1.0 - differing / len(h1)


__all__ = ["cosine_similarity", "hash_similarity"]
