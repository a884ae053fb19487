"""Perceptual and content hashes for source images."""

from __future__ import annotations

import io
from typing import Final

import numpy as np
import xxhash
from PIL import Image

PHASH_ALGO: Final[str] = "phash64-dct"
CONTENT_HASH_ALGO: Final[str] = "xxhash64"

_PHASH_SIZE: Final[int] = 32
_PHASH_REDUCED_SIZE: Final[int] = 8
_DCT_MATRICES: dict[int, np.ndarray] = {}


def _dct_matrix(size: int) -> np.ndarray:
    """Return an orthonormal DCT-II matrix of the given size, cached per size."""

    cached = _DCT_MATRICES.get(size)
    if cached is not None:
        return cached

    n = np.arange(size, dtype=np.float64)
    k = n[:, None]
    mat = np.cos((2.0 * n + 1.0) * k * np.pi / size)
    mat[0, :] *= np.sqrt(1.0 / size)
    mat[1:, :] *= np.sqrt(2.0 / size)

    _DCT_MATRICES[size] = mat
    return mat


def compute_perceptual_hash(image: Image.Image) -> str:
    """Compute a 64-bit DCT perceptual hash as 16 lowercase hex characters.

    Bits come from the 8x8 low-frequency corner of a 32x32 grayscale DCT.
    The result is deterministic for identical pixels, so re-running a library
    load over unchanged files yields the same hashes.
    """

    resample = getattr(Image, "Resampling", Image).LANCZOS
    gray = image.convert("L").resize((_PHASH_SIZE, _PHASH_SIZE), resample=resample)
    pixels = np.asarray(gray, dtype=np.float64)

    dct_mat = _dct_matrix(_PHASH_SIZE)
    dct = dct_mat @ pixels @ dct_mat.T

    low_freq = dct[:_PHASH_REDUCED_SIZE, :_PHASH_REDUCED_SIZE]
    bits = (low_freq > np.median(low_freq)).flatten()
    return np.packbits(bits).tobytes().hex()


def compute_content_hash(data: bytes) -> str:
    """Return the xxhash64 digest of raw bytes as 16 lowercase hex characters."""

    return f"{xxhash.xxh64(data).intdigest():016x}"


def decode_image(data: bytes) -> Image.Image:
    """Decode raw bytes into an RGB Pillow image.

    Raises whatever Pillow raises for truncated or unknown formats; callers
    decide whether that is an item failure or a user-facing error.
    """

    with Image.open(io.BytesIO(data)) as image:
        image.load()
        return image.convert("RGB")


__all__ = [
    "CONTENT_HASH_ALGO",
    "PHASH_ALGO",
    "compute_content_hash",
    "compute_perceptual_hash",
    "decode_image",
]
