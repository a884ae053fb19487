"""Unit tests for perceptual and content hashing."""

from __future__ import annotations

import io

import pytest
from PIL import Image

from face_index.hasher import compute_content_hash, compute_perceptual_hash, decode_image


def _gradient(size: int = 64, flip: bool = False) -> Image.Image:
    image = Image.new("L", (size, size))
    for x in range(size):
        for y in range(size):
            value = (x * 255) // (size - 1)
            image.putpixel((size - 1 - x if flip else x, y), value)
    return image.convert("RGB")


def _png_bytes(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def test_perceptual_hash_is_sixteen_hex_chars_and_deterministic() -> None:
    image = _gradient()

    first = compute_perceptual_hash(image)
    second = compute_perceptual_hash(image.copy())

    assert first == second
    assert len(first) == 16
    int(first, 16)


def test_perceptual_hash_tells_mirrored_images_apart() -> None:
    assert compute_perceptual_hash(_gradient()) != compute_perceptual_hash(_gradient(flip=True))


def test_content_hash_depends_only_on_bytes() -> None:
    assert compute_content_hash(b"face") == compute_content_hash(b"face")
    assert compute_content_hash(b"face") != compute_content_hash(b"faces")
    assert len(compute_content_hash(b"")) == 16


def test_decode_image_returns_rgb() -> None:
    grayscale = Image.new("L", (8, 8), color=128)

    decoded = decode_image(_png_bytes(grayscale))

    assert decoded.mode == "RGB"
    assert decoded.size == (8, 8)


def test_decode_image_rejects_garbage() -> None:
    with pytest.raises(OSError):
        decode_image(b"not an image")
