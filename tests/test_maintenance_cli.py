"""Tests for the maintenance CLI."""

from __future__ import annotations

import io
from collections.abc import Sequence
from pathlib import Path

import pytest
from PIL import Image
from typer.testing import CliRunner

from face_index.dev.maintenance import app, load_extractor
from face_index.errors import ConfigurationError
from face_index.records import FaceRecord
from face_index.sources import DetectedFace
from face_index.store import FaceRecordStore

RUNNER = CliRunner()


class ColorFaceExtractor:
    def extract(self, image: Image.Image) -> Sequence[DetectedFace]:
        red, green, blue = image.getpixel((0, 0))
        return [DetectedFace(embedding=(red / 255.0, green / 255.0, blue / 255.0 + 0.01))]


def make_extractor() -> ColorFaceExtractor:
    return ColorFaceExtractor()


NOT_A_FACTORY = 42


def _settings(tmp_path: Path) -> Path:
    path = tmp_path / "settings.yaml"
    path.write_text(
        f"databases:\n  url: sqlite:///{tmp_path / 'faces.db'}\n"
        f"library:\n  root: {tmp_path / 'library'}\n"
        f"blobs:\n  root: {tmp_path / 'blobs'}\n",
        encoding="utf-8",
    )
    return path


def _save_png(path: Path, image: Image.Image) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    path.write_bytes(buffer.getvalue())


def _gradient(reverse: bool = False) -> Image.Image:
    image = Image.new("L", (32, 32))
    for x in range(32):
        value = (x * 255) // 31
        for y in range(32):
            image.putpixel((x, y), 255 - value if reverse else value)
    return image.convert("RGB")


def test_load_extractor_resolves_module_factory() -> None:
    extractor = load_extractor(f"{__name__}:make_extractor")

    assert isinstance(extractor, ColorFaceExtractor)


@pytest.mark.parametrize(
    "spec",
    ["no-colon", "face_index.not_a_module:factory", f"{__name__}:missing", f"{__name__}:NOT_A_FACTORY"],
)
def test_load_extractor_rejects_bad_specs(spec: str) -> None:
    with pytest.raises(ConfigurationError):
        load_extractor(spec)


def test_load_extractor_rejects_objects_without_extract() -> None:
    with pytest.raises(ConfigurationError):
        load_extractor("builtins:object")


def test_load_then_stats_and_similar(tmp_path: Path) -> None:
    settings = _settings(tmp_path)
    _save_png(tmp_path / "library" / "dark.png", _gradient())
    _save_png(tmp_path / "library" / "light.png", _gradient(reverse=True))

    loaded = RUNNER.invoke(
        app, ["load", "--extractor", f"{__name__}:make_extractor", "--settings", str(settings)]
    )
    assert loaded.exit_code == 0, loaded.output
    assert "inserted=2" in loaded.output

    stats = RUNNER.invoke(app, ["stats", "--settings", str(settings)])
    assert stats.exit_code == 0, stats.output
    assert "faces: 2" in stats.output
    assert "library: 2" in stats.output
    assert "schema version: 3" in stats.output

    similar = RUNNER.invoke(app, ["similar", "--id", "1", "--limit", "1", "--settings", str(settings)])
    assert similar.exit_code == 0, similar.output
    assert "archive/light.png" in similar.output


def test_load_with_bad_extractor_exits_with_error(tmp_path: Path) -> None:
    result = RUNNER.invoke(app, ["load", "--extractor", "nope", "--settings", str(_settings(tmp_path))])

    assert result.exit_code == 2


def test_duplicates_and_remove_duplicates(tmp_path: Path) -> None:
    settings = _settings(tmp_path)
    store = FaceRecordStore(tmp_path / "faces.db")
    store.insert(FaceRecord(name="a", image_path="/x/a.jpg", embedding=(1.0, 0.0), timestamp=1))
    store.insert(FaceRecord(name="b", image_path="/x/b.jpg", embedding=(1.0, 0.001), timestamp=2))

    listed = RUNNER.invoke(app, ["duplicates", "--settings", str(settings)])
    assert listed.exit_code == 0, listed.output
    assert "1 duplicate pair(s)" in listed.output

    removed = RUNNER.invoke(app, ["remove-duplicates", "--settings", str(settings)])
    assert removed.exit_code == 0, removed.output
    assert "removed 1" in removed.output
    assert [record.name for record in store.list_all()] == ["b"]


def test_enroll_command(tmp_path: Path) -> None:
    settings = _settings(tmp_path)
    photo = tmp_path / "me.png"
    _save_png(photo, Image.new("RGB", (8, 8), color=(0, 200, 0)))

    result = RUNNER.invoke(
        app,
        [
            "enroll",
            "--image",
            str(photo),
            "--name",
            "Me",
            "--extractor",
            f"{__name__}:make_extractor",
            "--settings",
            str(settings),
        ],
    )

    assert result.exit_code == 0, result.output
    assert "inserted=1" in result.output
    assert any((tmp_path / "blobs").rglob("*.png"))
