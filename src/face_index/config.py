"""Typed settings for face-index, loaded from YAML."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from face_index.errors import ConfigurationError

SETTINGS_ENV_VAR = "FACE_INDEX_SETTINGS"
DEFAULT_DUPLICATE_THRESHOLD = 0.98


@dataclass
class DatabaseConfig:
    """Where the face record store lives."""

    url: str = "sqlite:///data/faces.db"


@dataclass
class DuplicateConfig:
    """Cosine thresholds for duplicate decisions.

    ``threshold`` is used for the ingestion-time check. Bulk removal uses
    ``removal_threshold`` when set and ``threshold`` otherwise.
    """

    threshold: float = DEFAULT_DUPLICATE_THRESHOLD
    removal_threshold: float | None = None

    def effective_removal_threshold(self) -> float:
        if self.removal_threshold is None:
            return self.threshold
        return self.removal_threshold


@dataclass
class SearchConfig:
    default_limit: int = 5


@dataclass
class LibraryConfig:
    """Bundled image library: on-disk root and the path prefix its records carry."""

    root: str = "data/library"
    path_prefix: str = "archive/"
    extensions: tuple[str, ...] = (".jpg", ".jpeg", ".png")


@dataclass
class BlobConfig:
    root: str = "data/blobs"


@dataclass
class LoggingConfig:
    level: str = "INFO"


@dataclass
class Settings:
    """Top-level application settings."""

    databases: DatabaseConfig = field(default_factory=DatabaseConfig)
    duplicates: DuplicateConfig = field(default_factory=DuplicateConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    library: LibraryConfig = field(default_factory=LibraryConfig)
    blobs: BlobConfig = field(default_factory=BlobConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self) -> Settings:
        """Raise :class:`ConfigurationError` when a value is out of range."""

        for key, value in (
            ("duplicates.threshold", self.duplicates.threshold),
            ("duplicates.removal_threshold", self.duplicates.removal_threshold),
        ):
            if value is not None and not -1.0 <= value <= 1.0:
                raise ConfigurationError(f"{key} must be within [-1, 1], got {value!r}")
        if self.search.default_limit <= 0:
            raise ConfigurationError(f"search.default_limit must be positive, got {self.search.default_limit!r}")
        if not self.library.path_prefix:
            raise ConfigurationError("library.path_prefix cannot be empty")
        if not self.databases.url.strip():
            raise ConfigurationError("databases.url cannot be empty")
        return self


def _project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _resolve_settings_path(settings_path: Path | str | None) -> Path:
    """Pick the settings file: explicit path, env override, ./config, then repo config."""

    if settings_path:
        return Path(settings_path).expanduser().resolve()

    env_override = os.getenv(SETTINGS_ENV_VAR)
    if env_override:
        return Path(env_override).expanduser().resolve()

    candidates = [
        (Path.cwd() / "config" / "settings.yaml").resolve(),
        (_project_root() / "config" / "settings.yaml").resolve(),
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return candidates[0]


def _as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    return {}


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None


def load_settings(settings_path: Path | str | None = None) -> Settings:
    """Load settings from YAML, falling back to defaults.

    Missing files, non-mapping documents, and values of the wrong type are
    ignored so a partial file only overrides what it spells out. The result
    is validated; out-of-range values raise :class:`ConfigurationError`.
    """

    path = _resolve_settings_path(settings_path)
    settings = Settings()

    if not path.is_file():
        return settings.validate()

    with path.open("r", encoding="utf-8") as fp:
        try:
            raw = yaml.safe_load(fp) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"cannot parse settings file {path}: {exc}") from exc

    if not isinstance(raw, dict):
        return settings.validate()

    databases_raw = _as_dict(raw.get("databases"))
    if isinstance(databases_raw.get("url"), str):
        settings.databases.url = databases_raw["url"]

    duplicates_raw = _as_dict(raw.get("duplicates"))
    threshold = _as_float(duplicates_raw.get("threshold"))
    if threshold is not None:
        settings.duplicates.threshold = threshold
    removal_threshold = _as_float(duplicates_raw.get("removal_threshold"))
    if removal_threshold is not None:
        settings.duplicates.removal_threshold = removal_threshold

    search_raw = _as_dict(raw.get("search"))
    default_limit = search_raw.get("default_limit")
    if isinstance(default_limit, int) and not isinstance(default_limit, bool):
        settings.search.default_limit = default_limit

    library_raw = _as_dict(raw.get("library"))
    if isinstance(library_raw.get("root"), str):
        settings.library.root = library_raw["root"]
    if isinstance(library_raw.get("path_prefix"), str):
        settings.library.path_prefix = library_raw["path_prefix"]
    extensions_raw = library_raw.get("extensions")
    if isinstance(extensions_raw, list):
        extensions = tuple(
            text if text.startswith(".") else f".{text}"
            for text in (str(ext).strip().lower() for ext in extensions_raw)
            if text
        )
        if extensions:
            settings.library.extensions = extensions

    blobs_raw = _as_dict(raw.get("blobs"))
    if isinstance(blobs_raw.get("root"), str):
        settings.blobs.root = blobs_raw["root"]

    logging_raw = _as_dict(raw.get("logging"))
    if isinstance(logging_raw.get("level"), str):
        settings.logging.level = logging_raw["level"]

    return settings.validate()


__all__ = [
    "BlobConfig",
    "DatabaseConfig",
    "DEFAULT_DUPLICATE_THRESHOLD",
    "DuplicateConfig",
    "LibraryConfig",
    "LoggingConfig",
    "SearchConfig",
    "Settings",
    "load_settings",
]
