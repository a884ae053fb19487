"""Create or migrate the face record store and report its schema version."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Ensure src/ is on sys.path so we can import shared logging and DB helpers.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = PROJECT_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.append(str(SRC_ROOT))

from sqlalchemy.engine.url import make_url  # noqa: E402

from utils.logging import get_logger  # noqa: E402
from face_index.config import load_settings  # noqa: E402
from face_index.db import dispose_engine  # noqa: E402
from face_index.db_helpers import (  # noqa: E402
    is_sqlite_memory,
    normalize_database_url,
    sqlite_path_from_target,
)
from face_index.migrations import SCHEMA_VERSION  # noqa: E402
from face_index.store import FaceRecordStore  # noqa: E402

LOGGER = get_logger(__name__)


def _describe_target(target: str) -> str:
    url = make_url(normalize_database_url(target))
    if url.drivername.startswith("sqlite") and not is_sqlite_memory(url):
        return str(sqlite_path_from_target(target))
    return url.render_as_string()


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create or migrate the face record store.")
    parser.add_argument(
        "--db",
        type=str,
        default=None,
        help="Database URL or path. Defaults to databases.url in settings.yaml.",
    )
    parser.add_argument(
        "--settings",
        type=str,
        default=None,
        help="Settings YAML. Defaults to $FACE_INDEX_SETTINGS or config/settings.yaml.",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    settings = load_settings(args.settings)
    target = args.db or settings.databases.url

    store = FaceRecordStore(target)
    try:
        version = store.schema_version()
        if version != SCHEMA_VERSION:
            LOGGER.error("init_database_version_mismatch", extra={"version": version, "expected": SCHEMA_VERSION})
            return 1

        LOGGER.info(
            "init_database_complete",
            extra={"target": _describe_target(target), "schema_version": version, "faces": store.count()},
        )
        return 0
    finally:
        dispose_engine(target)


if __name__ == "__main__":
    sys.exit(main())
