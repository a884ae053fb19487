"""Helpers for turning user-supplied database targets into SQLAlchemy URLs."""

from __future__ import annotations

from pathlib import Path

from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.engine.url import URL, make_url

_MEMORY_DATABASES = frozenset({"", ":memory:"})


def normalize_database_url(target: str | Path) -> str:
    """Normalize a database URL or filesystem path into an absolute URL.

    Bare paths become ``sqlite:///<absolute path>``; relative SQLite URLs are
    resolved against the current working directory; other URLs pass through.
    """

    if isinstance(target, Path):
        return f"sqlite:///{target.resolve()}"

    raw = str(target).strip()
    if not raw:
        raise ValueError("database target cannot be empty")

    if "://" not in raw:
        return f"sqlite:///{Path(raw).resolve()}"

    url = make_url(raw)
    if url.drivername.startswith("sqlite"):
        database = url.database or ""
        if database not in _MEMORY_DATABASES:
            db_path = Path(database)
            if not db_path.is_absolute():
                db_path = (Path.cwd() / db_path).resolve()
            url = url.set(database=str(db_path))
        return url.render_as_string(hide_password=False)

    return raw


def is_sqlite_memory(url: URL) -> bool:
    return url.drivername.startswith("sqlite") and (url.database or "") in _MEMORY_DATABASES


def sqlite_path_from_target(target: str | Path) -> Path:
    """Return the absolute file path behind a SQLite target."""

    url = make_url(normalize_database_url(target))
    if not url.drivername.startswith("sqlite"):
        raise ValueError(f"Expected sqlite URL, received {str(target)!r}")
    if is_sqlite_memory(url):
        raise ValueError("in-memory SQLite databases have no file path")
    return Path(url.database or "")


def sync_id_sequence(conn: Connection, table: str, column: str = "id") -> None:
    """Move a PostgreSQL serial sequence past rows inserted with explicit ids.

    SQLite AUTOINCREMENT tracks explicit ids on its own, so this is a no-op there.
    """

    if not conn.dialect.name.startswith("postgresql"):
        return
    conn.execute(
        text(
            f"SELECT setval(pg_get_serial_sequence('{table}', '{column}'), "
            f"COALESCE((SELECT MAX({column}) FROM {table}), 0) + 1, false)"
        )
    )


__all__ = ["is_sqlite_memory", "normalize_database_url", "sqlite_path_from_target", "sync_id_sequence"]
