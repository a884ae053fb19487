"""Maintenance CLI for the face record store.

Library loads need an embedding extractor, supplied as ``module:factory``;
the factory is called with no arguments and must return an object with an
``extract(image)`` method.
"""

from __future__ import annotations

import importlib
from collections import Counter
from pathlib import Path
from typing import Optional

import typer
from sqlalchemy import select

from face_index.config import Settings, load_settings
from face_index.db import SchemaMigration, open_session
from face_index.duplicates import DuplicateResolver
from face_index.enrollment import FaceEnrollmentService
from face_index.errors import ConfigurationError, FaceIndexError
from face_index.ingestion import IngestionReport, LibraryIngestionPipeline, ProgressObserver
from face_index.records import image_source_kind
from face_index.search import SimilaritySearch
from face_index.similarity import hash_similarity
from face_index.sources import DirectoryImageSource, EmbeddingExtractor, LocalBlobStore
from face_index.store import FaceRecordStore
from utils.logging import configure_logging, get_logger

LOGGER = get_logger(__name__)

app = typer.Typer(add_completion=False, help="Maintain the face-index record store.")

SettingsOption = typer.Option(
    None,
    "--settings",
    help="Settings YAML. Defaults to $FACE_INDEX_SETTINGS or config/settings.yaml.",
)
DbOption = typer.Option(
    None,
    "--db",
    help="Database URL or SQLite path. Defaults to databases.url in settings.yaml.",
)


def load_extractor(spec: str) -> EmbeddingExtractor:
    """Resolve ``module:factory`` into an extractor instance."""

    module_name, sep, attr = spec.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigurationError(f"extractor must look like 'module:factory', got {spec!r}")

    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigurationError(f"cannot import extractor module {module_name!r}: {exc}") from exc

    factory = getattr(module, attr, None)
    if not callable(factory):
        raise ConfigurationError(f"{spec!r} is not a callable extractor factory")

    extractor = factory()
    if not callable(getattr(extractor, "extract", None)):
        raise ConfigurationError(f"{spec!r} returned {type(extractor).__name__}, which has no extract() method")
    return extractor


def _open(settings_path: Optional[Path], db: Optional[str]) -> tuple[Settings, FaceRecordStore]:
    settings = load_settings(settings_path)
    configure_logging(settings.logging.level)
    if db:
        settings.databases.url = db
    return settings, FaceRecordStore.from_settings(settings)


def _resolver(settings: Settings, store: FaceRecordStore) -> DuplicateResolver:
    return DuplicateResolver(
        store,
        threshold=settings.duplicates.threshold,
        removal_threshold=settings.duplicates.removal_threshold,
    )


def _progress_logger(label: str) -> ProgressObserver:
    def _report(processed: int, total: int) -> None:
        interval = max(1, total // 20)
        if processed % interval == 0 or processed == total:
            percent = round(processed * 100.0 / max(total, 1), 1)
            LOGGER.info(
                f"{label}_progress %s/%s (%.1f%%)",
                processed,
                total,
                percent,
                extra={"processed": processed, "total": total, "percent": percent},
            )

    return _report


def _pipeline(
    settings: Settings,
    store: FaceRecordStore,
    extractor_spec: str,
    library_root: Optional[Path],
    label: str,
) -> LibraryIngestionPipeline:
    extractor = load_extractor(extractor_spec)
    source = DirectoryImageSource(library_root or Path(settings.library.root))
    return LibraryIngestionPipeline(
        store,
        _resolver(settings, store),
        source,
        extractor,
        settings=settings,
        progress=_progress_logger(label),
    )


def _echo_report(report: IngestionReport) -> None:
    summary = report.summary()
    typer.echo(" ".join(f"{key}={value}" for key, value in summary.items()))
    for item in report.items:
        if item.error:
            typer.echo(f"  failed {item.identifier}: {item.error}")


ExtractorOption = typer.Option(..., "--extractor", help="Embedding extractor factory as module:factory.")
LibraryIdOption = typer.Option("", "--library-id", help="Sub-directory of the library root to load.")
LibraryRootOption = typer.Option(
    None,
    "--library-root",
    file_okay=False,
    dir_okay=True,
    help="Library root directory. Defaults to library.root in settings.yaml.",
)


@app.command("load")
def load(
    extractor: str = ExtractorOption,
    library_id: str = LibraryIdOption,
    library_root: Optional[Path] = LibraryRootOption,
    settings_path: Optional[Path] = SettingsOption,
    db: Optional[str] = DbOption,
) -> None:
    """Load library images that are not stored yet."""

    try:
        settings, store = _open(settings_path, db)
        pipeline = _pipeline(settings, store, extractor, library_root, "library_load")
        report = pipeline.ingest(library_id)
    except FaceIndexError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=2) from exc
    _echo_report(report)


@app.command("reload")
def reload(
    extractor: str = ExtractorOption,
    library_id: str = LibraryIdOption,
    library_root: Optional[Path] = LibraryRootOption,
    settings_path: Optional[Path] = SettingsOption,
    db: Optional[str] = DbOption,
) -> None:
    """Clear the store, reload the library, and keep user-added faces."""

    try:
        settings, store = _open(settings_path, db)
        pipeline = _pipeline(settings, store, extractor, library_root, "library_reload")
        report = pipeline.reset_and_reload(library_id)
    except FaceIndexError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=2) from exc
    _echo_report(report)


@app.command("enroll")
def enroll(
    image: Path = typer.Option(
        ...,
        "--image",
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
        help="Photo to add.",
    ),
    name: str = typer.Option(..., "--name", help="Name to attach to every new face in the photo."),
    age: str = typer.Option("", "--age", help="Optional age label."),
    extractor: str = ExtractorOption,
    settings_path: Optional[Path] = SettingsOption,
    db: Optional[str] = DbOption,
) -> None:
    """Add a user photo; its bytes are kept under blobs.root."""

    try:
        settings, store = _open(settings_path, db)
        service = FaceEnrollmentService(
            _resolver(settings, store),
            load_extractor(extractor),
            LocalBlobStore(settings.blobs.root),
        )
        result = service.enroll(image.read_bytes(), name, age=age, filename=image.name)
    except FaceIndexError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=2) from exc

    typer.echo(f"stored {result.image_path}: inserted={len(result.inserted)} duplicates={result.duplicates}")
    for record in result.inserted:
        typer.echo(f"  id={record.id} name={record.name}")


@app.command("duplicates")
def duplicates(
    threshold: Optional[float] = typer.Option(
        None,
        "--threshold",
        min=-1.0,
        max=1.0,
        help="Cosine threshold. Defaults to duplicates.threshold in settings.yaml.",
    ),
    settings_path: Optional[Path] = SettingsOption,
    db: Optional[str] = DbOption,
) -> None:
    """List duplicate pairs without changing anything."""

    settings, store = _open(settings_path, db)
    pairs = _resolver(settings, store).find_duplicate_pairs(threshold)
    for pair in pairs:
        typer.echo(
            f"{pair.first.id}\t{pair.second.id}\t{pair.reason.value}\t{pair.similarity:.4f}"
            f"\thash={hash_similarity(pair.first.image_hash, pair.second.image_hash):.3f}"
            f"\t{pair.first.image_path}\t{pair.second.image_path}"
        )
    typer.echo(f"{len(pairs)} duplicate pair(s)")


@app.command("remove-duplicates")
def remove_duplicates(
    threshold: Optional[float] = typer.Option(
        None,
        "--threshold",
        min=-1.0,
        max=1.0,
        help="Cosine threshold. Defaults to duplicates.removal_threshold, then duplicates.threshold.",
    ),
    settings_path: Optional[Path] = SettingsOption,
    db: Optional[str] = DbOption,
) -> None:
    """Keep the newest record of every duplicate cluster and delete the rest."""

    settings, store = _open(settings_path, db)
    effective = threshold if threshold is not None else settings.duplicates.effective_removal_threshold()
    removed = _resolver(settings, store).remove_duplicates(effective)
    typer.echo(f"removed {removed} duplicate record(s); {store.count()} remain")


@app.command("similar")
def similar(
    record_id: int = typer.Option(..., "--id", help="Id of the stored face to compare against."),
    limit: Optional[int] = typer.Option(
        None,
        "--limit",
        help="Number of results. Defaults to search.default_limit in settings.yaml.",
    ),
    settings_path: Optional[Path] = SettingsOption,
    db: Optional[str] = DbOption,
) -> None:
    """Show the stored faces most similar to one record."""

    settings, store = _open(settings_path, db)
    target = store.get_by_id(record_id)
    if target is None:
        typer.echo(f"no face with id {record_id}", err=True)
        raise typer.Exit(code=1)

    search = SimilaritySearch(store, default_limit=settings.search.default_limit)
    for match in search.find_similar(target, limit):
        typer.echo(f"{match.record.id}\t{match.similarity:.4f}\t{match.record.name}\t{match.record.image_path}")


@app.command("stats")
def stats(
    settings_path: Optional[Path] = SettingsOption,
    db: Optional[str] = DbOption,
) -> None:
    """Print record counts by image source and the applied schema migrations."""

    settings, store = _open(settings_path, db)
    records = store.list_all()
    kinds = Counter(image_source_kind(record.image_path, settings.library.path_prefix).value for record in records)

    typer.echo(f"faces: {len(records)}")
    for kind, count in sorted(kinds.items()):
        typer.echo(f"  {kind}: {count}")
    typer.echo(f"names: {len({record.name for record in records})}")

    with open_session(settings.databases.url) as session:
        migrations = session.execute(select(SchemaMigration).order_by(SchemaMigration.version)).scalars().all()
        typer.echo(f"schema version: {store.schema_version()}")
        for migration in migrations:
            typer.echo(f"  v{migration.version}: {migration.description}")


def main() -> None:
    """Entrypoint used when invoking the module as a script."""

    app()


if __name__ == "__main__":
    main()


__all__ = ["app", "load_extractor", "main"]
