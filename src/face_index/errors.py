"""Exception hierarchy shared by the store, resolver, and ingestion pipeline."""

from __future__ import annotations


class FaceIndexError(Exception):
    """Base class for all face-index errors."""


class ItemError(FaceIndexError):
    """A single ingestion item could not be processed.

    Raised for extractor failures, undecodable images, and per-file I/O errors.
    The library pipeline records the item as failed and moves on.
    """

    def __init__(self, identifier: str, reason: str) -> None:
        super().__init__(f"{identifier}: {reason}")
        self.identifier = identifier
        self.reason = reason


class StoreError(FaceIndexError):
    """The underlying database rejected a read or write."""


class ConfigurationError(FaceIndexError):
    """Settings or collaborators are missing or invalid."""


__all__ = ["ConfigurationError", "FaceIndexError", "ItemError", "StoreError"]
