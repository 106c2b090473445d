"""Flat-file blob storage for uploads and processed images.

Each blob is a single file named ``<uuid4 hex><extension>`` inside the
store's directory.  The file name is the blob id used in download and
preview URLs.  There is no index file: the directory listing is the source
of truth, and file modification times drive the age-based sweep.

The sweep may run while requests are saving and deleting blobs, so every
directory walk tolerates files disappearing between the listing and the
``stat`` call.  Such files are treated as already cleaned up.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from .errors import not_found

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BlobEntry:
    """A stored blob as seen by a directory scan."""

    name: str
    modified_at: float
    size: int


class BlobStore:
    """Blobs stored as files in a single directory.

    Attributes:
        directory: Directory holding the blob files.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def path_for(self, blob_id: str) -> Path:
        """Resolve *blob_id* to a file path inside the store.

        Raises:
            EraserError: ``NOT_FOUND`` if the id is empty or would resolve
                outside the store directory.
        """
        if not blob_id or blob_id in (".", "..") or "/" in blob_id or "\\" in blob_id:
            logger.warning("Rejected unsafe blob id: %r", blob_id)
            raise not_found(blob_id)

        base = self.directory.resolve()
        path = (base / blob_id).resolve()
        if path.parent != base:
            logger.warning("Path traversal attempt detected: %s", path)
            raise not_found(blob_id)
        return path

    def save(self, data: bytes, extension: str = "") -> str:
        """Write *data* under a fresh random id and return the id."""
        if extension and not extension.startswith("."):
            extension = f".{extension}"
        blob_id = f"{uuid.uuid4().hex}{extension.lower()}"
        self.path_for(blob_id).write_bytes(data)
        logger.debug("Saved blob %s (%d bytes) in %s", blob_id, len(data), self.directory)
        return blob_id

    def read(self, blob_id: str) -> bytes:
        """Return the bytes of *blob_id*.

        Raises:
            EraserError: ``NOT_FOUND`` if no such blob exists.
        """
        path = self.path_for(blob_id)
        try:
            return path.read_bytes()
        except (FileNotFoundError, IsADirectoryError) as e:
            raise not_found(blob_id) from e

    def exists(self, blob_id: str) -> bool:
        return self.path_for(blob_id).is_file()

    def delete(self, blob_id: str) -> bool:
        """Delete *blob_id*.  Missing blobs are logged, not raised.

        Returns:
            True if a file was removed.
        """
        path = self.path_for(blob_id)
        try:
            path.unlink()
        except OSError as e:
            logger.warning("Failed to delete file %s: %s", path, e)
            return False
        return True

    def entries(self) -> Iterator[BlobEntry]:
        """Yield every blob currently in the store with its mtime and size."""
        try:
            paths = list(self.directory.iterdir())
        except FileNotFoundError:
            return

        for path in paths:
            try:
                stat = path.stat()
            except FileNotFoundError:
                # Deleted between listing and stat.
                continue
            if not path.is_file():
                continue
            yield BlobEntry(name=path.name, modified_at=stat.st_mtime, size=stat.st_size)

    def sweep(self, max_age_seconds: float, now: float | None = None) -> int:
        """Delete blobs whose modification time is older than *max_age_seconds*.

        Per-file failures are logged and skipped; the sweep never raises for
        a single blob.

        Args:
            max_age_seconds: Age threshold.
            now: Reference timestamp (defaults to the current time).

        Returns:
            Number of blobs removed.
        """
        now = time.time() if now is None else now
        removed = 0
        for entry in self.entries():
            if now - entry.modified_at <= max_age_seconds:
                continue
            path = self.directory / entry.name
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning("Cleanup error for %s: %s", path, e)
                continue
            removed += 1
            logger.info("Cleaned up old file: %s", path)
        return removed

    def total_size(self) -> int:
        """Total bytes held by the store."""
        return sum(entry.size for entry in self.entries())
