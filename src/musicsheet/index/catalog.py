"""The shared catalog file (``index.json``).

Every mutation is a full read-modify-write of the file performed while
holding the catalog lock, and the new content is renamed into place, so
readers never need the lock and never see a half-written catalog.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional

from musicsheet.errors import Corrupt, IOFailure
from musicsheet.models import CatalogEntry, CatalogIndex, utc_now_iso
from musicsheet.storage.locking import DEFAULT_LOCK_TIMEOUT, FileLock
from musicsheet.storage.paths import PathResolver
from musicsheet.utils.files import atomic_write_json, read_json

LOGGER = logging.getLogger(__name__)


class Catalog:
    """Persistence layer for the lightweight catalog entries."""

    def __init__(self, paths: PathResolver, *, lock_timeout: float = DEFAULT_LOCK_TIMEOUT) -> None:
        self.path = paths.catalog_path()
        self._lock = FileLock(self.path, timeout=lock_timeout)

    def load(self) -> List[CatalogEntry]:
        """Return all entries, creating an empty catalog file if none exists."""
        return list(self.snapshot().documents)

    def snapshot(self) -> CatalogIndex:
        index = self._read()
        if index is not None:
            return index
        with self._lock.hold():
            index = self._read()
            if index is None:
                index = CatalogIndex()
                self._write(index)
                LOGGER.info("Initialized empty catalog at %s", self.path)
        return index

    def get(self, document_id: str) -> Optional[CatalogEntry]:
        for entry in self.load():
            if entry.id == document_id:
                return entry
        return None

    def upsert(self, entry: CatalogEntry) -> None:
        """Replace the entry with the same id in place, or append it."""

        def apply(index: CatalogIndex) -> bool:
            for position, existing in enumerate(index.documents):
                if existing.id == entry.id:
                    index.documents[position] = entry
                    return True
            index.documents.append(entry)
            return True

        self._mutate(apply)

    def remove(self, document_id: str) -> bool:
        """Drop the entry for *document_id*. Returns False when there was none."""
        if not self.path.exists():
            return False

        def apply(index: CatalogIndex) -> bool:
            kept = [entry for entry in index.documents if entry.id != document_id]
            if len(kept) == len(index.documents):
                return False
            index.documents = kept
            return True

        return self._mutate(apply, create=False)

    def _mutate(self, change: Callable[[CatalogIndex], bool], *, create: bool = True) -> bool:
        with self._lock.hold():
            index = self._read()
            if index is None:
                if not create:
                    return False
                index = CatalogIndex()
            if not change(index):
                return False
            index.last_updated = utc_now_iso()
            self._write(index)
            LOGGER.debug("Catalog written with %d entries", len(index.documents))
            return True

    def _read(self) -> Optional[CatalogIndex]:
        try:
            data = read_json(self.path)
        except FileNotFoundError:
            return None
        except ValueError as exc:
            raise Corrupt(self.path, f"invalid JSON ({exc})") from exc
        except OSError as exc:
            raise IOFailure(self.path, "read", str(exc)) from exc
        try:
            return CatalogIndex.from_dict(data)
        except ValueError as exc:
            raise Corrupt(self.path, str(exc)) from exc

    def _write(self, index: CatalogIndex) -> None:
        try:
            atomic_write_json(self.path, index.to_dict())
        except OSError as exc:
            raise IOFailure(self.path, "write", str(exc)) from exc
