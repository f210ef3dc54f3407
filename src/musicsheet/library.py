"""Document store: keeps metadata records and the catalog consistent.

Every catalog entry mirrors five fields of a metadata record. Operations
write the per-document files first and publish to the catalog last, so any
entry a reader finds in the catalog points at a readable record. When the
catalog step fails the operation raises ``PartialFailure``; ``sync_entry``
retries that step alone and ``reconcile`` repairs the whole library.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Mapping, Optional, Sequence

from musicsheet.config import LibrarySettings
from musicsheet.errors import Corrupt, IOFailure, LibraryError, NotFound, PartialFailure
from musicsheet.index.catalog import Catalog
from musicsheet.index.search import DEFAULT_LIMIT, SearchResult, search
from musicsheet.ingestion.thumbnails import ThumbnailGenerator
from musicsheet.models import CatalogEntry, DocumentRecord, utc_now_iso
from musicsheet.storage.locking import DEFAULT_LOCK_TIMEOUT, KeyedLock
from musicsheet.storage.metadata import MetadataStore
from musicsheet.storage.paths import PathResolver, is_well_formed_id, new_document_id
from musicsheet.storage.preferences import ConfigStore
from musicsheet.utils.files import atomic_write_bytes
from musicsheet.utils.text import DEFAULT_UPLOAD_NAME, title_from_filename

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ReconcileReport:
    added: List[str] = field(default_factory=list)
    refreshed: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    corrupt: List[str] = field(default_factory=list)

    @property
    def changed(self) -> int:
        return len(self.added) + len(self.refreshed) + len(self.removed)


class DocumentStore:
    """Create, edit, remove and list documents as multi-file operations."""

    def __init__(
        self,
        root: Path,
        *,
        thumbnailer: ThumbnailGenerator | None = None,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
        search_limit: int = DEFAULT_LIMIT,
    ) -> None:
        self.paths = PathResolver(root)
        self.metadata = MetadataStore(self.paths)
        self.catalog = Catalog(self.paths, lock_timeout=lock_timeout)
        self.preferences = ConfigStore(self.paths, lock_timeout=lock_timeout)
        self.thumbnailer = thumbnailer
        self.search_limit = search_limit
        self._documents = KeyedLock()

    @classmethod
    def from_settings(
        cls, settings: LibrarySettings, base_dir: Path | None = None
    ) -> "DocumentStore":
        return cls(
            settings.resolve_root(base_dir),
            thumbnailer=ThumbnailGenerator(
                size=settings.thumbnail_size, max_workers=settings.thumbnail_workers
            ),
            lock_timeout=settings.lock_timeout,
            search_limit=settings.search_limit,
        )

    def __enter__(self) -> "DocumentStore":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        if self.thumbnailer is not None:
            self.thumbnailer.shutdown(wait=True)

    def initialize(self) -> None:
        """Create the directory structure, catalog and preferences if missing."""
        try:
            self.paths.ensure_structure()
        except OSError as exc:
            raise IOFailure(self.paths.root, "create", str(exc)) from exc
        self.catalog.load()
        self.preferences.load()

    def upload(self, payload: bytes, file_name: str | None = None) -> DocumentRecord:
        """Store a new document and publish it to the catalog."""
        file_name = (file_name or "").strip() or DEFAULT_UPLOAD_NAME
        document_id = new_document_id()
        now = utc_now_iso()
        record = DocumentRecord(
            id=document_id,
            title=title_from_filename(file_name),
            composer="",
            instrument="",
            date_added=now,
            last_accessed=now,
            file_name=file_name,
            file_size=len(payload),
        )

        with self._documents.hold(document_id):
            pdf_path = self.paths.pdf_path(document_id)
            try:
                atomic_write_bytes(pdf_path, payload)
                self.metadata.create(record)
            except OSError as exc:
                self._discard(document_id)
                raise IOFailure(pdf_path, "write", str(exc)) from exc
            except LibraryError:
                self._discard(document_id)
                raise
            self._publish(record, completed=("pdf", "metadata"))

        LOGGER.info("Uploaded %s as %s (%d bytes)", file_name, document_id, len(payload))
        self._schedule_thumbnail(document_id)
        return record

    def edit(self, document_id: str, changes: Mapping[str, Any]) -> DocumentRecord:
        """Apply a partial update and mirror the result into the catalog."""
        with self._documents.hold(document_id):
            record = self.metadata.update(document_id, changes)
            self._publish(record, completed=("metadata",))
        LOGGER.info("Updated %s", document_id)
        return record

    def touch_access(self, document_id: str) -> DocumentRecord:
        return self.edit(document_id, {"last_accessed": utc_now_iso()})

    def open(self, document_id: str) -> DocumentRecord:
        """Record that a document is being viewed and return its record."""
        try:
            record = self.touch_access(document_id)
        except NotFound:
            self._prune_stale(document_id)
            raise
        try:
            self.preferences.record_opened(document_id)
        except LibraryError as exc:
            LOGGER.warning("Could not update recent documents for %s: %s", document_id, exc)
        return record

    def get(self, document_id: str) -> DocumentRecord:
        try:
            return self.metadata.read(document_id)
        except NotFound:
            self._prune_stale(document_id)
            raise

    def remove(self, document_id: str) -> bool:
        """Delete a document's files, then its catalog entry.

        Idempotent: removing an unknown id succeeds and changes nothing.
        Returns True when files were actually deleted.
        """
        with self._documents.hold(document_id):
            removed = self.metadata.delete(document_id)
            try:
                self.catalog.remove(document_id)
            except (LibraryError, OSError) as exc:
                LOGGER.error("Catalog removal failed for %s: %s", document_id, exc)
                completed = ("files",) if removed else ()
                raise PartialFailure(document_id, "catalog_remove", completed, str(exc)) from exc

        try:
            self.preferences.forget(document_id)
        except LibraryError as exc:
            LOGGER.warning("Could not clear preferences for %s: %s", document_id, exc)
        if removed:
            LOGGER.info("Removed %s", document_id)
        return removed

    def list(self) -> List[CatalogEntry]:
        return self.catalog.load()

    def search(self, query: str, limit: Optional[int] = None) -> List[SearchResult]:
        return search(query, self.list(), self.search_limit if limit is None else limit)

    def pdf_file(self, document_id: str) -> Path:
        """Path of the stored PDF for delivery layers."""
        path = self.paths.pdf_path(document_id) if is_well_formed_id(document_id) else None
        if path is None or not path.is_file():
            raise NotFound("file", document_id)
        return path

    def thumbnail(self, document_id: str, *, refresh: bool = False) -> Optional[Path]:
        """Return the thumbnail path, rendering it on demand.

        Returns None when rendering is unavailable or fails.
        """
        pdf_path = self.pdf_file(document_id)
        thumbnail_path = self.paths.thumbnail_path(document_id)
        if thumbnail_path.is_file() and not refresh:
            return thumbnail_path
        if self.thumbnailer is None:
            return None
        if not self.thumbnailer.try_render(pdf_path, thumbnail_path):
            return None
        return thumbnail_path

    def sync_entry(self, document_id: str) -> Optional[CatalogEntry]:
        """Re-derive one catalog entry from its record (retry after PartialFailure)."""
        with self._documents.hold(document_id):
            try:
                record = self.metadata.read(document_id)
            except NotFound:
                self.catalog.remove(document_id)
                return None
            entry = CatalogEntry.from_record(record)
            self.catalog.upsert(entry)
        return entry

    def reconcile(self) -> ReconcileReport:
        """Rebuild catalog entries from the records on disk.

        Adds entries for unpublished records, refreshes entries that drifted
        from their record and drops entries whose record is gone. Corrupt
        records are reported and their entries left alone.
        """
        report = ReconcileReport()
        records = {}
        for document_id in self.metadata.iter_ids():
            try:
                records[document_id] = self.metadata.read(document_id)
            except Corrupt as exc:
                LOGGER.warning("Skipping corrupt record %s: %s", document_id, exc)
                report.corrupt.append(document_id)
            except NotFound:
                continue

        entries = {entry.id: entry for entry in self.catalog.load()}

        for document_id in entries:
            if document_id in records or document_id in report.corrupt:
                continue
            with self._documents.hold(document_id):
                if self.metadata.exists(document_id):
                    continue
                if self.catalog.remove(document_id):
                    report.removed.append(document_id)

        for document_id, record in records.items():
            current = entries.get(document_id)
            if current == CatalogEntry.from_record(record):
                continue
            if self.sync_entry(document_id) is None:
                continue
            if current is None:
                report.added.append(document_id)
            else:
                report.refreshed.append(document_id)

        LOGGER.info(
            "Reconciled catalog: %d added, %d refreshed, %d removed, %d corrupt",
            len(report.added),
            len(report.refreshed),
            len(report.removed),
            len(report.corrupt),
        )
        return report

    def _publish(self, record: DocumentRecord, completed: Sequence[str]) -> None:
        try:
            self.catalog.upsert(CatalogEntry.from_record(record))
        except (LibraryError, OSError) as exc:
            LOGGER.error("Catalog update failed for %s: %s", record.id, exc)
            raise PartialFailure(record.id, "catalog_upsert", completed, str(exc)) from exc

    def _prune_stale(self, document_id: str) -> None:
        with self._documents.hold(document_id):
            if self.metadata.exists(document_id):
                return
            try:
                pruned = self.catalog.remove(document_id)
            except LibraryError as exc:
                LOGGER.warning("Could not prune stale entry %s: %s", document_id, exc)
                return
        if pruned:
            LOGGER.warning("Pruned stale catalog entry %s", document_id)

    def _discard(self, document_id: str) -> None:
        try:
            self.metadata.delete(document_id)
        except LibraryError as exc:
            LOGGER.warning("Could not clean up %s after failed upload: %s", document_id, exc)

    def _schedule_thumbnail(self, document_id: str) -> None:
        if self.thumbnailer is None:
            return
        try:
            self.thumbnailer.submit(
                self.paths.pdf_path(document_id), self.paths.thumbnail_path(document_id)
            )
        except RuntimeError as exc:
            LOGGER.warning("Could not queue thumbnail for %s: %s", document_id, exc)
