"""Tests for the document store."""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Dict
from unittest.mock import MagicMock, patch

import pytest

from musicsheet.errors import IOFailure, LibraryError, NotFound, PartialFailure
from musicsheet.ingestion.thumbnails import ThumbnailGenerator
from musicsheet.library import DocumentStore
from musicsheet.models import CatalogEntry

PDF_BYTES = b"%PDF-1.4 fake score"


@pytest.fixture
def library(tmp_path: Path) -> DocumentStore:
    store = DocumentStore(tmp_path / "library", lock_timeout=5)
    store.initialize()
    return store


def _assert_mirrored(library: DocumentStore) -> None:
    """Every catalog entry matches the five mirrored fields of its record."""
    for entry in library.list():
        assert entry == CatalogEntry.from_record(library.metadata.read(entry.id))


def _snapshot(root: Path) -> Dict[str, bytes]:
    return {
        str(path.relative_to(root)): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file() and not path.name.endswith(".lock")
    }


class TestInitialize:
    """Test library setup."""

    def test_creates_structure(self, library: DocumentStore) -> None:
        root = library.paths.root

        assert (root / "documents").is_dir()
        assert json.loads((root / "index.json").read_text())["documents"] == []
        assert json.loads((root / "config.json").read_text())["recentDocuments"] == []

    def test_is_idempotent(self, library: DocumentStore) -> None:
        library.upload(PDF_BYTES, "Etude.pdf")

        library.initialize()

        assert len(library.list()) == 1


class TestUpload:
    """Test document creation."""

    def test_upload_creates_files_and_entry(self, library: DocumentStore) -> None:
        """PDF, record and catalog entry all exist after upload."""
        record = library.upload(PDF_BYTES, "Moonlight Sonata.pdf")

        assert record.title == "Moonlight Sonata"
        assert record.composer == ""
        assert record.file_name == "Moonlight Sonata.pdf"
        assert record.file_size == len(PDF_BYTES)
        assert record.date_added == record.last_accessed
        assert library.paths.pdf_path(record.id).read_bytes() == PDF_BYTES
        assert library.get(record.id) == record
        assert [entry.id for entry in library.list()] == [record.id]
        _assert_mirrored(library)

    def test_upload_without_name(self, library: DocumentStore) -> None:
        record = library.upload(PDF_BYTES)

        assert record.file_name == "document.pdf"
        assert record.title == "document"

    def test_upload_ids_are_unique(self, library: DocumentStore) -> None:
        first = library.upload(PDF_BYTES, "a.pdf")
        second = library.upload(PDF_BYTES, "a.pdf")

        assert first.id != second.id

    def test_record_written_before_catalog(self, library: DocumentStore) -> None:
        """The catalog is only touched once the record can be read."""
        seen = []
        original = library.catalog.upsert

        def checking_upsert(entry: CatalogEntry) -> None:
            seen.append(library.metadata.read(entry.id))
            original(entry)

        with patch.object(library.catalog, "upsert", side_effect=checking_upsert):
            record = library.upload(PDF_BYTES, "a.pdf")

        assert seen == [record]

    def test_catalog_failure_is_partial(self, library: DocumentStore) -> None:
        """A failed catalog step reports what was already written."""
        failure = IOFailure(library.catalog.path, "write", "disk full")
        with patch.object(library.catalog, "upsert", side_effect=failure):
            with pytest.raises(PartialFailure) as excinfo:
                library.upload(PDF_BYTES, "a.pdf")

        error = excinfo.value
        assert error.failed_step == "catalog_upsert"
        assert tuple(error.completed_steps) == ("pdf", "metadata")
        assert library.metadata.exists(error.document_id)
        assert library.list() == []

        entry = library.sync_entry(error.document_id)

        assert entry is not None
        assert [item.id for item in library.list()] == [error.document_id]
        _assert_mirrored(library)

    def test_record_failure_cleans_up(self, library: DocumentStore) -> None:
        """No files are left behind when the record cannot be written."""
        with patch(
            "musicsheet.storage.metadata.atomic_create_json", side_effect=OSError("read-only")
        ):
            with pytest.raises(IOFailure):
                library.upload(PDF_BYTES, "a.pdf")

        assert list(library.paths.documents_dir.iterdir()) == []
        assert library.list() == []

    def test_concurrent_uploads_all_published(self, library: DocumentStore) -> None:
        errors = []

        def worker(n: int) -> None:
            try:
                library.upload(PDF_BYTES, f"score-{n}.pdf")
            except LibraryError as exc:
                errors.append(exc)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(12)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert len(library.list()) == 12
        assert len(list(library.metadata.iter_ids())) == 12
        _assert_mirrored(library)

    def test_thumbnail_failure_does_not_fail_upload(self, tmp_path: Path) -> None:
        """Unrenderable bytes still upload; only the thumbnail is missing."""
        thumbnailer = ThumbnailGenerator(size=100, max_workers=1)
        with DocumentStore(tmp_path / "library", thumbnailer=thumbnailer) as library:
            library.initialize()
            record = library.upload(b"not a pdf", "broken.pdf")

        assert library.metadata.exists(record.id)
        assert not library.paths.thumbnail_path(record.id).exists()

    def test_thumbnail_scheduled(self, tmp_path: Path) -> None:
        thumbnailer = MagicMock()
        library = DocumentStore(tmp_path / "library", thumbnailer=thumbnailer)
        library.initialize()

        record = library.upload(PDF_BYTES, "a.pdf")

        thumbnailer.submit.assert_called_once_with(
            library.paths.pdf_path(record.id), library.paths.thumbnail_path(record.id)
        )


class TestEdit:
    """Test metadata updates."""

    def test_edit_mirrors_catalog(self, library: DocumentStore) -> None:
        record = library.upload(PDF_BYTES, "a.pdf")

        updated = library.edit(record.id, {"title": "Gymnopedie No. 1", "composer": "Satie"})

        assert updated.title == "Gymnopedie No. 1"
        assert library.catalog.get(record.id).composer == "Satie"
        _assert_mirrored(library)

    def test_edit_viewer_fields(self, library: DocumentStore) -> None:
        """Fields outside the catalog are stored on the record only."""
        record = library.upload(PDF_BYTES, "a.pdf")

        updated = library.edit(record.id, {"sideBySide": False, "pageOffset": True})

        assert library.get(record.id).side_by_side is False
        assert updated.page_offset is True
        _assert_mirrored(library)

    def test_edit_missing(self, library: DocumentStore) -> None:
        with pytest.raises(NotFound):
            library.edit("missing", {"title": "x"})

    def test_catalog_failure_is_partial(self, library: DocumentStore) -> None:
        record = library.upload(PDF_BYTES, "a.pdf")
        failure = IOFailure(library.catalog.path, "write", "disk full")

        with patch.object(library.catalog, "upsert", side_effect=failure):
            with pytest.raises(PartialFailure) as excinfo:
                library.edit(record.id, {"title": "New"})

        assert tuple(excinfo.value.completed_steps) == ("metadata",)
        assert library.get(record.id).title == "New"
        assert library.catalog.get(record.id).title == "a"

        library.sync_entry(record.id)

        _assert_mirrored(library)


class TestOpen:
    """Test opening documents."""

    def test_open_updates_access_and_recents(self, library: DocumentStore) -> None:
        first = library.upload(PDF_BYTES, "a.pdf")
        second = library.upload(PDF_BYTES, "b.pdf")

        library.open(first.id)
        opened = library.open(second.id)

        assert opened.last_accessed >= second.last_accessed
        config = library.preferences.load()
        assert config.last_opened_document_id == second.id
        assert config.recent_documents == [second.id, first.id]
        _assert_mirrored(library)

    def test_preference_failure_is_logged(self, library: DocumentStore) -> None:
        record = library.upload(PDF_BYTES, "a.pdf")
        failure = IOFailure(library.preferences.path, "write", "disk full")

        with patch.object(library.preferences, "record_opened", side_effect=failure):
            opened = library.open(record.id)

        assert opened.id == record.id

    def test_open_prunes_stale_entry(self, library: DocumentStore) -> None:
        record = library.upload(PDF_BYTES, "a.pdf")
        library.metadata.delete(record.id)

        with pytest.raises(NotFound):
            library.open(record.id)

        assert library.list() == []


class TestGet:
    """Test record lookup."""

    def test_get_prunes_stale_entry(self, library: DocumentStore) -> None:
        """A catalog entry without a record is dropped when looked up."""
        record = library.upload(PDF_BYTES, "a.pdf")
        keep = library.upload(PDF_BYTES, "b.pdf")
        library.metadata.delete(record.id)

        with pytest.raises(NotFound):
            library.get(record.id)

        assert [entry.id for entry in library.list()] == [keep.id]

    def test_list_returns_catalog_verbatim(self, library: DocumentStore) -> None:
        """Listing does not repair the catalog."""
        record = library.upload(PDF_BYTES, "a.pdf")
        library.metadata.delete(record.id)

        assert [entry.id for entry in library.list()] == [record.id]


class TestRemove:
    """Test document deletion."""

    def test_remove_deletes_everything(self, library: DocumentStore) -> None:
        record = library.upload(PDF_BYTES, "a.pdf")
        library.open(record.id)

        assert library.remove(record.id) is True

        assert not library.paths.document_root(record.id).exists()
        assert library.list() == []
        config = library.preferences.load()
        assert record.id not in config.recent_documents
        assert config.last_opened_document_id is None

    def test_remove_unknown_changes_nothing(self, library: DocumentStore) -> None:
        library.upload(PDF_BYTES, "a.pdf")
        before = _snapshot(library.paths.root)

        assert library.remove("never-existed") is False

        assert _snapshot(library.paths.root) == before

    def test_remove_twice(self, library: DocumentStore) -> None:
        record = library.upload(PDF_BYTES, "a.pdf")

        assert library.remove(record.id) is True
        assert library.remove(record.id) is False

    def test_catalog_failure_is_partial(self, library: DocumentStore) -> None:
        """Files go first; a failed catalog step is reported and repairable."""
        record = library.upload(PDF_BYTES, "a.pdf")
        failure = IOFailure(library.catalog.path, "write", "disk full")

        with patch.object(library.catalog, "remove", side_effect=failure):
            with pytest.raises(PartialFailure) as excinfo:
                library.remove(record.id)

        assert excinfo.value.failed_step == "catalog_remove"
        assert not library.metadata.exists(record.id)

        assert library.sync_entry(record.id) is None
        assert library.list() == []

    def test_catalog_failure_for_unknown_id(self, library: DocumentStore) -> None:
        """Nothing is reported as completed when no files were deleted."""
        failure = IOFailure(library.catalog.path, "write", "disk full")

        with patch.object(library.catalog, "remove", side_effect=failure):
            with pytest.raises(PartialFailure) as excinfo:
                library.remove("never-existed")

        assert excinfo.value.completed_steps == ()


class TestUnusableLockFiles:
    """Test lock files that cannot be opened."""

    def test_open_logs_preference_failure(
        self, library: DocumentStore, caplog: pytest.LogCaptureFixture
    ) -> None:
        """The access time is still recorded; the recents update is only logged."""
        record = library.upload(PDF_BYTES, "a.pdf")
        (library.paths.root / "config.json.lock").mkdir()

        opened = library.open(record.id)

        assert opened.last_accessed >= record.last_accessed
        assert library.catalog.get(record.id).last_accessed == opened.last_accessed
        assert "Could not update recent documents" in caplog.text

    def test_remove_logs_preference_failure(
        self, library: DocumentStore, caplog: pytest.LogCaptureFixture
    ) -> None:
        record = library.upload(PDF_BYTES, "a.pdf")
        (library.paths.root / "config.json.lock").mkdir()

        assert library.remove(record.id) is True

        assert library.list() == []
        assert "Could not clear preferences" in caplog.text

    def test_catalog_initialization_is_io_failure(self, library: DocumentStore) -> None:
        (library.paths.root / "index.json").unlink()
        (library.paths.root / "index.json.lock").mkdir()

        with pytest.raises(IOFailure):
            library.list()

    def test_upload_reports_partial_failure(self, library: DocumentStore) -> None:
        (library.paths.root / "index.json.lock").mkdir()

        with pytest.raises(PartialFailure) as excinfo:
            library.upload(PDF_BYTES, "a.pdf")

        assert excinfo.value.failed_step == "catalog_upsert"


class TestSearch:
    """Test library search."""

    def test_search_uses_catalog(self, library: DocumentStore) -> None:
        record = library.upload(PDF_BYTES, "Moonlight Sonata.pdf")
        library.edit(record.id, {"composer": "Beethoven", "instrument": "Piano"})
        library.upload(PDF_BYTES, "Clair de Lune.pdf")

        results = library.search("sonata piano")

        assert [result.entry.id for result in results] == [record.id]

    def test_default_limit(self, tmp_path: Path) -> None:
        library = DocumentStore(tmp_path, search_limit=2)
        for n in range(4):
            library.upload(PDF_BYTES, f"Etude {n}.pdf")

        assert len(library.search("etude")) == 2
        assert len(library.search("etude", limit=3)) == 3


class TestFiles:
    """Test PDF and thumbnail access."""

    def test_pdf_file(self, library: DocumentStore) -> None:
        record = library.upload(PDF_BYTES, "a.pdf")

        assert library.pdf_file(record.id).read_bytes() == PDF_BYTES

    def test_pdf_file_missing(self, library: DocumentStore) -> None:
        with pytest.raises(NotFound):
            library.pdf_file("missing")
        with pytest.raises(NotFound):
            library.pdf_file("../index.json")

    def test_thumbnail_existing(self, library: DocumentStore) -> None:
        record = library.upload(PDF_BYTES, "a.pdf")
        path = library.paths.thumbnail_path(record.id)
        path.write_bytes(b"png")

        assert library.thumbnail(record.id) == path

    def test_thumbnail_without_renderer(self, library: DocumentStore) -> None:
        record = library.upload(PDF_BYTES, "a.pdf")

        assert library.thumbnail(record.id) is None

    def test_thumbnail_renders_on_demand(self, tmp_path: Path) -> None:
        thumbnailer = MagicMock()
        thumbnailer.try_render.return_value = True
        library = DocumentStore(tmp_path, thumbnailer=thumbnailer)
        record = library.upload(PDF_BYTES, "a.pdf")

        path = library.thumbnail(record.id, refresh=True)

        assert path == library.paths.thumbnail_path(record.id)
        thumbnailer.try_render.assert_called_once_with(library.paths.pdf_path(record.id), path)


class TestReconcile:
    """Test catalog repair."""

    def test_adds_unpublished_records(self, library: DocumentStore) -> None:
        record = library.upload(PDF_BYTES, "a.pdf")
        library.catalog.remove(record.id)

        report = library.reconcile()

        assert report.added == [record.id]
        _assert_mirrored(library)

    def test_refreshes_drifted_entries(self, library: DocumentStore) -> None:
        record = library.upload(PDF_BYTES, "a.pdf")
        library.metadata.update(record.id, {"title": "Changed"})

        report = library.reconcile()

        assert report.refreshed == [record.id]
        assert library.catalog.get(record.id).title == "Changed"

    def test_removes_dangling_entries(self, library: DocumentStore) -> None:
        record = library.upload(PDF_BYTES, "a.pdf")
        library.metadata.delete(record.id)

        report = library.reconcile()

        assert report.removed == [record.id]
        assert library.list() == []

    def test_reports_corrupt_records(self, library: DocumentStore) -> None:
        """Corrupt records are skipped and their entries kept."""
        record = library.upload(PDF_BYTES, "a.pdf")
        library.paths.record_path(record.id).write_text("{broken")

        report = library.reconcile()

        assert report.corrupt == [record.id]
        assert report.removed == []
        assert [entry.id for entry in library.list()] == [record.id]

    def test_consistent_library_unchanged(self, library: DocumentStore) -> None:
        library.upload(PDF_BYTES, "a.pdf")
        library.upload(PDF_BYTES, "b.pdf")
        before = (library.paths.root / "index.json").read_text()

        report = library.reconcile()

        assert report.changed == 0
        assert (library.paths.root / "index.json").read_text() == before
