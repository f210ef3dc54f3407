"""Tests for the per-document metadata store."""

from __future__ import annotations

import dataclasses
import json
import threading
from pathlib import Path
from unittest.mock import patch

import pytest

from musicsheet.errors import AlreadyExists, Corrupt, InvalidMetadata, IOFailure, NotFound
from musicsheet.models import DocumentRecord
from musicsheet.storage.metadata import MetadataStore, normalize_changes
from musicsheet.storage.paths import PathResolver


@pytest.fixture
def store(tmp_path: Path) -> MetadataStore:
    return MetadataStore(PathResolver(tmp_path))


def _record(document_id: str = "doc-1") -> DocumentRecord:
    return DocumentRecord(
        id=document_id,
        title="Clair de Lune",
        composer="Debussy",
        instrument="Piano",
        date_added="2024-01-01T00:00:00.000Z",
        last_accessed="2024-01-01T00:00:00.000Z",
        file_name="clair.pdf",
        file_size=100,
    )


class TestCreateAndRead:
    """Test record creation and reading."""

    def test_create_then_read(self, store: MetadataStore) -> None:
        """A created record reads back equal."""
        record = _record()
        store.create(record)

        assert store.read("doc-1") == record
        assert store.exists("doc-1")

    def test_create_writes_flat_json(self, store: MetadataStore, tmp_path: Path) -> None:
        """The record file is the flat camelCase object."""
        store.create(_record())

        data = json.loads((tmp_path / "documents" / "doc-1" / "metadata.json").read_text())
        assert data["fileName"] == "clair.pdf"
        assert data["sideBySide"] is True

    def test_create_twice_fails(self, store: MetadataStore) -> None:
        """Duplicate identifiers are refused."""
        store.create(_record())

        with pytest.raises(AlreadyExists):
            store.create(_record())

    def test_concurrent_creates_keep_first(self, store: MetadataStore) -> None:
        """Racing creators of one id: exactly one wins, nothing is overwritten."""
        outcomes = []

        def worker(title: str) -> None:
            try:
                store.create(dataclasses.replace(_record(), title=title))
                outcomes.append(title)
            except AlreadyExists:
                outcomes.append("refused")

        threads = [threading.Thread(target=worker, args=(f"t{n}",)) for n in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        winners = [outcome for outcome in outcomes if outcome != "refused"]
        assert len(winners) == 1
        assert store.read("doc-1").title == winners[0]

    def test_create_rejects_malformed_id(self, store: MetadataStore) -> None:
        with pytest.raises(InvalidMetadata):
            store.create(_record("../escape"))

    def test_read_missing(self, store: MetadataStore) -> None:
        with pytest.raises(NotFound) as excinfo:
            store.read("nope")
        assert excinfo.value.key == "nope"

    def test_read_malformed_id_is_not_found(self, store: MetadataStore) -> None:
        with pytest.raises(NotFound):
            store.read("../../etc")

    def test_read_unparsable_is_corrupt(self, store: MetadataStore, tmp_path: Path) -> None:
        """Garbage bytes surface as Corrupt."""
        path = tmp_path / "documents" / "doc-1" / "metadata.json"
        path.parent.mkdir(parents=True)
        path.write_text("{oops", encoding="utf-8")

        with pytest.raises(Corrupt):
            store.read("doc-1")

    def test_read_invalid_shape_is_corrupt(self, store: MetadataStore, tmp_path: Path) -> None:
        """Valid JSON missing required fields surfaces as Corrupt."""
        path = tmp_path / "documents" / "doc-1" / "metadata.json"
        path.parent.mkdir(parents=True)
        path.write_text(json.dumps({"id": "doc-1"}), encoding="utf-8")

        with pytest.raises(Corrupt):
            store.read("doc-1")

    def test_read_mismatched_id_is_corrupt(self, store: MetadataStore, tmp_path: Path) -> None:
        """A record filed under the wrong directory is corrupt."""
        store.create(_record("doc-2"))
        source = tmp_path / "documents" / "doc-2" / "metadata.json"
        target = tmp_path / "documents" / "doc-1" / "metadata.json"
        target.parent.mkdir(parents=True)
        target.write_text(source.read_text())

        with pytest.raises(Corrupt):
            store.read("doc-1")

    def test_old_record_defaults_not_persisted(self, store: MetadataStore, tmp_path: Path) -> None:
        """Defaults for missing viewer flags apply on read only."""
        data = _record().to_dict()
        del data["sideBySide"]
        del data["pageOffset"]
        path = tmp_path / "documents" / "doc-1" / "metadata.json"
        path.parent.mkdir(parents=True)
        original = json.dumps(data)
        path.write_text(original, encoding="utf-8")

        record = store.read("doc-1")

        assert record.side_by_side is True
        assert record.page_offset is False
        assert path.read_text(encoding="utf-8") == original

    def test_write_failure_is_io_failure(self, store: MetadataStore) -> None:
        with patch("musicsheet.storage.metadata.atomic_create_json", side_effect=OSError("ro")):
            with pytest.raises(IOFailure):
                store.create(_record())


class TestUpdate:
    """Test partial updates."""

    def test_merges_only_supplied_fields(self, store: MetadataStore) -> None:
        """Unsupplied fields keep their values."""
        store.create(_record())

        updated = store.update("doc-1", {"composer": "C. Debussy", "sortOrder": 4})

        assert updated.composer == "C. Debussy"
        assert updated.sort_order == 4
        assert updated.title == "Clair de Lune"
        assert store.read("doc-1") == updated

    def test_immutable_fields_ignored(self, store: MetadataStore) -> None:
        """id and dateAdded cannot be changed and do not raise."""
        store.create(_record())

        updated = store.update("doc-1", {"id": "other", "dateAdded": "2000-01-01"})

        assert updated.id == "doc-1"
        assert updated.date_added == "2024-01-01T00:00:00.000Z"
        persisted = store.read("doc-1")
        assert persisted.id == "doc-1"
        assert persisted.date_added == "2024-01-01T00:00:00.000Z"

    def test_file_fields_ignored(self, store: MetadataStore) -> None:
        store.create(_record())

        updated = store.update("doc-1", {"file_name": "x.pdf", "fileSize": 1})

        assert updated.file_name == "clair.pdf"
        assert updated.file_size == 100

    def test_missing_record(self, store: MetadataStore) -> None:
        with pytest.raises(NotFound):
            store.update("nope", {"title": "x"})

    def test_unknown_field_rejected(self, store: MetadataStore) -> None:
        store.create(_record())

        with pytest.raises(InvalidMetadata, match="pages"):
            store.update("doc-1", {"pages": 3})

    def test_wrong_type_rejected(self, store: MetadataStore) -> None:
        store.create(_record())

        with pytest.raises(InvalidMetadata):
            store.update("doc-1", {"sideBySide": "yes"})


class TestDelete:
    """Test record deletion."""

    def test_removes_whole_directory(self, store: MetadataStore, tmp_path: Path) -> None:
        """Record, PDF and thumbnail go together."""
        store.create(_record())
        root = tmp_path / "documents" / "doc-1"
        (root / "score.pdf").write_bytes(b"%PDF")
        (root / "thumbnail.png").write_bytes(b"png")

        assert store.delete("doc-1") is True
        assert not root.exists()

    def test_delete_is_idempotent(self, store: MetadataStore) -> None:
        assert store.delete("never-existed") is False
        assert store.delete("../etc") is False


class TestIterIds:
    """Test document discovery."""

    def test_lists_only_directories_with_records(self, store: MetadataStore, tmp_path: Path) -> None:
        store.create(_record("b"))
        store.create(_record("a"))
        (tmp_path / "documents" / "half-written").mkdir()

        assert list(store.iter_ids()) == ["a", "b"]

    def test_empty_library(self, store: MetadataStore) -> None:
        assert list(store.iter_ids()) == []


def test_normalize_changes_accepts_both_spellings() -> None:
    """camelCase and attribute names map to the same field."""
    assert normalize_changes({"lastAccessed": "t", "page_offset": True}) == {
        "last_accessed": "t",
        "page_offset": True,
    }
