"""Per-document metadata records (``documents/<id>/metadata.json``)."""

from __future__ import annotations

import dataclasses
import logging
import shutil
from typing import Any, Dict, Iterator, Mapping

from musicsheet.errors import AlreadyExists, Corrupt, InvalidMetadata, IOFailure, NotFound
from musicsheet.models import DocumentRecord
from musicsheet.storage.paths import PathResolver, is_well_formed_id
from musicsheet.utils.files import atomic_create_json, atomic_write_json, read_json

LOGGER = logging.getLogger(__name__)

# Accepted spellings for update keys: JSON (camelCase) or attribute names.
_FIELD_ALIASES = {
    "id": "id",
    "title": "title",
    "composer": "composer",
    "instrument": "instrument",
    "dateAdded": "date_added",
    "lastAccessed": "last_accessed",
    "fileName": "file_name",
    "fileSize": "file_size",
    "sortOrder": "sort_order",
    "sideBySide": "side_by_side",
    "pageOffset": "page_offset",
}
_FIELD_ALIASES.update({name: name for name in list(_FIELD_ALIASES.values())})

IMMUTABLE_FIELDS = frozenset({"id", "date_added", "file_name", "file_size"})

_MUTABLE_TYPES: Dict[str, type] = {
    "title": str,
    "composer": str,
    "instrument": str,
    "last_accessed": str,
    "sort_order": int,
    "side_by_side": bool,
    "page_offset": bool,
}


def normalize_changes(changes: Mapping[str, Any]) -> Dict[str, Any]:
    """Map a partial update onto attribute names, dropping immutable fields.

    Raises:
        InvalidMetadata: For unknown field names or values of the wrong type.
    """
    normalized: Dict[str, Any] = {}
    for key, value in changes.items():
        name = _FIELD_ALIASES.get(key)
        if name is None:
            raise InvalidMetadata(f"Unknown metadata field '{key}'.")
        if name in IMMUTABLE_FIELDS:
            LOGGER.debug("Ignoring change to immutable field %s", name)
            continue
        expected = _MUTABLE_TYPES[name]
        if expected is int:
            valid = isinstance(value, int) and not isinstance(value, bool)
        else:
            valid = isinstance(value, expected)
        if not valid:
            raise InvalidMetadata(
                f"Metadata field '{key}' must be of type {expected.__name__}, "
                f"got {type(value).__name__}."
            )
        normalized[name] = value
    return normalized


class MetadataStore:
    """Owns the lifecycle of one JSON record per document."""

    def __init__(self, paths: PathResolver) -> None:
        self.paths = paths

    def exists(self, document_id: str) -> bool:
        return is_well_formed_id(document_id) and self.paths.record_path(document_id).is_file()

    def create(self, record: DocumentRecord) -> DocumentRecord:
        """Persist a fully populated new record."""
        if not is_well_formed_id(record.id):
            raise InvalidMetadata(f"Malformed document id '{record.id}'.")
        path = self.paths.record_path(record.id)
        try:
            atomic_create_json(path, record.to_dict())
        except FileExistsError as exc:
            raise AlreadyExists(record.id) from exc
        except OSError as exc:
            raise IOFailure(path, "write", str(exc)) from exc
        return record

    def read(self, document_id: str) -> DocumentRecord:
        if not is_well_formed_id(document_id):
            raise NotFound("document", document_id)
        path = self.paths.record_path(document_id)
        try:
            data = read_json(path)
        except FileNotFoundError as exc:
            raise NotFound("document", document_id) from exc
        except ValueError as exc:
            raise Corrupt(path, f"invalid JSON ({exc})") from exc
        except OSError as exc:
            raise IOFailure(path, "read", str(exc)) from exc

        try:
            record = DocumentRecord.from_dict(data)
        except ValueError as exc:
            raise Corrupt(path, str(exc)) from exc
        if record.id != document_id:
            raise Corrupt(path, f"record id '{record.id}' does not match its directory")
        return record

    def update(self, document_id: str, changes: Mapping[str, Any]) -> DocumentRecord:
        """Merge *changes* into the stored record and return the full result.

        Immutable fields (id, dateAdded, fileName, fileSize) are silently kept.
        """
        normalized = normalize_changes(changes)
        current = self.read(document_id)
        updated = dataclasses.replace(current, **normalized)
        path = self.paths.record_path(document_id)
        try:
            atomic_write_json(path, updated.to_dict())
        except OSError as exc:
            raise IOFailure(path, "write", str(exc)) from exc
        return updated

    def delete(self, document_id: str) -> bool:
        """Remove the whole document directory. Returns False if it was already gone."""
        if not is_well_formed_id(document_id):
            return False
        root = self.paths.document_root(document_id)
        if not root.exists():
            return False
        try:
            shutil.rmtree(root)
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise IOFailure(root, "delete", str(exc)) from exc
        return True

    def iter_ids(self) -> Iterator[str]:
        """Yield identifiers of every document directory holding a record file."""
        documents_dir = self.paths.documents_dir
        if not documents_dir.is_dir():
            return
        for child in sorted(documents_dir.iterdir()):
            if not (child.is_dir() and is_well_formed_id(child.name)):
                continue
            if self.paths.record_path(child.name).is_file():
                yield child.name
