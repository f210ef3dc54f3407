"""Core MusicSheet data models and their JSON encodings.

Records are stored as flat camelCase JSON objects. Decoders raise
``ValueError`` on malformed input; the stores translate that into ``Corrupt``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

SCHEMA_VERSION = "1.0"
MAX_RECENT_DOCUMENTS = 5
SORT_FIELDS = ("title", "composer", "dateAdded", "lastAccessed")
SORT_DIRECTIONS = ("asc", "desc")


def utc_now_iso() -> str:
    """Current UTC time as ISO 8601 with millisecond precision and a ``Z`` suffix."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _expect(data: Mapping[str, Any], key: str, kind: type) -> Any:
    if key not in data:
        raise ValueError(f"missing field '{key}'")
    value = data[key]
    if kind is int:
        valid = isinstance(value, int) and not isinstance(value, bool)
    else:
        valid = isinstance(value, kind)
    if not valid:
        raise ValueError(f"field '{key}' must be of type {kind.__name__}")
    return value


def _expect_object(data: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise ValueError(f"{what} must be a JSON object")
    return data


@dataclass(slots=True)
class DocumentRecord:
    """Full per-document metadata record."""

    id: str
    title: str
    composer: str
    instrument: str
    date_added: str
    last_accessed: str
    file_name: str
    file_size: int
    sort_order: int = 0
    side_by_side: bool = True
    page_offset: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "composer": self.composer,
            "instrument": self.instrument,
            "dateAdded": self.date_added,
            "lastAccessed": self.last_accessed,
            "fileName": self.file_name,
            "fileSize": self.file_size,
            "sortOrder": self.sort_order,
            "sideBySide": self.side_by_side,
            "pageOffset": self.page_offset,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "DocumentRecord":
        """Decode a stored record.

        The two viewer flags were added after the first records were written;
        when absent they take their defaults (side-by-side on, offset off).
        """
        data = _expect_object(data, "document record")
        side_by_side = _expect(data, "sideBySide", bool) if "sideBySide" in data else True
        page_offset = _expect(data, "pageOffset", bool) if "pageOffset" in data else False
        return cls(
            id=_expect(data, "id", str),
            title=_expect(data, "title", str),
            composer=_expect(data, "composer", str),
            instrument=_expect(data, "instrument", str),
            date_added=_expect(data, "dateAdded", str),
            last_accessed=_expect(data, "lastAccessed", str),
            file_name=_expect(data, "fileName", str),
            file_size=_expect(data, "fileSize", int),
            sort_order=_expect(data, "sortOrder", int),
            side_by_side=side_by_side,
            page_offset=page_offset,
        )


@dataclass(slots=True)
class CatalogEntry:
    """Lightweight projection of a document record kept in the catalog."""

    id: str
    title: str
    composer: str
    instrument: str
    date_added: str
    last_accessed: str

    @classmethod
    def from_record(cls, record: DocumentRecord) -> "CatalogEntry":
        return cls(
            id=record.id,
            title=record.title,
            composer=record.composer,
            instrument=record.instrument,
            date_added=record.date_added,
            last_accessed=record.last_accessed,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "composer": self.composer,
            "instrument": self.instrument,
            "dateAdded": self.date_added,
            "lastAccessed": self.last_accessed,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "CatalogEntry":
        data = _expect_object(data, "catalog entry")
        return cls(
            id=_expect(data, "id", str),
            title=_expect(data, "title", str),
            composer=_expect(data, "composer", str),
            instrument=_expect(data, "instrument", str),
            date_added=_expect(data, "dateAdded", str),
            last_accessed=_expect(data, "lastAccessed", str),
        )


@dataclass(slots=True)
class CatalogIndex:
    """The shared catalog file: version tag, timestamp and entries."""

    version: str = SCHEMA_VERSION
    last_updated: str = field(default_factory=utc_now_iso)
    documents: List[CatalogEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "lastUpdated": self.last_updated,
            "documents": [entry.to_dict() for entry in self.documents],
        }

    @classmethod
    def from_dict(cls, data: Any) -> "CatalogIndex":
        data = _expect_object(data, "catalog")
        documents = _expect(data, "documents", list)
        entries = [CatalogEntry.from_dict(item) for item in documents]
        seen: set[str] = set()
        for entry in entries:
            if entry.id in seen:
                raise ValueError(f"duplicate catalog entry '{entry.id}'")
            seen.add(entry.id)
        return cls(
            version=_expect(data, "version", str),
            last_updated=_expect(data, "lastUpdated", str),
            documents=entries,
        )


@dataclass(slots=True)
class AppConfig:
    """User preferences: list ordering and recently opened documents."""

    version: str = SCHEMA_VERSION
    sort_by: str = "lastAccessed"
    sort_direction: str = "desc"
    last_opened_document_id: Optional[str] = None
    recent_documents: List[str] = field(default_factory=list)

    def add_recent(self, document_id: str) -> None:
        """Move ``document_id`` to the front of the recents, keeping at most five."""
        recents = [item for item in self.recent_documents if item != document_id]
        recents.insert(0, document_id)
        self.recent_documents = recents[:MAX_RECENT_DOCUMENTS]

    def forget(self, document_id: str) -> bool:
        """Drop every reference to a deleted document. Returns True if anything changed."""
        changed = False
        if self.last_opened_document_id == document_id:
            self.last_opened_document_id = None
            changed = True
        if document_id in self.recent_documents:
            self.recent_documents = [item for item in self.recent_documents if item != document_id]
            changed = True
        return changed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "sortBy": self.sort_by,
            "sortDirection": self.sort_direction,
            "lastOpenedDocumentId": self.last_opened_document_id,
            "recentDocuments": list(self.recent_documents),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "AppConfig":
        data = _expect_object(data, "config")
        sort_by = _expect(data, "sortBy", str)
        if sort_by not in SORT_FIELDS:
            raise ValueError(f"unsupported sortBy '{sort_by}'")
        sort_direction = _expect(data, "sortDirection", str)
        if sort_direction not in SORT_DIRECTIONS:
            raise ValueError(f"unsupported sortDirection '{sort_direction}'")
        last_opened = data.get("lastOpenedDocumentId")
        if last_opened is not None and not isinstance(last_opened, str):
            raise ValueError("field 'lastOpenedDocumentId' must be a string or null")
        recents = _expect(data, "recentDocuments", list)
        if not all(isinstance(item, str) for item in recents):
            raise ValueError("field 'recentDocuments' must hold strings")
        return cls(
            version=_expect(data, "version", str),
            sort_by=sort_by,
            sort_direction=sort_direction,
            last_opened_document_id=last_opened,
            recent_documents=list(recents)[:MAX_RECENT_DOCUMENTS],
        )
