"""On-disk layout of a MusicSheet library.

Layout::

  <root>/documents/<id>/score.pdf        raw uploaded file
  <root>/documents/<id>/metadata.json    DocumentRecord
  <root>/documents/<id>/thumbnail.png    preview (best-effort)
  <root>/index.json                      catalog
  <root>/config.json                     user preferences

Every document lives in its own directory, so distinct identifiers never
share a file. Only ``ensure_structure`` touches the filesystem.
"""

from __future__ import annotations

import re
import uuid
from pathlib import Path

DOCUMENTS_DIR = "documents"
PDF_FILE = "score.pdf"
RECORD_FILE = "metadata.json"
THUMBNAIL_FILE = "thumbnail.png"
CATALOG_FILE = "index.json"
CONFIG_FILE = "config.json"

_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,127}$")


def new_document_id() -> str:
    """Return a fresh opaque identifier (UUIDv4 string)."""
    return str(uuid.uuid4())


def is_well_formed_id(document_id: str) -> bool:
    """True when ``document_id`` is a single safe path component."""
    return isinstance(document_id, str) and bool(_ID_PATTERN.match(document_id))


class PathResolver:
    """Maps document identifiers to their files under a storage root."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    @property
    def documents_dir(self) -> Path:
        return self.root / DOCUMENTS_DIR

    def document_root(self, document_id: str) -> Path:
        return self.documents_dir / document_id

    def pdf_path(self, document_id: str) -> Path:
        return self.document_root(document_id) / PDF_FILE

    def record_path(self, document_id: str) -> Path:
        return self.document_root(document_id) / RECORD_FILE

    def thumbnail_path(self, document_id: str) -> Path:
        return self.document_root(document_id) / THUMBNAIL_FILE

    def catalog_path(self) -> Path:
        return self.root / CATALOG_FILE

    def config_path(self) -> Path:
        return self.root / CONFIG_FILE

    def ensure_structure(self) -> None:
        """Create the root and documents directories if they are missing."""
        self.documents_dir.mkdir(parents=True, exist_ok=True)
