"""Text helpers for titles and search terms."""

from __future__ import annotations

from pathlib import PurePath
from typing import List

DEFAULT_UPLOAD_NAME = "document.pdf"


def title_from_filename(file_name: str) -> str:
    """Derive a display title from an uploaded file name.

    Directory components and the final extension are dropped; a name made
    only of an extension falls back to the name itself.
    """
    name = PurePath(file_name.replace("\\", "/")).name.strip()
    if not name:
        return PurePath(DEFAULT_UPLOAD_NAME).stem
    return normalize_whitespace(PurePath(name).stem) or name


def split_terms(text: str) -> List[str]:
    """Lower-case *text* and split it on whitespace, dropping empty terms."""
    return text.lower().split()


def normalize_whitespace(text: str) -> str:
    """Collapse runs of whitespace and trim the ends."""
    return " ".join(text.split())
