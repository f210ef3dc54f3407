"""Utility helpers for working with files."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Iterable, Iterator


def iter_pdf_paths(inputs: Iterable[Path]) -> Iterator[Path]:
    """Yield PDF paths from input paths, descending into directories."""
    for item in inputs:
        if item.is_dir():
            yield from iter_pdf_paths(
                sorted(child for child in item.rglob("*") if child.suffix.lower() == ".pdf")
            )
        elif item.is_file() and item.suffix.lower() == ".pdf":
            yield item


def _write_temp(path: Path, payload: bytes) -> Path:
    """Write *payload* to a fsynced temp file in *path*'s directory."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    return tmp


def atomic_write_bytes(path: Path, payload: bytes) -> None:
    """Write *payload* to a temp file beside *path*, then rename it into place.

    Readers see either the old content or the new one, never a torn write.
    """
    tmp = _write_temp(path, payload)
    try:
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


def atomic_create_bytes(path: Path, payload: bytes) -> None:
    """Publish *payload* at *path* only if nothing is there yet.

    The temp file is hard-linked into place, so concurrent creators race on
    the link and every loser gets ``FileExistsError``.
    """
    tmp = _write_temp(path, payload)
    try:
        os.link(tmp, path)
    finally:
        tmp.unlink(missing_ok=True)


def _encode_json(data: Any) -> bytes:
    return (json.dumps(data, indent=2, ensure_ascii=False) + "\n").encode("utf-8")


def atomic_write_json(path: Path, data: Any) -> None:
    atomic_write_bytes(path, _encode_json(data))


def atomic_create_json(path: Path, data: Any) -> None:
    atomic_create_bytes(path, _encode_json(data))


def read_json(path: Path) -> Any:
    """Parse JSON from *path*. Raises ``FileNotFoundError`` or ``ValueError``."""
    return json.loads(path.read_text(encoding="utf-8"))
