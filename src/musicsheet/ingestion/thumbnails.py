"""Thumbnail rendering for uploaded scores.

Uses PyMuPDF (fitz) to rasterise the first page. Background jobs run on a
small thread pool; their outcome is only ever reported through the log.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path

import fitz  # PyMuPDF

from musicsheet.utils.files import atomic_write_bytes

LOGGER = logging.getLogger(__name__)

DEFAULT_SIZE = 400


class ThumbnailGenerator:
    """Renders PNG previews, synchronously or on a bounded worker pool."""

    def __init__(self, *, size: int = DEFAULT_SIZE, max_workers: int = 2) -> None:
        self.size = size
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, max_workers), thread_name_prefix="thumbnail"
        )

    def render(self, pdf_path: Path, output_path: Path) -> Path:
        """Render the first page of *pdf_path* so its longest side is ``size`` pixels."""
        doc = fitz.open(pdf_path)
        try:
            if len(doc) == 0:
                raise ValueError(f"{pdf_path} has no pages")
            page = doc[0]
            longest = max(page.rect.width, page.rect.height) or 1
            zoom = self.size / longest
            pixmap = page.get_pixmap(matrix=fitz.Matrix(zoom, zoom), alpha=False)
            atomic_write_bytes(Path(output_path), pixmap.tobytes("png"))
        finally:
            doc.close()
        LOGGER.debug("Rendered thumbnail %s", output_path)
        return Path(output_path)

    def try_render(self, pdf_path: Path, output_path: Path) -> bool:
        """Best-effort ``render``: failures are logged and reported as False."""
        try:
            self.render(pdf_path, output_path)
        except Exception as exc:
            LOGGER.warning("Thumbnail generation failed for %s: %s", pdf_path, exc)
            return False
        return True

    def submit(self, pdf_path: Path, output_path: Path) -> Future:
        """Queue a background render. The future resolves to ``try_render``'s result."""
        return self._executor.submit(self.try_render, pdf_path, output_path)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
