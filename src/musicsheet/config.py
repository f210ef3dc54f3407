"""Application configuration defaults."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path

ROOT_ENV_VAR = "MUSICSHEET_ROOT"


def _get_default_root() -> Path:
    """Get the default storage root based on environment and execution context."""
    override = os.environ.get(ROOT_ENV_VAR)
    if override:
        return Path(override).expanduser()

    user_root = Path.home() / "Documents" / "MusicSheet"

    # Frozen bundles always keep the library in the user's Documents folder
    if getattr(sys, "frozen", False):
        return user_root

    # When running from source, prefer a local data/ library if it exists
    local_root = Path("data/musicsheet")
    if local_root.exists():
        return local_root

    return user_root


@dataclass(slots=True)
class LibrarySettings:
    root: Path | None = None
    thumbnail_size: int = 400
    thumbnail_workers: int = 2
    lock_timeout: float = 10.0
    search_limit: int = 10

    def __post_init__(self) -> None:
        if self.root is None:
            self.root = _get_default_root()

    def resolve_root(self, base_dir: Path | None = None) -> Path:
        if self.root is None:
            self.root = _get_default_root()
        if Path(self.root).is_absolute() or base_dir is None:
            return Path(self.root)
        return base_dir / self.root
