"""User preferences record (``config.json``).

``save`` always overwrites the whole record. The helpers below it are the
load/mutate/save cycles callers need, run under the config lock.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from musicsheet.errors import Corrupt, InvalidMetadata, IOFailure
from musicsheet.models import SORT_DIRECTIONS, SORT_FIELDS, AppConfig
from musicsheet.storage.locking import DEFAULT_LOCK_TIMEOUT, FileLock
from musicsheet.storage.paths import PathResolver
from musicsheet.utils.files import atomic_write_json, read_json

LOGGER = logging.getLogger(__name__)


class ConfigStore:
    def __init__(self, paths: PathResolver, *, lock_timeout: float = DEFAULT_LOCK_TIMEOUT) -> None:
        self.path = paths.config_path()
        self._lock = FileLock(self.path, timeout=lock_timeout)

    def load(self) -> AppConfig:
        """Return the stored preferences, writing the defaults on first use."""
        config = self._read()
        if config is not None:
            return config
        with self._lock.hold():
            config = self._read()
            if config is None:
                config = AppConfig()
                self._write(config)
        return config

    def save(self, config: AppConfig) -> AppConfig:
        with self._lock.hold():
            self._write(config)
        return config

    def update(self, mutate: Callable[[AppConfig], Optional[bool]]) -> AppConfig:
        """Apply *mutate* to the stored record under the lock and save it.

        *mutate* may return False to signal that nothing changed.
        """
        with self._lock.hold():
            config = self._read() or AppConfig()
            if mutate(config) is not False:
                self._write(config)
        return config

    def add_recent(self, document_id: str) -> AppConfig:
        return self.update(lambda config: config.add_recent(document_id))

    def record_opened(self, document_id: str) -> AppConfig:
        """Mark *document_id* as last opened and push it onto the recents."""

        def apply(config: AppConfig) -> None:
            config.last_opened_document_id = document_id
            config.add_recent(document_id)

        return self.update(apply)

    def set_sort(self, sort_by: str, sort_direction: str) -> AppConfig:
        if sort_by not in SORT_FIELDS:
            raise InvalidMetadata(f"Cannot sort by '{sort_by}'; use one of {', '.join(SORT_FIELDS)}.")
        if sort_direction not in SORT_DIRECTIONS:
            raise InvalidMetadata(f"Sort direction must be 'asc' or 'desc', not '{sort_direction}'.")

        def apply(config: AppConfig) -> None:
            config.sort_by = sort_by
            config.sort_direction = sort_direction

        return self.update(apply)

    def forget(self, document_id: str) -> bool:
        """Drop references to a deleted document. Never creates the file."""
        if not self.path.exists():
            return False
        with self._lock.hold():
            config = self._read()
            if config is None or not config.forget(document_id):
                return False
            self._write(config)
        LOGGER.debug("Removed %s from preferences", document_id)
        return True

    def _read(self) -> Optional[AppConfig]:
        try:
            data = read_json(self.path)
        except FileNotFoundError:
            return None
        except ValueError as exc:
            raise Corrupt(self.path, f"invalid JSON ({exc})") from exc
        except OSError as exc:
            raise IOFailure(self.path, "read", str(exc)) from exc
        try:
            return AppConfig.from_dict(data)
        except ValueError as exc:
            raise Corrupt(self.path, str(exc)) from exc

    def _write(self, config: AppConfig) -> None:
        try:
            atomic_write_json(self.path, config.to_dict())
        except OSError as exc:
            raise IOFailure(self.path, "write", str(exc)) from exc
