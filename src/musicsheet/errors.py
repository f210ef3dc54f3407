"""Exception hierarchy for the MusicSheet library.

Every message says what happened and, where there is one, what to do next,
so the CLI and web layers can show it to the user unchanged.
"""

from __future__ import annotations

from pathlib import Path
from typing import Sequence


class LibraryError(Exception):
    """Base class for all library errors."""


class NotFound(LibraryError):
    """A document, catalog entry or file is absent when it is required."""

    def __init__(self, kind: str, key: str):
        super().__init__(f"No {kind} found for '{key}'.")
        self.kind = kind
        self.key = key


class AlreadyExists(LibraryError):
    """A metadata record already exists for the identifier."""

    def __init__(self, document_id: str):
        super().__init__(
            f"A document with id '{document_id}' already exists. "
            f"Use edit to change it, or upload with a fresh id."
        )
        self.document_id = document_id


class Corrupt(LibraryError):
    """Stored bytes could not be parsed into a valid record."""

    def __init__(self, path: Path | str, reason: str):
        super().__init__(
            f"Stored data at '{path}' is corrupt: {reason}. "
            f"It was left untouched; fix or remove the file by hand."
        )
        self.path = Path(path)
        self.reason = reason


class IOFailure(LibraryError):
    """An underlying read, write or delete failed for environmental reasons."""

    def __init__(self, path: Path | str, operation: str, detail: str = ""):
        suffix = f": {detail}" if detail else ""
        super().__init__(f"Could not {operation} '{path}'{suffix}.")
        self.path = Path(path)
        self.operation = operation


class LockTimeout(IOFailure):
    """A file lock could not be acquired within the timeout."""

    def __init__(self, path: Path | str, timeout: float):
        super().__init__(path, "lock", f"still held by another writer after {timeout:.1f}s")
        self.timeout = timeout


class InvalidMetadata(LibraryError):
    """A supplied field is unknown, has the wrong type, or an id is malformed."""


class PartialFailure(LibraryError):
    """A two-step operation completed some steps but not all of them.

    ``failed_step`` names the step that failed so that a caller can retry it
    alone (catalog steps are idempotent, see ``DocumentStore.sync_entry``).
    """

    def __init__(
        self,
        document_id: str,
        failed_step: str,
        completed_steps: Sequence[str],
        detail: str = "",
    ):
        done = ", ".join(completed_steps) or "nothing"
        suffix = f" ({detail})" if detail else ""
        super().__init__(
            f"Document '{document_id}': step '{failed_step}' failed after {done} "
            f"completed{suffix}. Run sync or reconcile to bring the catalog back in line."
        )
        self.document_id = document_id
        self.failed_step = failed_step
        self.completed_steps = tuple(completed_steps)
