"""Exception types raised by the ledger core."""

from __future__ import annotations

from typing import Any


class BudgetwiseError(Exception):
    """Base class for ledger errors."""


class SchemaMismatchError(BudgetwiseError):
    """Import payload was produced by an incompatible schema version."""

    code = "SCHEMA_MISMATCH"

    def __init__(self, expected: int, received: Any):
        self.expected = expected
        self.received = received
        super().__init__(
            f"Unsupported schema version: expected {expected}, got {received!r}"
        )


class ImportFileError(BudgetwiseError):
    """An import file could not be read or is not valid JSON."""


class StoreFileCorruptError(BudgetwiseError):
    """A store file exists but cannot be decoded.

    ``backup_path`` points at the copy of the damaged file kept for recovery.
    """

    def __init__(self, path: Any, backup_path: Any):
        self.path = path
        self.backup_path = backup_path
        super().__init__(f"Store file {path} is damaged; a copy was kept at {backup_path}")
