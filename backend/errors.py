"""Storage exceptions."""

from __future__ import annotations

from typing import Optional


class StorageError(Exception):
    """Base class for errors raised by a storage backend on purpose."""


class ConflictError(StorageError):
    """A create would break a uniqueness rule (username or email)."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field
