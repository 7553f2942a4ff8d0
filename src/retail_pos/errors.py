"""Exception taxonomy raised by the retail POS core."""

from __future__ import annotations


class POSError(Exception):
    """Base class for every domain error raised by the core."""


class ValidationError(POSError, ValueError):
    """Raised when caller input is malformed; nothing is attempted."""


class NotFoundError(POSError, LookupError):
    """Raised when a referenced product, customer, order or purchase is unknown."""


class ConflictError(POSError):
    """Raised on illegal state transitions and uniqueness or reference violations."""


class StorageError(POSError):
    """Raised when the backing workbook cannot be read or written."""


__all__ = [
    "POSError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "StorageError",
]
