"""EMERS exception hierarchy.

All EMERS-specific exceptions derive from :class:`EmersError` so callers can
catch every pipeline error uniformly. Each error carries a short ``kind``
string and a ``context`` mapping so it can be routed to the logger as a
structured record.
"""

from __future__ import annotations

from typing import Any


class EmersError(Exception):
    """Base class for EMERS exceptions.

    :param message: Human-readable description.
    :param context: Extra structured fields describing the failure.
    """

    kind = "error"

    def __init__(self, message: str = "", **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = context

    def as_record(self) -> dict[str, Any]:
        """Return the error as a flat dict suitable for structured logging."""
        return {"kind": self.kind, "message": self.message, **self.context}


class ConfigError(EmersError):
    """Raised when configuration files or parameters are invalid."""

    kind = "config_error"


class DataSourceError(EmersError):
    """Raised when fetching from an upstream price or news source fails."""

    kind = "data_source_error"


class DataValidationError(EmersError):
    """Raised when input data fails validation checks."""

    kind = "data_validation_error"


class InvalidBarError(DataValidationError):
    """Raised when a bar violates the ordering or range invariants."""

    kind = "invalid_bar"


class ParseError(DataValidationError):
    """Raised when a date, symbol or record from outside the core is malformed."""

    kind = "parse_error"


class InsufficientDataError(EmersError):
    """Raised by strict indicator calls when the series is shorter than the period."""

    kind = "insufficient_data"


class StorageError(EmersError):
    """Raised when reading from or writing to the event database fails."""

    kind = "io_error"


class CorruptDatabaseError(StorageError):
    """Raised when neither the primary nor the backup database file is readable."""

    kind = "corrupt"


__all__ = [
    "EmersError",
    "ConfigError",
    "DataSourceError",
    "DataValidationError",
    "InvalidBarError",
    "ParseError",
    "InsufficientDataError",
    "StorageError",
    "CorruptDatabaseError",
]
