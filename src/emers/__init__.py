"""EMERS package root: market event detection, scoring and storage."""

from emers.exceptions import CorruptDatabaseError, EmersError  # noqa: F401

__version__ = "0.1.0"

__all__ = ["__version__", "EmersError", "CorruptDatabaseError"]
