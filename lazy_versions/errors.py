"""Exception hierarchy for lazy-versions.

Each layer raises its own error type so callers can decide whether to
retry, abort, or report. Messages always name the offending path or value.
"""

from __future__ import annotations


class LazyVersionsError(Exception):
    """Base exception for all lazy-versions failures."""


class FormatError(LazyVersionsError, ValueError):
    """Raised for malformed version strings or identifiers."""


class InvalidChangeType(LazyVersionsError, ValueError):
    """Raised when a bump is requested with an unknown change type."""


class LockError(LazyVersionsError):
    """Raised when an advisory file lock cannot be acquired or released."""


class StorageIOError(LazyVersionsError):
    """Raised when reading, writing, or renaming a persisted file fails."""


class DataError(LazyVersionsError):
    """Raised when persisted content cannot be parsed."""


class ConfigError(LazyVersionsError):
    """Raised for an invalid [tool.lazy-versions] table."""


class PrereleaseError(LazyVersionsError):
    """Raised for an illegal pre-release progression."""
