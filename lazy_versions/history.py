"""Append-only release history ledger.

The ledger is a JSON array of HistoryEntry objects, oldest append first.
Entries are never edited or reordered on disk; the only write is
``append_to_history``, which rewrites the whole array atomically under
an exclusive lock. Everything else in this module reads.

The filter and sort helpers are pure: they return new lists and never
mutate their input, so they compose freely:

    entries = read_history(path)
    notes = filter_by_version(filter_by_package(entries, "core"), "1.4.0")
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import TypeAdapter, ValidationError

from .errors import DataError, StorageIOError
from .locking import atomic_write_text, exclusive_lock, read_text, shared_lock
from .models import HistoryEntry

_ENTRIES = TypeAdapter(list[HistoryEntry])


def init_history(path: Path) -> bool:
    """Create an empty ledger at ``path`` unless one already exists.

    This is the setup step ``append_to_history`` relies on.

    Returns:
        True if a new ledger was created, False if one was already there.
    """
    path = Path(path)
    with exclusive_lock(path):
        if path.exists():
            return False
        atomic_write_text(path, "[]\n")
    logger.info("Initialized history ledger {}", path)
    return True


def _parse_entries(text: str, path: Path) -> list[HistoryEntry]:
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as exc:
        raise DataError(f"failed to parse history {path}: {exc}") from exc
    if not isinstance(raw, list):
        raise DataError(f"history {path} must be a JSON array")
    try:
        return _ENTRIES.validate_python(raw)
    except ValidationError as exc:
        raise DataError(f"invalid history entry in {path}: {exc}") from exc


def _dump_entries(entries: Sequence[HistoryEntry]) -> str:
    payload = _ENTRIES.dump_python(list(entries), mode="json", by_alias=True)
    return json.dumps(payload, indent=2) + "\n"


def read_history(path: Path) -> list[HistoryEntry]:
    """Read every ledger entry under a shared lock.

    Raises:
        StorageIOError: If the ledger does not exist or cannot be read.
        DataError: If the ledger is not a valid JSON array of entries.
    """
    path = Path(path)
    if not path.exists():
        raise StorageIOError(f"history file not found: {path}")
    with shared_lock(path):
        text = read_text(path)
    return _parse_entries(text, path)


def append_to_history(path: Path, entries: Sequence[HistoryEntry]) -> None:
    """Append ``entries`` after all existing ledger entries.

    Does nothing, and takes no lock, when ``entries`` is empty. Otherwise
    the read, append, and write happen under one exclusive lock, so
    concurrent appenders are serialized and none are lost.

    Raises:
        StorageIOError: If the ledger is missing (see ``init_history``) or
            cannot be written.
        DataError: If the existing ledger does not parse.
    """
    if not entries:
        return

    path = Path(path)
    with exclusive_lock(path):
        existing = _parse_entries(read_text(path), path)
        atomic_write_text(path, _dump_entries([*existing, *entries]))
    logger.info(
        "Appended {} entr{} to {} ({} total)",
        len(entries),
        "y" if len(entries) == 1 else "ies",
        path,
        len(existing) + len(entries),
    )


def filter_by_package(
    entries: Sequence[HistoryEntry], package: str
) -> list[HistoryEntry]:
    """Entries for ``package``; all entries when ``package`` is empty."""
    if not package:
        return list(entries)
    return [e for e in entries if e.package == package]


def filter_by_version(
    entries: Sequence[HistoryEntry], version: str
) -> list[HistoryEntry]:
    """Entries recorded at exactly ``version``; all entries when empty."""
    if not version:
        return list(entries)
    return [e for e in entries if e.version == version]


def _metadata_matches(value: Any, expected: str) -> bool:
    if isinstance(value, list):
        return any(_metadata_matches(item, expected) for item in value)
    if isinstance(value, bool):
        return str(value).lower() == expected.lower()
    if isinstance(value, (str, int, float)):
        return str(value) == expected
    return False


def filter_consignments_by_metadata(
    entries: Sequence[HistoryEntry], key: str, value: str
) -> list[HistoryEntry]:
    """Keep only consignments whose ``metadata[key]`` matches ``value``.

    Scalars match on their string form (booleans case-insensitively);
    list values match when any item does. Entries left with no
    consignments are dropped. Input entries are copied, never modified.
    """
    filtered: list[HistoryEntry] = []
    for entry in entries:
        kept = [
            c
            for c in entry.consignments
            if key in c.metadata and _metadata_matches(c.metadata[key], value)
        ]
        if kept:
            filtered.append(entry.model_copy(update={"consignments": kept}))
    return filtered


def sort_by_timestamp(
    entries: Sequence[HistoryEntry], newest_first: bool = False
) -> list[HistoryEntry]:
    """Return entries sorted by timestamp; ties keep their ledger order."""
    return sorted(entries, key=lambda e: e.timestamp, reverse=newest_first)


def latest_entry(
    entries: Sequence[HistoryEntry], package: str | None = None
) -> HistoryEntry | None:
    """Newest entry overall, or for ``package`` when given.

    On equal timestamps the entry appended last wins.
    """
    candidates = filter_by_package(entries, package or "")
    if not candidates:
        return None
    _, newest = max(enumerate(candidates), key=lambda p: (p[1].timestamp, p[0]))
    return newest


def find_by_tag(entries: Sequence[HistoryEntry], tag: str) -> HistoryEntry | None:
    """The entry recorded with ``tag``, or None."""
    return next((e for e in entries if e.tag == tag), None)
