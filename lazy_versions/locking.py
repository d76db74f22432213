"""Advisory file locks and atomic writes.

Every persisted file ``<path>`` is guarded by a sidecar ``<path>.lock``.
The sidecar exists only for ``fcntl.flock``; it carries no data, so the
guarded file itself can be replaced with ``os.replace`` while the lock is
held. Each call opens its own descriptor, so threads of one process
contend exactly like separate processes do.
"""

from __future__ import annotations

import fcntl
import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from loguru import logger

from .errors import DataError, LockError, StorageIOError

LOCK_SUFFIX = ".lock"


def lock_path_for(path: Path) -> Path:
    """Return the sidecar lock path for a resource."""
    return path.with_name(path.name + LOCK_SUFFIX)


@contextmanager
def _flocked(path: Path, operation: int, mode: str) -> Iterator[None]:
    lock_path = lock_path_for(path)
    try:
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        handle = lock_path.open("a+", encoding="utf-8")
    except OSError as exc:
        raise LockError(f"cannot open lock file {lock_path}: {exc}") from exc

    with handle:
        try:
            # Blocks until granted; callers wanting a deadline must add one.
            fcntl.flock(handle.fileno(), operation)
        except OSError as exc:
            raise LockError(
                f"failed to acquire {mode} lock on {lock_path}: {exc}"
            ) from exc
        logger.debug("Acquired {} lock on {}", mode, lock_path)
        try:
            yield
        finally:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
            except OSError as exc:
                raise LockError(
                    f"failed to release {mode} lock on {lock_path}: {exc}"
                ) from exc
            logger.debug("Released {} lock on {}", mode, lock_path)


def shared_lock(path: Path):
    """Hold a shared (read) lock on ``path``'s sidecar for the block.

    Shared holders run concurrently with each other, never with an
    exclusive holder.
    """
    return _flocked(Path(path), fcntl.LOCK_SH, "shared")


def exclusive_lock(path: Path):
    """Hold an exclusive (write) lock on ``path``'s sidecar for the block."""
    return _flocked(Path(path), fcntl.LOCK_EX, "exclusive")


def atomic_write_text(path: Path, content: str) -> None:
    """Write ``content`` to ``path`` atomically.

    Writes a temporary sibling in the same directory (so the rename stays
    on one filesystem), fsyncs it, then renames it over the target. On any
    failure the temporary file is removed and the target is untouched.

    Raises:
        StorageIOError: If the temporary file cannot be written or renamed.
    """
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp"
        )
    except OSError as exc:
        raise StorageIOError(f"failed to create temp file for {path}: {exc}") from exc

    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp_handle:
            tmp_handle.write(content)
            tmp_handle.flush()
            os.fsync(tmp_handle.fileno())
        os.replace(tmp_path, path)
    except BaseException as exc:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass
        if isinstance(exc, OSError):
            raise StorageIOError(f"failed to write {path}: {exc}") from exc
        raise
    logger.debug("Wrote {} ({} bytes)", path, len(content))


def read_text(path: Path) -> str:
    """Read a UTF-8 file, mapping filesystem failures to StorageIOError."""
    try:
        return Path(path).read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise StorageIOError(f"file not found: {path}") from exc
    except OSError as exc:
        raise StorageIOError(f"failed to read {path}: {exc}") from exc
    except UnicodeDecodeError as exc:
        raise DataError(f"{path} contains invalid UTF-8 data") from exc
