"""Cross-process file lock with stale-holder detection.

A lock is a marker file created with ``O_CREAT | O_EXCL`` that records
the holder's pid. Waiters poll until the marker disappears or the
timeout elapses. A marker whose recorded process no longer exists is
stale and is reclaimed, so a crashed wallet process never wedges the
stores.

Reclaiming is not atomic. A waiter re-checks the marker identity just
before moving it aside, but if a new holder replaces the marker inside
that gap, the live marker is briefly absent until it is linked back. A
third process that polls in exactly that window can also acquire the
lock. The window only opens when a previous holder died while holding
the lock.
"""

from __future__ import annotations

import logging
import os
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

import psutil

from ecashvault.constants import (
    DEFAULT_LOCK_POLL_SECS,
    DEFAULT_LOCK_TIMEOUT_SECS,
    STALE_EMPTY_MARKER_SECS,
)
from ecashvault.errors import LockTimeout
from ecashvault.storage import ensure_private_dir

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LockHandle:
    """Proof of a held lock; pass to ``release()``."""

    path: Path
    holder_pid: int
    acquired_at: float


# ---------------------------------------------------------------------------
# Marker helpers
# ---------------------------------------------------------------------------


def _read_holder(path: Path) -> int | None:
    """Return the pid recorded in a marker, or None if unreadable/empty."""
    try:
        content = path.read_text(encoding="ascii").strip()
    except (OSError, UnicodeDecodeError):
        return None
    try:
        pid = int(content)
    except ValueError:
        return None
    return pid if pid > 0 else None


def _marker_age(path: Path) -> float | None:
    try:
        return time.time() - path.stat().st_mtime
    except OSError:
        return None


def _is_stale(path: Path, holder: int | None) -> bool:
    if holder is not None:
        return not psutil.pid_exists(holder)
    # The holder may be between create and write; only give up on it
    # once the marker has sat empty for a while.
    age = _marker_age(path)
    return age is not None and age > STALE_EMPTY_MARKER_SECS


def _marker_id(st: os.stat_result) -> tuple[int, int, int]:
    return st.st_dev, st.st_ino, st.st_mtime_ns


def _break_stale(path: Path, stale_id: tuple[int, int, int]) -> None:
    """Remove a stale marker without clobbering a fresh one.

    Only the marker file that was judged stale (same inode and mtime) is
    removed. It is renamed aside so only one waiter can claim it; if the
    renamed file is a different one (a new holder replaced it between
    our check and the rename) it is linked back into place.
    """
    try:
        if _marker_id(path.stat()) != stale_id:
            return
    except FileNotFoundError:
        return
    aside = path.with_name(f"{path.name}.stale.{os.getpid()}")
    try:
        os.replace(path, aside)
    except FileNotFoundError:
        return
    if _marker_id(aside.stat()) == stale_id:
        logger.warning("Removed stale lock %s.", path)
        aside.unlink(missing_ok=True)
        return
    try:
        os.link(aside, path)
    except FileExistsError:
        logger.warning("Lock %s was re-acquired while reclaiming a stale marker.", path)
    finally:
        aside.unlink(missing_ok=True)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def acquire(
    path: str | Path,
    timeout: float = DEFAULT_LOCK_TIMEOUT_SECS,
    poll_interval: float = DEFAULT_LOCK_POLL_SECS,
) -> LockHandle:
    """Create the marker at ``path``, waiting up to ``timeout`` seconds.

    Raises:
        LockTimeout: The marker stayed held by a live process.
    """
    marker = Path(path)
    ensure_private_dir(marker.parent)
    pid = os.getpid()
    deadline = time.monotonic() + timeout

    while True:
        try:
            fd = os.open(marker, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
        except FileExistsError:
            try:
                marker_id = _marker_id(marker.stat())
            except FileNotFoundError:
                continue
            holder = _read_holder(marker)
            if _is_stale(marker, holder):
                logger.warning("Lock %s is stale (holder pid %s).", marker, holder)
                _break_stale(marker, marker_id)
                continue
            if time.monotonic() >= deadline:
                raise LockTimeout(marker, timeout, holder)
            time.sleep(poll_interval)
            continue

        with os.fdopen(fd, "w", encoding="ascii") as f:
            f.write(str(pid))
        return LockHandle(path=marker, holder_pid=pid, acquired_at=time.time())


def release(handle: LockHandle) -> None:
    """Remove the marker. Releasing an already-released lock is a no-op."""
    try:
        handle.path.unlink()
    except FileNotFoundError:
        logger.debug("Lock %s already released.", handle.path)


@contextmanager
def with_lock(
    path: str | Path,
    timeout: float = DEFAULT_LOCK_TIMEOUT_SECS,
    poll_interval: float = DEFAULT_LOCK_POLL_SECS,
) -> Iterator[LockHandle]:
    """Hold the lock for the duration of the ``with`` block."""
    handle = acquire(path, timeout, poll_interval)
    try:
        yield handle
    finally:
        release(handle)


class FileLock:
    """Reusable lock bound to one marker path.

    >>> lock = FileLock(store_path.with_suffix(".lock"))
    >>> with lock:
    ...     rewrite_store()
    """

    def __init__(
        self,
        path: str | Path,
        timeout: float = DEFAULT_LOCK_TIMEOUT_SECS,
        poll_interval: float = DEFAULT_LOCK_POLL_SECS,
    ) -> None:
        self.path = Path(path)
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._handle: LockHandle | None = None

    @property
    def is_held(self) -> bool:
        return self._handle is not None

    def acquire(self) -> LockHandle:
        if self._handle is not None:
            raise RuntimeError(f"Lock {self.path} is already held by this object")
        self._handle = acquire(self.path, self.timeout, self.poll_interval)
        return self._handle

    def release(self) -> None:
        if self._handle is None:
            return
        release(self._handle)
        self._handle = None

    def __enter__(self) -> LockHandle:
        return self.acquire()

    def __exit__(self, *args: object) -> None:
        self.release()
