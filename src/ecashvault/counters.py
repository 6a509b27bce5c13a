"""Per-keyset derivation counter store.

Maps keyset id to the next unused derivation index. Values only ever
grow: ``reserve()`` hands out disjoint ranges and ``advance()`` ignores
requests to move backwards. Every update is a read-modify-write of the
whole file under a cross-process lock.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from ecashvault.constants import DEFAULT_LOCK_POLL_SECS, DEFAULT_LOCK_TIMEOUT_SECS
from ecashvault.errors import MalformedStore
from ecashvault.lockfile import with_lock
from ecashvault.storage import atomic_write_json, preserve_corrupt, read_json

logger = logging.getLogger(__name__)


class CounterStore:
    """JSON file of ``{keyset_id: next_index}``."""

    def __init__(
        self,
        path: str | Path,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT_SECS,
        lock_poll: float = DEFAULT_LOCK_POLL_SECS,
    ) -> None:
        self.path = Path(path)
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self._lock_timeout = lock_timeout
        self._lock_poll = lock_poll

    # -- reading ------------------------------------------------------------

    def _read(self) -> tuple[dict[str, int], bool]:
        """Return (counters, was_corrupt)."""
        try:
            raw = read_json(self.path)
        except MalformedStore as e:
            logger.warning("%s; treating counters as empty.", e)
            return {}, True
        if raw is None:
            return {}, False
        return _clean_counters(raw, self.path)

    def load(self) -> dict[str, int]:
        """Current counters. A missing file is an empty store."""
        counters, _ = self._read()
        return counters

    def get(self, keyset_id: str) -> int:
        return self.load().get(keyset_id, 0)

    # -- mutations ----------------------------------------------------------

    def _write(self, counters: dict[str, int], was_corrupt: bool) -> None:
        if was_corrupt:
            preserve_corrupt(self.path)
        atomic_write_json(self.path, dict(sorted(counters.items())))

    def reserve(self, keyset_id: str, count: int) -> range:
        """Claim ``count`` consecutive indices for ``keyset_id``.

        Concurrent callers (in any process) always get disjoint ranges.
        """
        if count <= 0:
            raise ValueError(f"count must be positive, got {count}")
        with with_lock(self.lock_path, self._lock_timeout, self._lock_poll):
            counters, was_corrupt = self._read()
            start = counters.get(keyset_id, 0)
            counters[keyset_id] = start + count
            self._write(counters, was_corrupt)
        logger.debug("Reserved indices [%d, %d) for keyset %s.", start, start + count, keyset_id)
        return range(start, start + count)

    def advance(self, keyset_id: str, candidate: int) -> int:
        """Raise the counter to ``candidate`` if it is ahead. Returns the stored value."""
        if candidate < 0:
            raise ValueError(f"counter value must be non-negative, got {candidate}")
        with with_lock(self.lock_path, self._lock_timeout, self._lock_poll):
            counters, was_corrupt = self._read()
            current = counters.get(keyset_id, 0)
            if candidate <= current and keyset_id in counters:
                # Out-of-order or duplicate notification.
                logger.debug(
                    "Ignoring counter rewind for keyset %s (%d <= %d).",
                    keyset_id, candidate, current,
                )
                return current
            counters[keyset_id] = candidate
            self._write(counters, was_corrupt)
        return candidate


def _clean_counters(raw: dict[str, Any], path: Path) -> tuple[dict[str, int], bool]:
    """Return (counters, dropped_any).

    Whole-number floats and decimal strings are read as ints. Anything
    else is dropped, and the caller backs the file up before rewriting it.
    """
    counters: dict[str, int] = {}
    dropped = False
    for keyset_id, value in raw.items():
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        elif isinstance(value, str) and value.isascii() and value.isdigit():
            value = int(value)
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            logger.warning(
                "Dropping invalid counter %r=%r in %s.", keyset_id, value, path,
            )
            dropped = True
            continue
        counters[keyset_id] = value
    return counters, dropped
