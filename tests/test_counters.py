"""Tests for the keyset derivation counter store."""

import json
import multiprocessing
import os
import stat
import sys

import pytest

from ecashvault.counters import CounterStore
from ecashvault.errors import LockTimeout


@pytest.fixture()
def store(tmp_path) -> CounterStore:
    return CounterStore(tmp_path / "counters.json", lock_timeout=2)


def _reserve_worker(path: str, keyset_id: str, count: int, queue) -> None:
    r = CounterStore(path, lock_timeout=10).reserve(keyset_id, count)
    queue.put((r.start, r.stop))


# ---------------------------------------------------------------------------
# load
# ---------------------------------------------------------------------------


class TestLoad:
    def test_missing_file_is_empty(self, store) -> None:
        assert store.load() == {}
        assert not store.path.exists()

    def test_reads_existing_file(self, store) -> None:
        store.path.write_text(json.dumps({"009a1f293253e41e": 42}))
        assert store.load() == {"009a1f293253e41e": 42}
        assert store.get("009a1f293253e41e") == 42

    def test_get_unknown_keyset_is_zero(self, store) -> None:
        assert store.get("unknown") == 0

    def test_corrupt_file_is_empty(self, store) -> None:
        store.path.write_text("{not json")
        assert store.load() == {}

    def test_non_object_is_empty(self, store) -> None:
        store.path.write_text("[1, 2, 3]")
        assert store.load() == {}

    def test_invalid_entries_dropped(self, store) -> None:
        store.path.write_text(json.dumps({"a": 5, "b": "x7", "c": -1, "d": True, "e": 3.5}))
        assert store.load() == {"a": 5}

    def test_whole_number_values_from_other_writers(self, store) -> None:
        store.path.write_text(json.dumps({"a": 40.0, "b": "7"}))
        assert store.load() == {"a": 40, "b": 7}

    def test_whole_float_counter_does_not_restart(self, store) -> None:
        store.path.write_text(json.dumps({"ks": 40.0}))
        assert store.reserve("ks", 5) == range(40, 45)
        assert json.loads(store.path.read_text()) == {"ks": 45}

    def test_dropped_entry_preserved_on_write(self, store) -> None:
        store.path.write_text(json.dumps({"ks": {"next": 40}, "other": 3}))
        store.reserve("other", 1)
        backups = list(store.path.parent.glob("counters.json.corrupt-*"))
        assert len(backups) == 1
        assert json.loads(backups[0].read_text())["ks"] == {"next": 40}
        assert store.load() == {"other": 4}


# ---------------------------------------------------------------------------
# reserve
# ---------------------------------------------------------------------------


class TestReserve:
    def test_first_reservation_starts_at_zero(self, store) -> None:
        r = store.reserve("ks1", 10)
        assert r == range(0, 10)
        assert store.load() == {"ks1": 10}

    def test_consecutive_reservations(self, store) -> None:
        store.reserve("ks1", 10)
        assert store.reserve("ks1", 5) == range(10, 15)
        assert store.get("ks1") == 15

    def test_keysets_are_independent(self, store) -> None:
        store.reserve("ks1", 10)
        assert store.reserve("ks2", 3) == range(0, 3)
        assert store.load() == {"ks1": 10, "ks2": 3}

    def test_rejects_non_positive_count(self, store) -> None:
        with pytest.raises(ValueError, match="positive"):
            store.reserve("ks1", 0)
        with pytest.raises(ValueError):
            store.reserve("ks1", -3)
        assert not store.path.exists()

    def test_lock_released_after_reserve(self, store) -> None:
        store.reserve("ks1", 1)
        assert not store.lock_path.exists()

    def test_times_out_when_lock_held(self, tmp_path) -> None:
        store = CounterStore(tmp_path / "counters.json", lock_timeout=0.1, lock_poll=0.01)
        store.lock_path.write_text(str(os.getpid()))
        with pytest.raises(LockTimeout):
            store.reserve("ks1", 1)
        assert not store.path.exists()

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_file_is_owner_only(self, store) -> None:
        store.reserve("ks1", 1)
        assert stat.S_IMODE(store.path.stat().st_mode) == 0o600

    def test_corrupt_file_preserved_on_write(self, store) -> None:
        store.path.write_text("{garbage")
        assert store.reserve("ks1", 4) == range(0, 4)
        backups = list(store.path.parent.glob("counters.json.corrupt-*"))
        assert len(backups) == 1
        assert backups[0].read_text() == "{garbage"
        assert store.load() == {"ks1": 4}

    @pytest.mark.skipif(
        "fork" not in multiprocessing.get_all_start_methods(), reason="needs fork",
    )
    def test_concurrent_processes_get_disjoint_ranges(self, tmp_path) -> None:
        path = str(tmp_path / "counters.json")
        ctx = multiprocessing.get_context("fork")
        queue = ctx.Queue()
        procs = [
            ctx.Process(target=_reserve_worker, args=(path, "ks1", 5, queue))
            for _ in range(6)
        ]
        for p in procs:
            p.start()
        for p in procs:
            p.join(timeout=30)
            assert p.exitcode == 0
        ranges = sorted(queue.get(timeout=5) for _ in procs)
        assert ranges == [(i * 5, i * 5 + 5) for i in range(6)]
        assert CounterStore(path).get("ks1") == 30


# ---------------------------------------------------------------------------
# advance
# ---------------------------------------------------------------------------


class TestAdvance:
    def test_advance_from_empty(self, store) -> None:
        assert store.advance("ks1", 7) == 7
        assert store.get("ks1") == 7

    def test_advance_forward(self, store) -> None:
        store.advance("ks1", 3)
        store.advance("ks1", 9)
        assert store.get("ks1") == 9

    def test_lower_value_is_noop(self, store) -> None:
        store.advance("ks1", 9)
        assert store.advance("ks1", 3) == 9
        assert store.get("ks1") == 9

    @pytest.mark.parametrize("v1,v2", [(4, 11), (11, 4), (6, 6)])
    def test_order_independent_max(self, store, v1, v2) -> None:
        store.advance("ks1", v1)
        store.advance("ks1", v2)
        assert store.get("ks1") == max(v1, v2)

    def test_advance_after_reserve(self, store) -> None:
        store.reserve("ks1", 10)
        store.advance("ks1", 5)
        assert store.get("ks1") == 10
        store.advance("ks1", 12)
        assert store.reserve("ks1", 1) == range(12, 13)

    def test_rejects_negative(self, store) -> None:
        with pytest.raises(ValueError, match="non-negative"):
            store.advance("ks1", -1)

    def test_rewind_does_not_rewrite_file(self, store) -> None:
        store.advance("ks1", 9)
        mtime = store.path.stat().st_mtime_ns
        store.advance("ks1", 2)
        assert store.path.stat().st_mtime_ns == mtime
