"""Tests for the ResponseCache module."""

from __future__ import annotations

import itertools
from pathlib import Path
from unittest.mock import MagicMock

import diskcache
import pytest

from optical.cache import CACHE_MAX_AGE, ResponseCache
from optical.exceptions import TransportError
from optical.models import CacheConfig

KEY = "https://optica.example.com/roles?role=%5Eweb%24"

# Larger than diskcache's inline limit, so the value lands in a .val file.
LARGE = b"x" * 200_000


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _counting_fetch():
    """A fetch function returning a distinct payload on every call."""
    counter = itertools.count(1)
    fn = MagicMock(side_effect=lambda: f"payload-{next(counter)}".encode())
    return fn


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def cache(tmp_path, clock):
    """Create a ResponseCache with the default window pointing at tmp_path."""
    c = ResponseCache(tmp_path, CacheConfig(), clock=clock)
    yield c
    c.close()


@pytest.fixture()
def disabled_cache(tmp_path):
    """Create a disabled ResponseCache."""
    c = ResponseCache(tmp_path, CacheConfig(enabled=False))
    yield c
    c.close()


# ------------------------------------------------------------------ #
# get_or_fetch
# ------------------------------------------------------------------ #


class TestGetOrFetch:
    def test_second_call_within_window_is_cached(self, cache: ResponseCache, clock: FakeClock) -> None:
        """fn runs once; both calls return the first payload."""
        fn = _counting_fetch()
        first = cache.get_or_fetch(KEY, fn)
        clock.advance(CACHE_MAX_AGE - 1)
        second = cache.get_or_fetch(KEY, fn)
        assert first == second == b"payload-1"
        assert fn.call_count == 1

    def test_refetch_after_window(self, cache: ResponseCache, clock: FakeClock) -> None:
        fn = _counting_fetch()
        assert cache.get_or_fetch(KEY, fn) == b"payload-1"
        clock.advance(CACHE_MAX_AGE + 1)
        assert cache.get_or_fetch(KEY, fn) == b"payload-2"
        assert fn.call_count == 2

    def test_exactly_max_age_is_still_fresh(self, cache: ResponseCache, clock: FakeClock) -> None:
        fn = _counting_fetch()
        cache.get_or_fetch(KEY, fn)
        clock.advance(CACHE_MAX_AGE)
        cache.get_or_fetch(KEY, fn)
        assert fn.call_count == 1

    def test_keys_are_independent(self, cache: ResponseCache) -> None:
        fn = _counting_fetch()
        assert cache.get_or_fetch(KEY, fn) == b"payload-1"
        assert cache.get_or_fetch(KEY + "&env=%5Eprod", fn) == b"payload-2"
        assert fn.call_count == 2

    def test_failure_is_not_cached_and_propagates(self, cache: ResponseCache) -> None:
        boom = TransportError("connection refused")

        def failing() -> bytes:
            raise boom

        with pytest.raises(TransportError) as exc_info:
            cache.get_or_fetch(KEY, failing)
        assert exc_info.value is boom
        assert cache.get(KEY) is None

    def test_interrupt_is_not_cached(self, cache: ResponseCache) -> None:
        def interrupted() -> bytes:
            raise KeyboardInterrupt

        with pytest.raises(KeyboardInterrupt):
            cache.get_or_fetch(KEY, interrupted)
        assert cache.stats()["size"] == 0

    def test_survives_reopen(self, tmp_path: Path, clock: FakeClock) -> None:
        """Entries persist across process restarts (new cache instance)."""
        with ResponseCache(tmp_path, clock=clock) as c:
            c.get_or_fetch(KEY, lambda: b"persisted")
        with ResponseCache(tmp_path, clock=clock) as c:
            fn = _counting_fetch()
            assert c.get_or_fetch(KEY, fn) == b"persisted"
            fn.assert_not_called()


# ------------------------------------------------------------------ #
# Staleness and corruption
# ------------------------------------------------------------------ #


class TestStaleness:
    def test_stale_entry_deleted_on_read(self, cache: ResponseCache, clock: FakeClock) -> None:
        cache.set(KEY, b"old")
        clock.advance(CACHE_MAX_AGE + 1)
        assert cache.get(KEY) is None
        assert cache.stats()["size"] == 0

    @pytest.mark.parametrize(
        "value, tag",
        [
            (b"untagged", None),
            (b"x", "yesterday"),
            ({"stored_at": 1_000_000.0, "payload": b"x"}, None),
            ({"payload": b"x"}, 1_000_000.0),
            ("not bytes", 1_000_000.0),
        ],
    )
    def test_malformed_entry_is_absent(self, cache: ResponseCache, value, tag) -> None:
        cache._cache.set(KEY, value, tag=tag)
        fn = _counting_fetch()
        assert cache.get_or_fetch(KEY, fn) == b"payload-1"
        assert fn.call_count == 1
        assert cache.get(KEY) == b"payload-1"

    def test_custom_max_age(self, tmp_path: Path, clock: FakeClock) -> None:
        with ResponseCache(tmp_path, CacheConfig(max_age_seconds=10), clock=clock) as c:
            c.set(KEY, b"x")
            clock.advance(11)
            assert c.get(KEY) is None


# ------------------------------------------------------------------ #
# purge_expired
# ------------------------------------------------------------------ #


class TestPurgeExpired:
    def test_empty_cache_is_noop(self, cache: ResponseCache) -> None:
        assert cache.purge_expired() == 0

    def test_removes_old_keeps_fresh(self, cache: ResponseCache, clock: FakeClock) -> None:
        """A synthetic old entry is purged while a fresh one survives."""
        clock.advance(-(CACHE_MAX_AGE + 60))
        cache.set("old", b"old")
        clock.advance(CACHE_MAX_AGE + 60)
        cache.set("new", b"new")

        assert cache.purge_expired() == 1
        assert cache.get("old") is None
        assert cache.get("new") == b"new"

    def test_removes_malformed_entries(self, cache: ResponseCache) -> None:
        cache._cache.set("junk", "untagged text")
        cache.set("good", b"good")
        assert cache.purge_expired() == 1
        assert cache.get("good") == b"good"

    def test_large_payloads_purged_by_timestamp(self, cache: ResponseCache, clock: FakeClock) -> None:
        """Bodies big enough to live in their own files are judged by their tag alone."""
        clock.advance(-(CACHE_MAX_AGE + 60))
        cache.set("old", LARGE)
        clock.advance(CACHE_MAX_AGE + 60)
        cache.set("new", LARGE)

        assert cache.purge_expired() == 1
        assert cache.get("new") == LARGE
        assert cache.stats()["size"] == 1


# ------------------------------------------------------------------ #
# Damaged value files
# ------------------------------------------------------------------ #


def _truncate_value_files(cache: ResponseCache, size: int = 100) -> int:
    """Cut every on-disk value file short, as an interrupted write would."""
    files = list(cache.directory.rglob("*.val"))
    for path in files:
        with path.open("r+b") as fh:
            fh.truncate(size)
    return len(files)


class TestDamagedValueFiles:
    def test_large_payload_is_stored_as_bytes(self, cache: ResponseCache) -> None:
        cache.set(KEY, LARGE)
        assert cache.get(KEY) == LARGE
        assert len(list(cache.directory.rglob("*.val"))) == 1

    def test_truncated_pickled_entry_is_refetched(self, cache: ResponseCache) -> None:
        cache._cache.set(KEY, {"stored_at": 1_000_000.0, "payload": LARGE})
        assert _truncate_value_files(cache) == 1

        assert cache.get(KEY) is None
        assert cache.get_or_fetch(KEY, lambda: b"fresh") == b"fresh"
        assert cache.get(KEY) == b"fresh"

    def test_truncated_pickled_entry_is_purged(self, cache: ResponseCache) -> None:
        cache._cache.set(KEY, {"stored_at": 1_000_000.0, "payload": LARGE})
        cache.set("good", b"good")
        _truncate_value_files(cache)

        assert cache.purge_expired() == 1
        assert cache.get("good") == b"good"
        assert cache.stats()["size"] == 1

    def test_missing_value_file_is_a_miss(self, cache: ResponseCache) -> None:
        cache.set(KEY, LARGE)
        for path in cache.directory.rglob("*.val"):
            path.unlink()

        assert cache.get_or_fetch(KEY, lambda: b"fresh") == b"fresh"
        assert cache.purge_expired() == 0


# ------------------------------------------------------------------ #
# Invalidate and clear
# ------------------------------------------------------------------ #


class TestInvalidateAndClear:
    def test_invalidate_removes_specific_entry(self, cache: ResponseCache) -> None:
        cache.set("a", b"a")
        cache.set("b", b"b")
        cache.invalidate("a")
        assert cache.get("a") is None
        assert cache.get("b") == b"b"

    def test_clear_all_removes_fresh_entries(self, cache: ResponseCache) -> None:
        cache.set("a", b"a")
        cache.set("b", b"b")
        cache.clear_all()
        assert cache.get("a") is None
        assert cache.get("b") is None
        assert cache.stats()["size"] == 0

    def test_invalidate_nonexistent_key_no_error(self, cache: ResponseCache) -> None:
        cache.invalidate("nope")


# ------------------------------------------------------------------ #
# Disabled cache and I/O failures
# ------------------------------------------------------------------ #


class TestDegraded:
    def test_disabled_always_fetches(self, disabled_cache: ResponseCache) -> None:
        fn = _counting_fetch()
        assert disabled_cache.get_or_fetch(KEY, fn) == b"payload-1"
        assert disabled_cache.get_or_fetch(KEY, fn) == b"payload-2"
        assert disabled_cache.purge_expired() == 0
        disabled_cache.clear_all()
        assert disabled_cache.stats() == {"enabled": False}

    def test_unopenable_directory_falls_through(self, tmp_path: Path) -> None:
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("file in the way")
        c = ResponseCache(blocker)
        assert c.stats() == {"enabled": False}
        assert c.get_or_fetch(KEY, lambda: b"direct") == b"direct"
        c.close()

    def test_read_error_is_a_miss(self, cache: ResponseCache, monkeypatch: pytest.MonkeyPatch) -> None:
        def broken_get(*args, **kwargs):
            raise diskcache.Timeout("database is locked")

        monkeypatch.setattr(cache._cache, "get", broken_get)
        assert cache.get_or_fetch(KEY, lambda: b"direct") == b"direct"

    def test_write_error_still_returns_payload(
        self, cache: ResponseCache, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def broken_set(*args, **kwargs):
            raise OSError("read-only file system")

        monkeypatch.setattr(cache._cache, "set", broken_set)
        assert cache.get_or_fetch(KEY, lambda: b"direct") == b"direct"


# ------------------------------------------------------------------ #
# Stats
# ------------------------------------------------------------------ #


class TestStats:
    def test_stats_empty_cache(self, cache: ResponseCache) -> None:
        s = cache.stats()
        assert s["enabled"] is True
        assert s["size"] == 0
        assert s["max_age_seconds"] == CACHE_MAX_AGE

    def test_stats_directory(self, cache: ResponseCache, tmp_path) -> None:
        assert cache.stats()["directory"] == str(tmp_path / "requests")
        assert cache.directory == tmp_path / "requests"


# ------------------------------------------------------------------ #
# Close
# ------------------------------------------------------------------ #


class TestClose:
    def test_double_close(self, tmp_path) -> None:
        c = ResponseCache(tmp_path)
        c.close()
        c.close()
