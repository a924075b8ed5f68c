"""Tests for the listing cache."""

import threading
import time
from pathlib import Path

import pytest

from conftest import ManualClock, make_file
from imagestore.listing_cache import ListingCache, is_expired
from imagestore.scanner import ScanFailure, ScanTimeout, scan_directory


class CountingScan:
    """Wraps scan_directory and counts calls."""

    def __init__(self, delay: float = 0.0) -> None:
        self.calls = 0
        self.delay = delay
        self.fail = False
        self._lock = threading.Lock()

    def __call__(self, directory, extensions, max_seconds=30):
        with self._lock:
            self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.fail:
            raise ScanFailure("disk gone")
        return scan_directory(directory, extensions, max_seconds=max_seconds)


@pytest.fixture
def scan() -> CountingScan:
    return CountingScan()


@pytest.fixture
def cache(image_dir: Path, clock: ManualClock, scan: CountingScan) -> ListingCache:
    return ListingCache(image_dir, ttl_ms=5000, clock=clock, scan=scan)


def test_is_expired_boundary() -> None:
    """Exactly ttl old is still fresh; one ms more is stale."""
    assert not is_expired(now=15_000, fetched_at_ms=10_000, ttl_ms=5_000)
    assert is_expired(now=15_001, fetched_at_ms=10_000, ttl_ms=5_000)


def test_first_read_scans(cache: ListingCache, scan: CountingScan, image_dir: Path, clock: ManualClock) -> None:
    """An empty cache scans and records the fetch time."""
    make_file(image_dir, "a.png", 1_000)

    snap = cache.get_listing()

    assert scan.calls == 1
    assert snap.filenames == ["a.png"]
    assert snap.fetched_at_ms == clock.now
    assert cache.fetched_at_ms == clock.now


def test_ttl_respected(cache: ListingCache, scan: CountingScan, image_dir: Path, clock: ManualClock) -> None:
    """Reads within the TTL do not rescan and return the same snapshot."""
    make_file(image_dir, "a.png", 1_000)
    first = cache.get_listing()

    make_file(image_dir, "b.png", 2_000)
    clock.advance(5_000)
    second = cache.get_listing()

    assert scan.calls == 1
    assert second is first
    assert second.fetched_at_ms == first.fetched_at_ms


def test_expired_entry_rescans(cache: ListingCache, scan: CountingScan, image_dir: Path, clock: ManualClock) -> None:
    """Past the TTL the next read rescans and sees new files."""
    make_file(image_dir, "a.png", 1_000)
    cache.get_listing()

    make_file(image_dir, "b.png", 2_000)
    clock.advance(5_001)
    snap = cache.get_listing()

    assert scan.calls == 2
    assert snap.filenames == ["b.png", "a.png"]
    assert snap.fetched_at_ms == clock.now


def test_invalidate_forces_rescan(cache: ListingCache, scan: CountingScan, image_dir: Path) -> None:
    """invalidate() then get_listing() rescans even within the TTL."""
    cache.get_listing()
    make_file(image_dir, "new.png", 1_000)

    cache.invalidate()
    assert not cache.is_fresh()
    assert cache.fetched_at_ms is None
    snap = cache.get_listing()

    assert scan.calls == 2
    assert snap.filenames == ["new.png"]


def test_invalidate_does_not_scan(cache: ListingCache, scan: CountingScan) -> None:
    """invalidate() only drops state."""
    cache.invalidate()
    assert scan.calls == 0


def test_force_refresh_repopulates(cache: ListingCache, scan: CountingScan, image_dir: Path, clock: ManualClock) -> None:
    """force_refresh() scans immediately and leaves the cache warm."""
    cache.get_listing()
    make_file(image_dir, "new.png", 1_000)
    clock.advance(10)

    snap = cache.force_refresh()

    assert scan.calls == 2
    assert snap.filenames == ["new.png"]
    assert cache.is_fresh()
    assert cache.get_listing() is snap
    assert scan.calls == 2


def test_failed_refresh_after_expiry_propagates(cache: ListingCache, scan: CountingScan, clock: ManualClock) -> None:
    """An expired entry plus failing scan raises and installs nothing new."""
    first = cache.get_listing()
    clock.advance(6_000)
    scan.fail = True

    with pytest.raises(ScanFailure):
        cache.get_listing()

    assert cache.fetched_at_ms == first.fetched_at_ms
    assert not cache.is_fresh()


def test_force_refresh_failure_propagates(cache: ListingCache, scan: CountingScan) -> None:
    """force_refresh() surfaces ScanFailure."""
    scan.fail = True
    with pytest.raises(ScanFailure):
        cache.force_refresh()
    assert cache.fetched_at_ms is None


def test_missing_directory_raises(tmp_path: Path, clock: ManualClock) -> None:
    """Real scanner on a missing directory propagates ScanFailure."""
    cache = ListingCache(tmp_path / "missing", clock=clock)
    with pytest.raises(ScanFailure):
        cache.get_listing()


def test_concurrent_misses_scan_once(image_dir: Path, clock: ManualClock) -> None:
    """Ten simultaneous misses share one scan and one timestamp."""
    make_file(image_dir, "a.png", 1_000)
    scan = CountingScan(delay=0.05)
    cache = ListingCache(image_dir, clock=clock, scan=scan)
    cache.invalidate()

    barrier = threading.Barrier(10)
    results = []
    results_lock = threading.Lock()

    def worker() -> None:
        barrier.wait()
        snap = cache.get_listing()
        with results_lock:
            results.append(snap)

    threads = [threading.Thread(target=worker) for _ in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert len(results) == 10
    assert scan.calls == 1
    assert len({snap.fetched_at_ms for snap in results}) == 1
    assert all(snap.filenames == ["a.png"] for snap in results)


def test_invalidate_during_scan_is_not_masked(image_dir: Path, clock: ManualClock) -> None:
    """A scan that started before invalidate() must not be cached afterwards."""
    started = threading.Event()
    release = threading.Event()
    calls = []

    def slow_scan(directory, extensions, max_seconds=30):
        calls.append(1)
        result = scan_directory(directory, extensions, max_seconds=max_seconds)
        if len(calls) == 1:
            started.set()
            release.wait(timeout=5)
        return result

    cache = ListingCache(image_dir, clock=clock, scan=slow_scan)
    reader = threading.Thread(target=cache.get_listing)
    reader.start()
    assert started.wait(timeout=5)

    # upload lands while the first scan is in flight
    make_file(image_dir, "uploaded.png", 1_000)
    cache.invalidate()
    release.set()
    reader.join(timeout=5)

    snap = cache.get_listing()

    assert len(calls) == 2
    assert snap.filenames == ["uploaded.png"]


def test_wait_for_refresh_is_bounded(image_dir: Path, clock: ManualClock) -> None:
    """A reader stuck behind a stalled scan gives up with ScanTimeout."""
    started = threading.Event()
    release = threading.Event()

    def stalled_scan(directory, extensions, max_seconds=30):
        started.set()
        release.wait(timeout=5)
        return []

    cache = ListingCache(image_dir, clock=clock, scan=stalled_scan, wait_seconds=0.05)
    first = threading.Thread(target=cache.get_listing)
    first.start()
    assert started.wait(timeout=5)

    try:
        with pytest.raises(ScanTimeout):
            cache.get_listing()
    finally:
        release.set()
        first.join(timeout=5)


def test_ttl_counts_from_scan_start(image_dir: Path, clock: ManualClock) -> None:
    """A slow scan does not stretch the TTL past the moment the directory was read."""
    started_at = clock.now

    def slow_scan(directory, extensions, max_seconds=30):
        result = scan_directory(directory, extensions, max_seconds=max_seconds)
        clock.advance(3_000)
        return result

    cache = ListingCache(image_dir, ttl_ms=5_000, clock=clock, scan=slow_scan)
    first = cache.get_listing()
    assert first.fetched_at_ms == started_at

    make_file(image_dir, "external.png", 1_000)
    clock.now = started_at + 7_000

    assert not cache.is_fresh()
    assert cache.get_listing().filenames == ["external.png"]
