"""
In-memory TTL cache over the upload directory listing.

One ListingCache is owned by the Flask app. Readers call get_listing(), the
upload path calls invalidate() after its file is on disk, and the refresh
endpoint (and the optional background warmer) call force_refresh().

Locking:
- _refresh_lock serializes check/scan/install, so at most one scan runs.
- _state_lock guards the cached fields and the generation counter and is
  never held across a scan, so invalidate() does not wait on a slow disk.

A scan remembers the generation it started under and only installs its
result if no invalidate() happened in between.
"""

import time
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Tuple

from .scanner import IMAGE_EXTENSIONS, ImageEntry, ScanTimeout, scan_directory

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


def is_expired(now: int, fetched_at_ms: int, ttl_ms: int) -> bool:
    return now - fetched_at_ms > ttl_ms


@dataclass(frozen=True)
class ListingSnapshot:
    entries: Tuple[ImageEntry, ...]
    fetched_at_ms: int

    @property
    def filenames(self) -> List[str]:
        return [e.name for e in self.entries]


class ListingCache:
    def __init__(
        self,
        directory,
        ttl_ms: int = 5000,
        extensions: Iterable[str] = IMAGE_EXTENSIONS,
        clock: Optional[Callable[[], int]] = None,
        scan: Callable[..., List[ImageEntry]] = scan_directory,
        scan_max_seconds: float = 30,
        wait_seconds: float = 60,
    ) -> None:
        self.directory = directory
        self.ttl_ms = ttl_ms
        self.extensions = frozenset(ext.lower() for ext in extensions)
        self.scan_max_seconds = scan_max_seconds
        self.wait_seconds = wait_seconds
        self._clock = clock or now_ms
        self._scan = scan

        self._refresh_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._snapshot: Optional[ListingSnapshot] = None
        self._generation = 0

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def fetched_at_ms(self) -> Optional[int]:
        with self._state_lock:
            return self._snapshot.fetched_at_ms if self._snapshot else None

    def is_fresh(self) -> bool:
        with self._state_lock:
            return self._fresh_locked() is not None

    def get_listing(self) -> ListingSnapshot:
        """
        Return the cached listing if it is within the TTL, otherwise scan.

        Callers that miss at the same time queue on the refresh lock; the
        first one scans and the rest find the fresh result when they get in.
        A failed scan raises ScanFailure and leaves the cache untouched.
        """
        with self._state_lock:
            cached = self._fresh_locked()
        if cached is not None:
            return cached

        with self._refresh_guard():
            with self._state_lock:
                cached = self._fresh_locked()
                generation = self._generation
            if cached is not None:
                return cached
            return self._scan_and_install(generation)

    # ------------------------------------------------------------------
    # Write-path coordination
    # ------------------------------------------------------------------

    def invalidate(self) -> None:
        with self._state_lock:
            self._generation += 1
            self._snapshot = None
            generation = self._generation
        logger.debug("Listing cache invalidated (generation=%d)", generation)

    def force_refresh(self) -> ListingSnapshot:
        self.invalidate()
        with self._refresh_guard():
            with self._state_lock:
                generation = self._generation
            return self._scan_and_install(generation)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _fresh_locked(self) -> Optional[ListingSnapshot]:
        snap = self._snapshot
        if snap is None:
            return None
        if is_expired(self._clock(), snap.fetched_at_ms, self.ttl_ms):
            return None
        return snap

    def _refresh_guard(self) -> "_TimedLock":
        return _TimedLock(self._refresh_lock, self.wait_seconds)

    def _scan_and_install(self, generation: int) -> ListingSnapshot:
        # TTL runs from the moment the directory is read
        fetched_at = self._clock()
        t0 = time.perf_counter()
        entries = self._scan(
            self.directory,
            self.extensions,
            max_seconds=self.scan_max_seconds,
        )
        snap = ListingSnapshot(entries=tuple(entries), fetched_at_ms=fetched_at)

        with self._state_lock:
            installed = generation == self._generation
            if installed:
                self._snapshot = snap

        logger.info(
            "Listing refreshed: %d images in %.1fms%s",
            len(snap.entries),
            (time.perf_counter() - t0) * 1000,
            "" if installed else " (invalidated during scan, not cached)",
        )
        return snap


class _TimedLock:
    """Context manager acquiring a lock with a timeout."""

    def __init__(self, lock: threading.Lock, timeout: float) -> None:
        self._lock = lock
        self._timeout = timeout

    def __enter__(self) -> None:
        if not self._lock.acquire(timeout=self._timeout):
            logger.error("Gave up waiting %ss for listing refresh", self._timeout)
            raise ScanTimeout(f"listing refresh did not finish within {self._timeout}s")

    def __exit__(self, *exc_info) -> None:
        self._lock.release()
