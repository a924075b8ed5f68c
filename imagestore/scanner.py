import os
import time
import logging
from dataclasses import dataclass
from typing import Callable, Iterable, List

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Media types
# ---------------------------------------------------------------------------

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".bmp", ".webp", ".svg"}


class ScanFailure(Exception):
    """The upload directory itself could not be listed."""


class ScanTimeout(ScanFailure):
    """A scan (or the wait for one) ran past its time bound."""


@dataclass(frozen=True)
class ImageEntry:
    name: str
    modified_ms: int


def _read_mtime_ms(path: str) -> int:
    return int(os.stat(path).st_mtime_ns // 1_000_000)


def _has_extension(name: str, extensions: Iterable[str]) -> bool:
    return os.path.splitext(name)[1].lower() in extensions


# ---------------------------------------------------------------------------
# Scan a single directory
# ---------------------------------------------------------------------------

def scan_directory(
    directory,
    extensions: Iterable[str] = IMAGE_EXTENSIONS,
    max_seconds: float = 30,
    timer: Callable[[], float] = time.monotonic,
) -> List[ImageEntry]:
    """
    List image files directly inside `directory`, newest first.

    - Only names whose extension (case-insensitive) is in `extensions`.
    - A file whose mtime cannot be read (deleted mid-scan, etc.) is kept
      with modified_ms=0 so it sorts last.
    - Entries with equal mtimes keep their enumeration order.

    Raises ScanFailure if the directory cannot be listed and ScanTimeout
    if the whole scan takes longer than `max_seconds`.
    """
    directory = os.fspath(directory)
    extensions = {ext.lower() for ext in extensions}
    start_time = timer()

    try:
        names = os.listdir(directory)
    except OSError as exc:
        logger.error("Cannot list image directory %s: %s", directory, exc)
        raise ScanFailure(f"cannot list {directory}: {exc.strerror or exc}") from exc

    entries: List[ImageEntry] = []
    for name in names:
        elapsed = timer() - start_time
        if elapsed > max_seconds:
            logger.error(
                "Scan of %s exceeded %ss after %d entries",
                directory, max_seconds, len(entries),
            )
            raise ScanTimeout(f"scan of {directory} exceeded {max_seconds}s")

        if not _has_extension(name, extensions):
            continue

        path = os.path.join(directory, name)
        if os.path.isdir(path):
            continue

        try:
            modified_ms = _read_mtime_ms(path)
        except OSError as exc:
            logger.warning("Could not read mtime for %s: %s", path, exc)
            modified_ms = 0

        entries.append(ImageEntry(name=name, modified_ms=modified_ms))

    # sorted() is stable with reverse=True, ties keep listdir order
    entries = sorted(entries, key=lambda e: e.modified_ms, reverse=True)

    logger.debug(
        "Scanned %s: %d images of %d entries in %.1fms",
        directory, len(entries), len(names), (timer() - start_time) * 1000,
    )
    return entries
