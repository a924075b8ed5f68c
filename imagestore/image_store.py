import os
import logging
from pathlib import Path
from typing import Callable, Optional

from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from .listing_cache import now_ms

logger = logging.getLogger(__name__)

MAX_NAME_ATTEMPTS = 100
# leaves room for the "<millis>_" prefix under the usual 255-byte limit
MAX_NAME_LENGTH = 200


class ImageStore:
    def __init__(self, upload_dir: Path, clock: Optional[Callable[[], int]] = None) -> None:
        self.upload_dir = Path(upload_dir)
        self._clock = clock or now_ms
        self.upload_dir.mkdir(parents=True, exist_ok=True)

    def save_upload(self, upload: FileStorage) -> str:
        """
        Write an uploaded file as ``<millis>_<original name>`` and return the name.

        The file is created exclusively, so a concurrent upload with the same
        name and millisecond moves on to the next millisecond instead of
        overwriting. Data is fsynced before this returns.
        """
        original = self.clean_name(upload.filename or "")
        stamp = self._clock()

        for _ in range(MAX_NAME_ATTEMPTS):
            filename = f"{stamp}_{original}"
            path = self.upload_dir / filename
            try:
                with open(path, "xb") as fh:
                    upload.save(fh)
                    fh.flush()
                    os.fsync(fh.fileno())
            except FileExistsError:
                stamp += 1
                continue
            except OSError:
                # don't leave a truncated file behind for the listing to pick up
                try:
                    path.unlink(missing_ok=True)
                except OSError as cleanup_exc:
                    logger.warning("Could not remove partial upload %s: %s", path, cleanup_exc)
                raise

            logger.info("Stored upload %s (%d bytes)", filename, path.stat().st_size)
            return filename

        raise FileExistsError(f"no free filename for {original} after {MAX_NAME_ATTEMPTS} attempts")

    @staticmethod
    def clean_name(name: str) -> str:
        safe = secure_filename(name)
        if not (safe and (Path(safe).suffix or not Path(name).suffix)):
            # secure_filename drops non-ASCII names entirely ("猫.png" -> "png")
            suffix = Path(name).suffix.lower()
            if not suffix.isascii():
                suffix = ""
            safe = f"upload{suffix}"
        if len(safe) > MAX_NAME_LENGTH:
            suffix = Path(safe).suffix[:16]
            safe = Path(safe).stem[:MAX_NAME_LENGTH - len(suffix)] + suffix
        return safe

    def has_image(self, filename: str) -> bool:
        if filename != os.path.basename(filename):
            return False
        return (self.upload_dir / filename).is_file()
