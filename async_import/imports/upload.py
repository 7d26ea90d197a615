"""Uploaded payloads spooled to disk for the duration of an import."""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO
from uuid import uuid4

logger = logging.getLogger(__name__)

_COPY_CHUNK = 1024 * 1024


class UploadTooLargeError(ValueError):
    """Raised while spooling an upload that exceeds the configured size."""


class ImportUpload:
    """A payload waiting to be imported.

    The temporary file is removed by :meth:`release`, which runs at most once
    no matter how many exit paths call it.
    """

    def __init__(self, *, filename: str | None, media_type: str | None, size: int, path: Path):
        self.filename = filename
        self.media_type = media_type
        self.size = size
        self.path = path
        self._lock = threading.Lock()
        self._released = False

    @classmethod
    def spool(
        cls,
        source: BinaryIO,
        *,
        filename: str | None,
        media_type: str | None,
        upload_dir: Path,
        max_size: int | None = None,
    ) -> "ImportUpload":
        """Copy ``source`` into ``upload_dir`` and describe the stored file."""

        upload_dir.mkdir(parents=True, exist_ok=True)
        path = upload_dir / uuid4().hex
        size = 0
        try:
            with path.open("wb") as target:
                while chunk := source.read(_COPY_CHUNK):
                    size += len(chunk)
                    if max_size is not None and size > max_size:
                        raise UploadTooLargeError(f"Upload exceeds {max_size} bytes")
                    target.write(chunk)
        except BaseException:
            path.unlink(missing_ok=True)
            raise
        return cls(filename=filename, media_type=media_type, size=size, path=path)

    @property
    def released(self) -> bool:
        return self._released

    @contextmanager
    def open(self) -> Iterator[BinaryIO]:
        """Open the spooled file for reading; closed when the block exits."""

        if self._released:
            raise RuntimeError(f"Upload {self.filename!r} was already released")
        with self.path.open("rb") as stream:
            yield stream

    def release(self) -> bool:
        """Remove the temporary file; return ``False`` when already released.

        Failures are logged and swallowed so they never mask the outcome of the
        import that owned the upload.
        """

        with self._lock:
            if self._released:
                return False
            self._released = True
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
        except OSError:
            logger.warning("Failed to remove upload %s", self.path, exc_info=True)
        return True
