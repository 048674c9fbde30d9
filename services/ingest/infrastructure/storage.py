from __future__ import annotations

import logging
from pathlib import Path
from typing import BinaryIO

from services.ingest.application.interfaces import MediaStorage
from services.ingest.domain.errors import StorageFailure, UploadTooLarge

LOGGER = logging.getLogger(__name__)

_COPY_BLOCK_BYTES = 1024 * 1024


class LocalMediaStorage(MediaStorage):
    """Media files on local disk, served by the app under ``url_prefix``."""

    def __init__(self, root: Path, url_prefix: str = "/uploads") -> None:
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)
        self._url_prefix = url_prefix.rstrip("/")

    @property
    def root(self) -> Path:
        return self._root

    def write(self, filename: str, source: BinaryIO, *, limit: int) -> int:
        path = self._path(filename)
        written = 0
        try:
            with path.open("wb") as target:
                while True:
                    block = source.read(_COPY_BLOCK_BYTES)
                    if not block:
                        break
                    written += len(block)
                    if written > limit:
                        break
                    target.write(block)
        except OSError as exc:
            LOGGER.exception("Failed to write %s", path)
            self._unlink_quietly(path)
            raise StorageFailure("Store failed") from exc
        if written > limit:
            self._unlink_quietly(path)
            raise UploadTooLarge(f"upload exceeds {limit} bytes")
        return written

    def create(self, filename: str) -> None:
        try:
            self._path(filename).write_bytes(b"")
        except OSError as exc:
            LOGGER.exception("Failed to create %s", filename)
            raise StorageFailure("Store failed") from exc

    def append(self, filename: str, data: bytes) -> int:
        try:
            with self._path(filename).open("ab") as target:
                target.write(data)
        except OSError as exc:
            LOGGER.exception("Failed to append to %s", filename)
            raise StorageFailure("Store failed") from exc
        return len(data)

    def size(self, filename: str) -> int:
        try:
            return self._path(filename).stat().st_size
        except OSError as exc:
            LOGGER.exception("Failed to stat %s", filename)
            raise StorageFailure("Store failed") from exc

    def remove(self, filename: str) -> None:
        self._unlink_quietly(self._path(filename))

    def url_for(self, filename: str) -> str:
        return f"{self._url_prefix}/{filename}"

    def _path(self, filename: str) -> Path:
        name = Path(filename).name
        if not name or name != filename:
            raise StorageFailure(f"Invalid file name {filename!r}")
        return self._root / name

    @staticmethod
    def _unlink_quietly(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            LOGGER.warning("Failed to remove %s: %s", path, exc)
