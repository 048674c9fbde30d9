from __future__ import annotations

import threading
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import ContextManager

from services.ingest.application.interfaces import UploadRegistry
from services.ingest.domain.errors import UnknownUploadId
from services.ingest.domain.upload import InProgressUpload

DEFAULT_REMEMBERED_EVICTIONS = 1024


class InMemoryUploadRegistry(UploadRegistry):
    """Bounded registry of chunked uploads that have not been finished yet.

    Entries are kept in least-recently-touched order. An entry idle for
    longer than ``ttl`` is evicted on the next sweep, and registering past
    ``max_entries`` evicts the stalest entry. Evicted entries are returned so
    the caller can discard their partial files, and their ids are remembered
    (up to ``remembered_evictions``) so a late chunk or finish is refused
    instead of silently starting over.
    """

    def __init__(
        self,
        *,
        max_entries: int,
        ttl: timedelta,
        remembered_evictions: int = DEFAULT_REMEMBERED_EVICTIONS,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._max_entries = max_entries
        self._ttl = ttl
        self._remembered_evictions = max(remembered_evictions, 0)
        self._entries: OrderedDict[str, InProgressUpload] = OrderedDict()
        self._evicted: OrderedDict[str, None] = OrderedDict()
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def locked(self) -> ContextManager:
        """Hold the registry across a read-modify-write of one upload."""
        return self._lock

    def get(self, upload_id: str) -> InProgressUpload | None:
        with self._lock:
            return self._entries.get(upload_id)

    def was_evicted(self, upload_id: str) -> bool:
        with self._lock:
            return upload_id in self._evicted

    def register(self, upload: InProgressUpload) -> list[InProgressUpload]:
        evicted: list[InProgressUpload] = []
        with self._lock:
            self._entries.pop(upload.upload_id, None)
            while len(self._entries) >= self._max_entries:
                _, stale = self._entries.popitem(last=False)
                evicted.append(stale)
            self._entries[upload.upload_id] = upload
            self._remember(evicted)
        return evicted

    def touch(
        self, upload_id: str, *, appended: int, at: datetime
    ) -> InProgressUpload:
        with self._lock:
            upload = self._entries.pop(upload_id, None)
            if upload is None:
                raise UnknownUploadId(upload_id)
            upload = upload.touched(appended=appended, at=at)
            self._entries[upload_id] = upload
            return upload

    def pop(self, upload_id: str) -> InProgressUpload | None:
        with self._lock:
            return self._entries.pop(upload_id, None)

    def evict_expired(self, now: datetime) -> list[InProgressUpload]:
        cutoff = now - self._ttl
        evicted: list[InProgressUpload] = []
        with self._lock:
            while self._entries:
                upload_id, oldest = next(iter(self._entries.items()))
                if oldest.last_activity_at > cutoff:
                    break
                del self._entries[upload_id]
                evicted.append(oldest)
            self._remember(evicted)
        return evicted

    def _remember(self, evicted: list[InProgressUpload]) -> None:
        if not self._remembered_evictions:
            return
        for upload in evicted:
            self._evicted.pop(upload.upload_id, None)
            self._evicted[upload.upload_id] = None
        while len(self._evicted) > self._remembered_evictions:
            self._evicted.popitem(last=False)
