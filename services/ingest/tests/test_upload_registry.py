from datetime import datetime, timedelta, timezone

import pytest

from services.ingest.domain.errors import UnknownUploadId
from services.ingest.domain.upload import InProgressUpload
from services.ingest.infrastructure.registry import InMemoryUploadRegistry

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _upload(upload_id: str, at: datetime = T0) -> InProgressUpload:
    return InProgressUpload.start(
        upload_id=upload_id, owner_id="demo-user", mime_type="video/webm", now=at
    )


def test_start_infers_filename_from_mime_type():
    upload = InProgressUpload.start(
        upload_id="abc", owner_id="o", mime_type="video/quicktime", now=T0
    )
    assert upload.filename == "abc.mov"
    assert upload.bytes_received == 0


def test_touch_accumulates_bytes_and_refreshes_activity():
    registry = InMemoryUploadRegistry(max_entries=4, ttl=timedelta(minutes=5))
    registry.register(_upload("a"))

    registry.touch("a", appended=10, at=T0 + timedelta(seconds=1))
    upload = registry.touch("a", appended=5, at=T0 + timedelta(seconds=2))

    assert upload.bytes_received == 15
    assert upload.last_activity_at == T0 + timedelta(seconds=2)
    assert registry.get("a") == upload


def test_idle_uploads_expire_after_ttl():
    registry = InMemoryUploadRegistry(max_entries=4, ttl=timedelta(minutes=5))
    registry.register(_upload("old"))
    registry.register(_upload("fresh", at=T0 + timedelta(minutes=4)))

    evicted = registry.evict_expired(T0 + timedelta(minutes=6))

    assert [upload.upload_id for upload in evicted] == ["old"]
    assert registry.get("old") is None
    assert registry.get("fresh") is not None


def test_recent_activity_keeps_upload_alive():
    registry = InMemoryUploadRegistry(max_entries=4, ttl=timedelta(minutes=5))
    registry.register(_upload("a"))
    registry.touch("a", appended=1, at=T0 + timedelta(minutes=4))

    assert registry.evict_expired(T0 + timedelta(minutes=6)) == []


def test_register_past_capacity_evicts_least_recently_touched():
    registry = InMemoryUploadRegistry(max_entries=2, ttl=timedelta(hours=1))
    registry.register(_upload("a"))
    registry.register(_upload("b"))
    registry.touch("a", appended=1, at=T0 + timedelta(seconds=1))

    evicted = registry.register(_upload("c"))

    assert [upload.upload_id for upload in evicted] == ["b"]
    assert len(registry) == 2


def test_pop_removes_entry():
    registry = InMemoryUploadRegistry(max_entries=2, ttl=timedelta(hours=1))
    registry.register(_upload("a"))

    assert registry.pop("a").upload_id == "a"
    assert registry.pop("a") is None


def test_registry_requires_positive_capacity():
    with pytest.raises(ValueError):
        InMemoryUploadRegistry(max_entries=0, ttl=timedelta(hours=1))


def test_touch_of_missing_upload_raises_unknown_id():
    registry = InMemoryUploadRegistry(max_entries=1, ttl=timedelta(hours=1))
    registry.register(_upload("a"))
    registry.register(_upload("b"))

    with pytest.raises(UnknownUploadId):
        registry.touch("a", appended=1, at=T0)


def test_evicted_ids_are_remembered():
    registry = InMemoryUploadRegistry(max_entries=1, ttl=timedelta(minutes=5))
    registry.register(_upload("a"))
    registry.register(_upload("b"))
    registry.evict_expired(T0 + timedelta(minutes=10))

    assert registry.was_evicted("a")
    assert registry.was_evicted("b")
    registry.register(_upload("c", at=T0 + timedelta(minutes=10)))
    registry.pop("c")
    assert not registry.was_evicted("c")


def test_remembered_evictions_are_bounded():
    registry = InMemoryUploadRegistry(
        max_entries=1, ttl=timedelta(hours=1), remembered_evictions=2
    )
    for upload_id in ("a", "b", "c", "d"):
        registry.register(_upload(upload_id))

    assert not registry.was_evicted("a")
    assert registry.was_evicted("b")
    assert registry.was_evicted("c")
    assert not registry.was_evicted("d")
