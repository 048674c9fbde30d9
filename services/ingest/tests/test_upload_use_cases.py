import io
from datetime import datetime, timedelta, timezone

import pytest

from services.ingest.application.dto import (
    FinishUploadCommand,
    ReceiveChunkCommand,
    ReceiveWholeCommand,
)
from services.ingest.application.use_cases.finish_upload import FinishUploadUseCase
from services.ingest.application.use_cases.receive_chunk import ReceiveChunkUseCase
from services.ingest.application.use_cases.receive_whole import (
    ReceiveWholeUploadUseCase,
)
from services.ingest.domain.errors import (
    StorageFailure,
    UnknownUploadId,
    UploadAlreadyFinished,
)
from services.ingest.domain.upload import InProgressUpload
from services.ingest.infrastructure.registry import InMemoryUploadRegistry

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeStorage:
    def __init__(self) -> None:
        self.files: dict[str, bytes] = {}
        self.fail_size = False

    def write(self, filename, source, *, limit):
        self.files[filename] = source.read()
        return len(self.files[filename])

    def create(self, filename):
        self.files[filename] = b""

    def append(self, filename, data):
        self.files[filename] += data
        return len(data)

    def size(self, filename):
        if self.fail_size:
            raise StorageFailure("Store failed")
        return len(self.files[filename])

    def remove(self, filename):
        self.files.pop(filename, None)

    def url_for(self, filename):
        return f"/uploads/{filename}"


class FakeRepository:
    def __init__(self) -> None:
        self.records = {}
        self.upserts = 0

    def upsert(self, recording):
        self.upserts += 1
        self.records[recording.recording_id] = recording
        return recording

    def get(self, recording_id):
        return self.records.get(recording_id)

    def list_for_owner(self, owner_id):
        return [r for r in self.records.values() if r.owner_id == owner_id]


class FakePublisher:
    def __init__(self) -> None:
        self.published = []

    def publish_recording_ready(self, recording):
        self.published.append(recording.recording_id)


class FixedIds:
    def generate(self):
        return "rec-1"


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def parts():
    storage = FakeStorage()
    repository = FakeRepository()
    publisher = FakePublisher()
    registry = InMemoryUploadRegistry(max_entries=4, ttl=timedelta(minutes=30))
    clock = Clock(T0)
    receive = ReceiveChunkUseCase(
        registry=registry,
        storage=storage,
        repository=repository,
        owner_id="demo-user",
        clock=clock,
    )
    finish = FinishUploadUseCase(
        registry=registry,
        storage=storage,
        repository=repository,
        event_publisher=publisher,
    )
    return storage, repository, publisher, registry, clock, receive, finish


def test_chunks_append_in_arrival_order(parts):
    storage, _, _, registry, _, receive, _ = parts

    receive.execute(ReceiveChunkCommand("u1", "video/mp4", b"first-"))
    upload = receive.execute(ReceiveChunkCommand("u1", "video/mp4", b"second"))

    assert storage.files["u1.mp4"] == b"first-second"
    assert upload.bytes_received == len(b"first-second")


def test_missing_mime_type_uses_generic_extension(parts):
    storage, _, _, _, _, receive, _ = parts

    receive.execute(ReceiveChunkCommand("u2", None, b"x"))

    assert "u2.bin" in storage.files


def test_finish_measures_size_from_storage(parts):
    storage, repository, publisher, registry, _, receive, finish = parts
    receive.execute(ReceiveChunkCommand("u3", "video/webm", b"12345"))
    storage.files["u3.webm"] += b"678"

    recording = finish.execute(FinishUploadCommand("u3", duration_ms=900))

    assert recording.size_bytes == 8
    assert recording.duration_ms == 900
    assert registry.get("u3") is None
    assert publisher.published == ["u3"]


def test_finish_is_an_upsert(parts):
    _, repository, _, _, _, receive, finish = parts
    receive.execute(ReceiveChunkCommand("u4", "video/webm", b"abc"))

    first = finish.execute(FinishUploadCommand("u4", duration_ms=100))
    second = finish.execute(FinishUploadCommand("u4", duration_ms=100))

    assert list(repository.records) == ["u4"]
    assert second.created_at == first.created_at
    assert second.size_bytes == first.size_bytes == 3


def test_finish_unknown_upload_raises(parts):
    *_, finish = parts
    with pytest.raises(UnknownUploadId):
        finish.execute(FinishUploadCommand("nope"))


def test_failed_finish_keeps_upload_open_for_retry(parts):
    storage, repository, _, registry, _, receive, finish = parts
    receive.execute(ReceiveChunkCommand("u5", "video/webm", b"abc"))
    storage.fail_size = True

    with pytest.raises(StorageFailure):
        finish.execute(FinishUploadCommand("u5"))

    assert registry.get("u5") is not None
    storage.fail_size = False
    assert finish.execute(FinishUploadCommand("u5")).size_bytes == 3


def test_abandoned_upload_is_evicted_and_file_removed(parts):
    storage, _, _, registry, clock, receive, finish = parts
    receive.execute(ReceiveChunkCommand("stale", "video/webm", b"abc"))

    clock.now = T0 + timedelta(hours=1)
    receive.execute(ReceiveChunkCommand("other", "video/webm", b"x"))

    assert "stale.webm" not in storage.files
    with pytest.raises(UnknownUploadId):
        finish.execute(FinishUploadCommand("stale"))


def test_whole_upload_keeps_original_extension():
    storage = FakeStorage()
    repository = FakeRepository()
    use_case = ReceiveWholeUploadUseCase(
        id_provider=FixedIds(),
        storage=storage,
        repository=repository,
        event_publisher=FakePublisher(),
        owner_id="demo-user",
        max_upload_bytes=1024,
    )

    recording = use_case.execute(
        ReceiveWholeCommand(
            stream=io.BytesIO(b"movie"),
            filename="holiday.MOV",
            content_type="video/quicktime",
            mime_type=None,
            duration_ms=-5,
        )
    )

    assert recording.url == "/uploads/rec-1.mov"
    assert recording.mime_type == "video/quicktime"
    assert recording.size_bytes == 5
    assert recording.duration_ms == 0
    assert recording.owner_id == "demo-user"


def test_chunk_after_finish_is_refused_and_file_kept(parts):
    storage, repository, _, _, _, receive, finish = parts
    receive.execute(ReceiveChunkCommand("u6", "video/webm", b"complete"))
    finish.execute(FinishUploadCommand("u6", duration_ms=50))

    with pytest.raises(UploadAlreadyFinished):
        receive.execute(ReceiveChunkCommand("u6", "video/webm", b"late"))

    assert storage.files["u6.webm"] == b"complete"
    assert repository.records["u6"].size_bytes == len(b"complete")


def test_chunk_for_evicted_upload_does_not_restart_it(parts):
    storage, _, _, _, clock, receive, finish = parts
    receive.execute(ReceiveChunkCommand("gone", "video/webm", b"abc"))
    clock.now = T0 + timedelta(hours=1)

    with pytest.raises(UnknownUploadId):
        receive.execute(ReceiveChunkCommand("gone", "video/webm", b"def"))

    assert "gone.webm" not in storage.files
    with pytest.raises(UnknownUploadId):
        finish.execute(FinishUploadCommand("gone"))


def test_upload_evicted_during_append_reports_unknown_id():
    repository = FakeRepository()
    registry = InMemoryUploadRegistry(max_entries=1, ttl=timedelta(hours=1))

    class EvictingStorage(FakeStorage):
        def append(self, filename, data):
            written = super().append(filename, data)
            for upload in registry.register(
                InProgressUpload.start(
                    upload_id="intruder", owner_id="o", mime_type="video/webm", now=T0
                )
            ):
                self.remove(upload.filename)
            return written

    receive = ReceiveChunkUseCase(
        registry=registry,
        storage=EvictingStorage(),
        repository=repository,
        owner_id="demo-user",
        clock=Clock(T0),
    )

    with pytest.raises(UnknownUploadId):
        receive.execute(ReceiveChunkCommand("victim", "video/webm", b"abc"))


def test_finish_refuses_whole_upload_ids(parts):
    _, repository, _, _, _, _, finish = parts
    use_case = ReceiveWholeUploadUseCase(
        id_provider=FixedIds(),
        storage=FakeStorage(),
        repository=repository,
        event_publisher=FakePublisher(),
        owner_id="demo-user",
        max_upload_bytes=1024,
    )
    use_case.execute(
        ReceiveWholeCommand(
            stream=io.BytesIO(b"movie"),
            filename="a.webm",
            content_type="video/webm",
            mime_type="video/webm",
            duration_ms=700,
        )
    )

    with pytest.raises(UnknownUploadId):
        finish.execute(FinishUploadCommand("rec-1"))

    assert repository.records["rec-1"].duration_ms == 700
    assert repository.records["rec-1"].chunked is False
