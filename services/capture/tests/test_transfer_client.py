import asyncio

import pytest

from services.capture.application.transfer import TransferClient, recording_filename
from services.capture.domain.errors import (
    ChunkSendFailed,
    FinishFailed,
    TransferCancelled,
    TransportError,
    WholeUploadFailed,
)
from services.capture.domain.upload import (
    DeliveryMode,
    RetryPolicy,
    UploadResult,
    UploadStatus,
    choose_delivery_mode,
    partition,
)

MIB = 1024 * 1024


class FakeTransport:
    def __init__(self) -> None:
        self.chunks: list[tuple[str, bytes]] = []
        self.chunk_attempts = 0
        self.fail_chunk_times = 0
        self.fail_chunks_forever = False
        self.fail_finish = False
        self.fail_whole = False
        self.finished: list[tuple[str, int]] = []
        self.whole: list[dict] = []

    async def send_whole(self, data, *, filename, mime_type, duration_ms):
        if self.fail_whole:
            raise TransportError("/upload failed: 500", status_code=500)
        self.whole.append(
            {"data": data, "filename": filename, "mime_type": mime_type,
             "duration_ms": duration_ms}
        )
        return UploadResult(id="rec-whole", url=f"/uploads/{filename}")

    async def send_chunk(self, data, *, upload_id, mime_type):
        self.chunk_attempts += 1
        if self.fail_chunks_forever or self.fail_chunk_times > 0:
            self.fail_chunk_times -= 1
            raise TransportError("/upload/chunk failed: 503", status_code=503)
        self.chunks.append((upload_id, data))

    async def finish(self, upload_id, *, duration_ms):
        if self.fail_finish:
            raise TransportError("/upload/finish failed: 500", status_code=500)
        self.finished.append((upload_id, duration_ms))
        return UploadResult(id=upload_id, url=f"/uploads/{upload_id}.webm")


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _client(transport, *, chunk_size=5 * MIB, attempts=3, sleep=None):
    return TransferClient(
        transport,
        chunk_size=chunk_size,
        retry=RetryPolicy(max_attempts=attempts, backoff_ms=600),
        sleep=sleep or RecordingSleep(),
        upload_id_factory=lambda: "up-1",
    )


@pytest.mark.parametrize(
    "total,chunk_size,expected",
    [
        (12 * MIB, 5 * MIB, [5 * MIB, 5 * MIB, 2 * MIB]),
        (10 * MIB, 5 * MIB, [5 * MIB, 5 * MIB]),
        (1, 5 * MIB, [1]),
        (0, 5 * MIB, []),
    ],
)
def test_partition_sizes(total, chunk_size, expected):
    ranges = partition(total, chunk_size)

    assert [chunk.size for chunk in ranges] == expected
    assert [chunk.index for chunk in ranges] == list(range(len(expected)))


def test_partition_covers_data_in_order():
    data = bytes(range(256)) * 41
    ranges = partition(len(data), 1000)

    assert len(ranges) == -(-len(data) // 1000)
    assert b"".join(data[c.start : c.end] for c in ranges) == data


def test_partition_rejects_non_positive_chunk_size():
    with pytest.raises(ValueError):
        partition(10, 0)


def test_delivery_mode_policy():
    assert choose_delivery_mode(0, chunked_threshold=10) is DeliveryMode.WHOLE
    assert choose_delivery_mode(10, chunked_threshold=10) is DeliveryMode.WHOLE
    assert choose_delivery_mode(11, chunked_threshold=10) is DeliveryMode.CHUNKED
    assert (
        choose_delivery_mode(5, chunked_threshold=10, forced=DeliveryMode.CHUNKED)
        is DeliveryMode.CHUNKED
    )


def test_chunked_upload_sends_ranges_in_order_and_finishes():
    transport = FakeTransport()
    data = b"a" * (5 * MIB) + b"b" * (5 * MIB) + b"c" * (2 * MIB)
    statuses = []

    result = asyncio.run(
        _client(transport).upload_chunked(
            data, mime_type="video/webm", duration_ms=4200, on_status=statuses.append
        )
    )

    assert [len(chunk) for _, chunk in transport.chunks] == [5 * MIB, 5 * MIB, 2 * MIB]
    assert {upload_id for upload_id, _ in transport.chunks} == {"up-1"}
    assert b"".join(chunk for _, chunk in transport.chunks) == data
    assert transport.finished == [("up-1", 4200)]
    assert result.id == "up-1"
    assert statuses == [
        UploadStatus.SENDING,
        UploadStatus.CHUNKS_ACKNOWLEDGED,
        UploadStatus.FINALIZED,
    ]


def test_progress_is_monotonic_and_ends_at_one():
    transport = FakeTransport()
    progress = []

    asyncio.run(
        _client(transport, chunk_size=3).upload_chunked(
            b"x" * 10, mime_type="video/webm", duration_ms=0, on_progress=progress.append
        )
    )

    ratios = [p.ratio for p in progress]
    assert ratios == sorted(ratios)
    assert ratios[-1] == 1.0
    assert [p.sent for p in progress] == [3, 6, 9, 10]


def test_chunk_retries_then_succeeds_with_growing_delays():
    transport = FakeTransport()
    transport.fail_chunk_times = 2
    sleep = RecordingSleep()

    asyncio.run(
        _client(transport, sleep=sleep).upload_chunked(
            b"x" * 10, mime_type="video/webm", duration_ms=0
        )
    )

    assert transport.chunk_attempts == 3
    assert sleep.delays == [0.6, 1.2]
    assert len(transport.finished) == 1


def test_chunk_exhaustion_stops_the_upload():
    transport = FakeTransport()
    transport.fail_chunks_forever = True
    statuses = []

    with pytest.raises(ChunkSendFailed) as excinfo:
        asyncio.run(
            _client(transport, chunk_size=4).upload_chunked(
                b"x" * 10,
                mime_type="video/webm",
                duration_ms=0,
                on_status=statuses.append,
            )
        )

    assert excinfo.value.chunk_index == 0
    assert excinfo.value.attempts == 3
    assert excinfo.value.status is UploadStatus.CHUNK_FAILED
    assert transport.chunk_attempts == 3
    assert transport.finished == []
    assert statuses[-1] is UploadStatus.CHUNK_FAILED


def test_finish_failure_is_reported_separately():
    transport = FakeTransport()
    transport.fail_finish = True

    with pytest.raises(FinishFailed) as excinfo:
        asyncio.run(
            _client(transport).upload_chunked(
                b"x" * 10, mime_type="video/webm", duration_ms=0
            )
        )

    assert not isinstance(excinfo.value, ChunkSendFailed)
    assert excinfo.value.status is UploadStatus.UPLOADED_NOT_FINALIZED
    assert excinfo.value.bytes_sent == 10
    assert excinfo.value.upload_id == "up-1"


def test_cancel_before_next_chunk():
    transport = FakeTransport()
    cancel = asyncio.Event()

    def _on_progress(progress):
        cancel.set()

    with pytest.raises(TransferCancelled) as excinfo:
        asyncio.run(
            _client(transport, chunk_size=4).upload_chunked(
                b"x" * 10,
                mime_type="video/webm",
                duration_ms=0,
                on_progress=_on_progress,
                cancel=cancel,
            )
        )

    assert len(transport.chunks) == 1
    assert excinfo.value.bytes_sent == 4
    assert transport.finished == []


def test_chunked_rejects_empty_artifact():
    with pytest.raises(ValueError):
        asyncio.run(
            _client(FakeTransport()).upload_chunked(
                b"", mime_type="video/webm", duration_ms=0
            )
        )


def test_whole_upload_names_file_from_mime_type():
    transport = FakeTransport()

    result = asyncio.run(
        _client(transport).upload_whole(
            b"data", mime_type="video/webm;codecs=vp9,opus", duration_ms=1500
        )
    )

    sent = transport.whole[0]
    assert sent["filename"].startswith("screen-recording-")
    assert sent["filename"].endswith(".webm")
    assert sent["duration_ms"] == 1500
    assert result.url.endswith(".webm")


def test_whole_upload_failure_is_not_retried():
    transport = FakeTransport()
    transport.fail_whole = True

    with pytest.raises(WholeUploadFailed) as excinfo:
        asyncio.run(
            _client(transport).upload_whole(b"data", mime_type="video/mp4", duration_ms=0)
        )

    assert excinfo.value.status_code == 500
    assert excinfo.value.status is UploadStatus.FAILED


def test_recording_filename_extensions():
    assert recording_filename("video/mp4").endswith(".mp4")
    assert recording_filename("video/quicktime").endswith(".mov")
    assert recording_filename("application/x-unknown").endswith(".bin")
