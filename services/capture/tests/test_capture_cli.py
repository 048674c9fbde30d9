from pathlib import Path

import pytest
from typer.testing import CliRunner

from services.capture import cli
from services.capture.config import load_config
from services.capture.domain.upload import UploadResult
from services.capture.domain.errors import TransportError

runner = CliRunner()


class FakeTransport:
    def __init__(self, *, fail_finish=False) -> None:
        self.chunks = []
        self.whole = []
        self.fail_finish = fail_finish

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return None

    async def send_whole(self, data, *, filename, mime_type, duration_ms):
        self.whole.append((filename, mime_type, data))
        return UploadResult(id="w", url=f"/uploads/{filename}")

    async def send_chunk(self, data, *, upload_id, mime_type):
        self.chunks.append((mime_type, data))

    async def finish(self, upload_id, *, duration_ms):
        if self.fail_finish:
            raise TransportError("/upload/finish failed: 500", status_code=500)
        return UploadResult(id=upload_id, url=f"/uploads/{upload_id}.mov")


def test_guess_mime_type():
    assert cli.guess_mime_type(Path("clip.mp4")) == "video/mp4"
    assert cli.guess_mime_type(Path("clip.mov")) == "video/quicktime"
    assert cli.guess_mime_type(Path("clip")) == "video/quicktime"
    assert cli.guess_mime_type(Path("notes.txt")) == "video/quicktime"


def test_upload_command_sends_chunks_by_default(tmp_path, monkeypatch):
    transport = FakeTransport()
    monkeypatch.setattr(cli, "build_transport", lambda cfg: transport)
    video = tmp_path / "clip.mov"
    video.write_bytes(b"m" * 64)

    result = runner.invoke(cli.app, ["upload", str(video)])

    assert result.exit_code == 0, result.output
    assert transport.chunks == [("video/quicktime", b"m" * 64)]
    assert "Uploading… 100%" in result.output
    assert "Uploaded! URL: /uploads/" in result.output


def test_upload_command_whole(tmp_path, monkeypatch):
    transport = FakeTransport()
    monkeypatch.setattr(cli, "build_transport", lambda cfg: transport)
    video = tmp_path / "clip.mp4"
    video.write_bytes(b"m" * 8)

    result = runner.invoke(cli.app, ["upload", "--whole", str(video)])

    assert result.exit_code == 0, result.output
    assert transport.whole == [("clip.mp4", "video/mp4", b"m" * 8)]


def test_upload_command_reports_finish_failure(tmp_path, monkeypatch):
    transport = FakeTransport(fail_finish=True)
    monkeypatch.setattr(cli, "build_transport", lambda cfg: transport)
    video = tmp_path / "clip.webm"
    video.write_bytes(b"m" * 8)

    result = runner.invoke(cli.app, ["upload", str(video)])

    assert result.exit_code == 1
    assert "Error:" in result.output


def test_load_config_reads_environment(monkeypatch):
    monkeypatch.setenv("CAPTURE_SERVER_URL", "http://relay:9000")
    monkeypatch.setenv("CAPTURE_CHUNK_SIZE_BYTES", "1024")
    monkeypatch.setenv("CAPTURE_MICROPHONE_DEVICE", "3")
    monkeypatch.setenv("CAPTURE_SYSTEM_AUDIO_DEVICE", "Monitor of Built-in")
    monkeypatch.setenv("CAPTURE_LOG_LEVEL", "debug")

    cfg = load_config()

    assert cfg.server_url == "http://relay:9000"
    assert cfg.chunk_size_bytes == 1024
    assert cfg.microphone_device == 3
    assert cfg.system_audio_device == "Monitor of Built-in"
    assert cfg.log_level == "DEBUG"


def test_load_config_rejects_bad_integers(monkeypatch):
    monkeypatch.setenv("CAPTURE_MAX_CHUNK_ATTEMPTS", "three")

    with pytest.raises(ValueError, match="CAPTURE_MAX_CHUNK_ATTEMPTS"):
        load_config()
