"""Command line front end: record the screen, or push an existing file."""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import signal
from pathlib import Path

import typer

from services.capture.config import CaptureConfig, load_config
from services.capture.domain.errors import CaptureError, TransferError, TransportError
from services.capture.domain.session import CaptureRequest
from services.capture.domain.upload import DeliveryMode
from services.capture.main import build_screen_recorder, build_transport

FALLBACK_UPLOAD_MIME_TYPE = "video/quicktime"

app = typer.Typer(name="capture", help="Screen recorder and uploader")

LOGGER = logging.getLogger(__name__)


def _configure_logging(cfg: CaptureConfig) -> None:
    logging.basicConfig(
        level=getattr(logging, cfg.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _delivery_mode(chunked: bool | None) -> DeliveryMode | None:
    if chunked is None:
        return None
    return DeliveryMode.CHUNKED if chunked else DeliveryMode.WHOLE


def guess_mime_type(path: Path) -> str:
    mime_type, _ = mimetypes.guess_type(path.name)
    if mime_type is None or not mime_type.startswith("video/"):
        return FALLBACK_UPLOAD_MIME_TYPE
    return mime_type


async def _wait_for_stop(session) -> None:
    """Returns on Ctrl-C or when the session stops by itself."""
    loop = asyncio.get_running_loop()
    interrupted = asyncio.Event()
    try:
        loop.add_signal_handler(signal.SIGINT, interrupted.set)
    except (NotImplementedError, RuntimeError):
        LOGGER.debug("Signal handlers unavailable; relying on KeyboardInterrupt")

    interrupt_task = asyncio.create_task(interrupted.wait())
    finished_task = asyncio.create_task(session.wait_finished())
    try:
        await asyncio.wait(
            {interrupt_task, finished_task}, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        interrupt_task.cancel()
        if not finished_task.done():
            finished_task.cancel()
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass


async def _record(
    cfg: CaptureConfig, request: CaptureRequest, mode: DeliveryMode | None
) -> None:
    async with build_transport(cfg) as transport:
        recorder = build_screen_recorder(transport, cfg, status=typer.echo)
        session = await recorder.start(request)
        typer.echo("Press Ctrl-C to stop.")
        await _wait_for_stop(session)
        artifact = await recorder.stop()
        if artifact.size == 0:
            typer.echo("Nothing was recorded.")
            return
        await recorder.deliver(artifact, mode=mode)


async def _upload(
    cfg: CaptureConfig, path: Path, mime_type: str, mode: DeliveryMode
) -> None:
    data = await asyncio.to_thread(path.read_bytes)
    if not data:
        mode = DeliveryMode.WHOLE
    async with build_transport(cfg) as transport:
        recorder = build_screen_recorder(
            transport, cfg, status=typer.echo, capture_devices=False
        )
        await recorder.upload(
            data, mime_type=mime_type, duration_ms=0, mode=mode, filename=path.name
        )


@app.command()
def record(
    system_audio: bool = typer.Option(
        False, "--system-audio/--no-system-audio", help="Include system audio"
    ),
    mic: bool = typer.Option(True, "--mic/--no-mic", help="Include the microphone"),
    chunked: bool | None = typer.Option(
        None,
        "--chunked/--whole",
        help="Force the delivery mode; by default large recordings go chunked",
    ),
) -> None:
    """Record the screen until Ctrl-C, then upload the recording."""
    cfg = load_config()
    _configure_logging(cfg)
    request = CaptureRequest(
        system_audio=system_audio, microphone=mic, frame_rate=cfg.frame_rate
    )
    try:
        asyncio.run(_record(cfg, request, _delivery_mode(chunked)))
    except (CaptureError, TransferError, TransportError) as exc:
        LOGGER.debug("Recording failed", exc_info=True)
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1)


@app.command()
def upload(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
    mime_type: str | None = typer.Option(
        None, "--mime-type", help="Override the type guessed from the extension"
    ),
    chunked: bool = typer.Option(True, "--chunked/--whole"),
) -> None:
    """Upload an existing video file."""
    cfg = load_config()
    _configure_logging(cfg)
    resolved = mime_type or guess_mime_type(path)
    try:
        asyncio.run(_upload(cfg, path, resolved, _delivery_mode(chunked)))
    except (CaptureError, TransferError, TransportError, OSError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
