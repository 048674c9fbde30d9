from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


def _load_repo_env() -> None:
    """Load the nearest .env starting from this file upward."""
    current = Path(__file__).resolve()
    for candidate in [current.parent, *current.parents]:
        env_file = candidate / ".env"
        if env_file.exists():
            load_dotenv(env_file)
            return


_load_repo_env()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer") from exc


@dataclass(frozen=True)
class IngestConfig:
    upload_dir: Path
    database_url: str
    owner_id: str
    max_upload_bytes: int
    max_inprogress_uploads: int
    inprogress_ttl_seconds: int
    public_url_prefix: str
    cors_origins: tuple[str, ...]
    redis_host: str | None
    redis_port: int
    redis_db: int
    redis_channel: str
    log_level: str
    host: str
    port: int


def load_config() -> IngestConfig:
    origins = os.getenv("INGEST_CORS_ORIGINS", "*")
    return IngestConfig(
        upload_dir=Path(os.getenv("INGEST_UPLOAD_DIR", "uploads")),
        database_url=os.getenv("INGEST_DATABASE_URL", "sqlite:///data/data.sqlite"),
        owner_id=os.getenv("INGEST_OWNER_ID", "demo-user"),
        max_upload_bytes=_env_int("INGEST_MAX_UPLOAD_BYTES", 2 * 1024 * 1024 * 1024),
        max_inprogress_uploads=_env_int("INGEST_MAX_INPROGRESS_UPLOADS", 256),
        inprogress_ttl_seconds=_env_int("INGEST_INPROGRESS_TTL_SECONDS", 3600),
        public_url_prefix=os.getenv("INGEST_PUBLIC_URL_PREFIX", "/uploads"),
        cors_origins=tuple(
            origin.strip() for origin in origins.split(",") if origin.strip()
        ),
        redis_host=os.getenv("INGEST_REDIS_HOST") or None,
        redis_port=_env_int("INGEST_REDIS_PORT", 6379),
        redis_db=_env_int("INGEST_REDIS_DB", 0),
        redis_channel=os.getenv("INGEST_REDIS_CHANNEL", "recording_ready"),
        log_level=os.getenv("INGEST_LOG_LEVEL", "INFO").upper(),
        host=os.getenv("INGEST_HOST", "0.0.0.0"),
        port=_env_int("INGEST_PORT", 3001),
    )
