from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime

from services.ingest.domain.recording import infer_extension


@dataclass(frozen=True)
class InProgressUpload:
    upload_id: str
    owner_id: str
    mime_type: str
    filename: str
    started_at: datetime
    last_activity_at: datetime
    bytes_received: int = 0

    @classmethod
    def start(
        cls,
        *,
        upload_id: str,
        owner_id: str,
        mime_type: str,
        now: datetime,
    ) -> "InProgressUpload":
        return cls(
            upload_id=upload_id,
            owner_id=owner_id,
            mime_type=mime_type,
            filename=f"{upload_id}{infer_extension(mime_type)}",
            started_at=now,
            last_activity_at=now,
        )

    def touched(self, *, appended: int, at: datetime) -> "InProgressUpload":
        return replace(
            self,
            bytes_received=self.bytes_received + appended,
            last_activity_at=at,
        )
