from datetime import UTC, datetime
from enum import StrEnum

from sqlmodel import Field, SQLModel


class ImageStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ImageStatus.COMPLETED, ImageStatus.FAILED)


class LogLevel(StrEnum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ImageRecord(SQLModel, table=True):
    id: str = Field(primary_key=True)
    unique_filename: str = Field(unique=True, index=True)
    original_filename: str
    mime_type: str
    size: int
    status: str = Field(default=ImageStatus.PENDING, index=True)
    processed_filename: str | None = None
    attempts: int = Field(default=0)
    upload_date: datetime = Field(default_factory=_utcnow)


class ProcessingLogEntry(SQLModel, table=True):
    """append-only 처리 로그. id 순서가 곧 기록 순서다."""

    id: int | None = Field(default=None, primary_key=True)
    image_id: str = Field(foreign_key="imagerecord.id", index=True)
    timestamp: datetime = Field(default_factory=_utcnow)
    message: str
    level: str = Field(default=LogLevel.INFO)


class OutboxEntry(SQLModel, table=True):
    """레코드와 같은 트랜잭션에 기록되는 발행 대기 메시지."""

    id: int | None = Field(default=None, primary_key=True)
    image_id: str = Field(foreign_key="imagerecord.id", index=True)
    queue: str
    payload: str
    created_at: datetime = Field(default_factory=_utcnow)
    sent_at: datetime | None = Field(default=None, index=True)
