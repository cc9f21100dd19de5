"""큐에 실리는 메시지 계약.

와이어 포맷은 camelCase JSON이다.
    Task:  {"imageId", "uniqueFilename", "originalPath", "attempt"}
    Event: {"imageId", "status", "message", "processedUrl"?, "error"?}
"""

import os
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from core.exceptions import MalformedMessage


class _Envelope(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )

    def encode(self) -> bytes:
        return self.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")

    @classmethod
    def decode(cls, body: bytes | str):
        """JSON 본문을 검증해 envelope로 만든다. 실패하면 MalformedMessage."""
        try:
            return cls.model_validate_json(body)
        except (ValidationError, ValueError) as e:
            raise MalformedMessage(f"{cls.__name__} 디코딩 실패: {e}") from e


class TaskEnvelope(_Envelope):
    image_id: str = Field(min_length=1)
    unique_filename: str = Field(min_length=1)
    original_path: str = Field(min_length=1)
    attempt: int = Field(default=0, ge=0)

    @field_validator("unique_filename")
    @classmethod
    def _plain_filename(cls, v: str) -> str:
        if os.path.basename(v) != v or v in (".", ".."):
            raise ValueError("uniqueFilename must be a bare file name")
        return v

    def next_attempt(self) -> "TaskEnvelope":
        return self.model_copy(update={"attempt": self.attempt + 1})


class EventEnvelope(_Envelope):
    image_id: str = Field(min_length=1)
    status: Literal["completed", "failed"]
    message: str
    processed_url: str | None = None
    error: str | None = None

    @property
    def dedup_key(self) -> tuple[str, str]:
        return (self.image_id, self.status)
