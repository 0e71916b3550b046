import math
from datetime import datetime
from typing import Any, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UploadMetadata(CamelModel):
    """The `meta` JSON sent alongside an uploaded clip."""

    item_name: str
    timestamp: str
    duration_ms: Union[int, float]
    locale: Optional[str] = None
    session_id: Optional[str] = None
    device_info: Optional[dict[str, Any]] = None
    app_version: Optional[str] = None

    @field_validator("item_name")
    @classmethod
    def item_name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("itemName must not be blank")
        return value

    @field_validator("duration_ms")
    @classmethod
    def duration_positive(cls, value: Union[int, float]) -> Union[int, float]:
        if not math.isfinite(value) or value <= 0:
            raise ValueError("durationMs must be a positive finite number")
        return value

    @field_validator("timestamp")
    @classmethod
    def timestamp_is_iso(cls, value: str) -> str:
        # Kept verbatim; only checked for parseability.
        datetime.fromisoformat(value.replace("Z", "+00:00"))
        return value


class LogEntry(CamelModel):
    recording_id: str
    filename: str
    item_name: str
    duration_ms: Union[int, float]
    timestamp: str
    locale: str
    session_id: Optional[str] = None
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    app_version: str
    file_size: int
    device_info: dict[str, Any] = Field(default_factory=dict)


class UploadResponse(CamelModel):
    recording_id: str
    filename: str
    download_url: str
    url: str


class RecordingInfo(CamelModel):
    filename: str
    size: int
    created_at: datetime
    item_name: str


class HealthResponse(CamelModel):
    status: str
    uptime: float
    timestamp: datetime
    version: str
    recordings_count: int


class DeleteResponse(BaseModel):
    message: str


class SavedFiles(BaseModel):
    audio: str
    transcript: str


class SaveRecordingResponse(BaseModel):
    success: bool
    files: SavedFiles
    timestamp: str


class ErrorResponse(BaseModel):
    error: str
    message: str
