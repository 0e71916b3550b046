import json
import os
from dataclasses import dataclass
from fastapi import Request
from pydantic import ValidationError
from starlette.datastructures import UploadFile
from survey_recorder.constants import AUDIO_MIME_TYPE
from survey_recorder.core.config import settings
from survey_recorder.core.errors import (
    ClientInputError,
    PayloadTooLargeError,
    UnsupportedMediaTypeError,
)
from survey_recorder.core.logger import get_logger
from survey_recorder.schemas.recording import UploadMetadata

logger = get_logger(__name__)

FILE_FIELD = "file"
META_FIELD = "meta"


@dataclass
class ValidatedUpload:
    file: UploadFile
    metadata: UploadMetadata
    size: int


def media_type(content_type: str | None) -> str:
    return (content_type or "").split(";", 1)[0].strip().lower()


def upload_size(upload: UploadFile) -> int:
    if upload.size is not None:
        return upload.size
    upload.file.seek(0, os.SEEK_END)
    size = upload.file.tell()
    upload.file.seek(0)
    return size


def _single_file(form) -> UploadFile:
    files = [v for v in form.getlist(FILE_FIELD) if isinstance(v, UploadFile)]
    if len(files) > 1:
        raise ClientInputError("Only one file per upload is allowed", error="Too many files")
    stray = [k for k, v in form.multi_items() if k != FILE_FIELD and isinstance(v, UploadFile)]
    if stray:
        raise ClientInputError(
            'File must be uploaded in the "file" field', error="Unexpected file field"
        )
    if not files:
        raise ClientInputError(
            'Please provide an audio file in the "file" field', error="No file uploaded"
        )
    return files[0]


def _parse_metadata(raw) -> UploadMetadata:
    if raw is None:
        raw = "{}"
    if not isinstance(raw, str):
        raise ClientInputError("Metadata must be valid JSON", error="Invalid metadata")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        raise ClientInputError("Metadata must be valid JSON", error="Invalid metadata")
    if not isinstance(data, dict):
        raise ClientInputError("Metadata must be a JSON object", error="Invalid metadata")

    try:
        return UploadMetadata.model_validate(data)
    except ValidationError as e:
        fields = sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]})
        raise ClientInputError(
            "Missing required fields: itemName, timestamp, durationMs"
            f" (problem with: {', '.join(fields)})",
            error="Missing required fields",
        )


async def validated_upload(request: Request) -> ValidatedUpload:
    """Gate an upload request before anything touches storage.

    Checks, in order: exactly one file in "file"; audio/webm media type;
    size limit; metadata JSON; required fields; duration limit. The first
    failing check ends the request with its own error.

    Args:
        request (Request): Incoming multipart request.
    Returns:
        ValidatedUpload: File handle plus parsed metadata, also stored on request.state.upload.
    """
    form = await request.form()
    upload = _single_file(form)

    if media_type(upload.content_type) != AUDIO_MIME_TYPE:
        logger.warning(
            "Invalid file type uploaded",
            extra={"original_name": upload.filename, "mimetype": upload.content_type},
        )
        raise UnsupportedMediaTypeError(f"Only {AUDIO_MIME_TYPE} files are allowed")

    size = upload_size(upload)
    if size > settings.max_file_size:
        raise PayloadTooLargeError(f"Maximum file size is {settings.max_file_mb}MB")

    metadata = _parse_metadata(form.get(META_FIELD))

    if metadata.duration_ms > settings.max_duration_ms:
        raise ClientInputError(
            f"Maximum duration is {settings.max_duration_sec} seconds",
            error="Recording too long",
        )

    validated = ValidatedUpload(file=upload, metadata=metadata, size=size)
    request.state.upload = validated
    return validated
