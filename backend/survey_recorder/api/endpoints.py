import time
import uuid
from datetime import date, datetime, timezone
from typing import Any, List
from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from fastapi.responses import FileResponse
from survey_recorder.api.dependencies import get_ledger, get_store, get_transcoder
from survey_recorder.api.validation import ValidatedUpload, media_type, upload_size, validated_upload
from survey_recorder.constants import AUDIO_MIME_TYPE, DEFAULT_APP_VERSION, DEFAULT_LOCALE
from survey_recorder.core.config import settings
from survey_recorder.core.errors import (
    ClientInputError,
    LedgerError,
    PayloadTooLargeError,
    UnsupportedMediaTypeError,
)
from survey_recorder.core.filenames import generate_filename
from survey_recorder.core.logger import get_logger
from survey_recorder.schemas.recording import (
    DeleteResponse,
    ErrorResponse,
    HealthResponse,
    LogEntry,
    RecordingInfo,
    SavedFiles,
    SaveRecordingResponse,
    UploadResponse,
)
from survey_recorder.services.catalog import list_recordings
from survey_recorder.services.ledger import DailyLedger
from survey_recorder.services.store import RecordingStore
from survey_recorder.services.transcoder import AudioTranscoder

router = APIRouter(prefix="/api", tags=["recordings"])
logger = get_logger(__name__)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


@router.post(
    "/upload-recording",
    status_code=201,
    response_model=UploadResponse,
    responses={**ERROR_RESPONSES, 413: {"model": ErrorResponse}, 415: {"model": ErrorResponse}},
)
async def upload_recording(
    request: Request,
    upload: ValidatedUpload = Depends(validated_upload),
    store: RecordingStore = Depends(get_store),
    ledger: DailyLedger = Depends(get_ledger),
) -> UploadResponse:
    """Store a validated clip and record it in today's ledger.

    A failed ledger append is logged and does not undo the stored file.
    """
    meta = upload.metadata
    filename = generate_filename(meta.item_name)
    file_size = await store.save(filename, upload.file)

    recording_id = str(uuid.uuid4())
    entry = LogEntry(
        recording_id=recording_id,
        filename=filename,
        item_name=meta.item_name,
        duration_ms=meta.duration_ms,
        timestamp=meta.timestamp,
        locale=meta.locale or DEFAULT_LOCALE,
        session_id=meta.session_id,
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        app_version=meta.app_version or DEFAULT_APP_VERSION,
        file_size=file_size,
        device_info=meta.device_info or {},
    )
    try:
        await ledger.append(entry.model_dump(by_alias=True))
    except LedgerError as e:
        logger.error(
            f"Failed to write log entry: {e}",
            extra={"recording_id": recording_id, "recording": filename},
        )

    logger.info(
        "Recording uploaded successfully",
        extra={
            "recording_id": recording_id,
            "recording": filename,
            "item_name": meta.item_name,
            "file_size": file_size,
        },
    )
    download_url = f"/api/download/{filename}"
    return UploadResponse(
        recording_id=recording_id, filename=filename, download_url=download_url, url=download_url
    )


@router.get("/recordings", response_model=List[RecordingInfo], responses=ERROR_RESPONSES)
async def get_recordings(
    item: str | None = None,
    day: date | None = Query(None, alias="date"),
    store: RecordingStore = Depends(get_store),
    ledger: DailyLedger = Depends(get_ledger),
) -> List[RecordingInfo]:
    """List stored recordings, newest first.

    Args:
        item (str | None, optional): Case-insensitive item name substring.
        day (date | None, optional): Creation day (YYYY-MM-DD, server local time).
    Returns:
        List[RecordingInfo]: Filename, size, creation time and item name per recording.
    """
    recordings = await list_recordings(store, ledger, item=item, on_date=day)
    logger.info(
        "Recordings list retrieved",
        extra={"total_recordings": len(recordings), "filters": {"item": item, "date": day}},
    )
    return [
        RecordingInfo(
            filename=r.filename, size=r.size, created_at=r.created_at, item_name=r.item_name
        )
        for r in recordings
    ]


@router.get("/recording-logs", responses=ERROR_RESPONSES)
async def get_recording_logs(
    day: date | None = Query(None, alias="date"),
    ledger: DailyLedger = Depends(get_ledger),
) -> List[dict[str, Any]]:
    """Ledger entries for a day (default today), exactly as stored."""
    day = day or date.today()
    entries = await ledger.read(day)
    logger.info("Recording logs retrieved", extra={"date": day, "log_count": len(entries)})
    return entries


@router.get("/download/{filename}", responses=ERROR_RESPONSES)
async def download_recording(
    filename: str, store: RecordingStore = Depends(get_store)
) -> FileResponse:
    path = await store.locate(filename)
    logger.info("Recording download started", extra={"recording": filename})
    return FileResponse(
        path,
        media_type=AUDIO_MIME_TYPE,
        filename=filename,
        headers={"Cache-Control": "no-cache"},
    )


@router.delete("/recordings/{filename}", response_model=DeleteResponse, responses=ERROR_RESPONSES)
async def delete_recording(
    filename: str,
    store: RecordingStore = Depends(get_store),
    ledger: DailyLedger = Depends(get_ledger),
) -> DeleteResponse:
    """Delete a recording, then its ledger entry (best effort).

    Args:
        filename (str): The filename of the recording.
    Returns:
        DeleteResponse: Confirmation message.
    """
    await store.delete(filename)
    try:
        await ledger.remove(filename)
    except LedgerError as e:
        logger.error(f"Failed to remove log entry: {e}", extra={"recording": filename})

    logger.info("Recording deleted successfully", extra={"recording": filename})
    return DeleteResponse(message=f"Recording {filename} deleted successfully")


@router.get("/health", response_model=HealthResponse, responses={500: {"model": ErrorResponse}})
async def health_check(
    request: Request, store: RecordingStore = Depends(get_store)
) -> HealthResponse:
    return HealthResponse(
        status="ok",
        uptime=round(time.monotonic() - request.app.state.started_at, 3),
        timestamp=datetime.now(timezone.utc),
        version=settings.app_version,
        recordings_count=await store.count(),
    )


@router.post(
    "/save-recording",
    response_model=SaveRecordingResponse,
    responses={**ERROR_RESPONSES, 413: {"model": ErrorResponse}, 415: {"model": ErrorResponse}},
)
async def save_recording(
    audio: UploadFile | None = File(None),
    transcript: str = Form(""),
    transcoder: AudioTranscoder = Depends(get_transcoder),
) -> SaveRecordingResponse:
    """Convert an uploaded clip to WAV and store it with its transcript."""
    if audio is None:
        raise ClientInputError("No audio file provided", error="No file uploaded")
    if not media_type(audio.content_type).startswith("audio/"):
        raise UnsupportedMediaTypeError("Audio file must be in audio format")
    if upload_size(audio) > settings.max_transcode_size:
        raise PayloadTooLargeError(f"Maximum file size is {settings.max_transcode_mb}MB")

    saved = await transcoder.save(await audio.read(), transcript)
    return SaveRecordingResponse(
        success=True,
        files=SavedFiles(audio=saved.audio_file, transcript=saved.transcript_file),
        timestamp=saved.timestamp,
    )
