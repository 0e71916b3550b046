import time
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from survey_recorder.api import endpoints
from survey_recorder.api.ratelimit import RateLimitMiddleware
from survey_recorder.core.config import Settings, settings
from survey_recorder.core.errors import (
    ClientInputError,
    RecordingServiceError,
    StartupError,
)
from survey_recorder.core.logger import get_logger, setup_logging
from survey_recorder.services.ledger import DailyLedger
from survey_recorder.services.reconcile import reconcile
from survey_recorder.services.store import RecordingStore
from survey_recorder.services.transcoder import AudioTranscoder

logger = get_logger(__name__)


def ensure_dirs(config: Settings) -> None:
    """Create the recordings and logs directories, or refuse to start."""
    try:
        config.recordings_dir.mkdir(parents=True, exist_ok=True)
        config.logs_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.critical(
            f"Failed to create directories: {e}",
            extra={"recordings_dir": str(config.recordings_dir), "logs_dir": str(config.logs_dir)},
        )
        raise StartupError(f"Failed to create directories: {e}") from e
    logger.info(
        "Directories ensured",
        extra={"recordings_dir": str(config.recordings_dir), "logs_dir": str(config.logs_dir)},
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.log_level, settings.log_format)
    ensure_dirs(settings)

    app.state.started_at = time.monotonic()
    app.state.store = RecordingStore(settings.recordings_dir)
    app.state.ledger = DailyLedger(
        settings.logs_dir, lookback_days=settings.ledger_lookback_days
    )
    app.state.transcoder = AudioTranscoder(settings.recordings_dir, settings.ffmpeg_bin)
    await reconcile(app.state.store, app.state.ledger)

    logger.info(f"{settings.app_name} v{settings.app_version} started")
    yield
    logger.info("Shutting down")


app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)


app.add_middleware(
    RateLimitMiddleware,
    max_requests=settings.rate_limit_max,
    window_seconds=settings.rate_limit_window_ms / 1000,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials="*" not in settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(endpoints.router)


@app.exception_handler(RecordingServiceError)
async def recording_service_error_handler(request: Request, exc: RecordingServiceError):
    if isinstance(exc, ClientInputError):
        logger.warning(
            f"{exc.error}: {exc.message}",
            extra={"method": request.method, "path": request.url.path},
        )
    elif exc.status_code >= 500:
        logger.error(
            f"{exc.error}: {exc.message}",
            extra={"method": request.method, "path": request.url.path},
        )
    else:
        logger.info(f"{exc.error}: {exc.message}", extra={"path": request.url.path})
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    problems = "; ".join(
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
    )
    return JSONResponse(status_code=400, content={"error": "Invalid request", "message": problems})


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("survey_recorder.main:app", host=settings.host, port=settings.port)
