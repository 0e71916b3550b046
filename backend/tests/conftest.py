import json
import os
import pytest
from fastapi.testclient import TestClient

# Settings are read at import time; keep the limiter out of the way of the
# integration tests before the app is imported.
os.environ.setdefault("RATE_LIMIT_MAX", "100000")
os.environ.setdefault("LOG_FORMAT", "text")

from survey_recorder.core.config import settings
from survey_recorder.main import app
from survey_recorder.services.ledger import DailyLedger
from survey_recorder.services.store import RecordingStore

WEBM_BYTES = b"\x1aE\xdf\xa3" + b"\x00" * 256


@pytest.fixture(scope="function", autouse=True)
def storage_dirs(tmp_path, monkeypatch):
    """
    Point the recordings and logs directories at a temporary location for every test.
    """
    recordings_dir = tmp_path / "recordings"
    logs_dir = tmp_path / "logs"
    recordings_dir.mkdir()
    logs_dir.mkdir()

    monkeypatch.setattr(settings, "recordings_dir", recordings_dir)
    monkeypatch.setattr(settings, "logs_dir", logs_dir)

    yield recordings_dir, logs_dir


@pytest.fixture
def recordings_dir(storage_dirs):
    return storage_dirs[0]


@pytest.fixture
def logs_dir(storage_dirs):
    return storage_dirs[1]


@pytest.fixture
def store(recordings_dir):
    return RecordingStore(recordings_dir)


@pytest.fixture
def ledger(logs_dir):
    return DailyLedger(logs_dir)


@pytest.fixture(scope="function")
def client(storage_dirs):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def upload(client):
    """POST a clip to the upload endpoint; keyword arguments override metadata fields."""

    def _upload(content_type="audio/webm", data=WEBM_BYTES, meta=None, **fields):
        metadata = {
            "itemName": "Idli",
            "timestamp": "2026-10-19T08:30:12.345Z",
            "durationMs": 2500,
            "locale": "en-IN",
            "sessionId": "session-1",
            "deviceInfo": {"userAgent": "pytest"},
            "appVersion": "1.0.0",
        }
        metadata.update(fields)
        form = {"meta": meta if meta is not None else json.dumps(metadata)}
        return client.post(
            "/api/upload-recording",
            files={"file": ("recording.webm", data, content_type)},
            data=form,
        )

    return _upload
