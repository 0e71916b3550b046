import json
import pytest
import time
from datetime import date, datetime
from unittest.mock import patch
from survey_recorder.core.config import settings
from survey_recorder.core.errors import LedgerError
from survey_recorder.services.ledger import DailyLedger


def test_read_main(client):
    response = client.get("/docs")
    assert response.status_code == 200


def test_upload_recording_idli(client, upload, recordings_dir):
    response = upload()
    assert response.status_code == 201
    body = response.json()
    assert body["filename"].startswith("survey_idli_")
    assert body["filename"].endswith(".webm")
    assert body["downloadUrl"] == f"/api/download/{body['filename']}"
    assert body["recordingId"]
    assert (recordings_dir / body["filename"]).exists()

    logs = client.get("/api/recording-logs").json()
    assert len(logs) == 1
    assert logs[0]["filename"] == body["filename"]
    assert logs[0]["itemName"] == "Idli"
    assert logs[0]["durationMs"] == 2500
    assert logs[0]["recordingId"] == body["recordingId"]
    assert logs[0]["fileSize"] > 0
    assert logs[0]["deviceInfo"] == {"userAgent": "pytest"}


def test_upload_defaults_optional_fields(client, upload):
    meta = json.dumps({"itemName": "Dosa", "timestamp": "2026-10-19T08:30:12Z", "durationMs": 1000})
    response = upload(meta=meta)
    assert response.status_code == 201

    entry = client.get("/api/recording-logs").json()[0]
    assert entry["locale"] == "en-IN"
    assert entry["appVersion"] == "unknown"
    assert entry["deviceInfo"] == {}
    assert entry["sessionId"] is None


def test_upload_too_long_is_rejected(client, upload, recordings_dir, logs_dir):
    response = upload(durationMs=40000)
    assert response.status_code == 400
    assert response.json()["error"] == "Recording too long"
    assert "30 seconds" in response.json()["message"]

    assert client.get("/api/recordings").json() == []
    assert client.get("/api/recording-logs").json() == []
    assert list(recordings_dir.iterdir()) == []


@pytest.mark.parametrize("duration", [float("nan"), float("inf")])
def test_upload_non_finite_duration_is_rejected(client, upload, recordings_dir, duration):
    # json.dumps writes these as the bare NaN / Infinity tokens json.loads accepts
    response = upload(durationMs=duration)
    assert response.status_code == 400
    assert response.json()["error"] == "Missing required fields"
    assert "durationMs" in response.json()["message"]

    assert client.get("/api/recording-logs").json() == []
    assert list(recordings_dir.iterdir()) == []


def test_upload_wrong_mime_type_never_writes(client, upload, recordings_dir):
    with patch("survey_recorder.services.store.RecordingStore.save") as save:
        response = upload(content_type="text/plain")
    assert response.status_code == 415
    assert response.json()["error"] == "Invalid file type"
    save.assert_not_called()
    assert list(recordings_dir.iterdir()) == []


def test_upload_accepts_codec_parameter(upload):
    response = upload(content_type="audio/webm;codecs=opus")
    assert response.status_code == 201


def test_upload_without_file(client):
    response = client.post("/api/upload-recording", data={"meta": "{}"})
    assert response.status_code == 400
    assert response.json()["error"] == "No file uploaded"


def test_upload_multiple_files(client):
    files = [
        ("file", ("a.webm", b"a", "audio/webm")),
        ("file", ("b.webm", b"b", "audio/webm")),
    ]
    response = client.post("/api/upload-recording", files=files, data={"meta": "{}"})
    assert response.status_code == 400
    assert response.json()["error"] == "Too many files"


def test_upload_file_in_wrong_field(client):
    response = client.post(
        "/api/upload-recording",
        files={"audio": ("a.webm", b"a", "audio/webm")},
        data={"meta": "{}"},
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Unexpected file field"


def test_upload_too_large(upload, monkeypatch, recordings_dir):
    monkeypatch.setattr(settings, "max_file_mb", 1)
    response = upload(data=b"\x00" * (1024 * 1024 + 1))
    assert response.status_code == 413
    assert response.json()["error"] == "File too large"
    assert list(recordings_dir.iterdir()) == []


def test_upload_invalid_metadata_json(upload):
    response = upload(meta="{not json")
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid metadata"


def test_upload_metadata_not_an_object(upload):
    response = upload(meta="[1, 2]")
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid metadata"


def test_upload_missing_required_fields(upload, recordings_dir):
    response = upload(meta=json.dumps({"itemName": "Idli"}))
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Missing required fields"
    assert "durationMs" in body["message"]
    assert list(recordings_dir.iterdir()) == []


def test_upload_blank_item_name(upload):
    response = upload(itemName="   ")
    assert response.status_code == 400
    assert response.json()["error"] == "Missing required fields"


def test_upload_bad_timestamp(upload):
    response = upload(timestamp="yesterday")
    assert response.status_code == 400
    assert response.json()["error"] == "Missing required fields"


def test_upload_ledger_append_failure_keeps_recording(client, upload, recordings_dir):
    with patch.object(DailyLedger, "append", side_effect=LedgerError("disk full")):
        response = upload()
    assert response.status_code == 201
    assert (recordings_dir / response.json()["filename"]).exists()
    assert client.get("/api/recording-logs").json() == []


def test_upload_over_undecodable_ledger_keeps_recording(client, upload, recordings_dir, logs_dir):
    (logs_dir / f"recording_log_{date.today().isoformat()}.json").write_bytes(b"\xff\xfe[garbage")
    response = upload()
    assert response.status_code == 201
    assert (recordings_dir / response.json()["filename"]).exists()

    logs = client.get("/api/recording-logs").json()
    assert [entry["filename"] for entry in logs] == [response.json()["filename"]]


def test_upload_storage_failure_returns_500(upload, recordings_dir):
    with patch("survey_recorder.services.store.aiofiles.open", side_effect=PermissionError("denied")):
        response = upload()
    assert response.status_code == 500
    assert response.json()["error"] == "Storage error"


def test_generated_filenames_are_distinct(upload):
    names = {upload().json()["filename"] for _ in range(5)}
    assert len(names) == 5


def test_get_recordings_empty(client):
    response = client.get("/api/recordings")
    assert response.status_code == 200
    assert response.json() == []


def test_get_recordings_filters_and_order(client, upload):
    first = upload(itemName="Masala Dosa").json()["filename"]
    time.sleep(0.01)
    second = upload(itemName="Idli").json()["filename"]

    listing = client.get("/api/recordings").json()
    assert [r["filename"] for r in listing][:2] == [second, first]
    assert {r["itemName"] for r in listing} == {"Masala Dosa", "Idli"}
    assert all(r["size"] > 0 and r["createdAt"] for r in listing)

    by_item = client.get("/api/recordings", params={"item": "dosa"}).json()
    assert [r["filename"] for r in by_item] == [first]

    today = date.today().isoformat()
    assert len(client.get("/api/recordings", params={"date": today}).json()) == 2
    assert client.get("/api/recordings", params={"date": "2001-01-01"}).json() == []


def test_get_recordings_item_name_without_ledger(client, recordings_dir):
    name = "survey_masala_dosa_2026-10-19T08-30-12-345Z_abcdef12.webm"
    (recordings_dir / name).write_bytes(b"data")
    (recordings_dir / "notes.txt").write_text("ignored")

    listing = client.get("/api/recordings").json()
    assert len(listing) == 1
    assert listing[0]["itemName"] == "masala dosa"


def test_get_recordings_invalid_date(client):
    response = client.get("/api/recordings", params={"date": "not-a-date"})
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid request"


def test_get_recording_logs_for_missing_day(client):
    response = client.get("/api/recording-logs", params={"date": "2001-01-01"})
    assert response.status_code == 200
    assert response.json() == []


def test_get_recording_logs_corrupt_file(client, logs_dir):
    (logs_dir / "recording_log_2001-01-01.json").write_text("{broken")
    response = client.get("/api/recording-logs", params={"date": "2001-01-01"})
    assert response.status_code == 500
    assert response.json()["error"] == "Ledger error"


def test_get_recording_logs_undecodable_file(client, logs_dir):
    (logs_dir / "recording_log_2001-01-01.json").write_bytes(b"\xff\xfe[garbage")
    response = client.get("/api/recording-logs", params={"date": "2001-01-01"})
    assert response.status_code == 500
    assert response.json()["error"] == "Ledger error"


def test_download_recording(client, upload):
    filename = upload().json()["filename"]
    response = client.get(f"/api/download/{filename}")
    assert response.status_code == 200
    assert response.headers["content-type"] == "audio/webm"
    assert "attachment" in response.headers["content-disposition"]
    assert filename in response.headers["content-disposition"]
    assert response.headers["cache-control"] == "no-cache"
    assert response.content.startswith(b"\x1aE\xdf\xa3")


def test_download_recording_not_found(client):
    response = client.get("/api/download/non_existent_file.webm")
    assert response.status_code == 404
    assert response.json()["error"] == "File not found"


def test_download_rejects_traversal(client):
    with patch("survey_recorder.services.store.aiofiles.os.path.isfile") as isfile:
        response = client.get("/api/download/..passwd")
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid filename"
    isfile.assert_not_called()


def test_delete_recording_not_found_leaves_ledger(client, upload, logs_dir):
    upload()
    ledger_file = logs_dir / f"recording_log_{date.today().isoformat()}.json"
    before = ledger_file.read_text()

    response = client.delete("/api/recordings/non_existent_file.webm")
    assert response.status_code == 404
    assert response.json()["error"] == "File not found"
    assert ledger_file.read_text() == before


def test_delete_rejects_traversal(client):
    response = client.delete("/api/recordings/..secret.webm")
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid filename"


def test_delete_recording_lifecycle(client, upload, recordings_dir):
    keep = upload(itemName="Vada").json()["filename"]
    filename = upload().json()["filename"]

    response = client.delete(f"/api/recordings/{filename}")
    assert response.status_code == 200
    assert response.json()["message"] == f"Recording {filename} deleted successfully"

    assert not (recordings_dir / filename).exists()
    assert client.get(f"/api/download/{filename}").status_code == 404
    logs = client.get("/api/recording-logs").json()
    assert [entry["filename"] for entry in logs] == [keep]


def test_delete_endpoint_os_error(client, upload):
    filename = upload().json()["filename"]
    with patch("survey_recorder.services.store.aiofiles.os.remove", side_effect=OSError("Disk failure")):
        response = client.delete(f"/api/recordings/{filename}")

    assert response.status_code == 500
    assert "Disk failure" in response.json()["message"]


def test_health(client, upload):
    upload()
    upload()
    response = client.get("/api/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["recordingsCount"] == 2
    assert body["uptime"] >= 0
    assert body["version"] == settings.app_version
    datetime.fromisoformat(body["timestamp"].replace("Z", "+00:00"))


def test_startup_fails_when_directories_cannot_be_created(tmp_path, monkeypatch):
    from fastapi.testclient import TestClient
    from survey_recorder.core.errors import StartupError
    from survey_recorder.main import app

    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    monkeypatch.setattr(settings, "recordings_dir", blocker / "recordings")

    with pytest.raises(StartupError):
        with TestClient(app):
            pass

def test_save_recording(client):
    from survey_recorder.services.transcoder import AudioTranscoder, TranscodedRecording

    saved = TranscodedRecording(
        audio_file="recording_2026-10-19T08-30-12_abcdef12.wav",
        transcript_file="transcript_2026-10-19T08-30-12_abcdef12.json",
        timestamp="2026-10-19T08-30-12_abcdef12",
        duration_seconds=1.5,
    )
    with patch.object(AudioTranscoder, "save", return_value=saved) as save:
        response = client.post(
            "/api/save-recording",
            files={"audio": ("recording.webm", b"webm", "audio/webm")},
            data={"transcript": "hello"},
        )

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "files": {"audio": saved.audio_file, "transcript": saved.transcript_file},
        "timestamp": saved.timestamp,
    }
    save.assert_awaited_once_with(b"webm", "hello")


def test_save_recording_requires_audio(client):
    response = client.post("/api/save-recording", data={"transcript": "hello"})
    assert response.status_code == 400
    assert response.json()["error"] == "No file uploaded"


def test_save_recording_rejects_non_audio(client):
    response = client.post(
        "/api/save-recording", files={"audio": ("notes.txt", b"text", "text/plain")}
    )
    assert response.status_code == 415


def test_save_recording_transcode_failure(client):
    from survey_recorder.core.errors import TranscodeError
    from survey_recorder.services.transcoder import AudioTranscoder

    with patch.object(AudioTranscoder, "save", side_effect=TranscodeError("ffmpeg not found: ffmpeg")):
        response = client.post(
            "/api/save-recording", files={"audio": ("recording.webm", b"webm", "audio/webm")}
        )
    assert response.status_code == 500
    assert response.json() == {
        "error": "Failed to save recording",
        "message": "ffmpeg not found: ffmpeg",
    }
