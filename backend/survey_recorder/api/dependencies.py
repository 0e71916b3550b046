from fastapi import Request
from survey_recorder.services.ledger import DailyLedger
from survey_recorder.services.store import RecordingStore
from survey_recorder.services.transcoder import AudioTranscoder


def get_store(request: Request) -> RecordingStore:
    return request.app.state.store


def get_ledger(request: Request) -> DailyLedger:
    return request.app.state.ledger


def get_transcoder(request: Request) -> AudioTranscoder:
    return request.app.state.transcoder
