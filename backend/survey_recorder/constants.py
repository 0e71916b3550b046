from pathlib import Path

APP_DIR = Path(__file__).resolve().parent

AUDIO_EXTENSION = ".webm"
AUDIO_MIME_TYPE = "audio/webm"
FILENAME_PREFIX = "survey"
UNKNOWN_ITEM = "unknown"
MAX_ITEM_NAME_LENGTH = 50
SHORT_ID_LENGTH = 8

LEDGER_PREFIX = "recording_log_"
LEDGER_SUFFIX = ".json"
LEDGER_DATE_FORMAT = "%Y-%m-%d"

DEFAULT_LOCALE = "en-IN"
DEFAULT_APP_VERSION = "unknown"
