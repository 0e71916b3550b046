import re
import uuid
from datetime import datetime, timezone
from survey_recorder.constants import (
    AUDIO_EXTENSION,
    FILENAME_PREFIX,
    MAX_ITEM_NAME_LENGTH,
    SHORT_ID_LENGTH,
    UNKNOWN_ITEM,
)

_SPECIAL_CHARS = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")
_TIMESTAMP_SEPARATORS = re.compile(r"[:.]")


def sanitize_item_name(item_name: str | None) -> str:
    """Reduce an item name to `[a-z0-9_]`, at most 50 characters.

    Args:
        item_name (str | None): Raw item name as typed by the user.
    Returns:
        str: Safe path fragment, or "unknown" when nothing survives.
    """
    safe = _SPECIAL_CHARS.sub("", (item_name or "").lower()).strip()
    safe = _WHITESPACE.sub("_", safe)[:MAX_ITEM_NAME_LENGTH].strip("_")
    return safe or UNKNOWN_ITEM


def format_timestamp(now: datetime) -> str:
    """UTC ISO-8601 with milliseconds, with ':' and '.' swapped for '-'."""
    now = now.astimezone(timezone.utc)
    iso = now.strftime("%Y-%m-%dT%H:%M:%S") + f".{now.microsecond // 1000:03d}Z"
    return _TIMESTAMP_SEPARATORS.sub("-", iso)


def short_id() -> str:
    return uuid.uuid4().hex[:SHORT_ID_LENGTH]


def generate_filename(
    item_name: str | None,
    now: datetime | None = None,
    suffix: str | None = None,
) -> str:
    """Build `survey_{item}_{timestamp}_{id}.webm` for a new upload.

    Args:
        item_name (str | None): Raw item name.
        now (datetime | None, optional): Upload time. Defaults to the current UTC time.
        suffix (str | None, optional): Random suffix. Defaults to 8 hex chars of a uuid4.
    Returns:
        str: A filename safe to use as a single path segment.
    """
    now = now or datetime.now(timezone.utc)
    suffix = suffix or short_id()
    return (
        f"{FILENAME_PREFIX}_{sanitize_item_name(item_name)}"
        f"_{format_timestamp(now)}_{suffix}{AUDIO_EXTENSION}"
    )


def is_safe_filename(filename: str | None) -> bool:
    if not filename:
        return False
    return not any(token in filename for token in ("/", "\\", "..", "\x00"))


def parse_item_name(filename: str) -> str:
    """Recover the (sanitized) item name from a generated filename.

    The timestamp and suffix never contain '_', so splitting from the right
    keeps underscores that belong to the item name. Underscores come back as
    spaces.
    """
    stem = filename[: -len(AUDIO_EXTENSION)] if filename.endswith(AUDIO_EXTENSION) else filename
    prefix = f"{FILENAME_PREFIX}_"
    if not stem.startswith(prefix):
        return UNKNOWN_ITEM
    parts = stem[len(prefix):].rsplit("_", 2)
    if len(parts) != 3 or not parts[0]:
        return UNKNOWN_ITEM
    return parts[0].replace("_", " ")
