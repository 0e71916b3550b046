from datetime import date
from survey_recorder.core.errors import LedgerError
from survey_recorder.core.logger import get_logger
from survey_recorder.services.ledger import DailyLedger
from survey_recorder.services.store import RecordingStore, StoredRecording

logger = get_logger(__name__)


def local_date(recording: StoredRecording) -> date:
    return recording.created_at.astimezone().date()


async def _ledger_item_names(ledger: DailyLedger, days: set[date]) -> dict[str, str]:
    names = {}
    for day in days:
        try:
            entries = await ledger.read(day)
        except LedgerError as e:
            logger.warning(f"Item names for {day} fall back to filenames: {e}")
            continue
        for entry in entries:
            if isinstance(entry, dict) and entry.get("filename") and entry.get("itemName"):
                names[entry["filename"]] = entry["itemName"]
    return names


async def list_recordings(
    store: RecordingStore,
    ledger: DailyLedger,
    item: str | None = None,
    on_date: date | None = None,
) -> list[StoredRecording]:
    """Stored recordings, newest first.

    The item name comes from the ledger entry written on the recording's
    creation day when there is one, otherwise from the filename.

    Args:
        store (RecordingStore): Artifact store.
        ledger (DailyLedger): Upload ledger.
        item (str | None, optional): Case-insensitive substring of the item name.
        on_date (date | None, optional): Local calendar day of creation.
    Returns:
        list[StoredRecording]: Matching recordings.
    """
    recordings = await store.list()
    if on_date:
        recordings = [r for r in recordings if local_date(r) == on_date]

    names = await _ledger_item_names(ledger, {local_date(r) for r in recordings})
    for r in recordings:
        r.item_name = names.get(r.filename, r.item_name)

    if item:
        needle = item.lower()
        recordings = [r for r in recordings if needle in r.item_name.lower()]

    recordings.sort(key=lambda r: r.created_at, reverse=True)
    return recordings
