import asyncio
import json
import uuid
from contextlib import asynccontextmanager
import aiofiles
import aiofiles.os
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any
from survey_recorder.constants import LEDGER_DATE_FORMAT, LEDGER_PREFIX, LEDGER_SUFFIX
from survey_recorder.core.errors import LedgerError
from survey_recorder.core.logger import get_logger

logger = get_logger(__name__)


class DailyLedger:
    """Per-day JSON array of upload records, one file per calendar day.

    Every append is a read-modify-write of the whole day file. Writers for the
    same day are serialised by a per-day asyncio lock, so concurrent requests
    in this process cannot drop each other's entries. Separate processes
    sharing a logs directory are not coordinated and can still lose entries
    (last writer wins).
    """

    def __init__(self, logs_dir: Path, lookback_days: int = 7):
        self.logs_dir = Path(logs_dir)
        self.lookback_days = lookback_days
        self._locks: dict[date, asyncio.Lock] = {}
        self._lock_users: dict[date, int] = {}

    def path_for(self, day: date) -> Path:
        return self.logs_dir / f"{LEDGER_PREFIX}{day.strftime(LEDGER_DATE_FORMAT)}{LEDGER_SUFFIX}"

    @asynccontextmanager
    async def _lock(self, day: date):
        """Hold the day's lock; it is dropped once no task holds or awaits it."""
        lock = self._locks.setdefault(day, asyncio.Lock())
        self._lock_users[day] = self._lock_users.get(day, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[day] -= 1
            if not self._lock_users[day]:
                del self._lock_users[day]
                del self._locks[day]

    async def _load(self, path: Path) -> list[dict[str, Any]]:
        """Read a ledger file. FileNotFoundError propagates; bad content raises LedgerError."""
        async with aiofiles.open(path, "rb") as f:
            data = await f.read()
        try:
            entries = json.loads(data.decode("utf-8"))
        except UnicodeDecodeError as e:
            raise LedgerError(f"Ledger file {path.name} is not valid UTF-8: {e}") from e
        except json.JSONDecodeError as e:
            raise LedgerError(f"Ledger file {path.name} is not valid JSON: {e}") from e
        if not isinstance(entries, list):
            raise LedgerError(f"Ledger file {path.name} does not hold a JSON array")
        return entries

    async def _write(self, path: Path, entries: list[dict[str, Any]]) -> None:
        tmp_path = path.with_name(f"{path.name}.{uuid.uuid4().hex[:8]}.tmp")
        try:
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(entries, indent=2, ensure_ascii=False))
            await aiofiles.os.replace(tmp_path, path)
        except OSError as e:
            try:
                await aiofiles.os.remove(tmp_path)
            except OSError:
                pass
            raise LedgerError(f"Failed to write ledger file {path.name}: {e}") from e

    async def append(self, entry: dict[str, Any], day: date | None = None) -> int:
        """Append one record to the day's ledger.

        Args:
            entry (dict): JSON-serialisable log entry.
            day (date | None, optional): Target day. Defaults to today (server clock).
        Returns:
            int: Number of entries in the day file after the append.
        """
        day = day or date.today()
        path = self.path_for(day)
        async with self._lock(day):
            try:
                entries = await self._load(path)
            except FileNotFoundError:
                entries = []
            except (OSError, LedgerError) as e:
                logger.warning(
                    f"Failed to read existing log file, starting a new one: {e}",
                    extra={"log_file": str(path)},
                )
                entries = []

            entries.append(entry)
            await self._write(path, entries)

        logger.debug(f"Log entry written to {path.name} ({len(entries)} entries)")
        return len(entries)

    async def read(self, day: date) -> list[dict[str, Any]]:
        path = self.path_for(day)
        try:
            return await self._load(path)
        except FileNotFoundError:
            return []
        except OSError as e:
            raise LedgerError(f"Failed to read ledger file {path.name}: {e}") from e

    async def remove(self, filename: str, today: date | None = None) -> date | None:
        """Drop the entry for `filename` from the most recent ledger that holds it.

        Only the last `lookback_days` days are searched; older entries are left
        in place.

        Args:
            filename (str): Artifact filename.
            today (date | None, optional): First day searched. Defaults to today.
        Returns:
            date | None: Day whose ledger was rewritten, or None if no entry was found.
        """
        today = today or date.today()
        for offset in range(self.lookback_days):
            day = today - timedelta(days=offset)
            path = self.path_for(day)
            async with self._lock(day):
                try:
                    entries = await self._load(path)
                except FileNotFoundError:
                    continue
                except (OSError, LedgerError) as e:
                    logger.warning(f"Failed to process log file: {e}", extra={"log_file": str(path)})
                    continue

                remaining = [
                    item for item in entries
                    if not (isinstance(item, dict) and item.get("filename") == filename)
                ]
                if len(remaining) != len(entries):
                    await self._write(path, remaining)
                    logger.debug(f"Log entry for {filename} removed from {path.name}")
                    return day

        logger.warning(
            f"No ledger entry for {filename} in the last {self.lookback_days} days",
            extra={"recording": filename},
        )
        return None

    async def entries_by_day(self) -> dict[date, list[dict[str, Any]]]:
        """Every readable ledger file in the directory, keyed by day."""
        result = {}
        for name in sorted(await aiofiles.os.listdir(self.logs_dir)):
            if not (name.startswith(LEDGER_PREFIX) and name.endswith(LEDGER_SUFFIX)):
                continue
            stamp = name[len(LEDGER_PREFIX):-len(LEDGER_SUFFIX)]
            try:
                day = datetime.strptime(stamp, LEDGER_DATE_FORMAT).date()
                result[day] = await self._load(self.logs_dir / name)
            except (ValueError, OSError, LedgerError) as e:
                logger.warning(f"Skipping ledger file {name}: {e}")
        return result
