import aiofiles
import aiofiles.os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol
from survey_recorder.constants import AUDIO_EXTENSION
from survey_recorder.core.errors import InvalidFilenameError, NotFoundError, StorageError
from survey_recorder.core.filenames import is_safe_filename, parse_item_name
from survey_recorder.core.logger import get_logger

logger = get_logger(__name__)

CHUNK_SIZE = 64 * 1024


class AsyncReadable(Protocol):
    async def read(self, size: int = -1) -> bytes: ...


@dataclass
class StoredRecording:
    filename: str
    size: int
    created_at: datetime
    item_name: str


class RecordingStore:
    """Audio artifacts in a flat directory, keyed by filename."""

    def __init__(self, root: Path, extension: str = AUDIO_EXTENSION):
        self.root = Path(root)
        self.extension = extension

    def path_for(self, filename: str) -> Path:
        """Resolve a filename inside the store, refusing traversal tokens outright."""
        if not is_safe_filename(filename):
            logger.warning(f"Rejected unsafe filename: {filename!r}")
            raise InvalidFilenameError()
        return self.root / filename

    async def save(self, filename: str, source: AsyncReadable) -> int:
        """Stream `source` into a new file. Never overwrites.

        Args:
            filename (str): Generated filename.
            source (AsyncReadable): Anything with an async `read(size)`, e.g. an UploadFile.
        Returns:
            int: Number of bytes written.
        """
        path = self.path_for(filename)
        written = 0
        try:
            async with aiofiles.open(path, "xb") as out:
                while chunk := await source.read(CHUNK_SIZE):
                    await out.write(chunk)
                    written += len(chunk)
        except OSError as e:
            logger.error(f"Failed to save {filename}: {e}", extra={"path": str(path)})
            if not isinstance(e, FileExistsError):
                await self._discard(path)
            raise StorageError(f"Failed to store recording: {e}") from e

        logger.debug(f"Stored {filename} ({written} bytes)")
        return written

    async def _discard(self, path: Path) -> None:
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove partial file {path}: {e}")

    async def _filenames(self) -> list[str]:
        try:
            names = await aiofiles.os.listdir(self.root)
        except OSError as e:
            logger.error(f"Failed to read recordings directory {self.root}: {e}")
            raise StorageError(f"Failed to read recordings directory: {e}") from e
        return [name for name in names if name.endswith(self.extension)]

    async def list(self) -> list[StoredRecording]:
        recordings = []
        for name in await self._filenames():
            try:
                st = await aiofiles.os.stat(self.root / name)
            except OSError as e:
                # Deleted between listdir and stat, or unreadable.
                logger.warning(f"Failed to stat {name}: {e}")
                continue
            created = getattr(st, "st_birthtime", None) or st.st_ctime
            recordings.append(
                StoredRecording(
                    filename=name,
                    size=st.st_size,
                    created_at=datetime.fromtimestamp(created, tz=timezone.utc),
                    item_name=parse_item_name(name),
                )
            )
        return recordings

    async def count(self) -> int:
        return len(await self._filenames())

    async def exists(self, filename: str) -> bool:
        return await aiofiles.os.path.isfile(self.path_for(filename))

    async def locate(self, filename: str) -> Path:
        """Path of an existing artifact, for streaming."""
        path = self.path_for(filename)
        if not await aiofiles.os.path.isfile(path):
            raise NotFoundError(f"Recording {filename} does not exist")
        return path

    async def delete(self, filename: str) -> None:
        path = await self.locate(filename)
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            raise NotFoundError(f"Recording {filename} does not exist")
        except OSError as e:
            logger.error(f"Failed to delete file {path}: {e}")
            raise StorageError(f"Failed to delete file: {e}") from e
