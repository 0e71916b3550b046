import asyncio
import json
import wave
import aiofiles
import aiofiles.os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from survey_recorder.core.errors import TranscodeError
from survey_recorder.core.filenames import short_id
from survey_recorder.core.logger import get_logger

logger = get_logger(__name__)

SAMPLE_RATE = 44100
CHANNELS = 1


@dataclass
class TranscodedRecording:
    audio_file: str
    transcript_file: str
    timestamp: str
    duration_seconds: float | None


def wav_duration(path: Path) -> float | None:
    try:
        with wave.open(path.as_posix(), "rb") as wav_file:
            return wav_file.getnframes() / wav_file.getframerate()
    except (wave.Error, OSError, ZeroDivisionError) as e:
        logger.warning(f"Could not read WAV duration of {path.name}: {e}")
        return None


class AudioTranscoder:
    """Converts an uploaded webm clip to 16-bit mono WAV and stores its transcript."""

    def __init__(self, recordings_dir: Path, ffmpeg_bin: str = "ffmpeg"):
        self.recordings_dir = Path(recordings_dir)
        self.ffmpeg_bin = ffmpeg_bin

    async def _convert(self, source: Path, target: Path) -> None:
        cmd = [
            self.ffmpeg_bin,
            "-nostdin",
            "-hide_banner",
            "-loglevel", "error",
            "-y",
            "-i", source.as_posix(),
            "-vn",
            "-acodec", "pcm_s16le",
            "-ac", str(CHANNELS),
            "-ar", str(SAMPLE_RATE),
            "-f", "wav",
            target.as_posix(),
        ]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
            )
        except FileNotFoundError as e:
            raise TranscodeError(f"ffmpeg not found: {self.ffmpeg_bin}") from e

        _, stderr = await process.communicate()
        if process.returncode != 0:
            detail = stderr.decode(errors="replace").strip()
            raise TranscodeError(f"ffmpeg exited with code {process.returncode}: {detail}")

    async def save(self, data: bytes, transcript: str = "") -> TranscodedRecording:
        """Write `data`, convert it to WAV and store the transcript next to it.

        Args:
            data (bytes): Raw webm audio.
            transcript (str, optional): Client-side transcript text.
        Returns:
            TranscodedRecording: Names of the files written.
        """
        now = datetime.now(timezone.utc)
        stamp = f"{now.strftime('%Y-%m-%dT%H-%M-%S')}_{short_id()}"
        wav_name = f"recording_{stamp}.wav"
        transcript_name = f"transcript_{stamp}.json"
        temp_path = self.recordings_dir / f"temp_{stamp}.webm.tmp"
        wav_path = self.recordings_dir / wav_name

        try:
            async with aiofiles.open(temp_path, "wb") as f:
                await f.write(data)
            await self._convert(temp_path, wav_path)
        except OSError as e:
            raise TranscodeError(f"Failed to write temporary file: {e}") from e
        finally:
            try:
                await aiofiles.os.remove(temp_path)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Failed to delete temporary file {temp_path}: {e}")

        duration = wav_duration(wav_path)
        transcript_data = {
            "transcript": transcript or "",
            "timestamp": now.isoformat(),
            "audioFile": wav_name,
            "duration": duration,
        }
        try:
            async with aiofiles.open(self.recordings_dir / transcript_name, "w", encoding="utf-8") as f:
                await f.write(json.dumps(transcript_data, indent=2, ensure_ascii=False))
        except OSError as e:
            raise TranscodeError(f"Failed to write transcript: {e}") from e

        logger.info(
            "Recording and transcript saved",
            extra={"audio_file": wav_name, "transcript_file": transcript_name},
        )
        return TranscodedRecording(
            audio_file=wav_name,
            transcript_file=transcript_name,
            timestamp=stamp,
            duration_seconds=duration,
        )
