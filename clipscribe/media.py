"""Audio extraction, probing and sub-clip cutting via ffmpeg/ffprobe."""

import asyncio
import json
import logging
import subprocess
from pathlib import Path

from clipscribe._types import MediaInfo
from clipscribe.config import MediaConfig
from clipscribe.errors import MediaProbeError, MediaProcessingError

logger = logging.getLogger(__name__)


def safe_delete(path: Path) -> None:
    """Delete a file if it exists, logging instead of raising."""
    try:
        if path.exists():
            path.unlink()
            logger.debug("Deleted partial output %s", path)
    except Exception as e:
        logger.warning("Failed to delete %s: %s", path, e)


class MediaService:
    """Wraps the ffmpeg command line tools.

    Runs each subprocess in the default thread pool so concurrent runs do not
    block the event loop.
    """

    def __init__(self, config: MediaConfig | None = None):
        self.config = config or MediaConfig()
        logger.info(
            "MediaService initialized: ffmpeg=%s, ffprobe=%s, codec=%s@%s",
            self.config.ffmpeg_bin,
            self.config.ffprobe_bin,
            self.config.audio_codec,
            self.config.audio_bitrate,
        )

    async def _run(self, cmd: list[str]) -> subprocess.CompletedProcess:
        """Run a tool command with the configured timeout.

        The child process is killed when the timeout expires, including when
        the awaiting task has already been cancelled.

        Raises:
            MediaProcessingError: If the tool is missing, times out or exits non-zero
        """
        logger.debug("Executing: %s", " ".join(cmd))
        loop = asyncio.get_event_loop()

        def _run_subprocess():
            return subprocess.run(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=self.config.timeout,
            )

        try:
            result = await loop.run_in_executor(None, _run_subprocess)
        except subprocess.TimeoutExpired as e:
            raise MediaProcessingError(
                f"{cmd[0]} timed out after {self.config.timeout}s"
            ) from e
        except FileNotFoundError as e:
            raise MediaProcessingError(f"Binary '{cmd[0]}' not found in PATH") from e

        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace") if result.stderr else ""
            raise MediaProcessingError(
                f"{cmd[0]} failed with exit code {result.returncode}: {stderr.strip()[-500:]}",
                stderr=stderr,
            )
        return result

    async def probe(self, path: Path) -> MediaInfo:
        """Report duration and size of a media file.

        Raises:
            MediaProbeError: If the file is unreadable or not a valid container
        """
        path = Path(path)
        if not path.is_file():
            raise MediaProbeError(f"Media file not found: {path}")

        cmd = [
            self.config.ffprobe_bin,
            "-v",
            "error",
            "-show_entries",
            "format=duration",
            "-of",
            "json",
            str(path),
        ]
        try:
            completed = await self._run(cmd)
        except MediaProcessingError as e:
            raise MediaProbeError(f"Could not probe {path}: {e}", stderr=e.stderr) from e

        try:
            payload = json.loads(completed.stdout.decode("utf-8"))
            duration = float(payload.get("format", {}).get("duration", 0) or 0)
        except (ValueError, AttributeError) as e:
            raise MediaProbeError(f"Unreadable ffprobe output for {path}: {e}") from e

        if duration <= 0:
            raise MediaProbeError(f"Could not read duration of {path}")

        info = MediaInfo(duration_seconds=duration, size_bytes=path.stat().st_size)
        logger.info(
            "Probed %s: %.1f seconds (%.1f minutes), %.2f MB",
            path,
            info.duration_seconds,
            info.duration_seconds / 60,
            info.size_bytes / (1024 * 1024),
        )
        return info

    async def extract_audio(self, video_path: Path, output_path: Path) -> Path:
        """Re-encode the audio track of a video into ``output_path``.

        Raises:
            MediaProcessingError: If ffmpeg fails; partial output is removed first
        """
        video_path = Path(video_path)
        output_path = Path(output_path)
        if not video_path.is_file():
            raise MediaProcessingError(f"Source file not found: {video_path}")

        output_path.parent.mkdir(parents=True, exist_ok=True)
        cmd = [
            self.config.ffmpeg_bin,
            "-y",
            "-i",
            str(video_path),
            "-vn",
            "-c:a",
            self.config.audio_codec,
            "-b:a",
            self.config.audio_bitrate,
            str(output_path),
        ]
        logger.info("Extracting audio from %s", video_path)
        try:
            await self._run(cmd)
        except MediaProcessingError:
            safe_delete(output_path)
            raise
        logger.info("Audio extraction complete: %s", output_path)
        return output_path

    async def cut_clip(
        self,
        audio_path: Path,
        output_path: Path,
        start: float,
        duration: float,
    ) -> Path:
        """Re-encode ``duration`` seconds of audio starting at ``start``.

        Raises:
            MediaProcessingError: If ffmpeg fails; partial output is removed first
        """
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        cmd = [
            self.config.ffmpeg_bin,
            "-y",
            "-i",
            str(audio_path),
            "-vn",
            "-ss",
            f"{start:.3f}",
            "-t",
            f"{duration:.3f}",
            "-c:a",
            self.config.audio_codec,
            "-b:a",
            self.config.audio_bitrate,
            str(output_path),
        ]
        try:
            await self._run(cmd)
        except MediaProcessingError:
            safe_delete(output_path)
            raise
        return output_path
