"""Audio transcription via Deepgram API."""

import asyncio
import logging
import string
import time
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from clipscribe._types import TranscriptionResult, TranscriptionSegment
from clipscribe.errors import TranscriptionError

logger = logging.getLogger(__name__)


def speaker_code(speaker: int | None) -> str:
    """Turn a Deepgram speaker index into a generic letter code (0 -> "A")."""
    if speaker is None:
        return ""
    if 0 <= speaker < len(string.ascii_uppercase):
        return string.ascii_uppercase[speaker]
    return f"Speaker {speaker + 1}"


class DeepgramTranscriber:
    """Encapsulates Deepgram API client and transcription logic.

    Runs transcription inside a thread pool executor to avoid blocking the event loop.
    Lazy-initializes client on first transcription.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "nova-3",
        smart_format: bool = True,
        punctuate: bool = True,
        timeout: float = 600.0,
        max_workers: int = 8,
        executor: ThreadPoolExecutor | None = None,
    ):
        """Initialize Deepgram transcriber.

        Args:
            api_key: Deepgram API key
            model: Deepgram model (nova-3, nova-2, whisper-large, etc.)
            smart_format: Enable smart formatting (currency, dates, etc.)
            punctuate: Auto-add punctuation
            timeout: API request timeout in seconds
            max_workers: Thread pool size when no executor is given
            executor: Optional ThreadPoolExecutor for transcription tasks
        """
        self.api_key = api_key
        self.model = model
        self.smart_format = smart_format
        self.punctuate = punctuate
        self.timeout = timeout
        self.executor = executor or ThreadPoolExecutor(max_workers=max(1, max_workers))
        self._executor_owned = executor is None
        self._client = None
        self._client_lock = asyncio.Lock()
        logger.info(
            "DeepgramTranscriber initialized: model=%s, smart_format=%s, punctuate=%s",
            model,
            smart_format,
            punctuate,
        )

    async def _ensure_client_initialized(self) -> None:
        """Lazy-initialize Deepgram client on first use.

        Uses asyncio.Lock to prevent concurrent initialization attempts.

        Raises:
            TranscriptionError: If client initialization fails
        """
        async with self._client_lock:
            if self._client is not None:
                return

            logger.info("Initializing Deepgram client with model: %s", self.model)

            try:
                from deepgram import DeepgramClient

                start_time = time.perf_counter()
                self._client = DeepgramClient(api_key=self.api_key)
                duration = time.perf_counter() - start_time
                logger.info("Deepgram client initialized in %.3f seconds", duration)
            except Exception as e:
                logger.error("Failed to initialize Deepgram client: %s", e)
                raise TranscriptionError(f"Failed to initialize Deepgram client: {e}") from e

    async def transcribe(
        self,
        audio_path: Path,
        *,
        known_speaker_names: Sequence[str] = (),
        known_speaker_references: Sequence[str] = (),
    ) -> TranscriptionResult:
        """Transcribe audio file asynchronously using Deepgram API.

        Deepgram has no notion of known speakers; names and references are
        accepted for interface parity and ignored.

        Args:
            audio_path: Path to audio file (WAV, MP3, FLAC, etc.)
            known_speaker_names: Ignored
            known_speaker_references: Ignored

        Returns:
            TranscriptionResult with letter-coded speakers

        Raises:
            TranscriptionError: If client initialization or transcription fails
        """
        audio_path = Path(audio_path)
        if not audio_path.exists():
            raise TranscriptionError(f"Audio file not found: {audio_path}")

        if known_speaker_names:
            logger.debug(
                "Deepgram does not support known speakers, ignoring %d names",
                len(known_speaker_names),
            )

        await self._ensure_client_initialized()

        logger.info("Starting transcription of %s", audio_path)

        try:
            result = await asyncio.wait_for(
                asyncio.get_event_loop().run_in_executor(
                    self.executor,
                    self._transcribe_sync,
                    audio_path,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error("Transcription timed out after %.1f seconds", self.timeout)
            raise TranscriptionError(
                f"Transcription timed out after {self.timeout} seconds"
            ) from e

        logger.info("Transcription completed: %d segments", len(result.segments))
        return result

    def _transcribe_sync(self, audio_path: Path) -> TranscriptionResult:
        """Synchronous transcription using Deepgram API (runs in thread pool).

        Raises:
            TranscriptionError: If transcription fails
        """
        if self._client is None:
            raise TranscriptionError("Deepgram client not initialized")

        with open(audio_path, "rb") as audio_file:
            audio_bytes = audio_file.read()

        options = {
            "model": self.model,
            "smart_format": self.smart_format,
            "punctuate": self.punctuate,
            "diarize": True,
            "utterances": True,
        }
        logger.debug("Deepgram options: %s", options)

        from deepgram.core.api_error import ApiError

        try:
            response = self._client.listen.v1.media.transcribe_file(
                request=audio_bytes,
                **options,
            )
        except ApiError as e:
            if e.status_code == 401:
                raise TranscriptionError("Invalid Deepgram API key", status_code=401) from e
            elif e.status_code == 429:
                raise TranscriptionError(
                    "Deepgram API rate limit exceeded", status_code=429
                ) from e
            elif e.status_code is not None and e.status_code >= 500:
                raise TranscriptionError(
                    f"Deepgram server error: {e.status_code}", status_code=e.status_code
                ) from e
            else:
                raise TranscriptionError(
                    f"Deepgram API error ({e.status_code}): {e.body}", status_code=e.status_code
                ) from e
        except Exception as e:
            logger.error("Deepgram request failed: %s", e, exc_info=True)
            raise TranscriptionError(f"Deepgram transcription failed: {e}") from e

        segments = []
        for utt in getattr(response.results, "utterances", None) or []:
            text = (utt.transcript or "").strip()
            if not text:
                continue
            start = float(utt.start)
            segments.append(
                TranscriptionSegment(
                    start=start,
                    end=max(start, float(utt.end)),
                    text=text,
                    speaker=speaker_code(getattr(utt, "speaker", None)),
                )
            )

        duration = 0.0
        metadata = getattr(response, "metadata", None)
        if metadata is not None and getattr(metadata, "duration", None):
            duration = float(metadata.duration)
        elif segments:
            duration = segments[-1].end

        language = None
        channels = getattr(response.results, "channels", None) or []
        if channels:
            language = getattr(channels[0], "detected_language", None)

        return TranscriptionResult(segments=segments, duration=duration, language=language)

    async def shutdown(self) -> None:
        """Clean up resources and shut down executor.

        Releases client reference and stops thread pool if owned by this instance.
        """
        logger.info("DeepgramTranscriber shutting down")
        self._client = None
        if self._executor_owned and self.executor:
            self.executor.shutdown(wait=False)
            logger.debug("Executor shut down")
