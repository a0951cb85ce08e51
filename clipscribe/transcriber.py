"""Audio transcription via the OpenAI diarizing transcription API."""

import asyncio
import logging
import time
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

from clipscribe._types import TranscriptionResult, TranscriptionSegment
from clipscribe.errors import TranscriptionError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-transcribe-diarize"
RESPONSE_FORMAT = "diarized_json"


def _to_dict(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, dict):
        return value
    if hasattr(value, "model_dump"):
        return value.model_dump()
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return dict(value)


def _as_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def parse_diarized_payload(payload: dict[str, Any]) -> TranscriptionResult:
    """Convert a ``diarized_json`` response into a TranscriptionResult.

    Segments without text are dropped; ``end`` is clamped to ``start``.
    """
    segments = []
    for raw in payload.get("segments") or []:
        raw = _to_dict(raw)
        text = str(raw.get("text", "")).strip()
        if not text:
            continue

        start = max(0.0, _as_float(raw.get("start"), 0.0))
        end = max(start, _as_float(raw.get("end"), start))
        speaker = raw.get("speaker")
        segments.append(
            TranscriptionSegment(
                start=start,
                end=end,
                text=text,
                speaker=str(speaker) if speaker is not None and str(speaker).strip() else "",
            )
        )

    duration = _as_float(payload.get("duration"), 0.0)
    if not duration and segments:
        duration = segments[-1].end

    return TranscriptionResult(
        segments=segments,
        duration=duration,
        language=payload.get("language"),
    )


class OpenAITranscriber:
    """Encapsulates the OpenAI client and transcription logic.

    Runs each request inside a thread pool executor so several chunks can be
    transcribed at once without blocking the event loop. Lazy-initializes the
    client on first transcription.
    """

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        timeout: float = 600.0,
        max_workers: int = 8,
        executor: ThreadPoolExecutor | None = None,
    ):
        """Initialize OpenAI transcriber.

        Args:
            api_key: OpenAI API key
            model: Transcription model identifier
            timeout: Per-request timeout in seconds
            max_workers: Thread pool size when no executor is given
            executor: Optional ThreadPoolExecutor for transcription tasks
        """
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.executor = executor or ThreadPoolExecutor(max_workers=max(1, max_workers))
        self._executor_owned = executor is None
        self._client = None
        self._client_lock = asyncio.Lock()
        logger.info("OpenAITranscriber initialized: model=%s, timeout=%.0fs", model, timeout)

    async def _ensure_client_initialized(self) -> None:
        """Lazy-initialize the OpenAI client on first use.

        Raises:
            TranscriptionError: If client initialization fails
        """
        async with self._client_lock:
            if self._client is not None:
                return

            try:
                from openai import OpenAI

                start_time = time.perf_counter()
                self._client = OpenAI(api_key=self.api_key, timeout=self.timeout)
                logger.info(
                    "OpenAI client initialized in %.3f seconds",
                    time.perf_counter() - start_time,
                )
            except Exception as e:
                logger.error("Failed to initialize OpenAI client: %s", e)
                raise TranscriptionError(f"Failed to initialize OpenAI client: {e}") from e

    async def transcribe(
        self,
        audio_path: Path,
        *,
        known_speaker_names: Sequence[str] = (),
        known_speaker_references: Sequence[str] = (),
    ) -> TranscriptionResult:
        """Transcribe one audio file with speaker diarization.

        Args:
            audio_path: Audio file within the API's size and duration limits
            known_speaker_names: Names the backend may assign to speakers
            known_speaker_references: Data URLs of reference samples

        Returns:
            TranscriptionResult with chunk-relative segments

        Raises:
            TranscriptionError: If the file is missing or the request fails
        """
        audio_path = Path(audio_path)
        if not audio_path.exists():
            raise TranscriptionError(f"Audio file not found: {audio_path}")

        await self._ensure_client_initialized()

        logger.info(
            "Starting transcription of %s (model=%s, known speakers=%d, reference samples=%d)",
            audio_path,
            self.model,
            len(known_speaker_names),
            len(known_speaker_references),
        )

        loop = asyncio.get_event_loop()
        result = await loop.run_in_executor(
            self.executor,
            self._transcribe_sync,
            audio_path,
            list(known_speaker_names),
            list(known_speaker_references),
        )
        logger.info(
            "Transcription of %s completed: %d segments, %.1fs",
            audio_path.name,
            len(result.segments),
            result.duration,
        )
        return result

    def _transcribe_sync(
        self,
        audio_path: Path,
        known_speaker_names: list[str],
        known_speaker_references: list[str],
    ) -> TranscriptionResult:
        """Synchronous API request (runs in thread pool).

        Raises:
            TranscriptionError: If the API call fails
        """
        if self._client is None:
            raise TranscriptionError("OpenAI client not initialized")

        import openai

        params: dict[str, Any] = {
            "model": self.model,
            "response_format": RESPONSE_FORMAT,
            "chunking_strategy": "auto",
        }
        if known_speaker_names:
            params["known_speaker_names"] = known_speaker_names
        if known_speaker_references:
            params["known_speaker_references"] = known_speaker_references

        logger.debug(
            "OpenAI request: model=%s, response_format=%s",
            params["model"],
            params["response_format"],
        )

        try:
            with open(audio_path, "rb") as audio_file:
                response = self._client.audio.transcriptions.create(file=audio_file, **params)
        except openai.APITimeoutError as e:
            raise TranscriptionError(
                f"OpenAI transcription timed out after {self.timeout}s"
            ) from e
        except openai.APIStatusError as e:
            code = getattr(e, "code", None)
            if e.status_code == 401:
                message = "Invalid OpenAI API key"
            elif e.status_code == 429:
                message = f"OpenAI API rate limit or quota exceeded: {e.message}"
            elif e.status_code >= 500:
                message = f"OpenAI server error: {e.status_code}"
            else:
                message = f"OpenAI API error ({e.status_code}): {e.message}"
            raise TranscriptionError(message, status_code=e.status_code, code=code) from e
        except openai.OpenAIError as e:
            raise TranscriptionError(f"OpenAI transcription failed: {e}") from e

        return parse_diarized_payload(_to_dict(response))

    async def shutdown(self) -> None:
        """Release client reference and stop the thread pool if owned."""
        logger.info("OpenAITranscriber shutting down")
        self._client = None
        if self._executor_owned and self.executor:
            self.executor.shutdown(wait=False)
            logger.debug("Executor shut down")
