"""Async state machine running a source video through the transcription stages."""

import asyncio
import logging
from enum import Enum
from pathlib import Path

from clipscribe._types import AudioChunk, PipelineResult, TranscriptionResult
from clipscribe.config import Config
from clipscribe.dispatcher import dispatch, needs_chunking
from clipscribe.errors import PipelineTimeoutError
from clipscribe.media import MediaService
from clipscribe.merger import merge_chunk_results
from clipscribe.speakers import load_reference_samples, normalize_speakers
from clipscribe.splitter import split
from clipscribe.transcriber import OpenAITranscriber
from clipscribe.transcriber_deepgram import DeepgramTranscriber
from clipscribe.workspace import RunWorkspace

logger = logging.getLogger(__name__)


class State(Enum):
    """Pipeline state."""

    IDLE = "idle"
    PROBING = "probing"
    SPLITTING = "splitting"
    DISPATCHING = "dispatching"
    MERGING = "merging"
    NORMALIZING = "normalizing"
    DONE = "done"
    FAILED = "failed"


def create_transcriber(config: Config) -> OpenAITranscriber | DeepgramTranscriber:
    """Build the transcription backend selected in configuration."""
    max_workers = config.transcription.max_parallel_chunks or 8
    if config.model.backend == "deepgram":
        return DeepgramTranscriber(
            api_key=config.deepgram.api_key or "",
            model=config.deepgram.model,
            smart_format=config.deepgram.smart_format,
            punctuate=config.deepgram.punctuate,
            timeout=config.deepgram.timeout,
            max_workers=max_workers,
        )
    return OpenAITranscriber(
        api_key=config.openai.api_key or "",
        model=config.model.name,
        timeout=config.openai.timeout,
        max_workers=max_workers,
    )


class TranscriptionPipeline:
    """Runs probe -> split -> dispatch -> merge -> normalize for one source.

    Every file a run creates lives in a run-scoped workspace that is removed
    on success, failure and timeout alike. Errors from the stages propagate
    unchanged, apart from the run deadline which surfaces as
    PipelineTimeoutError.
    """

    def __init__(
        self,
        media: MediaService,
        transcriber: OpenAITranscriber | DeepgramTranscriber,
        config: Config | None = None,
    ):
        """Initialize pipeline with its collaborators.

        Args:
            media: Media service for extraction, probing and cutting
            transcriber: Backend with an async ``transcribe`` method
            config: Full configuration (defaults when omitted)
        """
        self.media = media
        self.transcriber = transcriber
        self.config = config or Config()

        self.state = State.IDLE
        self.workspace: RunWorkspace | None = None
        self.last_error: Exception | None = None

    def _transition(self, state: State) -> None:
        logger.info("State transition: %s -> %s", self.state.name, state.name)
        self.state = state

    async def run(self, source: Path, *, run_id: str | None = None) -> PipelineResult:
        """Transcribe ``source`` into a normalized transcript.

        Args:
            source: Video or audio file to transcribe
            run_id: Identifier naming the run's working directory (random
                when omitted)

        Returns:
            PipelineResult with the normalized transcript and chunking metadata

        Raises:
            PipelineError: The first failure of any stage
            PipelineTimeoutError: If the configured deadline passes
        """
        if self.state != State.IDLE:
            raise RuntimeError(f"Pipeline already used (state: {self.state.value})")

        workspace = RunWorkspace(Path(self.config.media.work_dir), run_id)
        self.workspace = workspace
        timeout = self.config.pipeline.timeout

        try:
            async with workspace:
                if timeout:
                    try:
                        result = await asyncio.wait_for(
                            self._run_stages(Path(source), workspace), timeout=timeout
                        )
                    except asyncio.TimeoutError as e:
                        raise PipelineTimeoutError(timeout) from e
                else:
                    result = await self._run_stages(Path(source), workspace)
        except Exception as e:
            logger.error(
                "Transcription pipeline failed in %s state: %s: %s",
                self.state.name,
                type(e).__name__,
                e,
            )
            self.last_error = e
            self._transition(State.FAILED)
            raise

        self._transition(State.DONE)
        return result

    async def _run_stages(self, source: Path, workspace: RunWorkspace) -> PipelineResult:
        chunking = self.config.chunking
        speakers = self.config.speakers

        self._transition(State.PROBING)
        audio_path = await self.media.extract_audio(
            source, workspace.path_for(f"{workspace.run_id}.mp3")
        )
        info = await self.media.probe(audio_path)

        chunk_seconds = chunking.chunk_seconds
        logger.info(
            "Chunk duration setting: %s minutes (%.0f seconds, max %.0fs)",
            chunking.chunk_minutes,
            chunk_seconds,
            chunking.max_chunk_seconds,
        )
        chunked = needs_chunking(
            info.duration_seconds,
            info.size_bytes,
            chunking.hard_duration_limit_seconds,
            chunking.hard_size_limit_bytes,
            chunk_seconds,
        )

        speaker_names = speakers.names
        speaker_references = load_reference_samples(speakers.known, Path(speakers.samples_dir))

        async def transcribe_chunk(chunk: AudioChunk) -> TranscriptionResult:
            return await self.transcriber.transcribe(
                chunk.path,
                known_speaker_names=speaker_names,
                known_speaker_references=speaker_references,
            )

        if chunked:
            self._transition(State.SPLITTING)
            chunks = await split(
                self.media,
                audio_path,
                workspace.directory,
                chunk_seconds,
                chunking.overlap_seconds,
                duration=info.duration_seconds,
                track=workspace.track,
            )
            logger.info("Split audio into %d chunks for parallel processing", len(chunks))

            self._transition(State.DISPATCHING)
            results = await dispatch(
                chunks,
                transcribe_chunk,
                max_concurrency=self.config.transcription.max_parallel_chunks or None,
            )

            self._transition(State.MERGING)
            merged = merge_chunk_results(results, chunking.overlap_seconds)
            segments = merged.segments
            duration = merged.duration
            chunks_used = len(chunks)
            language = next(
                (item.result.language for item in results if item.result.language), None
            )
        else:
            self._transition(State.DISPATCHING)
            whole = AudioChunk(
                sequence=0,
                path=audio_path,
                start=0.0,
                end=info.duration_seconds,
                is_original=True,
            )
            result = await transcribe_chunk(whole)
            segments = tuple(result.segments)
            duration = result.duration or info.duration_seconds
            chunks_used = 1
            language = result.language

        self._transition(State.NORMALIZING)
        transcript = normalize_speakers(segments, speakers.unknown_labels)
        logger.info(
            "Transcript ready: %d segments, %.1fs, chunked=%s, chunks used=%d",
            len(transcript),
            duration,
            chunked,
            chunks_used,
        )

        return PipelineResult(
            transcript=tuple(transcript),
            segments=tuple(segments),
            duration=duration,
            chunked=chunked,
            chunks_used=chunks_used,
            run_id=workspace.run_id,
            language=language,
        )


async def run_transcription_pipeline(
    source: Path,
    config: Config,
    *,
    media: MediaService | None = None,
    transcriber: OpenAITranscriber | DeepgramTranscriber | None = None,
    run_id: str | None = None,
) -> PipelineResult:
    """Run one pipeline with collaborators built from ``config`` where omitted.

    A transcriber created here is shut down when the run ends.
    """
    owns_transcriber = transcriber is None
    if transcriber is None:
        transcriber = create_transcriber(config)
    pipeline = TranscriptionPipeline(media or MediaService(config.media), transcriber, config)
    try:
        return await pipeline.run(source, run_id=run_id)
    finally:
        if owns_transcriber:
            await transcriber.shutdown()
