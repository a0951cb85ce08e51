"""Chunking policy and concurrent per-chunk transcription."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence

from clipscribe._types import AudioChunk, ChunkResult, TranscriptionResult
from clipscribe.errors import ChunkTranscriptionError

logger = logging.getLogger(__name__)

PARALLEL_BENEFIT_FACTOR = 1.5

TranscribeFn = Callable[[AudioChunk], Awaitable[TranscriptionResult]]


def exceeds_hard_limits(
    duration: float,
    size_bytes: int,
    hard_duration_limit: float,
    hard_size_limit_bytes: int,
) -> bool:
    """Whether a file is too long or too large for a single backend call."""
    return duration > hard_duration_limit or size_bytes > hard_size_limit_bytes


def needs_chunking(
    duration: float,
    size_bytes: int,
    hard_duration_limit: float,
    hard_size_limit_bytes: int,
    desired_chunk_seconds: float,
) -> bool:
    """Decide whether the audio is split before transcription.

    Chunking is required past either hard limit, and also chosen whenever the
    audio is longer than 1.5 chunks so that it transcribes in parallel.
    """
    if exceeds_hard_limits(duration, size_bytes, hard_duration_limit, hard_size_limit_bytes):
        logger.info(
            "Audio exceeds hard limits (duration: %.0fs, size: %.1f MB) - will split into chunks",
            hard_duration_limit,
            hard_size_limit_bytes / (1024 * 1024),
        )
        return True

    if duration > desired_chunk_seconds * PARALLEL_BENEFIT_FACTOR:
        logger.info(
            "Audio benefits from parallel processing - will split into %.1f minute chunks",
            desired_chunk_seconds / 60,
        )
        return True

    return False


async def dispatch(
    chunks: Sequence[AudioChunk],
    transcribe: TranscribeFn,
    *,
    max_concurrency: int | None = None,
) -> list[ChunkResult]:
    """Transcribe all chunks concurrently and return results in sequence order.

    Every chunk call runs to completion or failure before this returns. Results
    are sorted by sequence, never by completion order.

    Args:
        chunks: Chunk descriptors to transcribe
        transcribe: Coroutine function transcribing one chunk
        max_concurrency: Upper bound on calls in flight (None or 0: unbounded)

    Returns:
        One ChunkResult per chunk, ascending by sequence

    Raises:
        ChunkTranscriptionError: For the lowest-sequence chunk that failed
    """
    if not chunks:
        return []

    semaphore = asyncio.Semaphore(max_concurrency) if max_concurrency else None

    async def _transcribe_one(chunk: AudioChunk) -> ChunkResult:
        if semaphore is None:
            result = await transcribe(chunk)
        else:
            async with semaphore:
                result = await transcribe(chunk)
        logger.debug("Chunk %d/%d transcribed", chunk.sequence + 1, len(chunks))
        return ChunkResult(sequence=chunk.sequence, chunk=chunk, result=result)

    logger.info("=== Starting parallel transcription of %d chunks ===", len(chunks))
    started = time.perf_counter()

    tasks = {}
    for chunk in chunks:
        logger.debug("Launching transcription for chunk %d/%d", chunk.sequence + 1, len(chunks))
        tasks[asyncio.create_task(_transcribe_one(chunk))] = chunk

    try:
        done, _ = await asyncio.wait(list(tasks))
    except asyncio.CancelledError:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    failures = []
    collected = []
    for task in done:
        chunk = tasks[task]
        if task.cancelled():
            failures.append((chunk.sequence, asyncio.CancelledError()))
        elif task.exception() is not None:
            failures.append((chunk.sequence, task.exception()))
        else:
            collected.append(task.result())

    if failures:
        failures.sort(key=lambda item: item[0])
        sequence, error = failures[0]
        logger.error(
            "%d of %d chunks failed; first failure in chunk %d: %s: %s",
            len(failures),
            len(chunks),
            sequence + 1,
            type(error).__name__,
            error,
        )
        raise ChunkTranscriptionError(sequence, error) from error

    collected.sort(key=lambda item: item.sequence)
    logger.info(
        "=== All %d chunks transcribed in %.1fs ===",
        len(chunks),
        time.perf_counter() - started,
    )
    return collected
