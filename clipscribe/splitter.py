"""Splitting long audio into overlapping, individually transcribable chunks."""

import logging
from collections.abc import Callable
from pathlib import Path

from clipscribe._types import AudioChunk
from clipscribe.errors import MediaProcessingError, MediaSplitError
from clipscribe.media import MediaService

logger = logging.getLogger(__name__)


def plan_windows(
    duration: float,
    chunk_seconds: float,
    overlap_seconds: float,
) -> list[tuple[float, float]]:
    """Compute ``(start, end)`` windows covering ``[0, duration]``.

    Each window after the first starts ``overlap_seconds`` before the previous
    window's end. A tail shorter than twice the overlap is folded into the
    last window instead of becoming a chunk of its own.

    Args:
        duration: Source duration in seconds
        chunk_seconds: Nominal window length
        overlap_seconds: Look-back between consecutive windows

    Returns:
        Windows in source order

    Raises:
        ValueError: If the overlap is negative or not shorter than the chunk
    """
    if chunk_seconds <= 0:
        raise ValueError(f"chunk_seconds must be positive, got {chunk_seconds}")
    if overlap_seconds < 0 or overlap_seconds >= chunk_seconds:
        raise ValueError(
            f"overlap_seconds must be in [0, {chunk_seconds}), got {overlap_seconds}"
        )

    if duration <= chunk_seconds:
        return [(0.0, duration)]

    windows: list[tuple[float, float]] = []
    start = 0.0
    while True:
        end = min(start + chunk_seconds, duration)
        next_start = end - overlap_seconds
        if end < duration and duration - next_start < overlap_seconds * 2:
            end = duration
        windows.append((start, end))
        if end >= duration:
            break
        start = next_start

    return windows


async def split(
    media: MediaService,
    source: Path,
    output_dir: Path,
    chunk_seconds: float,
    overlap_seconds: float,
    *,
    duration: float | None = None,
    track: Callable[[Path], None] | None = None,
) -> list[AudioChunk]:
    """Cut ``source`` into overlapping chunk files.

    Args:
        media: Media service used for probing and cutting
        source: Audio file to split
        output_dir: Directory receiving the chunk files
        chunk_seconds: Nominal chunk length
        overlap_seconds: Look-back between consecutive chunks
        duration: Known source duration; probed when omitted
        track: Called with each chunk path before it is written, so the
            caller can delete it later whatever happens

    Returns:
        Chunk descriptors ordered by sequence. A source that fits in one chunk
        yields a single descriptor for the source itself with
        ``is_original=True``.

    Raises:
        MediaProbeError: If the duration must be probed and cannot be
        MediaSplitError: If cutting a chunk fails
    """
    source = Path(source)
    if duration is None:
        duration = (await media.probe(source)).duration_seconds

    windows = plan_windows(duration, chunk_seconds, overlap_seconds)
    if len(windows) == 1:
        logger.debug("%s fits in one chunk (%.1fs), not splitting", source, duration)
        return [AudioChunk(sequence=0, path=source, start=0.0, end=duration, is_original=True)]

    logger.info(
        "Splitting %s (%.1fs) into %d chunks of %.0fs with %.0fs overlap",
        source,
        duration,
        len(windows),
        chunk_seconds,
        overlap_seconds,
    )

    output_dir = Path(output_dir)
    chunks: list[AudioChunk] = []
    for sequence, (start, end) in enumerate(windows):
        chunk_path = output_dir / f"{source.stem}_chunk_{sequence}.mp3"
        if track is not None:
            track(chunk_path)

        chunk = AudioChunk(sequence=sequence, path=chunk_path, start=start, end=end)
        try:
            await media.cut_clip(source, chunk_path, start, chunk.duration)
        except MediaProcessingError as e:
            raise MediaSplitError(
                f"Failed to cut chunk {sequence + 1}/{len(windows)} "
                f"({start:.1f}s - {end:.1f}s): {e}",
                stderr=e.stderr,
            ) from e

        chunks.append(chunk)
        logger.debug("Chunk %d: %.1fs - %.1fs -> %s", sequence + 1, start, end, chunk_path)

    return chunks
