"""Merging per-chunk transcription results into one time-ordered transcript.

Consecutive chunks share an overlap window. At each seam the earlier chunk
keeps only segments ending by the new chunk's start (plus a tolerance) and
the new chunk contributes only segments starting at or after that start
(minus the tolerance). Segment boundaries rarely line up with cut points, so
the tolerance keeps a segment that straddles the seam by a fraction of a
second. New segments starting before the last kept earlier segment are
dropped as well, so starts stay ascending. It is a heuristic: a little
duplication or loss at a seam is possible.
"""

import logging
from collections.abc import Sequence

from clipscribe._types import ChunkResult, MergedTranscript, TranscriptionSegment
from clipscribe.errors import MergeInvariantViolation

logger = logging.getLogger(__name__)

SEAM_TOLERANCE_SECONDS = 1.0


def rebase_segments(
    segments: Sequence[TranscriptionSegment],
    offset: float,
) -> list[TranscriptionSegment]:
    """Shift chunk-relative segments to absolute source time."""
    return [segment.shifted(offset) for segment in segments]


def merge_chunk_segments(
    accumulated: Sequence[TranscriptionSegment],
    new_segments: Sequence[TranscriptionSegment],
    chunk_start: float,
    overlap_seconds: float,
) -> list[TranscriptionSegment]:
    """Append one chunk's absolute-time segments to the accumulated transcript.

    Args:
        accumulated: Segments merged so far
        new_segments: Rebased segments of the next chunk
        chunk_start: Start of the next chunk's window in source time
        overlap_seconds: Overlap between the two chunks

    Returns:
        New list; neither input is modified
    """
    if not accumulated:
        return list(new_segments)

    overlap_start = chunk_start
    kept_existing = [seg for seg in accumulated if seg.end <= overlap_start + SEAM_TOLERANCE_SECONDS]

    # New segments never start before the last kept earlier segment.
    floor = overlap_start - SEAM_TOLERANCE_SECONDS
    if kept_existing:
        floor = max(floor, kept_existing[-1].start)
    kept_new = [seg for seg in new_segments if seg.start >= floor]

    logger.debug(
        "Seam at %.1fs (overlap %.1fs): dropped %d existing and %d new segments",
        overlap_start,
        overlap_seconds,
        len(accumulated) - len(kept_existing),
        len(new_segments) - len(kept_new),
    )
    return kept_existing + kept_new


def check_merge_invariants(segments: Sequence[TranscriptionSegment]) -> None:
    """Verify segment ordering and well-formedness.

    Raises:
        MergeInvariantViolation: If a segment ends before it starts or a start
            goes backwards
    """
    previous_start = None
    for index, segment in enumerate(segments):
        if segment.end < segment.start:
            raise MergeInvariantViolation(
                f"Segment {index} ends before it starts ({segment.start:.3f}s > {segment.end:.3f}s)"
            )
        if previous_start is not None and segment.start < previous_start:
            raise MergeInvariantViolation(
                f"Segment {index} starts at {segment.start:.3f}s, "
                f"before the previous segment at {previous_start:.3f}s"
            )
        previous_start = segment.start


def merge_chunk_results(
    results: Sequence[ChunkResult],
    overlap_seconds: float,
) -> MergedTranscript:
    """Merge dispatch results, which must already be in ascending sequence.

    Raises:
        MergeInvariantViolation: If results are out of sequence or the merged
            segments break ordering
    """
    merged: list[TranscriptionSegment] = []
    total_duration = 0.0
    previous_sequence = None

    for item in results:
        if previous_sequence is not None and item.sequence <= previous_sequence:
            raise MergeInvariantViolation(
                f"Chunk {item.sequence} merged after chunk {previous_sequence}"
            )
        previous_sequence = item.sequence

        adjusted = rebase_segments(item.result.segments, item.chunk.start)
        merged = merge_chunk_segments(merged, adjusted, item.chunk.start, overlap_seconds)
        total_duration = max(total_duration, (item.result.duration or 0.0) + item.chunk.start)
        logger.info("Chunk %d merged: %d segments", item.sequence + 1, len(adjusted))

    try:
        check_merge_invariants(merged)
    except MergeInvariantViolation as e:
        logger.error("Merged transcript is inconsistent: %s", e)
        raise

    logger.info("Total segments after merging: %d", len(merged))
    return MergedTranscript(segments=tuple(merged), duration=total_duration)
