"""Tests for the chunking decision and concurrent chunk dispatch."""

import asyncio
from pathlib import Path

import pytest

from clipscribe._types import AudioChunk, TranscriptionResult, TranscriptionSegment
from clipscribe.dispatcher import dispatch, exceeds_hard_limits, needs_chunking
from clipscribe.errors import ChunkTranscriptionError, TranscriptionError

MB = 1024 * 1024


def _chunks(count: int, chunk: float = 240.0, overlap: float = 30.0) -> list[AudioChunk]:
    chunks = []
    start = 0.0
    for index in range(count):
        chunks.append(
            AudioChunk(
                sequence=index,
                path=Path(f"/tmp/audio_chunk_{index}.mp3"),
                start=start,
                end=start + chunk,
            )
        )
        start += chunk - overlap
    return chunks


def _result_for(chunk: AudioChunk) -> TranscriptionResult:
    return TranscriptionResult(
        segments=[TranscriptionSegment(1.0, 2.0, f"chunk {chunk.sequence}", "A")],
        duration=chunk.duration,
    )


class TestNeedsChunking:
    """Tests for the chunking decision."""

    def test_short_small_file_not_chunked(self):
        """Test 3 minute file under every limit is sent whole."""
        assert needs_chunking(180.0, 5 * MB, 1200.0, 24 * MB, 240.0) is False

    def test_long_file_chunked_for_parallelism(self):
        """Test file longer than 1.5 chunks is chunked even under hard limits."""
        assert needs_chunking(1800.0, 10 * MB, 3600.0, 100 * MB, 240.0) is True

    def test_exactly_one_and_a_half_chunks_not_chunked(self):
        """Test comparison against 1.5 chunks is strict."""
        assert needs_chunking(360.0, 5 * MB, 1200.0, 24 * MB, 240.0) is False
        assert needs_chunking(360.5, 5 * MB, 1200.0, 24 * MB, 240.0) is True

    def test_size_over_hard_limit_chunked(self):
        """Test oversized file is chunked regardless of duration."""
        assert needs_chunking(60.0, 25 * MB, 1200.0, 24 * MB, 900.0) is True

    def test_duration_over_hard_limit_chunked(self):
        """Test overlong file is chunked even with large chunks."""
        assert needs_chunking(1300.0, 5 * MB, 1200.0, 24 * MB, 900.0) is True

    def test_exceeds_hard_limits_is_strict(self):
        """Test values equal to the limits do not exceed them."""
        assert exceeds_hard_limits(1200.0, 24 * MB, 1200.0, 24 * MB) is False


class TestDispatch:
    """Tests for concurrent chunk transcription."""

    @pytest.mark.asyncio
    async def test_empty_input(self):
        """Test no chunks yields no results."""

        async def transcribe(chunk):
            raise AssertionError("should not be called")

        assert await dispatch([], transcribe) == []

    @pytest.mark.asyncio
    async def test_results_ordered_by_sequence_not_completion(self):
        """Test results come back in sequence order when later chunks finish first."""
        chunks = _chunks(5)
        completion_order = []

        async def transcribe(chunk):
            await asyncio.sleep(0.01 * (len(chunks) - chunk.sequence))
            completion_order.append(chunk.sequence)
            return _result_for(chunk)

        results = await dispatch(chunks, transcribe)

        assert completion_order == [4, 3, 2, 1, 0]
        assert [r.sequence for r in results] == [0, 1, 2, 3, 4]
        assert [r.chunk for r in results] == chunks
        assert results[3].result.segments[0].text == "chunk 3"

    @pytest.mark.asyncio
    async def test_chunks_run_concurrently(self):
        """Test all chunk calls are in flight at the same time."""
        chunks = _chunks(4)
        in_flight = 0
        peak = 0

        async def transcribe(chunk):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.02)
            in_flight -= 1
            return _result_for(chunk)

        await dispatch(chunks, transcribe)

        assert peak == 4

    @pytest.mark.asyncio
    async def test_max_concurrency_bounds_in_flight_calls(self):
        """Test semaphore limits concurrent calls."""
        chunks = _chunks(6)
        in_flight = 0
        peak = 0

        async def transcribe(chunk):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return _result_for(chunk)

        results = await dispatch(chunks, transcribe, max_concurrency=2)

        assert peak == 2
        assert len(results) == 6

    @pytest.mark.asyncio
    async def test_failure_waits_for_remaining_chunks(self):
        """Test one failing chunk fails the batch only after every call ends."""
        chunks = _chunks(4)
        finished = []

        async def transcribe(chunk):
            if chunk.sequence == 1:
                raise TranscriptionError("quota exceeded", status_code=429)
            await asyncio.sleep(0.02)
            finished.append(chunk.sequence)
            return _result_for(chunk)

        with pytest.raises(ChunkTranscriptionError) as exc_info:
            await dispatch(chunks, transcribe)

        assert sorted(finished) == [0, 2, 3]
        assert exc_info.value.sequence == 1
        assert isinstance(exc_info.value.cause, TranscriptionError)
        assert "chunk 2" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_lowest_sequence_failure_reported(self):
        """Test the earliest failing chunk is reported when several fail."""
        chunks = _chunks(4)

        async def transcribe(chunk):
            if chunk.sequence in (1, 3):
                await asyncio.sleep(0.01 * (4 - chunk.sequence))
                raise TranscriptionError(f"failed {chunk.sequence}")
            return _result_for(chunk)

        with pytest.raises(ChunkTranscriptionError) as exc_info:
            await dispatch(chunks, transcribe)

        assert exc_info.value.sequence == 1

    @pytest.mark.asyncio
    async def test_cancellation_cancels_outstanding_calls(self):
        """Test cancelling dispatch cancels every in-flight chunk call."""
        chunks = _chunks(3)
        cancelled = []

        async def transcribe(chunk):
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.append(chunk.sequence)
                raise
            return _result_for(chunk)

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(dispatch(chunks, transcribe), timeout=0.05)

        assert sorted(cancelled) == [0, 1, 2]
