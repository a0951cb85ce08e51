"""Tests for merging chunk results into one transcript."""

import random
from pathlib import Path

import pytest

from clipscribe._types import AudioChunk, ChunkResult, TranscriptionResult, TranscriptionSegment
from clipscribe.errors import MergeInvariantViolation
from clipscribe.merger import (
    check_merge_invariants,
    merge_chunk_results,
    merge_chunk_segments,
    rebase_segments,
)


def seg(start, end, text="text", speaker="A"):
    return TranscriptionSegment(start=start, end=end, text=text, speaker=speaker)


def chunk_result(sequence, start, end, segments, duration=None):
    chunk = AudioChunk(
        sequence=sequence,
        path=Path(f"/tmp/audio_chunk_{sequence}.mp3"),
        start=start,
        end=end,
    )
    result = TranscriptionResult(
        segments=list(segments),
        duration=end - start if duration is None else duration,
    )
    return ChunkResult(sequence=sequence, chunk=chunk, result=result)


class TestRebaseSegments:
    """Tests for shifting chunk-relative times."""

    def test_offset_added_to_both_ends(self):
        """Test start and end both move by the chunk offset."""
        shifted = rebase_segments([seg(1.5, 3.0, "hello", "B")], 210.0)

        assert shifted == [seg(211.5, 213.0, "hello", "B")]


class TestMergeChunkSegments:
    """Tests for the seam rule between two chunks."""

    def test_first_chunk_taken_as_is(self):
        """Test empty accumulator accepts every new segment."""
        new = [seg(0.0, 5.0), seg(230.0, 239.0)]

        assert merge_chunk_segments([], new, 0.0, 30.0) == new

    def test_seam_tolerance_boundaries(self):
        """Test the one second tolerance on both sides of a seam at 240s."""
        accumulated = [
            seg(200.0, 230.0, "early"),
            seg(239.0, 241.0, "ends at tolerance"),
            seg(239.0, 241.5, "ends past tolerance"),
        ]
        new = [
            seg(238.5, 242.0, "starts before tolerance"),
            seg(239.0, 241.0, "starts at tolerance"),
            seg(245.0, 250.0, "late"),
        ]

        merged = merge_chunk_segments(accumulated, new, 240.0, 30.0)

        assert [s.text for s in merged] == [
            "early",
            "ends at tolerance",
            "starts at tolerance",
            "late",
        ]

    def test_overlap_region_taken_from_later_chunk(self):
        """Test speech inside the overlap comes from the chunk that starts there."""
        accumulated = [seg(5.0, 10.0, "intro"), seg(220.0, 235.0, "first take")]
        new = [seg(215.0, 220.0, "bridge"), seg(220.0, 235.0, "second take")]

        merged = merge_chunk_segments(accumulated, new, 210.0, 30.0)

        assert [s.text for s in merged] == ["intro", "bridge", "second take"]

    def test_seam_jitter_keeps_starts_ascending(self):
        """Test a repeated utterance placed earlier by the next chunk is dropped."""
        accumulated = [seg(5.0, 200.0, "long"), seg(210.4, 210.9, "Yes.")]
        new = [seg(210.0, 210.9, "Yes."), seg(211.0, 230.0, "Next.")]

        merged = merge_chunk_segments(accumulated, new, 210.0, 30.0)

        assert [(s.start, s.text) for s in merged] == [
            (5.0, "long"),
            (210.4, "Yes."),
            (211.0, "Next."),
        ]

    def test_inputs_not_modified(self):
        """Test merge returns a new list."""
        accumulated = [seg(0.0, 5.0), seg(230.0, 240.0)]
        new = [seg(215.0, 220.0)]

        merge_chunk_segments(accumulated, new, 210.0, 30.0)

        assert len(accumulated) == 2
        assert len(new) == 1

    def test_idempotent_on_same_input(self):
        """Test identical inputs give identical output."""
        accumulated = [seg(0.0, 5.0), seg(212.0, 214.0)]
        new = [seg(209.5, 211.0), seg(260.0, 270.0)]

        first = merge_chunk_segments(accumulated, new, 210.0, 30.0)
        second = merge_chunk_segments(accumulated, new, 210.0, 30.0)

        assert first == second


class TestCheckMergeInvariants:
    """Tests for merged transcript validation."""

    def test_ordered_segments_pass(self):
        """Test non-decreasing starts are accepted."""
        check_merge_invariants([seg(0.0, 1.0), seg(1.0, 1.0), seg(1.0, 3.0)])

    def test_backwards_start_rejected(self):
        """Test a start before the previous start is rejected."""
        with pytest.raises(MergeInvariantViolation):
            check_merge_invariants([seg(5.0, 6.0), seg(4.0, 7.0)])

    def test_negative_length_rejected(self):
        """Test a segment ending before it starts is rejected."""
        with pytest.raises(MergeInvariantViolation):
            check_merge_invariants([seg(5.0, 4.0)])


class TestMergeChunkResults:
    """Tests for merging a full set of chunk results."""

    def _results(self):
        relative = [seg(5.0, 10.0, "intro"), seg(100.0, 110.0, "middle"), seg(220.0, 235.0, "tail")]
        return [
            chunk_result(0, 0.0, 240.0, relative),
            chunk_result(1, 210.0, 450.0, relative),
            chunk_result(2, 420.0, 500.0, [seg(5.0, 10.0, "last")], duration=80.0),
        ]

    def test_segments_absolute_and_ordered(self):
        """Test merged segments are rebased and ascending."""
        merged = merge_chunk_results(self._results(), 30.0)

        assert [(s.start, s.text) for s in merged.segments] == [
            (5.0, "intro"),
            (100.0, "middle"),
            (215.0, "intro"),
            (310.0, "middle"),
            (425.0, "last"),
        ]
        starts = [s.start for s in merged.segments]
        assert starts == sorted(starts)

    def test_duration_is_furthest_chunk_end(self):
        """Test duration is the maximum of chunk duration plus chunk start."""
        merged = merge_chunk_results(self._results(), 30.0)

        assert merged.duration == 500.0

    def test_duration_not_taken_from_last_chunk_alone(self):
        """Test a short reported final duration does not shrink the total."""
        results = [
            chunk_result(0, 0.0, 240.0, [seg(1.0, 2.0)], duration=240.0),
            chunk_result(1, 210.0, 450.0, [seg(1.0, 2.0)], duration=10.0),
        ]

        assert merge_chunk_results(results, 30.0).duration == 240.0

    def test_arrival_order_does_not_matter(self):
        """Test any arrival order sorted by sequence merges identically."""
        expected = merge_chunk_results(self._results(), 30.0)
        shuffled = self._results()

        for seed in range(5):
            random.Random(seed).shuffle(shuffled)
            ordered = sorted(shuffled, key=lambda item: item.sequence)
            assert merge_chunk_results(ordered, 30.0) == expected

    def test_seam_jitter_between_chunks_merges(self):
        """Test chunks placing a short utterance differently at the seam still merge."""
        results = [
            chunk_result(0, 0.0, 240.0, [seg(5.0, 200.0, "long"), seg(210.4, 210.9, "Yes.")]),
            chunk_result(1, 210.0, 450.0, [seg(0.0, 0.9, "Yes."), seg(1.0, 20.0, "Next.")]),
        ]

        merged = merge_chunk_results(results, 30.0)

        assert [s.text for s in merged.segments] == ["long", "Yes.", "Next."]
        starts = [s.start for s in merged.segments]
        assert starts == sorted(starts)

    def test_out_of_sequence_results_rejected(self):
        """Test results not in ascending sequence are rejected."""
        results = self._results()

        with pytest.raises(MergeInvariantViolation):
            merge_chunk_results([results[1], results[0], results[2]], 30.0)

    def test_empty_results(self):
        """Test no results merges to an empty transcript."""
        merged = merge_chunk_results([], 30.0)

        assert merged.segments == ()
        assert merged.duration == 0.0
