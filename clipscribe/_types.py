"""Shared types and dataclasses for cross-module use."""

from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class MediaInfo:
    """Duration and size of a media file."""

    duration_seconds: float
    size_bytes: int


@dataclass(frozen=True)
class AudioChunk:
    """A bounded window of the source audio, possibly backed by a sub-clip file."""

    sequence: int
    path: Path
    start: float
    end: float
    is_original: bool = False

    @property
    def duration(self) -> float:
        return max(0.0, self.end - self.start)


@dataclass(frozen=True)
class TranscriptionSegment:
    """A segment of transcribed text with timing and speaker information."""

    start: float
    end: float
    text: str
    speaker: str

    def shifted(self, offset: float) -> "TranscriptionSegment":
        """Return a copy moved by ``offset`` seconds."""
        return TranscriptionSegment(
            start=self.start + offset,
            end=self.end + offset,
            text=self.text,
            speaker=self.speaker,
        )


@dataclass
class TranscriptionResult:
    """Result from one transcription backend call."""

    segments: list[TranscriptionSegment] = field(default_factory=list)
    duration: float = 0.0
    language: str | None = None


@dataclass(frozen=True)
class ChunkResult:
    """Outcome of transcribing one chunk."""

    sequence: int
    chunk: AudioChunk
    result: TranscriptionResult


@dataclass(frozen=True)
class MergedTranscript:
    """Absolute-time segments of all chunks, overlap resolved."""

    segments: tuple[TranscriptionSegment, ...]
    duration: float


@dataclass(frozen=True)
class NormalizedSegment:
    """Segment with a resolved speaker name and a sequential id."""

    id: int
    start: float
    end: float
    text: str
    speaker: str

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "start": self.start,
            "end": self.end,
            "text": self.text,
            "speaker": self.speaker,
        }


@dataclass(frozen=True)
class PipelineResult:
    """Terminal artifact of a pipeline run."""

    transcript: tuple[NormalizedSegment, ...]
    segments: tuple[TranscriptionSegment, ...]
    duration: float
    chunked: bool
    chunks_used: int
    run_id: str
    language: str | None = None

    def to_dict(self) -> dict:
        """Serialize to the JSON shape returned to callers."""
        return {
            "success": True,
            "transcript": [segment.to_dict() for segment in self.transcript],
            "raw": {
                "segments": [
                    {
                        "start": seg.start,
                        "end": seg.end,
                        "text": seg.text,
                        "speaker": seg.speaker,
                    }
                    for seg in self.segments
                ],
                "duration": self.duration,
                "language": self.language,
            },
            "chunked": self.chunked,
            "chunksUsed": self.chunks_used,
        }
