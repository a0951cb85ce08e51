"""Known speaker references and speaker label normalization."""

import base64
import logging
import re
from collections.abc import Sequence
from pathlib import Path

from clipscribe._types import NormalizedSegment, TranscriptionSegment
from clipscribe.config import KnownSpeaker

logger = logging.getLogger(__name__)

GENERIC_SPEAKER_PATTERN = re.compile(r"^[A-Z]$")
UNKNOWN_SPEAKER = "Unknown"

_AUDIO_MIME_TYPES = {
    "wav": "audio/wav",
    "mp3": "audio/mpeg",
}


def audio_to_data_url(path: Path) -> str:
    """Encode an audio file as a base64 ``data:`` URL."""
    path = Path(path)
    mime_type = _AUDIO_MIME_TYPES.get(path.suffix.lstrip(".").lower(), "audio/wav")
    encoded = base64.b64encode(path.read_bytes()).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


def load_reference_samples(
    speakers: Sequence[KnownSpeaker],
    samples_dir: Path,
) -> list[str]:
    """Read reference samples of known speakers as data URLs.

    Speakers without a sample file, or whose file is missing, are skipped.
    """
    samples_dir = Path(samples_dir)
    references = []
    for speaker in speakers:
        if not speaker.sample_file:
            continue
        sample_path = samples_dir / speaker.sample_file
        if not sample_path.is_file():
            logger.warning("Reference sample for %s not found: %s", speaker.name, sample_path)
            continue
        references.append(audio_to_data_url(sample_path))
        logger.debug("Loaded reference sample for %s from %s", speaker.name, sample_path)
    return references


def is_generic_speaker(label: str) -> bool:
    """Whether ``label`` is an anonymous single-letter speaker code."""
    return bool(GENERIC_SPEAKER_PATTERN.match(label))


def normalize_speakers(
    segments: Sequence[TranscriptionSegment],
    unknown_labels: Sequence[str],
) -> list[NormalizedSegment]:
    """Map generic speaker codes to display names and renumber segments.

    The first unseen generic code takes the next unused label from
    ``unknown_labels``; later segments with that code reuse it. Once the
    labels run out a code becomes ``Speaker <code>``. Other speaker names
    pass through unchanged.

    Args:
        segments: Merged segments in transcript order
        unknown_labels: Ordered fallback labels

    Returns:
        Segments with resolved speakers and ids 0..n-1
    """
    speaker_map: dict[str, str] = {}
    normalized = []

    for index, segment in enumerate(segments):
        speaker = segment.speaker or UNKNOWN_SPEAKER

        if is_generic_speaker(speaker):
            if speaker not in speaker_map:
                next_index = len(speaker_map)
                if next_index < len(unknown_labels):
                    speaker_map[speaker] = unknown_labels[next_index]
                else:
                    speaker_map[speaker] = f"Speaker {speaker}"
                logger.debug("Mapped speaker %s -> %s", speaker, speaker_map[speaker])
            speaker = speaker_map[speaker]

        normalized.append(
            NormalizedSegment(
                id=index,
                start=segment.start,
                end=segment.end,
                text=segment.text,
                speaker=speaker,
            )
        )

    return normalized
