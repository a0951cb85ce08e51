"""Pipeline error taxonomy and caller-facing messages."""

__all__ = [
    "PipelineError",
    "MediaProcessingError",
    "MediaProbeError",
    "MediaSplitError",
    "TranscriptionError",
    "ChunkTranscriptionError",
    "MergeInvariantViolation",
    "PipelineTimeoutError",
    "describe_failure",
]


class PipelineError(Exception):
    """Base exception for transcription pipeline failures."""

    pass


class MediaProcessingError(PipelineError):
    """ffmpeg/ffprobe invocation failed.

    Carries the tool's stderr so callers can surface the underlying message.
    """

    def __init__(self, message: str, stderr: str = ""):
        super().__init__(message)
        self.stderr = stderr


class MediaProbeError(MediaProcessingError):
    """Source file is unreadable or not a valid media container."""

    pass


class MediaSplitError(MediaProcessingError):
    """Sub-clip extraction failed."""

    pass


class TranscriptionError(PipelineError):
    """Transcription backend call failed."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class ChunkTranscriptionError(PipelineError):
    """One chunk's transcription failed; the whole run fails with it."""

    def __init__(self, sequence: int, cause: BaseException):
        super().__init__(f"Transcription of chunk {sequence + 1} failed: {cause}")
        self.sequence = sequence
        self.cause = cause


class MergeInvariantViolation(PipelineError):
    """Merged segments are out of order or malformed."""

    pass


class PipelineTimeoutError(PipelineError):
    """Caller-imposed deadline exceeded."""

    def __init__(self, timeout: float):
        super().__init__(f"Transcription pipeline timed out after {timeout:.1f} seconds")
        self.timeout = timeout


def _root_cause(error: BaseException) -> BaseException:
    if isinstance(error, ChunkTranscriptionError):
        return error.cause
    return error


def describe_failure(error: BaseException) -> str:
    """Translate a pipeline failure into a user-facing message.

    Args:
        error: Exception raised by the pipeline

    Returns:
        Message suitable for showing to the person who started the run
    """
    if isinstance(error, PipelineTimeoutError):
        return "Transcription timed out. The audio file may be too long. Try a shorter video."
    if isinstance(error, MergeInvariantViolation):
        return "Internal error while merging transcript chunks."

    cause = _root_cause(error)
    message = str(cause)
    lowered = message.lower()
    status_code = getattr(cause, "status_code", None)
    code = getattr(cause, "code", None)

    if (
        "insufficient_quota" in lowered
        or "billing" in lowered
        or "exceeded your current quota" in lowered
        or "insufficient funds" in lowered
        or code == "insufficient_quota"
        or (status_code == 429 and "quota" in lowered)
    ):
        return "Transcription API quota exceeded. Please add funds to your account."
    if status_code == 429 or code == "rate_limit_exceeded":
        return "Transcription API rate limit reached. Please wait a moment and try again."
    if status_code == 401 or "invalid_api_key" in lowered or "incorrect api key" in lowered:
        return "Invalid transcription API key. Please check your API key configuration."
    if "model" in lowered and "not found" in lowered:
        return "The selected transcription model is not available. Try a different model."
    if "timeout" in lowered or "timed out" in lowered:
        return "Transcription timed out. The audio file may be too long. Try a shorter video."
    if "too large" in lowered or "25 mb" in lowered:
        return "Audio file too large for transcription API. Try a shorter video."

    return message
