"""Configuration loader and validation."""

import logging
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

logger = logging.getLogger(__name__)

__all__ = [
    "ChunkingConfig",
    "ModelConfig",
    "OpenAIConfig",
    "DeepgramConfig",
    "MediaConfig",
    "KnownSpeaker",
    "SpeakersConfig",
    "TranscriptionConfig",
    "PipelineConfig",
    "GeneralConfig",
    "Config",
    "ConfigError",
    "load_config",
]

MIN_CHUNK_MINUTES = 1
MAX_CHUNK_MINUTES = 15
DEFAULT_UNKNOWN_LABELS = ("Interviewer", "Speaker A", "Speaker B", "Speaker C")
VALID_BACKENDS = ("openai", "deepgram")
SECTIONS = (
    "chunking",
    "model",
    "openai",
    "deepgram",
    "media",
    "speakers",
    "transcription",
    "pipeline",
    "general",
)


class ConfigError(Exception):
    """Configuration loading or validation error."""

    pass


@dataclass
class ChunkingConfig:
    """Chunk sizing and transcription API hard limits."""

    chunk_minutes: float = 4
    overlap_seconds: float = 30.0
    hard_duration_limit_seconds: float = 1200.0
    hard_size_limit_mb: float = 24.0
    max_chunk_seconds: float = 900.0

    @property
    def chunk_seconds(self) -> float:
        """Desired chunk length, capped at ``max_chunk_seconds``."""
        return min(self.chunk_minutes * 60, self.max_chunk_seconds)

    @property
    def hard_size_limit_bytes(self) -> int:
        return int(self.hard_size_limit_mb * 1024 * 1024)


@dataclass
class ModelConfig:
    """Transcription backend selection."""

    backend: str = "openai"
    name: str = "gpt-4o-transcribe-diarize"


@dataclass
class OpenAIConfig:
    """OpenAI API configuration (for openai backend)."""

    api_key: str | None = None
    timeout: float = 600.0


@dataclass
class DeepgramConfig:
    """Deepgram API configuration (for deepgram backend)."""

    api_key: str | None = None
    model: str = "nova-3"
    smart_format: bool = True
    punctuate: bool = True
    timeout: float = 600.0


@dataclass
class MediaConfig:
    """ffmpeg/ffprobe settings and working directory."""

    ffmpeg_bin: str = "ffmpeg"
    ffprobe_bin: str = "ffprobe"
    audio_codec: str = "libmp3lame"
    audio_bitrate: str = "128k"
    timeout: float = 600.0
    work_dir: str = "uploads"


@dataclass(frozen=True)
class KnownSpeaker:
    """A speaker the backend should recognize by name."""

    name: str
    sample_file: str | None = None


@dataclass
class SpeakersConfig:
    """Known speakers and fallback labels for generic speaker codes."""

    known: list[KnownSpeaker] = field(default_factory=list)
    samples_dir: str = "samples"
    unknown_labels: list[str] = field(default_factory=lambda: list(DEFAULT_UNKNOWN_LABELS))

    def __post_init__(self) -> None:
        """Normalize known speaker entries from TOML tables."""
        speakers = []
        for entry in self.known:
            if isinstance(entry, KnownSpeaker):
                speakers.append(entry)
                continue
            if not isinstance(entry, Mapping):
                raise ConfigError("speakers.known entries must be tables with a name")
            name = entry.get("name")
            if not isinstance(name, str) or not name.strip():
                raise ConfigError("speakers.known entries require a non-empty name")
            sample_file = entry.get("sample_file")
            if sample_file is not None and not isinstance(sample_file, str):
                raise ConfigError(f"speakers.known sample_file for {name} must be a string")
            speakers.append(KnownSpeaker(name=name.strip(), sample_file=sample_file))
        self.known = speakers

        labels = list(self.unknown_labels)
        for label in labels:
            if not isinstance(label, str) or not label:
                raise ConfigError("speakers.unknown_labels entries must be non-empty strings")
        self.unknown_labels = labels

    @property
    def names(self) -> list[str]:
        return [speaker.name for speaker in self.known]


@dataclass
class TranscriptionConfig:
    """Chunk dispatch settings."""

    max_parallel_chunks: int = 8


@dataclass
class PipelineConfig:
    """Whole-run settings."""

    timeout: float = 3600.0


@dataclass
class GeneralConfig:
    """General application settings."""

    verbose: bool = False


@dataclass
class Config:
    """Main configuration container."""

    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    openai: OpenAIConfig = field(default_factory=OpenAIConfig)
    deepgram: DeepgramConfig = field(default_factory=DeepgramConfig)
    media: MediaConfig = field(default_factory=MediaConfig)
    speakers: SpeakersConfig = field(default_factory=SpeakersConfig)
    transcription: TranscriptionConfig = field(default_factory=TranscriptionConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    general: GeneralConfig = field(default_factory=GeneralConfig)

    @classmethod
    def from_toml(
        cls,
        path: Path | None = None,
        *,
        env: Mapping[str, str] | None = None,
    ) -> "Config":
        """Load configuration from TOML file with environment overrides.

        Args:
            path: Explicit config file path. If None, searches in order:
                  1. CLIPSCRIBE_CONFIG env var
                  2. ./clipscribe.toml
                  3. ~/.config/clipscribe.toml
                  Falls back to built-in defaults when none exists.
            env: Environment variables for overrides (defaults to os.environ)

        Returns:
            Loaded Config instance

        Raises:
            ConfigError: If an explicit config file is missing or values are invalid
        """
        if env is None:
            import os

            env = os.environ

        resolved_path = _resolve_config_path(path, env)
        raw_data = _load_toml_file(resolved_path) if resolved_path else {}

        try:
            coerced = _coerce_config_values(raw_data, env)
            return cls(
                chunking=ChunkingConfig(**coerced["chunking"]),
                model=ModelConfig(**coerced["model"]),
                openai=OpenAIConfig(**coerced["openai"]),
                deepgram=DeepgramConfig(**coerced["deepgram"]),
                media=MediaConfig(**coerced["media"]),
                speakers=SpeakersConfig(**coerced["speakers"]),
                transcription=TranscriptionConfig(**coerced["transcription"]),
                pipeline=PipelineConfig(**coerced["pipeline"]),
                general=GeneralConfig(**coerced["general"]),
            )
        except TypeError as e:
            raise ConfigError(f"Invalid configuration values: {e}") from e

    def validate(self) -> None:
        """Validate value ranges and backend credentials.

        Raises:
            ConfigError: If any setting is out of range or inconsistent
        """
        validate_chunking_config(self.chunking)
        validate_model_config(self.model, self.openai, self.deepgram)
        validate_media_config(self.media)

        if self.transcription.max_parallel_chunks < 0:
            raise ConfigError(
                "transcription.max_parallel_chunks must be non-negative, "
                f"got {self.transcription.max_parallel_chunks}"
            )
        if self.pipeline.timeout < 0:
            raise ConfigError(f"pipeline.timeout must be non-negative, got {self.pipeline.timeout}")


def _resolve_config_path(
    cli_path: Path | None,
    env: Mapping[str, str],
) -> Path | None:
    """Resolve configuration file path following search order.

    Search order:
    1. CLI-provided path
    2. CLIPSCRIBE_CONFIG environment variable
    3. ./clipscribe.toml (current directory)
    4. ~/.config/clipscribe.toml (user config directory)

    Returns:
        Resolved path, or None when no file exists in the default locations

    Raises:
        ConfigError: If an explicitly requested file does not exist
    """
    if cli_path:
        cli_path = Path(cli_path)
        if cli_path.exists():
            logger.info("Using config file: %s", cli_path.resolve())
            return cli_path.resolve()
        raise ConfigError(f"Config file not found: {cli_path}")

    if env_path := env.get("CLIPSCRIBE_CONFIG"):
        candidate = Path(env_path)
        if not candidate.exists():
            raise ConfigError(f"Config file from CLIPSCRIBE_CONFIG not found: {candidate}")
        logger.info("Using config file: %s", candidate.resolve())
        return candidate.resolve()

    candidates = [Path("clipscribe.toml"), Path.home() / ".config" / "clipscribe.toml"]
    for candidate in candidates:
        if candidate.exists():
            logger.info("Using config file: %s", candidate.resolve())
            return candidate.resolve()

    logger.info(
        "No config file found (searched: %s), using defaults",
        ", ".join(str(c) for c in candidates),
    )
    return None


def _load_toml_file(path: Path) -> dict:
    """Load and parse TOML configuration file.

    Raises:
        ConfigError: If file cannot be read or parsed
    """
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except Exception as e:
        raise ConfigError(f"Failed to parse config file {path}: {e}") from e


def _coerce_config_values(raw_data: dict, env: Mapping[str, str]) -> dict:
    """Normalize raw TOML data for dataclass instantiation.

    Fills API keys and tool paths from the environment when the file leaves
    them unset.
    """
    coerced = {}

    for section in SECTIONS:
        value = raw_data.get(section, {})
        if not isinstance(value, dict):
            raise ConfigError(f"Section [{section}] must be a table")
        coerced[section] = dict(value)

    unknown = set(raw_data) - set(SECTIONS)
    if unknown:
        logger.warning("Ignoring unknown config sections: %s", ", ".join(sorted(unknown)))

    if not coerced["openai"].get("api_key"):
        coerced["openai"]["api_key"] = env.get("OPENAI_API_KEY")

    if not coerced["deepgram"].get("api_key"):
        coerced["deepgram"]["api_key"] = env.get("DEEPGRAM_API_KEY")

    media_section = coerced["media"]
    if "ffmpeg_bin" not in media_section and env.get("FFMPEG_BIN"):
        media_section["ffmpeg_bin"] = env["FFMPEG_BIN"]
    if "ffprobe_bin" not in media_section and env.get("FFPROBE_BIN"):
        media_section["ffprobe_bin"] = env["FFPROBE_BIN"]

    speakers_section = coerced["speakers"]
    if "known" in speakers_section and not isinstance(speakers_section["known"], list):
        raise ConfigError("speakers.known must be an array of tables")
    if "unknown_labels" in speakers_section and not isinstance(
        speakers_section["unknown_labels"], list
    ):
        raise ConfigError("speakers.unknown_labels must be a list of strings")

    return coerced


def validate_chunking_config(chunking_cfg: ChunkingConfig) -> None:
    """Validate chunk sizing.

    Raises:
        ConfigError: If chunk sizing is invalid
    """
    if not MIN_CHUNK_MINUTES <= chunking_cfg.chunk_minutes <= MAX_CHUNK_MINUTES:
        raise ConfigError(
            f"chunk_minutes must be between {MIN_CHUNK_MINUTES} and {MAX_CHUNK_MINUTES}, "
            f"got {chunking_cfg.chunk_minutes}"
        )

    if chunking_cfg.overlap_seconds < 0:
        raise ConfigError(
            f"overlap_seconds must be non-negative, got {chunking_cfg.overlap_seconds}"
        )

    if chunking_cfg.overlap_seconds >= chunking_cfg.chunk_seconds:
        raise ConfigError(
            f"overlap_seconds ({chunking_cfg.overlap_seconds}) must be shorter than the "
            f"chunk length ({chunking_cfg.chunk_seconds}s)"
        )

    for name in ("hard_duration_limit_seconds", "hard_size_limit_mb", "max_chunk_seconds"):
        value = getattr(chunking_cfg, name)
        if value <= 0:
            raise ConfigError(f"{name} must be positive, got {value}")


def validate_model_config(
    model_cfg: ModelConfig,
    openai_cfg: OpenAIConfig,
    deepgram_cfg: DeepgramConfig,
) -> None:
    """Validate backend selection and its credentials.

    Raises:
        ConfigError: If backend configuration is invalid
    """
    if model_cfg.backend not in VALID_BACKENDS:
        raise ConfigError(
            f"Invalid backend '{model_cfg.backend}'. "
            f"Must be one of: {', '.join(VALID_BACKENDS)}"
        )

    if not model_cfg.name:
        raise ConfigError("model.name must not be empty")

    if model_cfg.backend == "openai":
        if not openai_cfg.api_key:
            raise ConfigError(
                "OpenAI API key is required when backend is 'openai'. "
                "Set it in config file or via OPENAI_API_KEY environment variable."
            )
        if openai_cfg.timeout <= 0:
            raise ConfigError(f"OpenAI timeout must be positive, got {openai_cfg.timeout}")

    if model_cfg.backend == "deepgram":
        if not deepgram_cfg.api_key:
            raise ConfigError(
                "Deepgram API key is required when backend is 'deepgram'. "
                "Set it in config file or via DEEPGRAM_API_KEY environment variable."
            )
        if deepgram_cfg.timeout <= 0:
            raise ConfigError(f"Deepgram timeout must be positive, got {deepgram_cfg.timeout}")


def validate_media_config(media_cfg: MediaConfig) -> None:
    """Validate media tool settings.

    Raises:
        ConfigError: If media configuration is invalid
    """
    if not media_cfg.ffmpeg_bin or not media_cfg.ffprobe_bin:
        raise ConfigError("media.ffmpeg_bin and media.ffprobe_bin must not be empty")

    if media_cfg.timeout <= 0:
        raise ConfigError(f"media.timeout must be positive, got {media_cfg.timeout}")

    if not media_cfg.work_dir:
        raise ConfigError("media.work_dir must not be empty")


def load_config(
    path: Path | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> Config:
    """Load configuration from TOML file.

    Convenience wrapper around Config.from_toml().
    """
    return Config.from_toml(path, env=env)
