"""Typer CLI entrypoint for clipscribe."""

import asyncio
import json
import logging
from pathlib import Path

import typer

from clipscribe.config import (
    VALID_BACKENDS,
    Config,
    ConfigError,
    load_config,
    validate_chunking_config,
)
from clipscribe.dispatcher import needs_chunking
from clipscribe.errors import PipelineError, describe_failure
from clipscribe.media import MediaService
from clipscribe.pipeline import run_transcription_pipeline
from clipscribe.splitter import plan_windows

app = typer.Typer(help="Transcribe long videos into speaker-labelled transcripts")

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False) -> None:
    """Setup logging configuration."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _load_config(path: Path | None) -> Config:
    """Load configuration, enabling debug logging when the file asks for it."""
    cfg = load_config(path)
    if cfg.general.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.debug("Verbose logging enabled by configuration")
    return cfg


def _merge_config_overrides(
    cfg: Config,
    *,
    chunk_minutes: float | None = None,
    model: str | None = None,
    backend: str | None = None,
    work_dir: Path | None = None,
) -> Config:
    """Apply CLI overrides to configuration.

    CLI options take precedence over config file values.

    Raises:
        ConfigError: If override values are invalid
    """
    if chunk_minutes is not None:
        logger.debug("Overriding chunk_minutes to %s", chunk_minutes)
        cfg.chunking.chunk_minutes = chunk_minutes

    if backend is not None:
        if backend not in VALID_BACKENDS:
            raise ConfigError(
                f"Invalid backend '{backend}'. Must be one of: {', '.join(VALID_BACKENDS)}"
            )
        logger.debug("Overriding backend to '%s'", backend)
        cfg.model.backend = backend

    if model is not None:
        logger.debug("Overriding model to '%s'", model)
        cfg.model.name = model

    if work_dir is not None:
        logger.debug("Overriding work directory to %s", work_dir)
        cfg.media.work_dir = str(work_dir)

    return cfg


@app.command()
def transcribe(
    source: Path = typer.Argument(..., help="Video or audio file to transcribe"),
    config: Path | None = typer.Option(
        None, "--config", help="Path to configuration file"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose logging"
    ),
    chunk_minutes: float | None = typer.Option(
        None, "--chunk-minutes", "-c", help="Override chunk length in minutes (1-15)"
    ),
    model: str | None = typer.Option(
        None, "--model", "-m", help="Override transcription model identifier"
    ),
    backend: str | None = typer.Option(
        None, "--backend", help="Override backend (openai, deepgram)"
    ),
    work_dir: Path | None = typer.Option(
        None, "--work-dir", help="Directory for transient working files"
    ),
    output: Path | None = typer.Option(
        None, "--output", "-o", help="Write result JSON to this file instead of stdout"
    ),
) -> None:
    """Transcribe a video into a speaker-labelled transcript."""
    _setup_logging(verbose)
    try:
        cfg = _load_config(config)
        cfg = _merge_config_overrides(
            cfg,
            chunk_minutes=chunk_minutes,
            model=model,
            backend=backend,
            work_dir=work_dir,
        )
        cfg.validate()
        logger.info("Configuration validated successfully")

        result = asyncio.run(run_transcription_pipeline(source, cfg))
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        raise typer.Exit(1)
    except PipelineError as e:
        typer.echo(f"Error: {describe_failure(e)}", err=True)
        raise typer.Exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        raise typer.Exit(130)

    payload = json.dumps(result.to_dict(), indent=2)
    if output is not None:
        output.write_text(payload, encoding="utf-8")
        logger.info("Wrote transcript to %s", output)
    else:
        typer.echo(payload)


@app.command()
def probe(
    source: Path = typer.Argument(..., help="Media file to inspect"),
    config: Path | None = typer.Option(
        None, "--config", help="Path to configuration file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    json_output: bool = typer.Option(
        False, "--json", help="Output as JSON instead of text"
    ),
) -> None:
    """Show duration and size of a media file."""
    _setup_logging(verbose)
    try:
        cfg = _load_config(config)
        info = asyncio.run(MediaService(cfg.media).probe(source))
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        raise typer.Exit(1)
    except PipelineError as e:
        typer.echo(f"Error: {describe_failure(e)}", err=True)
        raise typer.Exit(1)

    if json_output:
        typer.echo(
            json.dumps(
                {"durationSeconds": info.duration_seconds, "sizeBytes": info.size_bytes},
                indent=2,
            )
        )
    else:
        typer.echo(f"Duration: {info.duration_seconds:.1f}s ({info.duration_seconds / 60:.1f} min)")
        typer.echo(f"Size: {info.size_bytes / (1024 * 1024):.2f} MB")


@app.command()
def plan(
    source: Path = typer.Argument(..., help="Media file to plan chunks for"),
    config: Path | None = typer.Option(
        None, "--config", help="Path to configuration file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    chunk_minutes: float | None = typer.Option(
        None, "--chunk-minutes", "-c", help="Override chunk length in minutes (1-15)"
    ),
) -> None:
    """Show the chunking decision and windows without transcribing."""
    _setup_logging(verbose)
    try:
        cfg = _merge_config_overrides(_load_config(config), chunk_minutes=chunk_minutes)
        validate_chunking_config(cfg.chunking)
        info = asyncio.run(MediaService(cfg.media).probe(source))
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        raise typer.Exit(1)
    except PipelineError as e:
        typer.echo(f"Error: {describe_failure(e)}", err=True)
        raise typer.Exit(1)

    chunking = cfg.chunking
    chunked = needs_chunking(
        info.duration_seconds,
        info.size_bytes,
        chunking.hard_duration_limit_seconds,
        chunking.hard_size_limit_bytes,
        chunking.chunk_seconds,
    )
    typer.echo(f"Duration: {info.duration_seconds:.1f}s, chunking: {'yes' if chunked else 'no'}")
    if not chunked:
        return

    windows = plan_windows(info.duration_seconds, chunking.chunk_seconds, chunking.overlap_seconds)
    for index, (start, end) in enumerate(windows):
        typer.echo(f"  Chunk {index + 1}: {start:.1f}s - {end:.1f}s")


if __name__ == "__main__":
    app()
