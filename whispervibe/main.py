"""Command-line entry point for whispervibe."""

import asyncio
import logging
import sys
from pathlib import Path
from typing import NoReturn, Optional

import click

from .backend import FasterWhisperBackend
from .config import load_config
from .logging_setup import setup_logging
from .resampler import format_duration
from .session import SessionController
from .state import SessionStatus
from .worker import InferenceWorker

logger = logging.getLogger(__name__)

__all__ = ["main", "run"]


async def main(
    audio_path: Path,
    model: Optional[str] = None,
    language: Optional[str] = None,
    output: Optional[Path] = None,
    config_path: Optional[Path] = None,
) -> int:
    """Transcribe one audio file and write its subtitles.

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    # Load configuration first
    try:
        config = load_config(config_path)
    except Exception as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        return 1

    setup_logging(config.logging.log_level, config.logging.computed_log_file)

    if model and model not in config.model.catalog:
        print(
            f"Unknown model '{model}' (available: {', '.join(config.model.catalog)})",
            file=sys.stderr,
        )
        return 1

    controller = SessionController(
        config,
        worker_factory=lambda: InferenceWorker(config, FasterWhisperBackend(config)),
    )
    if model:
        controller.selected_model = model
    if language:
        controller.set_language(language)

    def report(state: SessionStatus, message: str, error: Optional[str]) -> None:
        if state != SessionStatus.ERROR and message:
            logger.info(f"[{state.value}] {message}")

    controller.state.add_observer(report)

    try:
        await controller.init()
        if await controller.state.wait_for(
            SessionStatus.READY, SessionStatus.ERROR
        ) == SessionStatus.ERROR:
            logger.error(controller.state.last_error)
            return 1

        controller.select_file(audio_path.read_bytes(), audio_path.name)
        if not await controller.start_transcription():
            logger.error(controller.state.last_error or "Transcription not started")
            return 1

        logger.info(
            f"Audio duration: {format_duration(controller.audio_source.duration)}"
        )

        if await controller.state.wait_for(
            SessionStatus.COMPLETE, SessionStatus.ERROR
        ) == SessionStatus.ERROR:
            logger.error(controller.state.last_error)
            return 1

        if controller.transcript.is_empty:
            logger.warning("No speech detected")
            return 0

        click.echo(controller.transcript.text.strip())
        controller.save_subtitles(output or audio_path.with_suffix(".srt"))

    except Exception:
        logger.exception("Fatal error during transcription:")
        return 1

    finally:
        await controller.close()

    return 0


@click.command()
@click.argument(
    "audio", type=click.Path(exists=True, dir_okay=False, path_type=Path)
)
@click.option("--model", "-m", default=None, help="Model tier (tiny, base, small).")
@click.option(
    "--language", "-l", default=None, help="Language code, or 'auto' to detect."
)
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Subtitle file to write (default: AUDIO with .srt suffix).",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Configuration file (default: XDG config dir).",
)
def run(
    audio: Path,
    model: Optional[str],
    language: Optional[str],
    output: Optional[Path],
    config_path: Optional[Path],
) -> NoReturn:
    """Transcribe AUDIO and export SRT subtitles."""
    try:
        sys.exit(asyncio.run(main(audio, model, language, output, config_path)))
    except KeyboardInterrupt:
        sys.exit(130)
