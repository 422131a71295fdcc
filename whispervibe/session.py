"""Session controller coordinating audio preparation, the worker and the transcript."""

import asyncio
import logging
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from .config import AppConfig
from .errors import DecodeError
from .resampler import resample, waveform_duration
from .state import RUNNABLE_STATES, SessionStateManager, SessionStatus
from .transcript import (
    PlaybackController,
    Transcript,
    TranscriptSegment,
    TranscriptTimeline,
)
from .worker import InferenceWorker
from .worker_protocol import (
    AccelerationTier,
    CompleteEvent,
    DownloadingEvent,
    ErrorEvent,
    FileDoneEvent,
    LoadingEvent,
    LoadRequest,
    ModelDescriptor,
    ProcessingEvent,
    ReadyEvent,
    RunRequest,
    WorkerEvent,
)

logger = logging.getLogger(__name__)

DEFAULT_SUBTITLE_FILE = Path("transcript.srt")


class AudioSource(BaseModel):
    """A selected audio file; duration is known once it has been decoded."""

    model_config = ConfigDict(frozen=True)

    data: bytes
    name: str = ""
    duration: Optional[float] = None


class DownloadProgress:
    """Per-artifact download percentages for the current model load."""

    def __init__(self):
        self._progress: Dict[str, float] = {}

    def update(self, artifact: str, percent: float) -> None:
        # Progress never goes backwards within one load
        current = self._progress.get(artifact, 0.0)
        self._progress[artifact] = max(current, min(100.0, percent))

    def clear(self) -> None:
        self._progress.clear()

    def as_dict(self) -> Dict[str, float]:
        return dict(self._progress)

    def active_artifact(self) -> Optional[Tuple[str, float]]:
        """The first unfinished artifact, or the last one reported."""
        if not self._progress:
            return None
        for artifact, percent in self._progress.items():
            if percent < 100.0:
                return artifact, percent
        return list(self._progress.items())[-1]

    def __len__(self) -> int:
        return len(self._progress)


class SessionController:
    """State machine driving a transcription session.

    All methods run on the event loop; the worker is only reached through
    its request and event queues.
    """

    def __init__(
        self,
        config: AppConfig,
        worker_factory: Callable[[], InferenceWorker],
        state_manager: Optional[SessionStateManager] = None,
    ):
        """Initialize the controller.

        Args:
            config: Application configuration.
            worker_factory: Creates a fresh inference worker (on init and reset).
            state_manager: Optional state manager, created if not given.
        """
        self.config = config
        self.worker_factory = worker_factory
        self.state = state_manager or SessionStateManager()

        self.selected_model: str = config.model.default_model
        self.selected_language: str = config.model.default_language
        self.active_tier: Optional[AccelerationTier] = None

        self.audio_source: Optional[AudioSource] = None
        self.transcript: Optional[Transcript] = None
        self.timeline: Optional[TranscriptTimeline] = None
        self.download_progress = DownloadProgress()

        self.worker: Optional[InferenceWorker] = None
        self._event_task: Optional[asyncio.Task] = None

        # Bumped whenever audio or model changes so late results can be dropped
        self._generation = 0
        self._run_generation: Optional[int] = None

    @property
    def status(self) -> SessionStatus:
        return self.state.current_state

    @property
    def status_message(self) -> str:
        return self.state.message

    @property
    def descriptor(self) -> ModelDescriptor:
        return ModelDescriptor(
            model=self.selected_model, language=self.selected_language
        )

    @property
    def can_transcribe(self) -> bool:
        return (
            self.worker is not None
            and self.audio_source is not None
            and self.status in RUNNABLE_STATES
        )

    # Lifecycle

    async def init(self) -> None:
        """Start a worker and load the selected model."""
        if self.worker is not None:
            logger.warning("Session already initialized")
            return

        self.state.set_state(SessionStatus.IDLE, "Initializing system...")
        self.worker = self.worker_factory()
        await self.worker.start()
        self._event_task = asyncio.create_task(self._event_loop(self.worker))
        self._send_load()

    async def close(self) -> None:
        """Stop the event pump and dispose of the worker."""
        if self._event_task:
            self._event_task.cancel()
            try:
                await self._event_task
            except asyncio.CancelledError:
                pass
            self._event_task = None

        if self.worker is not None:
            await self.worker.stop()
            self.worker = None

    async def reset(self) -> None:
        """Discard the worker and all derived state, then start over."""
        logger.info("Resetting session")
        await self.close()

        self._generation += 1
        self._run_generation = None
        self.audio_source = None
        self._clear_transcript()
        self.download_progress.clear()
        self.active_tier = None
        self.state.reset()

        await self.init()

    # Worker events

    async def _event_loop(self, worker: InferenceWorker) -> None:
        while True:
            try:
                event = await worker.event_queue.get()
            except asyncio.CancelledError:
                break

            try:
                self.handle_event(event)
            except Exception:
                logger.exception(f"Error handling worker event: {event!r}")
            finally:
                worker.event_queue.task_done()

    def handle_event(self, event: WorkerEvent) -> None:
        """Apply a worker event to the session state."""
        logger.debug(f"Worker event: {event!r}")

        if isinstance(event, LoadingEvent):
            self.state.set_state(SessionStatus.LOADING_MODEL, event.message)
        elif isinstance(event, DownloadingEvent):
            self.download_progress.update(event.artifact, event.progress)
            self.state.set_state(
                SessionStatus.LOADING_MODEL, f"Loading {event.artifact}..."
            )
        elif isinstance(event, FileDoneEvent):
            self.download_progress.update(event.artifact, 100.0)
            self.state.set_state(SessionStatus.LOADING_MODEL)
        elif isinstance(event, ReadyEvent):
            self.active_tier = event.tier
            self.state.set_state(SessionStatus.READY, event.message)
        elif isinstance(event, ProcessingEvent):
            self.state.set_state(SessionStatus.PROCESSING, event.message)
        elif isinstance(event, CompleteEvent):
            self._on_complete(event)
        elif isinstance(event, ErrorEvent):
            self._on_error(event)
        else:
            logger.warning(f"Ignoring unknown worker event: {event!r}")

    def _on_complete(self, event: CompleteEvent) -> None:
        run_generation, self._run_generation = self._run_generation, None
        if run_generation != self._generation:
            logger.info("Discarding transcript of a superseded file or model")
            if self.status == SessionStatus.PROCESSING:
                self.state.set_state(SessionStatus.READY, "Ready.")
            return

        self.transcript = event.transcript
        self.timeline = TranscriptTimeline(event.transcript)
        self.state.set_state(SessionStatus.COMPLETE, "Transcription complete!")

    def _on_error(self, event: ErrorEvent) -> None:
        run_generation, self._run_generation = self._run_generation, None
        # Load errors carry no run; only failed runs can be superseded
        if run_generation is not None and run_generation != self._generation:
            logger.warning(f"Ignoring error of a superseded run: {event.message}")
            if self.status == SessionStatus.PROCESSING:
                self.state.set_state(SessionStatus.READY, "Ready.")
            return

        self.state.set_error(event.message)

    # User actions

    def _send_load(self) -> None:
        logger.info(f"Requesting model '{self.selected_model}'")
        self.worker.send(LoadRequest(descriptor=self.descriptor))

    def _clear_transcript(self) -> None:
        self.transcript = None
        self.timeline = None

    def change_model(self, model: str) -> None:
        """Switch to another model, discarding the current transcript."""
        if self.worker is None:
            logger.warning("Cannot change model: session not initialized")
            return
        if model not in self.config.model.catalog:
            raise ValueError(
                f"Unknown model '{model}' "
                f"(available: {', '.join(self.config.model.catalog)})"
            )

        self.selected_model = model
        self._generation += 1
        self._clear_transcript()
        self.download_progress.clear()
        self._send_load()

    def set_language(self, language: str) -> None:
        """Select the language for the next run ('auto' to detect)."""
        self.selected_language = language or "auto"

    def select_file(self, data: bytes, name: str = "") -> None:
        """Select a new audio file, discarding results for the previous one."""
        logger.info(f"Selected audio file '{name}' ({len(data)} bytes)")
        self._generation += 1
        self.audio_source = AudioSource(data=data, name=name)
        self._clear_transcript()

        if self.status == SessionStatus.COMPLETE:
            self.state.set_state(SessionStatus.READY, "Ready.")

    async def start_transcription(self) -> bool:
        """Decode the selected file and submit it to the worker.

        Returns:
            True if a run was submitted.
        """
        if not self.can_transcribe:
            logger.warning(
                f"Cannot start transcription in state {self.status.value} "
                f"(audio selected: {self.audio_source is not None})"
            )
            return False

        generation = self._generation
        source = self.audio_source
        self.state.set_state(SessionStatus.PROCESSING, "Resampling to 16kHz...")

        try:
            waveform = await asyncio.to_thread(resample, source.data)
        except DecodeError as e:
            if generation != self._generation:
                logger.info("Ignoring decode failure of a superseded file")
                return False
            logger.error(f"Audio decoding failed: {e}")
            self.state.set_error(f"Audio decoding error: {e}")
            return False

        if generation != self._generation:
            logger.info("Discarding decoded audio of a superseded file")
            if self.status == SessionStatus.PROCESSING:
                self.state.set_state(SessionStatus.READY, "Ready.")
            return False

        self.audio_source = source.model_copy(
            update={"duration": waveform_duration(waveform)}
        )
        self._run_generation = generation
        self.worker.send(
            RunRequest(waveform=waveform, language=self.selected_language)
        )
        return True

    # Transcript access

    def active_segment(self, playback_time: float) -> Optional[TranscriptSegment]:
        """Segment to highlight at the given playback time."""
        if self.timeline is None:
            return None
        return self.timeline.active_segment(playback_time)

    def jump_to_segment(
        self, segment: TranscriptSegment, player: PlaybackController
    ) -> None:
        """Seek the player to a segment and start playing."""
        if self.timeline is None:
            return
        self.timeline.jump_to(segment, player)

    def export(self, fmt: str = "srt") -> Optional[bytes]:
        """Serialize the transcript, or None if there is nothing to export."""
        if self.timeline is None or self.transcript.is_empty:
            return None
        return self.timeline.export(fmt)

    def save_subtitles(self, path: Path = DEFAULT_SUBTITLE_FILE) -> Optional[Path]:
        """Write the transcript as an SRT file.

        Returns:
            The written path, or None if there is nothing to export.
        """
        data = self.export("srt")
        if data is None:
            logger.warning("No transcript to export")
            return None
        path.write_bytes(data)
        logger.info(f"Wrote subtitles to {path}")
        return path
