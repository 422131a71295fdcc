"""Isolated inference worker driven by request/event queues."""

import asyncio
import logging
from typing import Optional

from .backend import InferenceBackend, InferenceOptions
from .config import AppConfig
from .errors import InferenceError, LoadError, ProtocolViolation
from .model_manager import ModelLifecycleManager
from .worker_protocol import (
    CompleteEvent,
    ErrorEvent,
    LoadRequest,
    ProcessingEvent,
    RunRequest,
    WorkerEvent,
    WorkerRequest,
)

logger = logging.getLogger(__name__)


class InferenceWorker:
    """Owns the model and serves one load or run request at a time.

    The coordinator only talks to the worker through ``request_queue`` and
    ``event_queue``; events for a request are queued in emission order and
    end with exactly one ready/complete/error event.
    """

    def __init__(self, config: AppConfig, backend: InferenceBackend):
        """Initialize the worker.

        Args:
            config: Application configuration.
            backend: Inference backend used to load and run models.
        """
        self.config = config
        self.request_queue: asyncio.Queue = asyncio.Queue()
        self.event_queue: asyncio.Queue = asyncio.Queue()
        self.manager = ModelLifecycleManager(backend)

        self._worker_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._worker_task is not None and not self._worker_task.done()

    def send(self, request: WorkerRequest) -> None:
        """Queue a request for the worker."""
        self.request_queue.put_nowait(request)

    def _emit_threadsafe(self, loop: asyncio.AbstractEventLoop):
        def emit(event: WorkerEvent) -> None:
            loop.call_soon_threadsafe(self.event_queue.put_nowait, event)

        return emit

    async def _handle_load(self, request: LoadRequest) -> None:
        emit = self._emit_threadsafe(asyncio.get_running_loop())
        try:
            await asyncio.to_thread(
                self.manager.ensure_loaded, request.descriptor, emit
            )
        except LoadError as e:
            logger.error(f"Model load failed: {e}")
            await self.event_queue.put(ErrorEvent(message=f"Load error: {e}"))

    async def _handle_run(self, request: RunRequest) -> None:
        if not self.manager.is_loaded:
            logger.error("Run requested before a model was loaded")
            await self.event_queue.put(ErrorEvent(message="Model not loaded"))
            return

        await self.event_queue.put(
            ProcessingEvent(message="Analyzing audio waveform...")
        )
        options = InferenceOptions.from_config(self.config, request.language)

        try:
            transcript = await asyncio.to_thread(
                self.manager.transcribe, request.waveform, options
            )
        except ProtocolViolation as e:
            await self.event_queue.put(ErrorEvent(message=str(e)))
            return
        except InferenceError as e:
            logger.error(f"Transcription failed: {e}")
            await self.event_queue.put(
                ErrorEvent(message=f"Transcription error: {e}")
            )
            return

        logger.info(
            f"Transcription complete: {len(transcript.segments)} segments, "
            f"{transcript.text[:100]!r}"
        )
        await self.event_queue.put(CompleteEvent(transcript=transcript))

    async def _worker_loop(self) -> None:
        """Main request loop."""
        logger.info("Inference worker started")

        while not self._stop_event.is_set():
            try:
                # Get a request (with timeout to check stop event)
                try:
                    request = await asyncio.wait_for(
                        self.request_queue.get(), timeout=0.5
                    )
                except asyncio.TimeoutError:
                    continue

                try:
                    if isinstance(request, LoadRequest):
                        await self._handle_load(request)
                    elif isinstance(request, RunRequest):
                        await self._handle_run(request)
                    else:
                        logger.error(f"Unknown request type: {type(request).__name__}")
                        await self.event_queue.put(
                            ErrorEvent(message=f"Unknown request: {request!r}")
                        )
                finally:
                    # The waveform must not outlive its request
                    del request
                    self.request_queue.task_done()

            except asyncio.CancelledError:
                logger.info("Inference worker cancelled")
                break

            except Exception as e:
                logger.exception(f"Error in inference worker: {e}")
                await self.event_queue.put(ErrorEvent(message=str(e)))

        logger.info("Inference worker stopped")

    async def start(self) -> bool:
        """Start the worker loop.

        Returns:
            True if started (or already running).
        """
        if self.is_running:
            logger.warning("Inference worker already running")
            return True

        logger.info("Starting inference worker")
        self._stop_event.clear()
        self._worker_task = asyncio.create_task(self._worker_loop())
        return True

    async def stop(self) -> None:
        """Stop the worker loop and release the model."""
        if not self.is_running:
            logger.warning("Inference worker not running")
            self.manager.dispose()
            return

        logger.info("Stopping inference worker")
        self._stop_event.set()

        try:
            # Wait with timeout for the current request to finish
            await asyncio.wait_for(self._worker_task, timeout=5.0)
            logger.info("Inference worker stopped gracefully")
        except asyncio.TimeoutError:
            logger.warning("Timeout waiting for inference worker to stop")
            self._worker_task.cancel()
            await asyncio.sleep(0.1)
        except Exception as e:
            logger.exception(f"Error stopping inference worker: {e}")
        finally:
            self._worker_task = None
            self.manager.dispose()
