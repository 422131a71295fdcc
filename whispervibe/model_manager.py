"""Tracks the model loaded inside the worker and the tier serving it."""

import logging
from typing import Any, Callable, Dict, Optional, Sequence

import numpy as np

from .backend import InferenceBackend, InferenceOptions
from .errors import InferenceError, LoadError, ProtocolViolation
from .transcript import Transcript
from .worker_protocol import (
    AccelerationTier,
    DownloadingEvent,
    FileDoneEvent,
    LoadingEvent,
    ModelDescriptor,
    ReadyEvent,
    WorkerEvent,
)

logger = logging.getLogger(__name__)

DEFAULT_TIERS = (AccelerationTier.FAST, AccelerationTier.SAFE)

Emitter = Callable[[WorkerEvent], None]


class ModelLifecycleManager:
    """Loads models on demand, falling back from the fast to the safe tier.

    Methods block; the worker calls them from a thread.
    """

    def __init__(
        self,
        backend: InferenceBackend,
        tiers: Sequence[AccelerationTier] = DEFAULT_TIERS,
    ):
        self.backend = backend
        self.tiers = list(tiers)
        self.current_descriptor: Optional[ModelDescriptor] = None
        self.active_tier: Optional[AccelerationTier] = None
        self._handle: Optional[Any] = None

    @property
    def is_loaded(self) -> bool:
        return self._handle is not None and self.current_descriptor is not None

    def dispose(self) -> None:
        """Release the loaded model, if any."""
        if self._handle is not None:
            logger.info(f"Releasing model '{self.current_descriptor.model}'")
            self.backend.release(self._handle)
        self._handle = None
        self.current_descriptor = None
        self.active_tier = None

    def ensure_loaded(self, descriptor: ModelDescriptor, emit: Emitter) -> ReadyEvent:
        """Make the descriptor's model active, emitting lifecycle events.

        Args:
            descriptor: Model to activate.
            emit: Receives loading/downloading/file_done/ready events in order.

        Returns:
            The ready event that was emitted.

        Raises:
            LoadError: If every acceleration tier failed.
        """
        if self.is_loaded and descriptor.same_model(self.current_descriptor):
            logger.info(f"Model '{descriptor.model}' already loaded, skipping reload")
            self.current_descriptor = descriptor
            event = ReadyEvent(message="Model already loaded.", tier=self.active_tier)
            emit(event)
            return event

        # Never keep the previous model around half-replaced
        self.dispose()

        emit(LoadingEvent(message=f"Loading {descriptor.model}..."))
        progress: Dict[str, float] = {}

        def progress_sink(artifact: str, percent: float) -> None:
            percent = min(100.0, max(0.0, float(percent)))
            previous = progress.get(artifact)
            if previous is not None and percent <= previous:
                return
            progress[artifact] = percent
            emit(DownloadingEvent(artifact=artifact, progress=percent))
            if percent >= 100.0:
                emit(FileDoneEvent(artifact=artifact))

        last_error: Optional[Exception] = None
        for index, tier in enumerate(self.tiers):
            try:
                handle = self.backend.load(descriptor, tier, progress_sink)
            except Exception as e:
                last_error = e
                logger.warning(
                    f"Loading '{descriptor.model}' on {tier.value} tier failed: {e}"
                )
                if index + 1 < len(self.tiers):
                    fallback = self.tiers[index + 1]
                    emit(
                        LoadingEvent(
                            message=(
                                f"{tier.value.capitalize()} tier unavailable ({e}), "
                                f"falling back to {fallback.value} tier..."
                            )
                        )
                    )
                continue

            self._handle = handle
            self.current_descriptor = descriptor
            self.active_tier = tier
            logger.info(f"Model '{descriptor.model}' ready on {tier.value} tier")
            event = ReadyEvent(
                message=f"AI engine ready ({descriptor.model}, {tier.value} tier).",
                tier=tier,
            )
            emit(event)
            return event

        message = str(last_error) if last_error else "no acceleration tier configured"
        raise LoadError(message) from last_error

    def transcribe(self, waveform: np.ndarray, options: InferenceOptions) -> Transcript:
        """Run the active model on a waveform.

        Raises:
            ProtocolViolation: If no model is loaded.
            InferenceError: If the backend fails.
        """
        if not self.is_loaded:
            raise ProtocolViolation("Model not loaded")

        try:
            output = self.backend.infer(self._handle, waveform, options)
        except Exception as e:
            raise InferenceError(str(e)) from e

        return Transcript.from_output(output)
