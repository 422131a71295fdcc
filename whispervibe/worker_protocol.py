"""Request and event messages exchanged with the inference worker."""

from enum import Enum
from typing import Literal, Optional, Union

import numpy as np
from pydantic import BaseModel, ConfigDict, Field

from .transcript import Transcript

AUTO_LANGUAGE = "auto"


class AccelerationTier(str, Enum):
    """Execution strategy used to run the model."""

    FAST = "fast"
    SAFE = "safe"


class ModelDescriptor(BaseModel):
    """Identifies a model variant and the language selector to run it with."""

    model_config = ConfigDict(frozen=True)

    model: str
    language: str = AUTO_LANGUAGE

    def same_model(self, other: Optional["ModelDescriptor"]) -> bool:
        """True if both descriptors name the same weights.

        The language only affects runs, so it never forces a reload.
        """
        return other is not None and other.model == self.model


# Requests (coordinator -> worker)


class LoadRequest(BaseModel):
    """Ensure the given model is active in the worker."""

    type: Literal["load"] = "load"
    descriptor: ModelDescriptor


class RunRequest(BaseModel):
    """Transcribe a 16kHz mono waveform with the active model."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    type: Literal["run"] = "run"
    waveform: np.ndarray
    language: str = AUTO_LANGUAGE


WorkerRequest = Union[LoadRequest, RunRequest]


# Events (worker -> coordinator)


class LoadingEvent(BaseModel):
    """Informational, the worker is (re)loading a model."""

    status: Literal["loading"] = "loading"
    message: str


class DownloadingEvent(BaseModel):
    """Download progress for one model artifact."""

    status: Literal["downloading"] = "downloading"
    artifact: str
    progress: float = Field(ge=0.0, le=100.0)


class FileDoneEvent(BaseModel):
    """An artifact finished downloading."""

    status: Literal["file_done"] = "file_done"
    artifact: str


class ReadyEvent(BaseModel):
    """Terminal success of a load."""

    status: Literal["ready"] = "ready"
    message: str
    tier: Optional[AccelerationTier] = None


class ProcessingEvent(BaseModel):
    """A run has started."""

    status: Literal["processing"] = "processing"
    message: str


class CompleteEvent(BaseModel):
    """Terminal success of a run."""

    status: Literal["complete"] = "complete"
    transcript: Transcript


class ErrorEvent(BaseModel):
    """Terminal failure of a load or a run."""

    status: Literal["error"] = "error"
    message: str


WorkerEvent = Union[
    LoadingEvent,
    DownloadingEvent,
    FileDoneEvent,
    ReadyEvent,
    ProcessingEvent,
    CompleteEvent,
    ErrorEvent,
]

TERMINAL_EVENTS = (ReadyEvent, CompleteEvent, ErrorEvent)


def is_terminal(event: WorkerEvent) -> bool:
    """True for events that end the request that produced them."""
    return isinstance(event, TERMINAL_EVENTS)
