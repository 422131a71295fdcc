"""Shared fixtures for whispervibe tests."""

import asyncio
import io
from typing import Any, Dict, Iterable, Optional

import numpy as np
import pytest
import soundfile as sf

from whispervibe.backend import InferenceBackend
from whispervibe.config import AppConfig
from whispervibe.worker_protocol import is_terminal

# Two segments, the first without an end bound
DEFAULT_OUTPUT = {
    "text": " a b",
    "chunks": [
        {"timestamp": (0.0, None), "text": " a"},
        {"timestamp": (2.0, 4.0), "text": " b"},
    ],
}


class FakeBackend(InferenceBackend):
    """In-memory inference backend."""

    def __init__(
        self,
        output: Optional[Dict[str, Any]] = None,
        fail_tiers: Iterable = (),
        infer_error: Optional[Exception] = None,
        artifacts: Iterable[str] = ("config.json", "model.bin"),
    ):
        self.output = output if output is not None else DEFAULT_OUTPUT
        self.fail_tiers = set(fail_tiers)
        self.infer_error = infer_error
        self.artifacts = list(artifacts)
        self.load_calls = []
        self.infer_calls = []
        self.released = []

    def load(self, descriptor, tier, progress_sink):
        self.load_calls.append((descriptor, tier))
        for artifact in self.artifacts:
            progress_sink(artifact, 0.0)
            progress_sink(artifact, 50.0)
            progress_sink(artifact, 100.0)
        if tier in self.fail_tiers:
            raise RuntimeError(f"{tier.value} tier unavailable")
        return {"model": descriptor.model, "tier": tier}

    def infer(self, handle, waveform, options):
        self.infer_calls.append((handle, waveform, options))
        if self.infer_error:
            raise self.infer_error
        return self.output

    def release(self, handle):
        self.released.append(handle)


def make_wav_bytes(
    duration: float = 1.0, sample_rate: int = 44100, channels: int = 2
) -> bytes:
    """Encode a 440Hz tone as WAV bytes."""
    t = np.arange(int(duration * sample_rate)) / sample_rate
    tone = (0.5 * np.sin(2 * np.pi * 440.0 * t)).astype(np.float32)
    data = np.stack([tone] * channels, axis=1)
    buffer = io.BytesIO()
    sf.write(buffer, data, sample_rate, format="WAV")
    return buffer.getvalue()


async def collect_until_terminal(queue: asyncio.Queue, timeout: float = 2.0):
    """Drain events from a worker queue up to and including a terminal one."""
    events = []
    while True:
        event = await asyncio.wait_for(queue.get(), timeout=timeout)
        events.append(event)
        if is_terminal(event):
            return events


@pytest.fixture
def config():
    """Create a default config."""
    return AppConfig()


@pytest.fixture
def fake_backend():
    """Create a fake backend that succeeds on the fast tier."""
    return FakeBackend()


@pytest.fixture
def wav_bytes():
    """One second of stereo 44.1kHz audio."""
    return make_wav_bytes()
