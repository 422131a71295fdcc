"""Tests for the faster-whisper backend."""

from dataclasses import dataclass
from typing import Optional
from unittest.mock import MagicMock, patch

import numpy as np
import pytest
from faster_whisper import WhisperModel

from whispervibe.backend import FasterWhisperBackend, InferenceOptions
from whispervibe.config import AppConfig
from whispervibe.worker_protocol import AccelerationTier, ModelDescriptor


@dataclass
class MockWhisperSegment:
    """Mock segment from faster-whisper."""

    start: float
    end: Optional[float]
    text: str


@dataclass
class MockWhisperInfo:
    """Mock info from faster-whisper."""

    language: str
    language_probability: float
    duration: float


def ignore_progress(artifact, percent):
    pass


@pytest.fixture
def backend():
    return FasterWhisperBackend(AppConfig())


@pytest.fixture
def hub():
    """Patch the Hugging Face hub functions."""
    with (
        patch(
            "whispervibe.backend.list_repo_files",
            return_value=["README.md", "config.json", "model.bin", "vocabulary.txt"],
        ) as mock_list,
        patch(
            "whispervibe.backend.hf_hub_download",
            side_effect=lambda repo_id, name, cache_dir=None: (
                f"/cache/{repo_id}/{name}"
            ),
        ) as mock_download,
        patch("whispervibe.backend.snapshot_download") as mock_snapshot,
    ):
        yield {"list": mock_list, "download": mock_download, "snapshot": mock_snapshot}


def test_load_downloads_artifacts_with_progress(backend, hub):
    """Test model artifacts are fetched one by one with progress."""
    progress = []
    with patch("whispervibe.backend.WhisperModel", return_value=MagicMock()) as model:
        backend.load(
            ModelDescriptor(model="tiny"),
            AccelerationTier.FAST,
            lambda artifact, percent: progress.append((artifact, percent)),
        )

    assert progress == [
        ("config.json", 0.0),
        ("config.json", 100.0),
        ("model.bin", 0.0),
        ("model.bin", 100.0),
        ("vocabulary.txt", 0.0),
        ("vocabulary.txt", 100.0),
    ]
    hub["list"].assert_called_once_with("Systran/faster-whisper-tiny")
    model.assert_called_once_with(
        "/cache/Systran/faster-whisper-tiny",
        device="cuda",
        compute_type="float16",
        cpu_threads=0,
    )


def test_safe_tier_uses_cpu(backend, hub):
    """Test the safe tier runs on the CPU."""
    with patch("whispervibe.backend.WhisperModel", return_value=MagicMock()) as model:
        backend.load(
            ModelDescriptor(model="base"), AccelerationTier.SAFE, ignore_progress
        )

    assert model.call_args.kwargs["device"] == "cpu"
    assert model.call_args.kwargs["compute_type"] == "int8"


def test_load_offline_uses_cache(backend, hub):
    """Test an unreachable hub falls back to the local snapshot."""
    hub["list"].side_effect = OSError("offline")
    hub["snapshot"].return_value = "/cache/snapshot"

    with patch("whispervibe.backend.WhisperModel", return_value=MagicMock()) as model:
        backend.load(
            ModelDescriptor(model="base"), AccelerationTier.SAFE, ignore_progress
        )

    assert hub["snapshot"].call_args.kwargs["local_files_only"] is True
    assert model.call_args.args[0] == "/cache/snapshot"


def test_load_unknown_model(backend, hub):
    """Test models outside the catalog are rejected."""
    with pytest.raises(ValueError, match="Unknown model"):
        backend.load(
            ModelDescriptor(model="huge"), AccelerationTier.FAST, ignore_progress
        )


def test_load_device_failure_propagates(backend, hub):
    """Test device errors reach the caller so it can fall back."""
    with patch(
        "whispervibe.backend.WhisperModel",
        side_effect=RuntimeError("CUDA driver not found"),
    ):
        with pytest.raises(RuntimeError, match="CUDA"):
            backend.load(
                ModelDescriptor(model="base"), AccelerationTier.FAST, ignore_progress
            )


def test_infer(backend):
    """Test inference options and output shape."""
    model = MagicMock(spec=WhisperModel)
    model.transcribe.return_value = (
        iter(
            [
                MockWhisperSegment(0.0, 1.5, " Hello"),
                MockWhisperSegment(1.5, 3.0, " world."),
            ]
        ),
        MockWhisperInfo(language="en", language_probability=0.98, duration=3.0),
    )
    options = InferenceOptions(language="en")

    output = backend.infer(model, np.zeros(48000, dtype=np.float32), options)

    assert output == {
        "text": " Hello world.",
        "chunks": [
            {"timestamp": (0.0, 1.5), "text": " Hello"},
            {"timestamp": (1.5, 3.0), "text": " world."},
        ],
    }
    kwargs = model.transcribe.call_args.kwargs
    assert kwargs["language"] == "en"
    assert kwargs["chunk_length"] == 10
    assert kwargs["repetition_penalty"] == 1.4
    assert kwargs["no_speech_threshold"] == 0.6
    assert kwargs["without_timestamps"] is False


def test_options_from_config():
    """Test options are built from configuration."""
    config = AppConfig()
    config.inference.chunk_length_s = 30
    config.inference.stride_length_s = 5

    options = InferenceOptions.from_config(config, "auto")
    assert options.chunk_length_s == 30
    assert options.stride_length_s == 5
    assert options.language is None
    assert InferenceOptions.from_config(config, "de").language == "de"
