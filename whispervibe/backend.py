"""Inference backends wrapping the speech-to-text model."""

import abc
import fnmatch
import logging
import os
from typing import Any, Callable, Dict, List, Optional

import numpy as np
from faster_whisper import WhisperModel
from huggingface_hub import hf_hub_download, list_repo_files, snapshot_download
from pydantic import BaseModel

from .config import AppConfig
from .worker_protocol import AUTO_LANGUAGE, AccelerationTier, ModelDescriptor

logger = logging.getLogger(__name__)

# Called with (artifact id, percent complete)
ProgressSink = Callable[[str, float], None]

# Files faster-whisper needs from a model repository
MODEL_ARTIFACT_PATTERNS = [
    "config.json",
    "preprocessor_config.json",
    "model.bin",
    "tokenizer.json",
    "vocabulary.*",
]


class InferenceOptions(BaseModel):
    """Per-run options handed to the backend."""

    chunk_length_s: int = 10
    stride_length_s: int = 3
    return_timestamps: bool = True
    repetition_penalty: float = 1.4
    no_speech_threshold: float = 0.6
    beam_size: int = 5
    language: Optional[str] = None

    @classmethod
    def from_config(cls, config: AppConfig, language: str) -> "InferenceOptions":
        inference = config.inference
        return cls(
            chunk_length_s=inference.chunk_length_s,
            stride_length_s=inference.stride_length_s,
            repetition_penalty=inference.repetition_penalty,
            no_speech_threshold=inference.no_speech_threshold,
            beam_size=inference.beam_size,
            language=None if language == AUTO_LANGUAGE else language,
        )


class InferenceBackend(abc.ABC):
    """Opaque speech-to-text capability used by the worker."""

    @abc.abstractmethod
    def load(
        self,
        descriptor: ModelDescriptor,
        tier: AccelerationTier,
        progress_sink: ProgressSink,
    ) -> Any:
        """Fetch and initialize a model on the given tier.

        Returns:
            A handle passed back to infer().

        Raises:
            Exception: Any failure; the caller falls back to the next tier.
        """

    @abc.abstractmethod
    def infer(
        self, handle: Any, waveform: np.ndarray, options: InferenceOptions
    ) -> Dict[str, Any]:
        """Transcribe a waveform.

        Returns:
            ``{"text": str, "chunks": [{"timestamp": (start, end), "text": str}]}``
        """

    def release(self, handle: Any) -> None:
        """Drop resources held by a handle."""


class FasterWhisperBackend(InferenceBackend):
    """Backend running Whisper models through faster-whisper."""

    def __init__(self, config: AppConfig):
        self.model_config = config.model
        self.acceleration = config.acceleration

    def _repo_id(self, descriptor: ModelDescriptor) -> str:
        try:
            return self.model_config.catalog[descriptor.model]
        except KeyError:
            raise ValueError(
                f"Unknown model '{descriptor.model}' "
                f"(available: {', '.join(self.model_config.catalog)})"
            ) from None

    def _device_settings(self, tier: AccelerationTier) -> Dict[str, str]:
        if tier == AccelerationTier.FAST:
            return {
                "device": self.acceleration.fast_device,
                "compute_type": self.acceleration.fast_compute_type,
            }
        return {
            "device": self.acceleration.safe_device,
            "compute_type": self.acceleration.safe_compute_type,
        }

    def _download(self, repo_id: str, progress_sink: ProgressSink) -> str:
        """Download model artifacts one at a time, reporting progress.

        Returns:
            Local directory holding the artifacts.
        """
        cache_dir = (
            str(self.model_config.download_root)
            if self.model_config.download_root
            else None
        )

        try:
            repo_files = list_repo_files(repo_id)
        except Exception as e:
            # Offline: only a complete local snapshot will do
            logger.warning(f"Could not list files of {repo_id} ({e}), using cache")
            return snapshot_download(
                repo_id,
                allow_patterns=MODEL_ARTIFACT_PATTERNS,
                cache_dir=cache_dir,
                local_files_only=True,
            )

        artifacts: List[str] = [
            name
            for name in repo_files
            if any(fnmatch.fnmatch(name, p) for p in MODEL_ARTIFACT_PATTERNS)
        ]
        if not artifacts:
            raise ValueError(f"Repository {repo_id} contains no model files")

        model_dir = None
        for artifact in artifacts:
            progress_sink(artifact, 0.0)
            path = hf_hub_download(repo_id, artifact, cache_dir=cache_dir)
            progress_sink(artifact, 100.0)
            model_dir = os.path.dirname(path)

        return model_dir

    def load(
        self,
        descriptor: ModelDescriptor,
        tier: AccelerationTier,
        progress_sink: ProgressSink,
    ) -> WhisperModel:
        repo_id = self._repo_id(descriptor)
        model_dir = self._download(repo_id, progress_sink)
        settings = self._device_settings(tier)

        logger.info(
            f"Loading Whisper model '{repo_id}' "
            f"(Tier: {tier.value}, Device: {settings['device']}, "
            f"Compute: {settings['compute_type']}, "
            f"CPU threads: {self.acceleration.cpu_threads})"
        )
        return WhisperModel(
            model_dir,
            device=settings["device"],
            compute_type=settings["compute_type"],
            cpu_threads=self.acceleration.cpu_threads,
        )

    def infer(
        self, handle: WhisperModel, waveform: np.ndarray, options: InferenceOptions
    ) -> Dict[str, Any]:
        # faster-whisper windows the audio itself by seeking, so the stride
        # only matters to backends that decode overlapping windows
        segments_generator, info = handle.transcribe(
            waveform,
            language=options.language,
            beam_size=options.beam_size,
            chunk_length=options.chunk_length_s,
            repetition_penalty=options.repetition_penalty,
            no_speech_threshold=options.no_speech_threshold,
            without_timestamps=not options.return_timestamps,
            vad_filter=False,
        )

        segments = list(segments_generator)
        logger.info(
            f"Transcribed {len(segments)} segments "
            f"[{info.language or 'unknown'}, p={info.language_probability:.2f}]"
        )

        return {
            "text": "".join(seg.text for seg in segments),
            "chunks": [
                {"timestamp": (seg.start, seg.end), "text": seg.text}
                for seg in segments
            ],
        }

    def release(self, handle: WhisperModel) -> None:
        # CTranslate2 frees the weights once the last reference is gone
        logger.debug("Releasing Whisper model handle")
