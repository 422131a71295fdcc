"""Decoding and resampling of audio files into 16kHz mono waveforms."""

import io
import logging

import librosa
import numpy as np
import soundfile as sf

from .errors import DecodeError

logger = logging.getLogger(__name__)

# Settings required by Whisper models
SAMPLE_RATE = 16000
AUDIO_DTYPE = np.float32

# soxr is deterministic for a given input and rate pair
RESAMPLE_TYPE = "soxr_hq"


def _open(source_bytes: bytes) -> sf.SoundFile:
    if not source_bytes:
        raise DecodeError("Audio file is empty")
    try:
        return sf.SoundFile(io.BytesIO(source_bytes))
    except (sf.SoundFileError, RuntimeError, TypeError) as e:
        raise DecodeError(f"Unrecognized audio format: {e}") from e


def resample(source_bytes: bytes) -> np.ndarray:
    """Decode audio bytes into a mono float32 waveform at 16kHz.

    Args:
        source_bytes: Raw bytes of an audio file in any container
            libsndfile understands (wav, flac, ogg, mp3, ...).

    Returns:
        1-D float32 array sampled at SAMPLE_RATE.

    Raises:
        DecodeError: If the bytes are not decodable audio or no samples result.
    """
    with _open(source_bytes) as audio_file:
        source_rate = audio_file.samplerate
        try:
            audio = audio_file.read(dtype="float32", always_2d=True)
        except (sf.SoundFileError, RuntimeError) as e:
            raise DecodeError(f"Failed to decode audio: {e}") from e

    if audio.size == 0:
        raise DecodeError("Audio contains no samples")

    # Channel reduction: (frames, channels) -> (frames,)
    mono = audio.mean(axis=1, dtype=AUDIO_DTYPE)

    if source_rate != SAMPLE_RATE:
        mono = librosa.resample(
            mono, orig_sr=source_rate, target_sr=SAMPLE_RATE, res_type=RESAMPLE_TYPE
        )

    waveform = np.ascontiguousarray(mono, dtype=AUDIO_DTYPE)
    if waveform.size == 0:
        raise DecodeError("Resampling produced no samples")

    logger.debug(
        f"Resampled {audio.shape[0]} frames x {audio.shape[1]} ch @ {source_rate}Hz "
        f"to {waveform.size} samples @ {SAMPLE_RATE}Hz"
    )
    return waveform


def waveform_duration(waveform: np.ndarray) -> float:
    """Duration in seconds of a 16kHz waveform."""
    return len(waveform) / SAMPLE_RATE


def format_duration(seconds: float) -> str:
    """Format a duration as M:SS for display."""
    if not seconds or seconds < 0:
        return "0:00"
    minutes = int(seconds // 60)
    secs = int(seconds % 60)
    return f"{minutes}:{secs:02d}"
