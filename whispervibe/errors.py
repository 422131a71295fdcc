"""Exception types raised across the whispervibe pipeline."""


class WhisperVibeError(Exception):
    """Base class for all whispervibe errors."""


class DecodeError(WhisperVibeError):
    """Audio bytes could not be decoded or produced no samples."""


class LoadError(WhisperVibeError):
    """The model could not be loaded on any acceleration tier."""


class InferenceError(WhisperVibeError):
    """The inference backend failed while transcribing."""


class ProtocolViolation(WhisperVibeError):
    """A request was issued that the worker cannot honour (e.g. no model)."""
