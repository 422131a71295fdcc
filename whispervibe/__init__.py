"""Local audio transcription with playback-synchronized subtitles."""

__version__ = "0.1.0"
