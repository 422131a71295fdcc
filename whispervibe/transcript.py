"""Transcript models and the playback-synchronized transcript timeline."""

import bisect
import logging
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field, model_validator

logger = logging.getLogger(__name__)

# Segments without an end bound are displayed and exported as this long
DEFAULT_SEGMENT_DURATION_S = 2.0

SUBTITLE_FORMATS = {"srt", "subtitle"}
TEXT_FORMATS = {"txt", "text"}


class TranscriptSegment(BaseModel):
    """A single time-bounded unit of transcribed text, [start, end)."""

    start: float = Field(ge=0.0)
    end: Optional[float] = None
    text: str = ""

    @property
    def effective_end(self) -> float:
        """End bound, defaulting to start + 2s when the backend omitted it."""
        if self.end is None:
            return self.start + DEFAULT_SEGMENT_DURATION_S
        return self.end

    def contains(self, seconds: float) -> bool:
        return self.start <= seconds < self.effective_end


class Transcript(BaseModel):
    """Ordered segments plus the overall concatenated text."""

    text: str = ""
    segments: List[TranscriptSegment] = Field(default_factory=list)

    @model_validator(mode="after")
    def order_segments(self) -> "Transcript":
        starts = [seg.start for seg in self.segments]
        if starts != sorted(starts):
            logger.warning("Backend returned segments out of order, sorting by start")
            self.segments = sorted(self.segments, key=lambda seg: seg.start)
        return self

    @property
    def is_empty(self) -> bool:
        """True when nothing was transcribed (no segments or blank text)."""
        return not self.segments or not self.text.strip()

    @classmethod
    def from_output(cls, output: Dict[str, Any]) -> "Transcript":
        """Build a transcript from raw backend output.

        The output has the form ``{"text": str, "chunks": [{"timestamp":
        (start, end_or_None), "text": str}, ...]}``.
        """
        segments = []
        for chunk in output.get("chunks") or []:
            start, end = chunk["timestamp"]
            segments.append(
                TranscriptSegment(start=start, end=end, text=chunk.get("text", ""))
            )
        return cls(text=output.get("text") or "", segments=segments)


class PlaybackController(Protocol):
    """External audio player driven by the timeline."""

    @property
    def current_time(self) -> float: ...

    def seek(self, seconds: float) -> None: ...

    def play(self) -> None: ...


def format_timestamp(seconds: float) -> str:
    """Format seconds as an SRT timestamp, HH:MM:SS,mmm."""
    total_ms = max(0, int(round(seconds * 1000)))
    hours, remainder = divmod(total_ms, 3_600_000)
    minutes, remainder = divmod(remainder, 60_000)
    secs, millis = divmod(remainder, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d},{millis:03d}"


class TranscriptTimeline:
    """Read-only view of a transcript indexed by playback time."""

    def __init__(self, transcript: Transcript):
        self.transcript = transcript
        self._starts: List[float] = [seg.start for seg in transcript.segments]

        # Running maximum of end bounds, lets lookups stop scanning early
        self._max_ends: List[float] = []
        running = float("-inf")
        for seg in transcript.segments:
            running = max(running, seg.effective_end)
            self._max_ends.append(running)

    @property
    def segments(self) -> List[TranscriptSegment]:
        return self.transcript.segments

    def active_segment(self, seconds: float) -> Optional[TranscriptSegment]:
        """Return the segment playing at the given time, or None.

        When segments overlap, the one that started most recently wins.
        """
        index = bisect.bisect_right(self._starts, seconds) - 1
        while index >= 0 and self._max_ends[index] > seconds:
            segment = self.transcript.segments[index]
            if segment.contains(seconds):
                return segment
            index -= 1
        return None

    def jump_to(self, segment: TranscriptSegment, player: PlaybackController) -> None:
        """Seek the player to the start of a segment and begin playback."""
        player.seek(segment.start)
        player.play()

    def to_srt(self) -> str:
        records = []
        for index, segment in enumerate(self.transcript.segments, start=1):
            records.append(
                f"{index}\n"
                f"{format_timestamp(segment.start)} --> "
                f"{format_timestamp(segment.effective_end)}\n"
                f"{segment.text.strip()}\n\n"
            )
        return "".join(records)

    def export(self, fmt: str = "srt") -> bytes:
        """Serialize the transcript.

        Args:
            fmt: "srt" (or "subtitle") for SubRip subtitles, "txt" for plain text.

        Raises:
            ValueError: If the format is not supported.
        """
        fmt = fmt.lower()
        if fmt in SUBTITLE_FORMATS:
            return self.to_srt().encode("utf-8")
        if fmt in TEXT_FORMATS:
            return (self.transcript.text.strip() + "\n").encode("utf-8")
        raise ValueError(f"Unsupported export format: {fmt}")
