"""Session status tracking for whispervibe."""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, List, Optional

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    """Possible states of a transcription session."""

    IDLE = "idle"
    LOADING_MODEL = "loading_model"
    READY = "ready"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"


# States from which a transcription run may be started
RUNNABLE_STATES = (SessionStatus.READY, SessionStatus.COMPLETE)

Observer = Callable[[SessionStatus, str, Optional[str]], Any]


class SessionStateManager:
    """Single source of truth for the session status and status message."""

    def __init__(self):
        """Initialize state manager with IDLE state."""
        self._state: SessionStatus = SessionStatus.IDLE
        self._message: str = ""
        self._last_error: Optional[str] = None
        self._observers: List[Observer] = []
        self._changed = asyncio.Event()

    @property
    def current_state(self) -> SessionStatus:
        return self._state

    @property
    def message(self) -> str:
        """Human-readable description of the current stage."""
        return self._message

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    def add_observer(self, observer: Observer) -> None:
        """Add an observer callback for state changes.

        The callback receives the new state, the status message and the
        optional error message.
        """
        self._observers.append(observer)

    def _notify_observers(self) -> None:
        self._changed.set()
        for observer in self._observers:
            try:
                observer(self._state, self._message, self._last_error)
            except Exception:
                # Observer errors must not break state management
                logger.exception("Error in session state observer")

    def set_state(
        self, new_state: SessionStatus, message: Optional[str] = None
    ) -> None:
        """Set the session status.

        Args:
            new_state: The new state to set.
            message: Optional status message; keeps the previous one if None.

        Raises:
            TypeError: If the provided state is not a valid SessionStatus.
        """
        if not isinstance(new_state, SessionStatus):
            raise TypeError(f"State must be a SessionStatus, got {type(new_state)}")

        # Reset error when moving out of error state
        if new_state != SessionStatus.ERROR:
            self._last_error = None

        new_message = self._message if message is None else message
        if self._state != new_state or self._message != new_message:
            self._state = new_state
            self._message = new_message
            self._notify_observers()

    def set_error(self, message: str) -> None:
        """Set an error state with the provided message."""
        changed = self._state != SessionStatus.ERROR or self._last_error != message
        self._last_error = message
        self._message = message
        self._state = SessionStatus.ERROR

        if changed:
            self._notify_observers()

    def reset(self, message: str = "") -> None:
        """Return to IDLE, clearing any error."""
        self._last_error = None
        self.set_state(SessionStatus.IDLE, message)

    async def wait_for(self, *states: SessionStatus) -> SessionStatus:
        """Wait until the session reaches one of the given states."""
        while self._state not in states:
            self._changed.clear()
            await self._changed.wait()
        return self._state
