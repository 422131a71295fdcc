"""Tests for session state management."""

import asyncio
from unittest.mock import Mock

import pytest

from whispervibe.state import SessionStateManager, SessionStatus


def test_initial_state():
    """Test the manager starts idle without errors."""
    manager = SessionStateManager()
    assert manager.current_state == SessionStatus.IDLE
    assert manager.last_error is None
    assert manager.message == ""


def test_set_state_notifies_observers():
    """Test observers receive state and message changes."""
    manager = SessionStateManager()
    observer = Mock()
    manager.add_observer(observer)

    manager.set_state(SessionStatus.LOADING_MODEL, "Loading base...")
    observer.assert_called_once_with(
        SessionStatus.LOADING_MODEL, "Loading base...", None
    )

    # Same state, new message
    manager.set_state(SessionStatus.LOADING_MODEL, "Loading model.bin...")
    assert observer.call_count == 2

    # No change
    manager.set_state(SessionStatus.LOADING_MODEL)
    assert observer.call_count == 2
    assert manager.message == "Loading model.bin..."


def test_set_state_rejects_invalid():
    """Test only SessionStatus values are accepted."""
    manager = SessionStateManager()
    with pytest.raises(TypeError):
        manager.set_state("ready")


def test_error_and_recovery():
    """Test errors are recorded and cleared when leaving the error state."""
    manager = SessionStateManager()
    manager.set_error("Load error: boom")
    assert manager.current_state == SessionStatus.ERROR
    assert manager.last_error == "Load error: boom"
    assert manager.message == "Load error: boom"

    manager.reset()
    assert manager.current_state == SessionStatus.IDLE
    assert manager.last_error is None


def test_observer_errors_are_contained():
    """Test a failing observer does not break state changes."""
    manager = SessionStateManager()
    manager.add_observer(Mock(side_effect=RuntimeError("observer failed")))
    good = Mock()
    manager.add_observer(good)

    manager.set_state(SessionStatus.READY, "ready")

    assert manager.current_state == SessionStatus.READY
    good.assert_called_once()


@pytest.mark.asyncio
async def test_wait_for():
    """Test waiting for a state."""
    manager = SessionStateManager()
    waiter = asyncio.create_task(
        manager.wait_for(SessionStatus.COMPLETE, SessionStatus.ERROR)
    )
    await asyncio.sleep(0)
    manager.set_state(SessionStatus.PROCESSING, "working")
    await asyncio.sleep(0)
    assert not waiter.done()

    manager.set_error("Transcription error: boom")
    assert await asyncio.wait_for(waiter, timeout=1.0) == SessionStatus.ERROR


@pytest.mark.asyncio
async def test_wait_for_current_state():
    """Test waiting for the current state returns immediately."""
    manager = SessionStateManager()
    assert await manager.wait_for(SessionStatus.IDLE) == SessionStatus.IDLE
