"""
EchoMesh - Room session state machine.

This module implements the finite state machine behind a RoomSession.
Provides validated state transitions, transition history and a change
callback, so the session never moves between states implicitly.

    IDLE --ROOM_CREATED--> UNLOCKED
    IDLE --JOIN_REQUESTED--> ROOM_READY --PASSWORD_ACCEPTED--> UNLOCKED
    ROOM_READY --PASSWORD_REJECTED--> ROOM_READY
    any open state --JOIN_REQUESTED / ROOM_CREATED / LEFT--> room change
    any state --CLOSED--> CLOSED
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Dict, List, Optional

from .constants import STATE_HISTORY_SIZE
from .errors import ErrorCode, SessionError

logger = logging.getLogger(__name__)


class RoomState(Enum):
    """States of a room session."""

    IDLE = auto()  # No room
    ROOM_READY = auto()  # Room id known, waiting for the password
    UNLOCKED = auto()  # Key derived, sending and receiving enabled
    CLOSED = auto()  # Torn down, no further transitions


class RoomEvent(Enum):
    """Events that trigger state transitions."""

    ROOM_CREATED = auto()
    JOIN_REQUESTED = auto()
    PASSWORD_ACCEPTED = auto()
    PASSWORD_REJECTED = auto()
    LEFT = auto()
    CLOSED = auto()


@dataclass
class StateTransition:
    """Represents a state transition."""

    from_state: RoomState
    event: RoomEvent
    to_state: RoomState
    timestamp: float = field(default_factory=time.time)


class RoomStateMachine:
    """
    Finite state machine for the room session lifecycle.

    Enforces valid transitions and keeps a bounded transition history.
    """

    TRANSITIONS: Dict[RoomState, Dict[RoomEvent, RoomState]] = {
        RoomState.IDLE: {
            RoomEvent.ROOM_CREATED: RoomState.UNLOCKED,
            RoomEvent.JOIN_REQUESTED: RoomState.ROOM_READY,
            RoomEvent.LEFT: RoomState.IDLE,
            RoomEvent.CLOSED: RoomState.CLOSED,
        },
        RoomState.ROOM_READY: {
            RoomEvent.ROOM_CREATED: RoomState.UNLOCKED,
            RoomEvent.JOIN_REQUESTED: RoomState.ROOM_READY,
            RoomEvent.PASSWORD_ACCEPTED: RoomState.UNLOCKED,
            RoomEvent.PASSWORD_REJECTED: RoomState.ROOM_READY,
            RoomEvent.LEFT: RoomState.IDLE,
            RoomEvent.CLOSED: RoomState.CLOSED,
        },
        RoomState.UNLOCKED: {
            RoomEvent.ROOM_CREATED: RoomState.UNLOCKED,
            RoomEvent.JOIN_REQUESTED: RoomState.ROOM_READY,
            RoomEvent.LEFT: RoomState.IDLE,
            RoomEvent.CLOSED: RoomState.CLOSED,
        },
        RoomState.CLOSED: {},
    }

    def __init__(self, initial_state: RoomState = RoomState.IDLE):
        self.current_state = initial_state
        self.previous_state: Optional[RoomState] = None
        self.state_entry_time = time.time()
        self.transition_history: List[StateTransition] = []
        self.max_history = STATE_HISTORY_SIZE

        self.on_state_change: Optional[Callable[[RoomState, RoomState], None]] = None

        logger.debug(f"Room state machine initialized in state: {self.current_state.name}")

    def transition(self, event: RoomEvent) -> RoomState:
        """
        Apply an event.

        Args:
            event: Event triggering the transition

        Returns:
            The new state

        Raises:
            SessionError: If the event is not valid in the current state
        """
        if not self.is_valid_transition(self.current_state, event):
            code = (
                ErrorCode.E303_SESSION_CLOSED
                if self.current_state == RoomState.CLOSED
                else ErrorCode.E301_INVALID_TRANSITION
            )
            raise SessionError(
                code,
                f"Invalid transition: {self.current_state.name} + {event.name}",
                {"state": self.current_state.name, "event": event.name},
            )

        new_state = self.TRANSITIONS[self.current_state][event]
        old_state = self.current_state
        self.previous_state = old_state
        self.current_state = new_state
        self.state_entry_time = time.time()

        self.transition_history.append(StateTransition(old_state, event, new_state))
        if len(self.transition_history) > self.max_history:
            self.transition_history = self.transition_history[-self.max_history :]

        logger.info(f"Room state: {old_state.name} -> {new_state.name} (event: {event.name})")

        if self.on_state_change:
            try:
                self.on_state_change(old_state, new_state)
            except Exception as e:
                logger.error(f"State change callback error: {e}")

        return new_state

    def is_valid_transition(self, from_state: RoomState, event: RoomEvent) -> bool:
        return event in self.TRANSITIONS.get(from_state, {})

    def get_state(self) -> RoomState:
        return self.current_state

    def get_time_in_state(self) -> float:
        """Get time spent in current state (seconds)."""
        return time.time() - self.state_entry_time

    def get_history(self, count: int = 10) -> List[StateTransition]:
        return self.transition_history[-count:]

    def get_statistics(self) -> Dict[str, Any]:
        """
        Get state machine statistics.

        Returns:
            Dictionary with statistics
        """
        event_counts: Dict[str, int] = {}
        for transition in self.transition_history:
            event_counts[transition.event.name] = event_counts.get(transition.event.name, 0) + 1

        return {
            "current_state": self.current_state.name,
            "previous_state": self.previous_state.name if self.previous_state else None,
            "time_in_state": self.get_time_in_state(),
            "total_transitions": len(self.transition_history),
            "event_counts": event_counts,
        }

    def __repr__(self) -> str:
        return (
            f"RoomStateMachine(state={self.current_state.name}, "
            f"time_in_state={self.get_time_in_state():.1f}s)"
        )
