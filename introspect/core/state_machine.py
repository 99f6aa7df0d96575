"""
IntroSpect — Session State Machine

IDLE → RECORDING → SUMMARIZING → IDLE, nothing else. Re-entering the
current state is rejected like any other illegal move, so a caller that
lost a race finds out instead of silently succeeding.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Deque, Dict, FrozenSet, List

logger = logging.getLogger("introspect.state")


class SessionState(str, Enum):
    """Monitoring session lifecycle states."""
    IDLE = "idle"                # Not recording
    RECORDING = "recording"      # Timer armed, ticks running
    SUMMARIZING = "summarizing"  # Stop requested, summary pipeline running


_NEXT: Dict[SessionState, FrozenSet[SessionState]] = {
    SessionState.IDLE:        frozenset({SessionState.RECORDING}),
    SessionState.RECORDING:   frozenset({SessionState.SUMMARIZING}),
    SessionState.SUMMARIZING: frozenset({SessionState.IDLE}),
}


@dataclass(frozen=True)
class StateChange:
    session_id: str
    source: SessionState
    target: SessionState
    at: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "from": self.source.value,
            "to": self.target.value,
            "at": self.at,
        }


class SessionStateMachine:
    """Current lifecycle state plus a short log of recent changes."""

    def __init__(self, keep: int = 12) -> None:
        self._state = SessionState.IDLE
        self._changes: Deque[StateChange] = deque(maxlen=keep)

    @property
    def state(self) -> SessionState:
        return self._state

    def recent(self) -> List[StateChange]:
        return list(self._changes)

    def transition(self, target: SessionState, session_id: str = "") -> StateChange:
        """Move to `target`. Raises ValueError unless the move is legal."""
        if target not in _NEXT[self._state]:
            raise ValueError(
                f"Illegal session transition {self._state.value} → {target.value}"
            )

        change = StateChange(session_id, self._state, target, time.time())
        self._changes.append(change)
        self._state = target
        logger.info(f"[{session_id}] STATE: {change.source.value} → {target.value}")
        return change
