"""
Per-call state for the relay.

StreamSession records one telephony call leg and where it is in its lifecycle.
SessionRegistry tracks the sessions currently being served, for health
reporting; it never owns or tears down a session.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional


class SessionState(str, Enum):
    """Lifecycle states of a call leg, in order."""

    IDLE = "idle"
    ACCEPTING = "accepting"
    ACTIVE = "active"
    DRAINING = "draining"
    CLOSED = "closed"


@dataclass
class StreamSession:
    """One telephony call leg served by a SessionController."""

    connection_id: str
    stream_sid: Optional[str] = None
    call_sid: Optional[str] = None
    state: SessionState = SessionState.IDLE
    started_at: float = field(default_factory=time.time)
    custom_parameters: Dict[str, str] = field(default_factory=dict)

    def assign_stream(self, stream_sid: str, call_sid: Optional[str] = None) -> bool:
        """
        Record the stream identifier from the 'start' event.

        Returns:
            True if the identifier was recorded, False if a different one was
            already assigned (the first identifier is kept).
        """
        if self.stream_sid is not None and self.stream_sid != stream_sid:
            return False
        self.stream_sid = stream_sid
        if call_sid:
            self.call_sid = call_sid
        return True

    def to_dict(self) -> Dict[str, object]:
        return {
            "connection_id": self.connection_id,
            "stream_sid": self.stream_sid,
            "call_sid": self.call_sid,
            "state": self.state.value,
            "duration_s": round(time.time() - self.started_at, 3),
        }


class SessionRegistry:
    """
    Registry of active call legs.

    The WebSocketManager adds a session when a media-stream connection arrives and
    removes it once the controller has closed, whatever the outcome.
    """

    def __init__(self):
        self.active_sessions: Dict[str, StreamSession] = {}

    def add_session(self, session: StreamSession) -> None:
        self.active_sessions[session.connection_id] = session

    def get_session(self, connection_id: str) -> Optional[StreamSession]:
        return self.active_sessions.get(connection_id)

    def remove_session(self, connection_id: str) -> None:
        self.active_sessions.pop(connection_id, None)

    def get_all_sessions(self) -> Dict[str, StreamSession]:
        return self.active_sessions

    def __len__(self) -> int:
        return len(self.active_sessions)
