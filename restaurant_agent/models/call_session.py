"""
Call session state management for the Twilio to OpenAI Realtime bridge.

This module provides the CallSession class, which holds the per-call state shared
by the carrier-side and provider-side event handlers, and the CallSessionManager
registry that tracks which calls are currently active. A call moves through the
lifecycle ``idle -> connecting -> configuring -> active -> ended``; ``ended`` is
terminal and entering it again is a no-op.
"""

import logging
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from restaurant_agent.config.constants import LOGGER_NAME
from restaurant_agent.models.records import utc_now
from restaurant_agent.models.tool_calls import PendingToolCalls

logger = logging.getLogger(LOGGER_NAME)


class CallState(str, Enum):
    """Lifecycle state of one call."""

    IDLE = "idle"
    CONNECTING = "connecting"
    CONFIGURING = "configuring"
    ACTIVE = "active"
    ENDED = "ended"


ALLOWED_TRANSITIONS = {
    CallState.IDLE: {CallState.CONNECTING, CallState.ENDED},
    CallState.CONNECTING: {CallState.CONFIGURING, CallState.ENDED},
    CallState.CONFIGURING: {CallState.ACTIVE, CallState.ENDED},
    CallState.ACTIVE: {CallState.ENDED},
    CallState.ENDED: set(),
}


class CallSession:
    """
    Mutable state of a single call, owned by exactly one bridge.

    Attributes:
        session_id: Locally generated identifier for the call
        stream_sid: Twilio stream id, known after the first start or media frame
        call_sid: Twilio call id, when the start frame carries one
        conversation_id: Id of the conversation row, once it has been inserted
        state: Current CallState
        pending_tool_calls: Function-call arguments still being streamed
        transcript: Caller and agent utterances seen so far
    """

    def __init__(self, session_id: Optional[str] = None):
        self.session_id = session_id or str(uuid.uuid4())
        self.stream_sid: Optional[str] = None
        self.call_sid: Optional[str] = None
        self.conversation_id: Optional[str] = None
        self.state = CallState.IDLE
        self.pending_tool_calls = PendingToolCalls()
        self.transcript: List[Dict[str, str]] = []
        self.started_at: datetime = utc_now()
        self.ended_at: Optional[datetime] = None
        self.end_reason: Optional[str] = None

    @property
    def is_ended(self) -> bool:
        return self.state == CallState.ENDED

    def transition(self, new_state: CallState) -> bool:
        """
        Move the call to a new state if the lifecycle allows it.

        Returns:
            True if the state changed, False if the transition was refused
        """
        if new_state == self.state:
            return False
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            logger.warning(
                f"Refusing call state transition {self.state.value} -> {new_state.value} "
                f"for session: {self.session_id}"
            )
            return False
        logger.info(
            f"Call {self.session_id} state: {self.state.value} -> {new_state.value}"
        )
        self.state = new_state
        return True

    def mark_ended(self, reason: str) -> bool:
        """
        Enter the terminal state.

        Returns:
            True the first time, False if the call had already ended
        """
        if self.is_ended:
            return False
        self.transition(CallState.ENDED)
        self.ended_at = utc_now()
        self.end_reason = reason
        return True

    @property
    def duration_seconds(self) -> Optional[int]:
        if self.ended_at is None:
            return None
        return int((self.ended_at - self.started_at).total_seconds())

    def add_transcript(self, role: str, text: str) -> None:
        if text:
            self.transcript.append({"role": role, "text": text})


class CallSessionManager:
    """
    Registry of the bridges currently handling calls.

    Entries are added when a carrier socket is accepted and removed when it closes.
    Nothing in here is shared between calls except the registry itself.
    """

    def __init__(self):
        """Initialize an empty dictionary of active calls."""
        self.active_calls: Dict[str, Any] = {}

    def add_call(self, session_id: str, bridge: Any) -> None:
        self.active_calls[session_id] = bridge

    def get_call(self, session_id: str) -> Any:
        """
        Get an active call's bridge by session id.

        Returns:
            The bridge, or None if the call does not exist
        """
        return self.active_calls.get(session_id)

    def remove_call(self, session_id: str) -> None:
        if session_id in self.active_calls:
            del self.active_calls[session_id]

    def get_all_calls(self) -> Dict[str, Any]:
        return self.active_calls

    def __len__(self) -> int:
        return len(self.active_calls)
