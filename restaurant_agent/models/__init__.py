"""
Models module for wire schemas, call state and stored records.

Key components:
- carrier_schemas: Pydantic models for the Twilio media stream protocol
- openai_schemas: Pydantic models for OpenAI Realtime client and server events
- call_session: Per-call state, its lifecycle and the registry of active calls
- tool_calls: Accumulation and parsing of streamed function-call arguments
- records: Conversation, reservation and agent configuration rows
"""

from restaurant_agent.models.call_session import CallSession, CallSessionManager, CallState
from restaurant_agent.models.records import (
    AgentConfig,
    ConversationRecord,
    ConversationStatus,
    ReservationRecord,
    ReservationStatus,
)
from restaurant_agent.models.tool_calls import PendingToolCalls
