"""
Pydantic models for the rows kept in the record store.

These mirror the ``conversations``, ``reservations`` and ``agent_config`` tables.
The bridge only ever holds references (ids) to these rows; the record store owns them.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ConversationStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class ReservationStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class ConversationRecord(BaseModel):
    """One telephone or browser call."""

    model_config = ConfigDict(extra="ignore")

    id: str
    status: ConversationStatus = ConversationStatus.ACTIVE
    started_at: datetime = Field(default_factory=utc_now)
    ended_at: Optional[datetime] = None
    duration_seconds: Optional[int] = None
    customer_name: Optional[str] = None


class ReservationRecord(BaseModel):
    """A table booking created from a completed create_reservation tool call."""

    model_config = ConfigDict(extra="ignore")

    id: str
    conversation_id: Optional[str] = None
    name: str
    email: str
    date: str
    time: str
    guests: int
    status: ReservationStatus = ReservationStatus.CONFIRMED
    created_at: datetime = Field(default_factory=utc_now)


class AgentConfig(BaseModel):
    """Singleton restaurant configuration used to build the model's instructions."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    restaurant_name: str
    restaurant_hours: str = ""
    menu: str = ""
    instructions: str = ""
