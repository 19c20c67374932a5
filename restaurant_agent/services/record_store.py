"""
Record store for conversations, reservations and the agent configuration.

Two implementations are provided:
- SupabaseRecordStore talks to a Supabase project's PostgREST endpoint with httpx.
- InMemoryRecordStore keeps rows in process, for development and tests.

Both publish a RecordChange to local subscribers after every successful write so
the dashboard can follow changes made by the bridge without polling.
"""

import logging
import os
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from restaurant_agent.config.constants import LOGGER_NAME
from restaurant_agent.models.records import (
    AgentConfig,
    ConversationRecord,
    ConversationStatus,
    ReservationRecord,
    utc_now,
)

logger = logging.getLogger(LOGGER_NAME)

SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY")

REQUEST_TIMEOUT = 10.0  # seconds

Row = TypeVar("Row", bound=BaseModel)


class RecordStoreError(Exception):
    """Raised when the record store rejects or fails a read or write."""


class RecordChange(BaseModel):
    """A row-level change notification."""

    table: Literal["conversations", "reservations", "agent_config"]
    action: Literal["insert", "update"]
    record: Dict[str, Any]


ChangeCallback = Callable[[RecordChange], Awaitable[None]]


def _serialize(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Make field values JSON-friendly for the REST API."""
    serialized = {}
    for key, value in fields.items():
        if isinstance(value, datetime):
            serialized[key] = value.isoformat()
        elif hasattr(value, "value"):  # enums
            serialized[key] = value.value
        else:
            serialized[key] = value
    return serialized


class RecordStore(ABC):
    """Interface the bridge and the dashboard API use to read and write rows."""

    def __init__(self):
        self._subscribers: List[ChangeCallback] = []

    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        """
        Register a coroutine called after each write.

        Returns:
            A function that removes the subscription
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def _publish(self, table: str, action: str, record: BaseModel) -> None:
        change = RecordChange(table=table, action=action, record=record.model_dump(mode="json"))
        for callback in list(self._subscribers):
            try:
                await callback(change)
            except Exception as e:
                logger.error(f"Error in record change subscriber: {e}", exc_info=True)

    @abstractmethod
    async def create_conversation(self) -> ConversationRecord:
        ...

    @abstractmethod
    async def update_conversation(self, conversation_id: str, **fields: Any) -> Optional[ConversationRecord]:
        ...

    @abstractmethod
    async def get_conversation(self, conversation_id: str) -> Optional[ConversationRecord]:
        ...

    @abstractmethod
    async def list_conversations(self, limit: int = 100) -> List[ConversationRecord]:
        ...

    @abstractmethod
    async def create_reservation(self, fields: Dict[str, Any]) -> ReservationRecord:
        ...

    @abstractmethod
    async def update_reservation(self, reservation_id: str, **fields: Any) -> Optional[ReservationRecord]:
        ...

    @abstractmethod
    async def list_reservations(self, limit: int = 100) -> List[ReservationRecord]:
        ...

    @abstractmethod
    async def get_agent_config(self) -> Optional[AgentConfig]:
        ...

    @abstractmethod
    async def save_agent_config(self, config: AgentConfig) -> AgentConfig:
        ...

    async def complete_conversation(
        self, conversation_id: str, ended_at: datetime, duration_seconds: Optional[int] = None
    ) -> Optional[ConversationRecord]:
        """Mark a conversation completed with its end timestamp."""
        fields: Dict[str, Any] = {
            "status": ConversationStatus.COMPLETED,
            "ended_at": ended_at,
        }
        if duration_seconds is not None:
            fields["duration_seconds"] = duration_seconds
        return await self.update_conversation(conversation_id, **fields)

    async def close(self) -> None:
        return None


class InMemoryRecordStore(RecordStore):
    """Keeps every table in a dictionary. Rows are lost when the process exits."""

    def __init__(self, agent_config: Optional[AgentConfig] = None):
        super().__init__()
        self.conversations: Dict[str, ConversationRecord] = {}
        self.reservations: Dict[str, ReservationRecord] = {}
        self.agent_config = agent_config

    async def create_conversation(self) -> ConversationRecord:
        record = ConversationRecord(id=str(uuid.uuid4()), status=ConversationStatus.ACTIVE)
        self.conversations[record.id] = record
        await self._publish("conversations", "insert", record)
        return record

    async def update_conversation(self, conversation_id: str, **fields: Any) -> Optional[ConversationRecord]:
        record = self.conversations.get(conversation_id)
        if record is None:
            return None
        updated = record.model_copy(update=fields)
        self.conversations[conversation_id] = updated
        await self._publish("conversations", "update", updated)
        return updated

    async def get_conversation(self, conversation_id: str) -> Optional[ConversationRecord]:
        return self.conversations.get(conversation_id)

    async def list_conversations(self, limit: int = 100) -> List[ConversationRecord]:
        rows = sorted(self.conversations.values(), key=lambda r: r.started_at, reverse=True)
        return rows[:limit]

    async def create_reservation(self, fields: Dict[str, Any]) -> ReservationRecord:
        try:
            record = ReservationRecord(id=str(uuid.uuid4()), **fields)
        except ValueError as e:
            raise RecordStoreError(f"Invalid reservation row: {e}") from e
        self.reservations[record.id] = record
        await self._publish("reservations", "insert", record)
        return record

    async def update_reservation(self, reservation_id: str, **fields: Any) -> Optional[ReservationRecord]:
        record = self.reservations.get(reservation_id)
        if record is None:
            return None
        updated = record.model_copy(update=fields)
        self.reservations[reservation_id] = updated
        await self._publish("reservations", "update", updated)
        return updated

    async def list_reservations(self, limit: int = 100) -> List[ReservationRecord]:
        rows = sorted(self.reservations.values(), key=lambda r: r.created_at, reverse=True)
        return rows[:limit]

    async def get_agent_config(self) -> Optional[AgentConfig]:
        return self.agent_config

    async def save_agent_config(self, config: AgentConfig) -> AgentConfig:
        action = "update" if self.agent_config is not None else "insert"
        config_id = (self.agent_config.id if self.agent_config else None) or config.id or str(uuid.uuid4())
        self.agent_config = config.model_copy(update={"id": config_id})
        await self._publish("agent_config", action, self.agent_config)
        return self.agent_config


class SupabaseRecordStore(RecordStore):
    """
    Record store backed by a Supabase project's REST API.

    Args:
        url: Project URL, e.g. https://xyz.supabase.co
        service_role_key: Service role key with insert/update rights on the tables
        transport: Optional httpx transport, e.g. httpx.MockTransport in tests
    """

    def __init__(
        self,
        url: str,
        service_role_key: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__()
        self.url = url.rstrip("/")
        self.client = httpx.AsyncClient(
            base_url=f"{self.url}/rest/v1",
            headers={
                "apikey": service_role_key,
                "Authorization": f"Bearer {service_role_key}",
                "Content-Type": "application/json",
                "Prefer": "return=representation",
            },
            timeout=REQUEST_TIMEOUT,
            transport=transport,
        )

    async def _request(self, method: str, table: str, **kwargs: Any) -> List[Dict[str, Any]]:
        try:
            response = await self.client.request(method, f"/{table}", **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error(
                f"Record store returned {exc.response.status_code} for {method} {table}: "
                f"{exc.response.text}"
            )
            raise RecordStoreError(
                f"Record store error {exc.response.status_code} on {table}"
            ) from exc
        except httpx.RequestError as exc:
            logger.error(f"Record store request failed for {method} {table}: {exc}")
            raise RecordStoreError(f"Record store request failed: {exc}") from exc

        if not response.content:
            return []
        try:
            data = response.json()
        except ValueError as exc:
            logger.error(f"Record store sent an unreadable body for {method} {table}: {exc}")
            raise RecordStoreError(f"Record store returned invalid JSON for {table}") from exc
        return data if isinstance(data, list) else [data]

    @staticmethod
    def _parse(model: Type[Row], table: str, row: Any) -> Row:
        try:
            return model.model_validate(row)
        except ValidationError as exc:
            logger.error(f"Unexpected {table} row from record store: {exc}")
            raise RecordStoreError(f"Record store returned a malformed {table} row") from exc

    async def create_conversation(self) -> ConversationRecord:
        rows = await self._request(
            "POST",
            "conversations",
            json=_serialize({"status": ConversationStatus.ACTIVE, "started_at": utc_now()}),
        )
        if not rows:
            raise RecordStoreError("Conversation insert returned no row")
        record = self._parse(ConversationRecord, "conversations", rows[0])
        await self._publish("conversations", "insert", record)
        return record

    async def update_conversation(self, conversation_id: str, **fields: Any) -> Optional[ConversationRecord]:
        rows = await self._request(
            "PATCH",
            "conversations",
            params={"id": f"eq.{conversation_id}"},
            json=_serialize(fields),
        )
        if not rows:
            return None
        record = self._parse(ConversationRecord, "conversations", rows[0])
        await self._publish("conversations", "update", record)
        return record

    async def get_conversation(self, conversation_id: str) -> Optional[ConversationRecord]:
        rows = await self._request(
            "GET", "conversations", params={"select": "*", "id": f"eq.{conversation_id}"}
        )
        return self._parse(ConversationRecord, "conversations", rows[0]) if rows else None

    async def list_conversations(self, limit: int = 100) -> List[ConversationRecord]:
        rows = await self._request(
            "GET",
            "conversations",
            params={"select": "*", "order": "started_at.desc", "limit": str(limit)},
        )
        return [self._parse(ConversationRecord, "conversations", row) for row in rows]

    async def create_reservation(self, fields: Dict[str, Any]) -> ReservationRecord:
        rows = await self._request("POST", "reservations", json=_serialize(fields))
        if not rows:
            raise RecordStoreError("Reservation insert returned no row")
        record = self._parse(ReservationRecord, "reservations", rows[0])
        await self._publish("reservations", "insert", record)
        return record

    async def update_reservation(self, reservation_id: str, **fields: Any) -> Optional[ReservationRecord]:
        rows = await self._request(
            "PATCH",
            "reservations",
            params={"id": f"eq.{reservation_id}"},
            json=_serialize(fields),
        )
        if not rows:
            return None
        record = self._parse(ReservationRecord, "reservations", rows[0])
        await self._publish("reservations", "update", record)
        return record

    async def list_reservations(self, limit: int = 100) -> List[ReservationRecord]:
        rows = await self._request(
            "GET",
            "reservations",
            params={"select": "*", "order": "created_at.desc", "limit": str(limit)},
        )
        return [self._parse(ReservationRecord, "reservations", row) for row in rows]

    async def get_agent_config(self) -> Optional[AgentConfig]:
        rows = await self._request("GET", "agent_config", params={"select": "*", "limit": "1"})
        return self._parse(AgentConfig, "agent_config", rows[0]) if rows else None

    async def save_agent_config(self, config: AgentConfig) -> AgentConfig:
        existing = await self.get_agent_config()
        fields = config.model_dump(exclude={"id"})
        if existing is not None and existing.id:
            rows = await self._request(
                "PATCH", "agent_config", params={"id": f"eq.{existing.id}"}, json=fields
            )
            action = "update"
        else:
            rows = await self._request("POST", "agent_config", json=fields)
            action = "insert"
        if not rows:
            raise RecordStoreError("Agent configuration write returned no row")
        saved = self._parse(AgentConfig, "agent_config", rows[0])
        await self._publish("agent_config", action, saved)
        return saved

    async def close(self) -> None:
        await self.client.aclose()


def create_record_store() -> RecordStore:
    """Build the record store from the environment."""
    if SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY:
        logger.info(f"Using Supabase record store at {SUPABASE_URL}")
        return SupabaseRecordStore(SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY)
    logger.warning("SUPABASE_URL/SUPABASE_SERVICE_ROLE_KEY not set - using in-memory record store")
    return InMemoryRecordStore()
