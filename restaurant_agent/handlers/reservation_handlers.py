"""
Executes the create_reservation function call issued by the model.

The same handler serves the telephone bridge and the browser session path:
arguments are validated, a confirmed reservation row is inserted, a confirmation
email is sent in the background and a JSON result is produced for the model.
Nothing is inserted when validation fails.
"""

import asyncio
import json
import logging
import re
from typing import Any, Awaitable, Callable, Dict, Optional

from pydantic import BaseModel, ValidationError, field_validator

from restaurant_agent.config.constants import (
    DEFAULT_RESTAURANT_NAME,
    LOGGER_NAME,
    TOOL_CREATE_RESERVATION,
)
from restaurant_agent.models.openai_schemas import (
    ConversationItemCreateEvent,
    FunctionCallOutputItem,
    ResponseCreateEvent,
)
from restaurant_agent.models.records import ReservationStatus
from restaurant_agent.models.tool_calls import ToolCallArgumentsError, parse_arguments
from restaurant_agent.services.notifications import NotificationSender, ReservationConfirmation
from restaurant_agent.services.record_store import RecordStore, RecordStoreError

logger = logging.getLogger(LOGGER_NAME)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d(:[0-5]\d)?$")

Spawner = Callable[[Awaitable[Any]], Any]


class ReservationValidationError(ValueError):
    """Raised when create_reservation arguments are missing or malformed."""


class ReservationRequest(BaseModel):
    """Validated create_reservation arguments."""

    name: str
    email: str
    date: str
    time: str
    guests: int = 1

    @field_validator("name", "email", "date", "time", mode="before")
    def validate_required_text(cls, v):
        """Validate that required fields are non-empty strings."""
        if v is None or not isinstance(v, str) or not v.strip():
            raise ValueError("field is required")
        return v.strip()

    @field_validator("email")
    def validate_email(cls, v):
        if not EMAIL_PATTERN.match(v):
            raise ValueError("email must be a valid address")
        return v

    @field_validator("date")
    def validate_date(cls, v):
        """Validate that date is YYYY-MM-DD."""
        if not DATE_PATTERN.match(v):
            raise ValueError("date must be in YYYY-MM-DD format")
        return v

    @field_validator("time")
    def validate_time(cls, v):
        """Validate HH:MM (or HH:MM:SS) and normalize to HH:MM:SS."""
        if not TIME_PATTERN.match(v):
            raise ValueError("time must be in HH:MM format")
        return v if v.count(":") == 2 else f"{v}:00"

    @field_validator("guests", mode="before")
    def coerce_guests(cls, v):
        """Missing, non-numeric or non-positive guest counts become 1."""
        try:
            guests = int(float(v))
        except (TypeError, ValueError, OverflowError):
            return 1
        return guests if guests > 0 else 1


def validate_reservation(arguments: Dict[str, Any]) -> ReservationRequest:
    """
    Validate raw function-call arguments.

    Raises:
        ReservationValidationError: If a required field is missing or malformed
    """
    try:
        return ReservationRequest(**arguments)
    except ValidationError as e:
        fields = ", ".join(str(err["loc"][0]) for err in e.errors() if err.get("loc"))
        raise ReservationValidationError(f"Missing or invalid reservation details: {fields}") from e


def _background(coro: Awaitable[Any]) -> Any:
    return asyncio.ensure_future(coro)


async def create_reservation(
    arguments: Dict[str, Any],
    store: RecordStore,
    notifier: NotificationSender,
    conversation_id: Optional[str] = None,
    spawn: Spawner = _background,
) -> Dict[str, Any]:
    """
    Create a confirmed reservation from function-call arguments.

    Args:
        arguments: Decoded create_reservation arguments
        store: Record store receiving the reservation row
        notifier: Sender for the confirmation email
        conversation_id: Conversation to link the reservation to, when known
        spawn: Schedules the confirmation email without awaiting it

    Returns:
        The tool result: {"success": True, "message": ...} or {"success": False, "error": ...}
    """
    try:
        request = validate_reservation(arguments)
    except ReservationValidationError as e:
        logger.warning(f"Rejected reservation request: {e}")
        return {"success": False, "error": str(e)}

    fields = {
        **request.model_dump(),
        "status": ReservationStatus.CONFIRMED,
        "conversation_id": conversation_id,
    }
    try:
        reservation = await store.create_reservation(fields)
    except RecordStoreError as e:
        logger.error(f"Failed to save reservation: {e}")
        return {"success": False, "error": "The reservation could not be saved. Please try again."}

    logger.info(
        f"Reservation {reservation.id} created for {request.name} on {request.date} at "
        f"{request.time} ({request.guests} guests)"
    )

    if conversation_id:
        try:
            await store.update_conversation(conversation_id, customer_name=request.name)
        except RecordStoreError as e:
            logger.warning(f"Could not set customer name on conversation {conversation_id}: {e}")

    restaurant_name = DEFAULT_RESTAURANT_NAME
    try:
        config = await store.get_agent_config()
        if config is not None and config.restaurant_name:
            restaurant_name = config.restaurant_name
    except RecordStoreError as e:
        logger.warning(f"Could not load restaurant name for confirmation email: {e}")

    confirmation = ReservationConfirmation(
        name=request.name,
        email=request.email,
        date=request.date,
        time=request.time,
        guests=request.guests,
        restaurant_name=restaurant_name,
    )
    spawn(notifier.send_reservation_confirmation(confirmation))

    return {
        "success": True,
        "message": (
            f"Reservation confirmed for {request.name} on {request.date} at {request.time} "
            f"for {request.guests} guests. A confirmation email will be sent to {request.email}."
        ),
    }


async def run_tool_call(
    name: Optional[str],
    arguments: str,
    store: RecordStore,
    notifier: NotificationSender,
    conversation_id: Optional[str] = None,
    spawn: Spawner = _background,
) -> Dict[str, Any]:
    """
    Execute a completed function call and return its result object.

    create_reservation is the only tool the session declares, so a call that
    arrives without a name is treated as create_reservation.
    """
    if name is None:
        name = TOOL_CREATE_RESERVATION
    if name != TOOL_CREATE_RESERVATION:
        logger.warning(f"Model called unknown function: {name}")
        return {"success": False, "error": f"Unknown function: {name}"}

    try:
        parsed = parse_arguments(arguments)
    except ToolCallArgumentsError as e:
        logger.warning(f"Could not parse arguments for {name}: {e}")
        return {"success": False, "error": "The reservation details could not be read."}

    return await create_reservation(parsed, store, notifier, conversation_id, spawn)


def build_tool_output(call_id: str, result: Dict[str, Any]) -> ConversationItemCreateEvent:
    return ConversationItemCreateEvent(
        item=FunctionCallOutputItem(call_id=call_id, output=json.dumps(result))
    )


async def report_tool_result(client: Any, call_id: str, result: Dict[str, Any]) -> bool:
    """
    Return a tool result to the model and ask it to continue speaking.

    Sends a function_call_output item followed by response.create.
    """
    if client is None:
        logger.warning(f"Cannot report result for call {call_id}: no provider client")
        return False
    if not await client.send_event(build_tool_output(call_id, result)):
        logger.error(f"Failed to send function_call_output for call {call_id}")
        return False
    return await client.send_event(ResponseCreateEvent())
