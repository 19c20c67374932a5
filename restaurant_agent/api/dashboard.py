"""
Dashboard endpoints: conversations, reservations, the agent configuration and a
live change feed.
"""

import asyncio
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from restaurant_agent.api.dependencies import get_record_store
from restaurant_agent.config.constants import LOGGER_NAME
from restaurant_agent.models.records import (
    AgentConfig,
    ConversationRecord,
    ReservationRecord,
    ReservationStatus,
)
from restaurant_agent.services.record_store import RecordChange, RecordStore, RecordStoreError

logger = logging.getLogger(LOGGER_NAME)

CHANGE_QUEUE_SIZE = 100

router = APIRouter(prefix="/api", tags=["dashboard"])


class ReservationStatusUpdate(BaseModel):
    status: ReservationStatus


class AgentConfigUpdate(BaseModel):
    restaurant_name: str
    restaurant_hours: str = ""
    menu: str = ""
    instructions: str = ""


def _store_unavailable(e: RecordStoreError) -> HTTPException:
    logger.error(f"Record store error: {e}")
    return HTTPException(status_code=502, detail="Record store unavailable")


@router.get("/conversations", response_model=List[ConversationRecord])
async def list_conversations(
    limit: int = Query(100, ge=1, le=500),
    store: RecordStore = Depends(get_record_store),
):
    """List conversations, most recent first."""
    try:
        return await store.list_conversations(limit)
    except RecordStoreError as e:
        raise _store_unavailable(e)


@router.get("/conversations/{conversation_id}", response_model=ConversationRecord)
async def get_conversation(conversation_id: str, store: RecordStore = Depends(get_record_store)):
    try:
        conversation = await store.get_conversation(conversation_id)
    except RecordStoreError as e:
        raise _store_unavailable(e)
    if conversation is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation


@router.get("/reservations", response_model=List[ReservationRecord])
async def list_reservations(
    limit: int = Query(100, ge=1, le=500),
    store: RecordStore = Depends(get_record_store),
):
    """List reservations, most recently created first."""
    try:
        return await store.list_reservations(limit)
    except RecordStoreError as e:
        raise _store_unavailable(e)


@router.patch("/reservations/{reservation_id}", response_model=ReservationRecord)
async def update_reservation_status(
    reservation_id: str,
    update: ReservationStatusUpdate,
    store: RecordStore = Depends(get_record_store),
):
    """Change a reservation's status (confirm or cancel)."""
    try:
        reservation = await store.update_reservation(reservation_id, status=update.status)
    except RecordStoreError as e:
        raise _store_unavailable(e)
    if reservation is None:
        raise HTTPException(status_code=404, detail="Reservation not found")
    return reservation


@router.get("/agent-config", response_model=AgentConfig)
async def get_agent_config(store: RecordStore = Depends(get_record_store)):
    try:
        config = await store.get_agent_config()
    except RecordStoreError as e:
        raise _store_unavailable(e)
    if config is None:
        raise HTTPException(status_code=404, detail="Agent configuration not set")
    return config


@router.put("/agent-config", response_model=AgentConfig)
async def save_agent_config(update: AgentConfigUpdate, store: RecordStore = Depends(get_record_store)):
    """Create or replace the restaurant configuration used for new calls."""
    try:
        return await store.save_agent_config(AgentConfig(**update.model_dump()))
    except RecordStoreError as e:
        raise _store_unavailable(e)


@router.websocket("/changes")
async def change_feed(websocket: WebSocket):
    """Push every record change as a JSON message until the client disconnects."""
    store: RecordStore = websocket.app.state.record_store
    await websocket.accept()
    queue: asyncio.Queue = asyncio.Queue(maxsize=CHANGE_QUEUE_SIZE)

    async def enqueue(change: RecordChange) -> None:
        if queue.full():
            logger.warning("Change feed client is too slow, dropping change")
            return
        queue.put_nowait(change)

    unsubscribe = store.subscribe(enqueue)
    receiver = asyncio.create_task(websocket.receive_text())
    getter = None
    try:
        while True:
            getter = asyncio.create_task(queue.get())
            done, _ = await asyncio.wait({getter, receiver}, return_when=asyncio.FIRST_COMPLETED)
            if receiver in done:
                getter.cancel()
                receiver.result()  # raises WebSocketDisconnect once the client leaves
                receiver = asyncio.create_task(websocket.receive_text())
                continue
            await websocket.send_text(getter.result().model_dump_json())
    except WebSocketDisconnect:
        logger.info("Change feed client disconnected")
    except Exception as e:
        logger.warning(f"Change feed closed: {e}")
    finally:
        unsubscribe()
        receiver.cancel()
        if getter is not None:
            getter.cancel()
