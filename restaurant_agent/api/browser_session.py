"""
Browser voice session endpoints.

The browser talks to the OpenAI Realtime API directly over WebRTC. The server's
part is to mint an ephemeral session carrying the same configuration the phone
bridge pushes with session.update, to run create_reservation tool calls relayed
by the browser, and to close out the conversation record when the browser
disconnects.
"""

import asyncio
import json
import logging
import os
from typing import Any, Awaitable, Dict, Optional, Set

import httpx
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from restaurant_agent.api.dependencies import get_notifier, get_record_store
from restaurant_agent.bot.session_config import build_session_config
from restaurant_agent.config.constants import (
    AUDIO_FORMAT_PCM16,
    DEFAULT_REALTIME_MODEL,
    LOGGER_NAME,
    OPENAI_REALTIME_SESSIONS_URL,
)
from restaurant_agent.handlers.reservation_handlers import run_tool_call
from restaurant_agent.models.openai_schemas import RealtimeSessionResponse
from restaurant_agent.models.records import ConversationRecord, utc_now
from restaurant_agent.services.notifications import NotificationSender
from restaurant_agent.services.record_store import RecordStore, RecordStoreError

logger = logging.getLogger(LOGGER_NAME)

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
REALTIME_MODEL = os.getenv("OPENAI_REALTIME_MODEL", DEFAULT_REALTIME_MODEL)
REQUEST_TIMEOUT = 15.0  # seconds

router = APIRouter(prefix="/realtime-session", tags=["browser"])

_background_tasks: Set[asyncio.Task] = set()


def _spawn(coro: Awaitable[Any]) -> asyncio.Task:
    task = asyncio.ensure_future(coro)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


class BrowserSessionResponse(BaseModel):
    conversation_id: str
    session: RealtimeSessionResponse


class ToolCallRequest(BaseModel):
    call_id: str
    name: Optional[str] = None
    arguments: str = "{}"
    conversation_id: Optional[str] = None


class ToolCallResponse(BaseModel):
    call_id: str
    output: str
    result: Dict[str, Any]


async def create_ephemeral_session(
    session_config: Dict[str, Any], client: Optional[httpx.AsyncClient] = None
) -> RealtimeSessionResponse:
    """
    Ask OpenAI for an ephemeral Realtime session the browser can connect with.

    Raises:
        HTTPException: 503 if no API key is configured, 502 if OpenAI rejects the request
    """
    if not OPENAI_API_KEY:
        logger.error("OPENAI_API_KEY environment variable not set")
        raise HTTPException(status_code=503, detail="OpenAI API key not configured")

    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=REQUEST_TIMEOUT)
    try:
        response = await client.post(
            OPENAI_REALTIME_SESSIONS_URL,
            json={"model": REALTIME_MODEL, **session_config},
            headers={"Authorization": f"Bearer {OPENAI_API_KEY}"},
        )
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        logger.error(f"OpenAI session creation failed ({exc.response.status_code}): {exc.response.text}")
        raise HTTPException(status_code=502, detail="Could not create realtime session") from exc
    except httpx.RequestError as exc:
        logger.error(f"OpenAI session request failed: {exc}")
        raise HTTPException(status_code=502, detail="Could not reach OpenAI") from exc
    finally:
        if owns_client:
            await client.aclose()

    return RealtimeSessionResponse(**response.json())


@router.post("", response_model=BrowserSessionResponse)
async def create_browser_session(store: RecordStore = Depends(get_record_store)):
    """Create a conversation record and an ephemeral session configured for pcm16 audio."""
    try:
        config = await store.get_agent_config()
    except RecordStoreError as e:
        logger.error(f"Could not load agent configuration, using defaults: {e}")
        config = None

    session_config = build_session_config(config, audio_format=AUDIO_FORMAT_PCM16)
    session = await create_ephemeral_session(session_config.model_dump(exclude_none=True))

    try:
        conversation = await store.create_conversation()
    except RecordStoreError as e:
        logger.error(f"Failed to create browser conversation: {e}")
        raise HTTPException(status_code=502, detail="Record store unavailable")

    logger.info(f"Browser session {session.id} created for conversation {conversation.id}")
    return BrowserSessionResponse(conversation_id=conversation.id, session=session)


@router.post("/tool-call", response_model=ToolCallResponse)
async def browser_tool_call(
    request: ToolCallRequest,
    store: RecordStore = Depends(get_record_store),
    notifier: NotificationSender = Depends(get_notifier),
):
    """Run a function call the browser received and return the output to relay back."""
    result = await run_tool_call(
        request.name,
        request.arguments,
        store,
        notifier,
        conversation_id=request.conversation_id,
        spawn=_spawn,
    )
    return ToolCallResponse(call_id=request.call_id, output=json.dumps(result), result=result)


@router.post("/{conversation_id}/end", response_model=ConversationRecord)
async def end_browser_session(conversation_id: str, store: RecordStore = Depends(get_record_store)):
    """Mark a browser conversation completed."""
    try:
        conversation = await store.get_conversation(conversation_id)
        if conversation is None:
            raise HTTPException(status_code=404, detail="Conversation not found")
        ended_at = utc_now()
        duration = int((ended_at - conversation.started_at).total_seconds())
        updated = await store.complete_conversation(conversation_id, ended_at, duration)
    except RecordStoreError as e:
        logger.error(f"Failed to complete browser conversation {conversation_id}: {e}")
        raise HTTPException(status_code=502, detail="Record store unavailable")
    if updated is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return updated
