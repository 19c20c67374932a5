"""
Bridge module connecting one Twilio media stream to one OpenAI Realtime session.

A TwilioRealtimeBridge is created for every accepted carrier socket and owns that
call's CallSession, its provider client and the background tasks it spawns:
- the provider bring-up task, started at most once per call
- the audio sender, which forwards caller audio only once the session is configured
- fire-and-forget side effects (record writes, tool calls, notifications)

Ending the call is idempotent. The conversation record is closed out first, then
the provider socket, then the carrier socket; a failure in one step never
prevents the next.
"""

import asyncio
import logging
import os
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Optional, Set

from fastapi import WebSocket

from restaurant_agent.bot.audio_codec import AudioCodecAdapter
from restaurant_agent.bot.realtime_api import RealtimeSpeechClient
from restaurant_agent.config.constants import (
    AUDIO_FORMAT_G711_ULAW,
    DEFAULT_REALTIME_MODEL,
    LOGGER_NAME,
    MAX_PENDING_AUDIO_FRAMES,
)
from restaurant_agent.handlers.realtime_handlers import PROVIDER_EVENT_HANDLERS
from restaurant_agent.models.call_session import CallSession, CallState
from restaurant_agent.models.openai_schemas import ServerEvent
from restaurant_agent.models.records import AgentConfig
from restaurant_agent.services.notifications import NotificationSender
from restaurant_agent.services.record_store import RecordStore, RecordStoreError

logger = logging.getLogger(LOGGER_NAME)

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
REALTIME_MODEL = os.getenv("OPENAI_REALTIME_MODEL", DEFAULT_REALTIME_MODEL)
PROVIDER_AUDIO_FORMAT = os.getenv("PROVIDER_AUDIO_FORMAT", AUDIO_FORMAT_G711_ULAW)

CONVERSATION_WAIT_TIMEOUT = 5.0  # seconds
SIDE_EFFECT_DRAIN_TIMEOUT = 5.0  # seconds

ClientFactory = Callable[[], RealtimeSpeechClient]


def create_realtime_client() -> RealtimeSpeechClient:
    """
    Build a provider client from the environment.

    Raises:
        ValueError: If OPENAI_API_KEY is not set
    """
    if not OPENAI_API_KEY:
        logger.error("OPENAI_API_KEY environment variable not set")
        raise ValueError("OPENAI_API_KEY environment variable not set")
    return RealtimeSpeechClient(OPENAI_API_KEY, REALTIME_MODEL)


class TwilioRealtimeBridge:
    """
    Per-call bridge between the Twilio media stream protocol and the OpenAI Realtime API.

    Args:
        websocket: The accepted carrier WebSocket
        store: Record store for conversation and reservation rows
        notifier: Sender for reservation confirmation emails
        client_factory: Callable returning a new, unconnected provider client
        audio_format: Provider-side audio format (g711_ulaw or pcm16)
    """

    def __init__(
        self,
        websocket: WebSocket,
        store: RecordStore,
        notifier: NotificationSender,
        client_factory: Optional[ClientFactory] = None,
        audio_format: str = PROVIDER_AUDIO_FORMAT,
    ):
        self.websocket = websocket
        self.store = store
        self.notifier = notifier
        self.client_factory = client_factory or create_realtime_client
        self.codec = AudioCodecAdapter(audio_format)
        self.session = CallSession()
        self.client: Optional[RealtimeSpeechClient] = None
        self.session_configured = False
        self.provider_handlers = PROVIDER_EVENT_HANDLERS

        self._pending_audio: Deque[str] = deque()
        self._audio_available = asyncio.Event()
        self._sender_task: Optional[asyncio.Task] = None
        self._connect_task: Optional[asyncio.Task] = None
        self._conversation_task: Optional[asyncio.Task] = None
        self._side_effects: Set[asyncio.Task] = set()

    @property
    def session_id(self) -> str:
        return self.session.session_id

    # Conversation record
    def start_conversation(self) -> None:
        """Schedule creation of the conversation row. Only the first call has an effect."""
        if self._conversation_task is not None or self.session.is_ended:
            return
        self._conversation_task = asyncio.create_task(self._create_conversation())

    async def _create_conversation(self) -> None:
        try:
            record = await self.store.create_conversation()
        except RecordStoreError as e:
            logger.error(f"Failed to create conversation record for call {self.session_id}: {e}")
            return
        self.session.conversation_id = record.id
        logger.info(f"Conversation record created: {record.id} (call {self.session_id})")

    async def wait_for_conversation(self) -> Optional[str]:
        """Return the conversation id once the pending insert (if any) has finished."""
        task = self._conversation_task
        if task is not None and not task.done():
            try:
                await asyncio.wait_for(asyncio.shield(task), timeout=CONVERSATION_WAIT_TIMEOUT)
            except asyncio.TimeoutError:
                logger.warning(f"Conversation record still pending for call {self.session_id}")
        return self.session.conversation_id

    async def load_agent_config(self) -> Optional[AgentConfig]:
        try:
            return await self.store.get_agent_config()
        except RecordStoreError as e:
            logger.error(f"Could not load agent configuration, using defaults: {e}")
            return None
        except Exception as e:
            logger.error(f"Unexpected error loading agent configuration, using defaults: {e}", exc_info=True)
            return None

    # Provider connection
    def ensure_provider_connection(self) -> bool:
        """
        Start provider bring-up unless it has already been started for this call.

        Returns:
            True if this call started the bring-up, False if it was a no-op
        """
        if self._connect_task is not None or not self.session.transition(CallState.CONNECTING):
            return False
        self._connect_task = asyncio.create_task(self._connect_provider())
        return True

    async def _connect_provider(self) -> None:
        try:
            client = self.client_factory()
        except Exception as e:
            logger.error(f"Could not create provider client for call {self.session_id}: {e}")
            await self.end("provider_unavailable")
            return

        self.client = client
        client.set_handlers(self.handle_provider_event, self.handle_provider_closed)
        if not await client.connect():
            logger.error(f"Provider connection failed for call {self.session_id}")
            await self.end("provider_connect_failed")
            return
        if self.session.is_ended:
            await self._close_provider()
            return
        self._sender_task = asyncio.create_task(self._audio_sender())
        logger.info(f"Provider connected for call {self.session_id}, awaiting session.created")

    async def handle_provider_event(self, event: ServerEvent) -> None:
        """Route one provider event to its handler."""
        if self.session.is_ended:
            return
        handler = self.provider_handlers.get(event.type)
        if handler is None:
            logger.debug(f"Unhandled provider event: {event.type}")
            return
        await handler(event, self)

    async def handle_provider_closed(self) -> None:
        logger.warning(f"Provider connection closed for call {self.session_id}")
        await self.end("provider_closed")

    async def send_to_provider(self, event: Any) -> bool:
        if self.client is None:
            logger.warning(f"No provider client for call {self.session_id}")
            return False
        return await self.client.send_event(event)

    def activate(self) -> None:
        """Mark the session configured and release any buffered caller audio."""
        self.session_configured = True
        if self.session.transition(CallState.ACTIVE):
            if self._pending_audio:
                logger.info(f"Flushing {len(self._pending_audio)} buffered audio frames for call {self.session_id}")
            self._audio_available.set()

    # Caller audio
    def enqueue_audio(self, payload: str) -> None:
        """
        Queue a carrier audio payload for the provider.

        Frames are forwarded strictly in arrival order. The queue is capped in every
        state: before activation it holds audio awaiting session configuration, and
        once active it absorbs a provider that falls behind. On overflow the oldest
        frame is dropped.
        """
        if self.session.is_ended:
            return
        if len(self._pending_audio) >= MAX_PENDING_AUDIO_FRAMES:
            self._pending_audio.popleft()
            logger.warning(f"Audio buffer full for call {self.session_id}, dropping oldest frame")
        self._pending_audio.append(payload)
        if self.session.state == CallState.ACTIVE:
            self._audio_available.set()

    @property
    def pending_audio_frames(self) -> int:
        return len(self._pending_audio)

    async def _audio_sender(self) -> None:
        try:
            while True:
                await self._audio_available.wait()
                while self._pending_audio and self.session.state == CallState.ACTIVE:
                    payload = self._pending_audio.popleft()
                    await self.client.send_audio(self.codec.carrier_to_provider(payload))
                self._audio_available.clear()
        except asyncio.CancelledError:
            logger.debug(f"Audio sender cancelled for call {self.session_id}")
        except Exception as e:
            logger.error(f"Audio sender failed for call {self.session_id}: {e}", exc_info=True)

    # Carrier output
    async def send_to_carrier(self, message: str) -> bool:
        try:
            await self.websocket.send_text(message)
            return True
        except Exception as e:
            logger.warning(f"Could not send to carrier for call {self.session_id}: {e}")
            return False

    # Side effects
    def spawn_side_effect(self, coro: Awaitable[Any]) -> asyncio.Task:
        """Run a coroutine in the background; it is awaited (best effort) when the call ends."""
        task = asyncio.ensure_future(coro)
        self._side_effects.add(task)
        task.add_done_callback(self._side_effect_done)
        return task

    def _side_effect_done(self, task: asyncio.Task) -> None:
        self._side_effects.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Side effect failed for call {self.session_id}: {exc}", exc_info=exc)

    async def _drain_side_effects(self) -> None:
        current = asyncio.current_task()
        pending = [task for task in self._side_effects if task is not current and not task.done()]
        if not pending:
            return
        done, still_pending = await asyncio.wait(pending, timeout=SIDE_EFFECT_DRAIN_TIMEOUT)
        for task in still_pending:
            logger.warning(f"Cancelling unfinished side effect for call {self.session_id}")
            task.cancel()

    # Teardown
    async def end(self, reason: str) -> None:
        """
        End the call. Only the first call has an effect.

        Args:
            reason: Short machine-readable reason, e.g. carrier_stop or provider_closed
        """
        if not self.session.mark_ended(reason):
            return
        logger.info(f"Ending call {self.session_id}: {reason}")

        current = asyncio.current_task()
        for task in (self._sender_task, self._connect_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._pending_audio.clear()

        await self._complete_conversation()
        await self._close_provider()
        await self._drain_side_effects()
        await self._close_carrier()
        logger.info(f"Call {self.session_id} ended after {self.session.duration_seconds}s")

    async def _complete_conversation(self) -> None:
        conversation_id = await self.wait_for_conversation()
        if conversation_id is None:
            return
        try:
            await self.store.complete_conversation(
                conversation_id,
                ended_at=self.session.ended_at,
                duration_seconds=self.session.duration_seconds,
            )
            logger.info(f"Conversation {conversation_id} marked completed")
        except RecordStoreError as e:
            logger.error(f"Failed to complete conversation {conversation_id}: {e}")

    async def _close_provider(self) -> None:
        if self.client is None:
            return
        try:
            await self.client.close()
        except Exception as e:
            logger.warning(f"Error closing provider connection for call {self.session_id}: {e}")

    async def _close_carrier(self) -> None:
        try:
            await self.websocket.close()
        except Exception as e:
            logger.debug(f"Carrier socket already closed for call {self.session_id}: {e}")
