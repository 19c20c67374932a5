"""
WebSocket connection manager for Twilio Media Streams.

This module implements the server side of the Twilio bidirectional media stream
protocol. For every accepted connection it:
- creates a TwilioRealtimeBridge that owns the call
- parses each text frame and routes it to the handler for its event name
- drops frames that are not JSON or fail validation, without ending the call
- ends the bridge when the carrier disconnects or sends stop

A failure in one call never affects another; the only shared state is the
registry of active bridges used for health reporting.
"""

import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from restaurant_agent.bot.twilio_realtime_bridge import (
    PROVIDER_AUDIO_FORMAT,
    ClientFactory,
    TwilioRealtimeBridge,
)
from restaurant_agent.config.constants import (
    CARRIER_EVENT_CONNECTED,
    CARRIER_EVENT_DTMF,
    CARRIER_EVENT_MARK,
    CARRIER_EVENT_MEDIA,
    CARRIER_EVENT_START,
    CARRIER_EVENT_STOP,
    LOGGER_NAME,
)
from restaurant_agent.handlers.stream_handlers import (
    handle_connected,
    handle_dtmf,
    handle_mark,
    handle_media,
    handle_start,
    handle_stop,
    handle_unrecognized,
)
from restaurant_agent.models.call_session import CallSessionManager
from restaurant_agent.models.carrier_schemas import parse_carrier_event
from restaurant_agent.services.notifications import NotificationSender
from restaurant_agent.services.record_store import RecordStore

logger = logging.getLogger(LOGGER_NAME)

# Type hint for handler functions
HandlerFunc = Callable[[Any, TwilioRealtimeBridge], Awaitable[None]]


class MediaStreamManager:
    """Accepts Twilio media stream connections and routes their events to per-call bridges.

    Args:
        store: Record store shared by all calls
        notifier: Confirmation email sender shared by all calls
        client_factory: Builds the provider client for each call
        audio_format: Provider-side audio format
    """

    def __init__(
        self,
        store: RecordStore,
        notifier: NotificationSender,
        client_factory: Optional[ClientFactory] = None,
        audio_format: str = PROVIDER_AUDIO_FORMAT,
    ):
        self.store = store
        self.notifier = notifier
        self.client_factory = client_factory
        self.audio_format = audio_format
        self.call_manager = CallSessionManager()

        self.handlers: Dict[str, HandlerFunc] = {
            CARRIER_EVENT_CONNECTED: handle_connected,
            CARRIER_EVENT_START: handle_start,
            CARRIER_EVENT_MEDIA: handle_media,
            CARRIER_EVENT_MARK: handle_mark,
            CARRIER_EVENT_DTMF: handle_dtmf,
            CARRIER_EVENT_STOP: handle_stop,
        }

    def create_bridge(self, websocket: WebSocket) -> TwilioRealtimeBridge:
        return TwilioRealtimeBridge(
            websocket,
            self.store,
            self.notifier,
            client_factory=self.client_factory,
            audio_format=self.audio_format,
        )

    async def handle_message(self, data: str, bridge: TwilioRealtimeBridge) -> None:
        """Parse one carrier frame and dispatch it. Bad frames are logged and dropped."""
        try:
            message = json.loads(data)
        except json.JSONDecodeError:
            logger.warning(f"Dropping non-JSON frame: {data[:100]}")
            return
        if not isinstance(message, dict):
            logger.warning(f"Dropping non-object frame: {data[:100]}")
            return

        try:
            event = parse_carrier_event(message)
        except ValidationError as e:
            logger.warning(f"Dropping invalid {message.get('event')} frame: {e}")
            return

        handler = self.handlers.get(event.event, handle_unrecognized)
        try:
            await handler(event, bridge)
        except Exception as e:
            logger.error(f"Error handling {event.event} event: {e}", exc_info=True)

    async def handle_websocket(self, websocket: WebSocket) -> None:
        """Handle a Twilio media stream connection throughout its lifecycle.

        The connection stays open until Twilio sends stop, the carrier socket
        closes, or the provider side ends the call.
        """
        await websocket.accept()
        bridge = self.create_bridge(websocket)
        session_id = bridge.session_id
        self.call_manager.add_call(session_id, bridge)
        logger.info(f"Media stream connection accepted for call {session_id}")
        reason = "carrier_disconnected"

        try:
            while not bridge.session.is_ended:
                data = await websocket.receive_text()
                await self.handle_message(data, bridge)
        except WebSocketDisconnect as e:
            logger.info(f"Carrier disconnected for call {session_id} (code {e.code})")
        except Exception as e:
            logger.error(f"Error in media stream connection: {e}", exc_info=True)
            reason = "carrier_error"
        finally:
            await bridge.end(reason)
            self.call_manager.remove_call(session_id)
            logger.info(f"Media stream connection closed for call {session_id}")

    @property
    def active_calls(self) -> int:
        return len(self.call_manager)
