import asyncio
import json
import logging
import time
import traceback
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import websockets
from pydantic import BaseModel, ValidationError
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK

from restaurant_agent.config.constants import LOGGER_NAME, OPENAI_REALTIME_URL
from restaurant_agent.models.openai_schemas import (
    InputAudioBufferAppendEvent,
    ServerEvent,
    parse_server_event,
)

logger = logging.getLogger(LOGGER_NAME)

CONNECTION_TIMEOUT = 30  # seconds
SEND_TIMEOUT = 5.0  # seconds

# WebSocket configuration for low latency
WS_MAX_SIZE = 16 * 1024 * 1024  # 16MB - large enough for audio chunks
WS_PING_INTERVAL = 5  # seconds between pings

EventHandler = Callable[[ServerEvent], Awaitable[None]]
ClosedHandler = Callable[[], Awaitable[None]]


class RealtimeSpeechClient:
    """
    Client for one OpenAI Realtime API session over WebSocket.

    Inbound frames are decoded into server event models and handed, one at a time
    and in arrival order, to the registered event handler. When the socket closes
    for any reason other than ``close()`` the closed handler is called once; the
    client never reconnects on its own.
    """

    def __init__(self, api_key: str, model: str):
        self.api_key = api_key
        self.model = model
        self.ws = None
        self._recv_task: Optional[asyncio.Task] = None
        self._connection_active = False
        self._is_closing = False
        self._event_handler: Optional[EventHandler] = None
        self._closed_handler: Optional[ClosedHandler] = None
        logger.info(f"RealtimeSpeechClient initialized with model: {model}")

    @property
    def url(self) -> str:
        return f"{OPENAI_REALTIME_URL}?model={self.model}"

    @property
    def is_connected(self) -> bool:
        return self._connection_active and self.ws is not None

    def set_handlers(
        self,
        event_handler: Optional[EventHandler] = None,
        closed_handler: Optional[ClosedHandler] = None,
    ) -> None:
        """
        Set the coroutines called for each provider event and on connection loss.

        Args:
            event_handler: Async function receiving each parsed server event
            closed_handler: Async function called once when the socket closes unexpectedly
        """
        self._event_handler = event_handler
        self._closed_handler = closed_handler

    async def connect(self) -> bool:
        """
        Connect to the OpenAI Realtime WebSocket endpoint.

        Returns:
            bool: True if connection was successful, False otherwise
        """
        if self._is_closing:
            logger.warning("Cannot connect - client is closing")
            return False
        if self.ws is not None:
            logger.debug("Realtime client already connected")
            return True

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "OpenAI-Beta": "realtime=v1",
        }
        subprotocols = [
            "realtime",
            f"openai-insecure-api-key.{self.api_key}",
            "openai-beta.realtime-v1",
        ]

        try:
            logger.info(f"Connecting to OpenAI Realtime API with model: {self.model}")
            connection_start = time.time()
            self.ws = await asyncio.wait_for(
                websockets.connect(
                    self.url,
                    subprotocols=subprotocols,
                    additional_headers=headers,
                    max_size=WS_MAX_SIZE,
                    ping_interval=WS_PING_INTERVAL,
                    ping_timeout=10,
                    compression=None,  # Disable compression for lower latency
                ),
                timeout=CONNECTION_TIMEOUT,
            )
            logger.debug(f"WebSocket connection established in {time.time() - connection_start:.2f} seconds")
        except asyncio.TimeoutError:
            logger.error(f"Timeout while connecting to OpenAI Realtime API (after {CONNECTION_TIMEOUT}s)")
            return False
        except Exception as e:
            logger.error(f"Failed to connect to OpenAI Realtime API: {e}")
            logger.debug(f"Connection error details: {traceback.format_exc()}")
            return False

        self._connection_active = True
        self._recv_task = asyncio.create_task(self._recv_loop())
        logger.info("Successfully connected to OpenAI Realtime API")
        return True

    async def send_event(self, event: Union[BaseModel, Dict[str, Any]]) -> bool:
        """
        Send one client event.

        Args:
            event: A client event model or an already-built event dict

        Returns:
            bool: True if the event was written to the socket, False otherwise
        """
        if not self.is_connected:
            logger.warning("Cannot send event - connection not active")
            return False

        if isinstance(event, BaseModel):
            message = event.model_dump_json(exclude_none=True)
        else:
            message = json.dumps(event)

        try:
            await asyncio.wait_for(self.ws.send(message), timeout=SEND_TIMEOUT)
            return True
        except asyncio.TimeoutError:
            logger.warning("Timeout while sending event to OpenAI")
            return False
        except ConnectionClosedOK:
            logger.info("Connection closed normally while sending event")
            self._connection_active = False
            return False
        except ConnectionClosedError as e:
            logger.warning(f"Connection closed while sending event: {e}")
            self._connection_active = False
            return False
        except Exception as e:
            logger.error(f"Error sending event to OpenAI: {e}")
            logger.debug(f"Send error details: {traceback.format_exc()}")
            return False

    async def send_audio(self, audio: str) -> bool:
        """Append a base64 audio chunk to the provider's input buffer."""
        return await self.send_event(InputAudioBufferAppendEvent(audio=audio))

    async def _dispatch(self, message: Union[str, bytes]) -> None:
        if isinstance(message, bytes):
            logger.debug(f"Ignoring binary frame of size {len(message)} bytes")
            return

        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            logger.warning(f"Received invalid JSON: {message[:100]}...")
            return
        if not isinstance(data, dict):
            logger.warning(f"Received non-object frame: {message[:100]}...")
            return

        try:
            event = parse_server_event(data)
        except ValidationError as e:
            logger.warning(f"Dropping malformed {data.get('type')} event: {e}")
            return

        if self._event_handler is None:
            return
        try:
            await self._event_handler(event)
        except Exception as e:
            logger.error(f"Error handling {event.type} event: {e}", exc_info=True)

    async def _recv_loop(self) -> None:
        """Receive frames until the socket closes, then notify the closed handler."""
        try:
            logger.debug("Receive loop started")
            async for message in self.ws:
                await self._dispatch(message)
            logger.info("WebSocket connection closed normally")
        except ConnectionClosedError as e:
            logger.warning(f"WebSocket connection closed unexpectedly: {e}")
        except asyncio.CancelledError:
            logger.debug("Receive loop cancelled")
            raise
        except Exception as e:
            logger.error(f"Error in receive loop: {e}")
            logger.debug(f"Receive loop error details: {traceback.format_exc()}")

        self._connection_active = False
        logger.info("Receive loop exited, connection marked as inactive")

        if self._closed_handler and not self._is_closing:
            try:
                await self._closed_handler()
            except Exception as e:
                logger.error(f"Error in connection closed handler: {e}", exc_info=True)

    async def close(self) -> None:
        """
        Close the WebSocket connection and stop receiving.

        Safe to call more than once and from inside an event or closed handler.
        """
        if self._is_closing:
            return
        logger.info("Closing OpenAI Realtime client")
        self._is_closing = True
        self._connection_active = False

        if self._recv_task and self._recv_task is not asyncio.current_task():
            self._recv_task.cancel()

        if self.ws is not None:
            try:
                await self.ws.close()
            finally:
                self.ws = None

        logger.info("OpenAI Realtime client closed")
