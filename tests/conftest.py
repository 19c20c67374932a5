import asyncio
import json
import logging
from unittest.mock import AsyncMock

import pytest
from fastapi import WebSocketDisconnect
from pydantic import BaseModel

from restaurant_agent.models.openai_schemas import InputAudioBufferAppendEvent, parse_server_event
from restaurant_agent.services.notifications import NotificationSender
from restaurant_agent.services.record_store import InMemoryRecordStore


@pytest.fixture(autouse=True)
def reset_logging():
    """Reset logging configuration before each test"""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    logging.basicConfig(level=logging.NOTSET)
    yield


class FakeCarrierSocket:
    """Stands in for the FastAPI WebSocket Twilio connects to."""

    def __init__(self, frames=()):
        self.accepted = False
        self.closed = False
        self.sent = []
        self._incoming = None
        self._initial = list(frames)

    def _queue(self):
        if self._incoming is None:
            self._incoming = asyncio.Queue()
            for frame in self._initial:
                self._incoming.put_nowait(frame)
        return self._incoming

    def feed(self, frame):
        """Queue a frame (dict or raw text) for receive_text."""
        self._queue().put_nowait(frame)

    def disconnect(self):
        self._queue().put_nowait(None)

    async def accept(self):
        self.accepted = True

    async def receive_text(self):
        frame = await self._queue().get()
        if frame is None:
            raise WebSocketDisconnect(code=1000)
        return frame if isinstance(frame, str) else json.dumps(frame)

    async def send_text(self, text):
        if self.closed:
            raise RuntimeError("Cannot send once the socket is closed")
        self.sent.append(json.loads(text))

    async def close(self, code=1000):
        self.closed = True


class FakeRealtimeClient:
    """In-process stand-in for RealtimeSpeechClient recording every event sent."""

    def __init__(self, connect_result=True):
        self.connect_result = connect_result
        self.connect_calls = 0
        self.close_calls = 0
        self.connected = False
        self.closed = False
        self.sent = []
        self.event_handler = None
        self.closed_handler = None

    def set_handlers(self, event_handler=None, closed_handler=None):
        self.event_handler = event_handler
        self.closed_handler = closed_handler

    async def connect(self):
        self.connect_calls += 1
        self.connected = self.connect_result
        return self.connect_result

    async def send_event(self, event):
        if self.closed or not self.connected:
            return False
        if isinstance(event, BaseModel):
            event = json.loads(event.model_dump_json(exclude_none=True))
        self.sent.append(event)
        return True

    async def send_audio(self, audio):
        return await self.send_event(InputAudioBufferAppendEvent(audio=audio))

    async def close(self):
        self.close_calls += 1
        self.closed = True

    async def emit(self, data):
        """Deliver a provider event as the receive loop would."""
        await self.event_handler(parse_server_event(data))

    def sent_types(self):
        return [event["type"] for event in self.sent]


class FakeClientFactory:
    """Client factory recording every client it builds."""

    def __init__(self, connect_result=True):
        self.connect_result = connect_result
        self.clients = []

    def __call__(self):
        client = FakeRealtimeClient(self.connect_result)
        self.clients.append(client)
        return client


async def _wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(0.01)


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def notifier():
    sender = AsyncMock(spec=NotificationSender)
    sender.send_reservation_confirmation.return_value = True
    return sender


@pytest.fixture
def carrier():
    return FakeCarrierSocket()


@pytest.fixture
def client_factory():
    return FakeClientFactory()


@pytest.fixture
def wait_until():
    """Poll a predicate until it holds, failing the test after a timeout."""
    return _wait_until


@pytest.fixture
def carrier_socket_class():
    return FakeCarrierSocket


@pytest.fixture
def client_factory_class():
    return FakeClientFactory
