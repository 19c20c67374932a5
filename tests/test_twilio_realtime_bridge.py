"""
Tests for the per-call bridge between Twilio media streams and the Realtime API.

The provider is replaced by FakeRealtimeClient (see conftest.py); provider events
are injected with ``client.emit`` exactly as the client's receive loop would
deliver them.
"""

import asyncio
import base64
import json
from unittest.mock import patch

import pytest

from restaurant_agent.bot import twilio_realtime_bridge as bridge_module
from restaurant_agent.bot.realtime_api import RealtimeSpeechClient
from restaurant_agent.bot.twilio_realtime_bridge import TwilioRealtimeBridge, create_realtime_client
from restaurant_agent.handlers.stream_handlers import handle_media, handle_start, handle_stop
from restaurant_agent.models.call_session import CallState
from restaurant_agent.models.carrier_schemas import parse_carrier_event
from restaurant_agent.models.records import AgentConfig, ConversationStatus, ReservationStatus

START = {
    "event": "start",
    "sequenceNumber": "1",
    "streamSid": "MZ1",
    "start": {
        "streamSid": "MZ1",
        "callSid": "CA1",
        "tracks": ["inbound"],
        "mediaFormat": {"encoding": "audio/x-mulaw", "sampleRate": 8000, "channels": 1},
    },
}
STOP = {"event": "stop", "streamSid": "MZ1", "stop": {"callSid": "CA1"}}
SESSION_CREATED = {"type": "session.created", "session": {"id": "sess_1"}}


def _frame(n: int) -> str:
    return base64.b64encode(bytes([n % 256]) * 160).decode("utf-8")


def _media(n: int, stream_sid: str = "MZ1") -> dict:
    return {"event": "media", "streamSid": stream_sid, "media": {"track": "inbound", "payload": _frame(n)}}


@pytest.fixture
def bridge(carrier, store, notifier, client_factory):
    return TwilioRealtimeBridge(carrier, store, notifier, client_factory=client_factory, audio_format="g711_ulaw")


async def _start_call(bridge, client_factory, wait_until):
    await handle_start(parse_carrier_event(START), bridge)
    await wait_until(
        lambda: client_factory.clients
        and client_factory.clients[0].connected
        and bridge.session.conversation_id is not None
    )
    return client_factory.clients[0]


async def _activate(bridge, client, wait_until):
    await client.emit(SESSION_CREATED)
    await wait_until(lambda: bridge.session.state == CallState.ACTIVE)


def test_create_realtime_client_requires_api_key():
    with patch.object(bridge_module, "OPENAI_API_KEY", None):
        with pytest.raises(ValueError):
            create_realtime_client()


def test_create_realtime_client():
    with patch.object(bridge_module, "OPENAI_API_KEY", "sk-test"):
        client = create_realtime_client()
    assert isinstance(client, RealtimeSpeechClient)
    assert client.api_key == "sk-test"


@pytest.mark.asyncio
async def test_start_connects_provider_and_creates_conversation(bridge, store, client_factory, wait_until):
    client = await _start_call(bridge, client_factory, wait_until)

    assert bridge.session.stream_sid == "MZ1"
    assert bridge.session.call_sid == "CA1"
    assert bridge.session.state == CallState.CONNECTING
    assert client.connect_calls == 1
    conversation = await store.get_conversation(bridge.session.conversation_id)
    assert conversation.status == ConversationStatus.ACTIVE
    await bridge.end("test_done")


@pytest.mark.asyncio
async def test_session_update_sent_once_after_session_created(bridge, store, client_factory, wait_until):
    await store.save_agent_config(AgentConfig(restaurant_name="Chez Test", menu="Soup"))
    client = await _start_call(bridge, client_factory, wait_until)
    assert client.sent == []

    await client.emit(SESSION_CREATED)
    await client.emit(SESSION_CREATED)

    updates = [event for event in client.sent if event["type"] == "session.update"]
    assert len(updates) == 1
    session = updates[0]["session"]
    assert "Chez Test" in session["instructions"]
    assert session["input_audio_format"] == "g711_ulaw"
    assert session["tools"][0]["name"] == "create_reservation"
    assert bridge.session.state == CallState.ACTIVE
    await bridge.end("test_done")


@pytest.mark.asyncio
async def test_default_instructions_without_agent_config(bridge, client_factory, wait_until):
    client = await _start_call(bridge, client_factory, wait_until)
    await client.emit(SESSION_CREATED)
    assert client.sent[0]["session"]["instructions"] == "You are a helpful restaurant receptionist."
    await bridge.end("test_done")


@pytest.mark.asyncio
async def test_media_before_start_connects_once(bridge, client_factory, wait_until):
    await handle_media(parse_carrier_event(_media(1)), bridge)
    await handle_media(parse_carrier_event(_media(2)), bridge)
    await wait_until(lambda: client_factory.clients and client_factory.clients[0].connected)
    client = client_factory.clients[0]

    assert bridge.session.stream_sid == "MZ1"
    assert "input_audio_buffer.append" not in client.sent_types()

    await handle_start(parse_carrier_event(START), bridge)
    await asyncio.sleep(0.05)
    assert len(client_factory.clients) == 1
    assert client.connect_calls == 1

    await client.emit(SESSION_CREATED)
    await wait_until(lambda: client.sent_types().count("input_audio_buffer.append") == 2)
    assert client.sent_types()[0] == "session.update"
    assert [event["audio"] for event in client.sent[1:]] == [_frame(1), _frame(2)]
    await bridge.end("test_done")


@pytest.mark.asyncio
async def test_audio_after_activation_is_forwarded_in_order(bridge, client_factory, wait_until):
    client = await _start_call(bridge, client_factory, wait_until)
    await handle_media(parse_carrier_event(_media(1)), bridge)
    await _activate(bridge, client, wait_until)
    for n in range(2, 6):
        await handle_media(parse_carrier_event(_media(n)), bridge)

    await wait_until(lambda: client.sent_types().count("input_audio_buffer.append") == 5)
    appended = [event["audio"] for event in client.sent if event["type"] == "input_audio_buffer.append"]
    assert appended == [_frame(n) for n in range(1, 6)]
    await bridge.end("test_done")


@pytest.mark.asyncio
async def test_pending_audio_is_bounded(bridge):
    with patch.object(bridge_module, "MAX_PENDING_AUDIO_FRAMES", 3):
        for n in range(5):
            bridge.enqueue_audio(_frame(n))
    assert bridge.pending_audio_frames == 3
    assert list(bridge._pending_audio) == [_frame(2), _frame(3), _frame(4)]


@pytest.mark.asyncio
async def test_pending_audio_stays_bounded_while_active(bridge, client_factory, wait_until):
    client = await _start_call(bridge, client_factory, wait_until)
    await _activate(bridge, client, wait_until)
    release = asyncio.Event()
    forwarded = []

    async def slow_send_audio(payload):
        forwarded.append(payload)
        await release.wait()
        return True

    client.send_audio = slow_send_audio
    bridge.enqueue_audio(_frame(0))
    await wait_until(lambda: forwarded == [_frame(0)])

    with patch.object(bridge_module, "MAX_PENDING_AUDIO_FRAMES", 3):
        for n in range(1, 6):
            bridge.enqueue_audio(_frame(n))
    assert list(bridge._pending_audio) == [_frame(3), _frame(4), _frame(5)]

    release.set()
    await wait_until(lambda: len(forwarded) == 4)
    assert forwarded == [_frame(0), _frame(3), _frame(4), _frame(5)]
    await bridge.end("test_done")


@pytest.mark.asyncio
async def test_pcm16_provider_receives_transcoded_audio(carrier, store, notifier, client_factory, wait_until):
    bridge = TwilioRealtimeBridge(carrier, store, notifier, client_factory=client_factory, audio_format="pcm16")
    client = await _start_call(bridge, client_factory, wait_until)
    await _activate(bridge, client, wait_until)
    assert client.sent[0]["session"]["input_audio_format"] == "pcm16"

    await handle_media(parse_carrier_event(_media(0xFF)), bridge)
    await wait_until(lambda: "input_audio_buffer.append" in client.sent_types())
    assert len(base64.b64decode(client.sent[-1]["audio"])) == 960
    await bridge.end("test_done")


@pytest.mark.asyncio
async def test_provider_audio_is_sent_to_carrier(bridge, carrier, client_factory, wait_until):
    client = await _start_call(bridge, client_factory, wait_until)
    await _activate(bridge, client, wait_until)

    await client.emit({"type": "response.audio.delta", "delta": _frame(7)})
    assert carrier.sent == [{"event": "media", "streamSid": "MZ1", "media": {"payload": _frame(7)}}]
    await bridge.end("test_done")


@pytest.mark.asyncio
async def test_barge_in_clears_playback(bridge, carrier, client_factory, wait_until):
    client = await _start_call(bridge, client_factory, wait_until)
    await _activate(bridge, client, wait_until)

    await client.emit({"type": "input_audio_buffer.speech_started", "audio_start_ms": 100})
    assert carrier.sent == [{"event": "clear", "streamSid": "MZ1"}]
    await bridge.end("test_done")


@pytest.mark.asyncio
async def test_reservation_end_to_end(bridge, store, notifier, client_factory, wait_until):
    await store.save_agent_config(AgentConfig(restaurant_name="Chez Test"))
    client = await _start_call(bridge, client_factory, wait_until)
    await _activate(bridge, client, wait_until)
    conversation_id = bridge.session.conversation_id

    await client.emit({
        "type": "response.function_call_arguments.delta",
        "call_id": "call_1",
        "delta": '{"name": "Ada Lovelace", "email": "ada@example.com", ',
    })
    await client.emit({
        "type": "response.function_call_arguments.delta",
        "call_id": "call_1",
        "delta": '"date": "2025-03-01", "time": "19:30", "guests": 2}',
    })
    await client.emit({
        "type": "response.function_call_arguments.done",
        "call_id": "call_1",
        "name": "create_reservation",
    })
    await wait_until(lambda: "response.create" in client.sent_types())

    reservations = await store.list_reservations()
    assert len(reservations) == 1
    reservation = reservations[0]
    assert reservation.name == "Ada Lovelace"
    assert reservation.time == "19:30:00"
    assert reservation.guests == 2
    assert reservation.status == ReservationStatus.CONFIRMED
    assert reservation.conversation_id == conversation_id

    types = client.sent_types()
    output_index = types.index("conversation.item.create")
    assert output_index < types.index("response.create")
    item = client.sent[output_index]["item"]
    assert item["type"] == "function_call_output"
    assert item["call_id"] == "call_1"
    assert json.loads(item["output"])["success"] is True

    await wait_until(lambda: notifier.send_reservation_confirmation.await_count == 1)
    confirmation = notifier.send_reservation_confirmation.call_args[0][0]
    assert confirmation.email == "ada@example.com"
    assert confirmation.restaurant_name == "Chez Test"

    await handle_stop(parse_carrier_event(STOP), bridge)
    conversation = await store.get_conversation(conversation_id)
    assert conversation.status == ConversationStatus.COMPLETED
    assert conversation.customer_name == "Ada Lovelace"
    assert conversation.ended_at is not None


@pytest.mark.asyncio
async def test_invalid_reservation_reports_failure(bridge, store, notifier, client_factory, wait_until):
    client = await _start_call(bridge, client_factory, wait_until)
    await _activate(bridge, client, wait_until)

    await client.emit({
        "type": "response.function_call_arguments.done",
        "call_id": "call_2",
        "name": "create_reservation",
        "arguments": '{"name": "Ada", "date": "2025-03-01", "time": "19:30", "guests": 2}',
    })
    await wait_until(lambda: "response.create" in client.sent_types())

    assert await store.list_reservations() == []
    output = json.loads(client.sent[-2]["item"]["output"])
    assert output["success"] is False
    assert "email" in output["error"]
    notifier.send_reservation_confirmation.assert_not_called()
    await bridge.end("test_done")


@pytest.mark.asyncio
async def test_reservation_without_function_name(bridge, store, client_factory, wait_until):
    await store.save_agent_config(AgentConfig(restaurant_name="Chez Test"))
    start = json.loads(json.dumps(START).replace("MZ1", "ST1"))
    await handle_start(parse_carrier_event(start), bridge)
    await wait_until(lambda: client_factory.clients and client_factory.clients[0].connected)
    client = client_factory.clients[0]
    await _activate(bridge, client, wait_until)

    assert client.sent_types().count("session.update") == 1
    assert "Chez Test" in client.sent[0]["session"]["instructions"]

    await client.emit({
        "type": "response.function_call_arguments.done",
        "call_id": "c1",
        "arguments": json.dumps({
            "name": "Bob",
            "email": "b@x.com",
            "date": "2025-03-01",
            "time": "18:00",
            "guests": 2,
        }),
    })
    await wait_until(lambda: "response.create" in client.sent_types())

    reservations = await store.list_reservations()
    assert len(reservations) == 1
    assert reservations[0].name == "Bob"
    assert reservations[0].status == ReservationStatus.CONFIRMED
    output = json.loads(client.sent[-2]["item"]["output"])
    assert output["success"] is True
    assert client.sent[-1]["type"] == "response.create"
    await bridge.end("test_done")


@pytest.mark.asyncio
async def test_unexpected_tool_error_still_reports_result(bridge, store, client_factory, wait_until):
    client = await _start_call(bridge, client_factory, wait_until)
    await _activate(bridge, client, wait_until)

    async def broken_insert(fields):
        raise ValueError("Expecting value: line 1 column 1 (char 0)")

    store.create_reservation = broken_insert
    await client.emit({
        "type": "response.function_call_arguments.done",
        "call_id": "call_3",
        "name": "create_reservation",
        "arguments": '{"name": "Ada", "email": "ada@example.com", "date": "2025-03-01", "time": "19:30"}',
    })
    await wait_until(lambda: "response.create" in client.sent_types())

    item = client.sent[-2]["item"]
    assert item["call_id"] == "call_3"
    assert json.loads(item["output"])["success"] is False
    await bridge.end("test_done")


@pytest.mark.asyncio
async def test_unexpected_config_error_still_configures_session(bridge, store, client_factory, wait_until):
    async def broken_config():
        raise ValueError("malformed row")

    store.get_agent_config = broken_config
    client = await _start_call(bridge, client_factory, wait_until)
    await _activate(bridge, client, wait_until)

    assert client.sent_types() == ["session.update"]
    await bridge.end("test_done")


@pytest.mark.asyncio
async def test_stop_completes_call_and_second_stop_is_noop(bridge, carrier, store, client_factory, wait_until):
    client = await _start_call(bridge, client_factory, wait_until)
    await _activate(bridge, client, wait_until)
    conversation_id = bridge.session.conversation_id

    statuses_at_provider_close = []
    provider_closed_at_carrier_close = []
    original_client_close = client.close
    original_carrier_close = carrier.close

    async def client_close():
        statuses_at_provider_close.append(store.conversations[conversation_id].status)
        await original_client_close()

    async def carrier_close(code=1000):
        provider_closed_at_carrier_close.append(client.closed)
        await original_carrier_close(code)

    client.close = client_close
    carrier.close = carrier_close

    updates = []

    async def on_change(change):
        if change.table == "conversations" and change.action == "update":
            updates.append(change)

    store.subscribe(on_change)

    await handle_stop(parse_carrier_event(STOP), bridge)
    await handle_stop(parse_carrier_event(STOP), bridge)

    assert bridge.session.is_ended
    assert bridge.session.end_reason == "carrier_stop"
    assert statuses_at_provider_close == [ConversationStatus.COMPLETED]
    assert provider_closed_at_carrier_close == [True]
    assert client.close_calls == 1
    assert carrier.closed
    assert len(updates) == 1
    conversation = await store.get_conversation(conversation_id)
    assert conversation.status == ConversationStatus.COMPLETED
    assert conversation.duration_seconds >= 0


@pytest.mark.asyncio
async def test_provider_close_ends_call(bridge, carrier, store, client_factory, wait_until):
    client = await _start_call(bridge, client_factory, wait_until)
    await _activate(bridge, client, wait_until)

    await client.closed_handler()

    assert bridge.session.end_reason == "provider_closed"
    assert carrier.closed
    conversation = await store.get_conversation(bridge.session.conversation_id)
    assert conversation.status == ConversationStatus.COMPLETED


@pytest.mark.asyncio
async def test_provider_connect_failure_ends_call(carrier, store, notifier, client_factory_class, wait_until):
    factory = client_factory_class(connect_result=False)
    bridge = TwilioRealtimeBridge(carrier, store, notifier, client_factory=factory, audio_format="g711_ulaw")
    await handle_start(parse_carrier_event(START), bridge)
    await wait_until(lambda: bridge.session.is_ended and carrier.closed)

    assert bridge.session.end_reason == "provider_connect_failed"
    conversations = await store.list_conversations()
    assert len(conversations) == 1
    assert conversations[0].status == ConversationStatus.COMPLETED


@pytest.mark.asyncio
async def test_missing_provider_credentials_end_call(carrier, store, notifier, wait_until):
    def no_client():
        raise ValueError("OPENAI_API_KEY environment variable not set")

    bridge = TwilioRealtimeBridge(carrier, store, notifier, client_factory=no_client, audio_format="g711_ulaw")
    await handle_start(parse_carrier_event(START), bridge)
    await wait_until(lambda: carrier.closed)
    assert bridge.session.end_reason == "provider_unavailable"


@pytest.mark.asyncio
async def test_failed_session_update_ends_call(bridge, carrier, client_factory, wait_until):
    client = await _start_call(bridge, client_factory, wait_until)
    client.connected = False

    await client.emit(SESSION_CREATED)

    assert bridge.session.end_reason == "session_update_failed"
    assert carrier.closed


@pytest.mark.asyncio
async def test_events_after_end_are_ignored(bridge, carrier, client_factory, wait_until):
    client = await _start_call(bridge, client_factory, wait_until)
    await _activate(bridge, client, wait_until)
    await bridge.end("carrier_disconnected")

    await client.emit({"type": "response.audio.delta", "delta": _frame(1)})
    bridge.enqueue_audio(_frame(2))

    assert carrier.sent == []
    assert bridge.pending_audio_frames == 0


@pytest.mark.asyncio
async def test_end_waits_for_side_effects(bridge):
    finished = []

    async def slow_write():
        await asyncio.sleep(0.05)
        finished.append(True)

    bridge.spawn_side_effect(slow_write())
    await bridge.end("carrier_stop")
    assert finished == [True]


@pytest.mark.asyncio
async def test_end_cancels_stuck_side_effects(bridge):
    async def stuck():
        await asyncio.sleep(10)

    with patch.object(bridge_module, "SIDE_EFFECT_DRAIN_TIMEOUT", 0.01):
        task = bridge.spawn_side_effect(stuck())
        await bridge.end("carrier_stop")
    await asyncio.sleep(0.01)
    assert task.cancelled()


@pytest.mark.asyncio
async def test_end_survives_record_store_failure(bridge, carrier, store, client_factory, wait_until):
    from restaurant_agent.services.record_store import RecordStoreError

    client = await _start_call(bridge, client_factory, wait_until)

    async def failing_complete(*args, **kwargs):
        raise RecordStoreError("store unavailable")

    store.complete_conversation = failing_complete
    await bridge.end("carrier_stop")

    assert client.closed
    assert carrier.closed
