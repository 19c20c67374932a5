"""
Handles the Twilio media stream events received on the carrier WebSocket.

Twilio sends ``connected`` once, ``start`` once with the stream metadata, a
``media`` event for every 20ms of caller audio, ``mark`` and ``dtmf`` events as
they occur, and ``stop`` when the call ends. Each handler receives the parsed
event and the call's bridge.
"""

import logging

from restaurant_agent.config.constants import LOGGER_NAME
from restaurant_agent.models.carrier_schemas import (
    ConnectedEvent,
    DtmfEvent,
    MarkEvent,
    MediaEvent,
    StartEvent,
    StopEvent,
    UnrecognizedCarrierEvent,
)

logger = logging.getLogger(LOGGER_NAME)


async def handle_connected(event: ConnectedEvent, bridge) -> None:
    logger.info(f"Twilio media stream connected (protocol {event.protocol}, version {event.version})")


async def handle_start(event: StartEvent, bridge) -> None:
    """
    Handle the start message.

    Stores the stream and call ids, schedules creation of the conversation record
    and brings up the provider session (unless a media event already did).
    """
    start = event.start
    bridge.session.stream_sid = start.streamSid
    bridge.session.call_sid = start.callSid
    logger.info(f"Stream started: {start.streamSid} (call {start.callSid})")
    if start.mediaFormat and start.mediaFormat.encoding != "audio/x-mulaw":
        logger.warning(f"Unexpected carrier media encoding: {start.mediaFormat.encoding}")

    bridge.start_conversation()
    bridge.ensure_provider_connection()


async def handle_media(event: MediaEvent, bridge) -> None:
    """
    Forward one chunk of caller audio.

    A media event arriving before start recovers the stream id from the frame
    and triggers the provider bring-up itself.
    """
    if bridge.session.stream_sid is None and event.streamSid:
        bridge.session.stream_sid = event.streamSid
        logger.info(f"Recovered stream id from media event: {event.streamSid}")

    if bridge.ensure_provider_connection():
        logger.info("Provider not connected yet, connecting on first media event")
        bridge.start_conversation()

    bridge.enqueue_audio(event.media.payload)


async def handle_mark(event: MarkEvent, bridge) -> None:
    logger.debug(f"Playback reached mark: {event.mark.name}")


async def handle_dtmf(event: DtmfEvent, bridge) -> None:
    logger.info(f"Caller pressed DTMF digit: {event.dtmf.digit}")


async def handle_stop(event: StopEvent, bridge) -> None:
    """Handle the stop message: complete the conversation, then tear the call down."""
    logger.info(f"Stream stopped: {event.streamSid or bridge.session.stream_sid}")
    await bridge.end("carrier_stop")


async def handle_unrecognized(event: UnrecognizedCarrierEvent, bridge) -> None:
    logger.warning(f"Ignoring unrecognized Twilio event: {event.event}")
