"""
Handlers for events received from the OpenAI Realtime API during a phone call.

Each handler receives the parsed server event and the call's bridge. They are
looked up by event type in PROVIDER_EVENT_HANDLERS; types without an entry are
logged at debug level and ignored.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from restaurant_agent.bot.session_config import build_session_update
from restaurant_agent.config.constants import (
    EVENT_AUDIO_DELTA,
    EVENT_AUDIO_DONE,
    EVENT_AUDIO_TRANSCRIPT_DONE,
    EVENT_ERROR,
    EVENT_FUNCTION_CALL_ARGUMENTS_DELTA,
    EVENT_FUNCTION_CALL_ARGUMENTS_DONE,
    EVENT_INPUT_TRANSCRIPTION_COMPLETED,
    EVENT_SESSION_CREATED,
    EVENT_SESSION_UPDATED,
    EVENT_SPEECH_STARTED,
    LOGGER_NAME,
)
from restaurant_agent.handlers.reservation_handlers import report_tool_result, run_tool_call
from restaurant_agent.models.call_session import CallState
from restaurant_agent.models.carrier_schemas import build_clear_message, build_media_message
from restaurant_agent.models.openai_schemas import (
    AudioDeltaEvent,
    AudioDoneEvent,
    AudioTranscriptDoneEvent,
    FunctionCallArgumentsDeltaEvent,
    FunctionCallArgumentsDoneEvent,
    InputTranscriptionCompletedEvent,
    RealtimeErrorEvent,
    SessionCreatedEvent,
    SessionUpdatedEvent,
    SpeechStartedEvent,
)

logger = logging.getLogger(LOGGER_NAME)

# The second argument is the call's TwilioRealtimeBridge
ProviderHandler = Callable[[Any, Any], Awaitable[None]]


async def handle_session_created(event: SessionCreatedEvent, bridge) -> None:
    """
    Configure the provider session once it exists.

    Sends exactly one session.update per call, built from the current agent
    configuration, then marks the call active so buffered caller audio flows.
    """
    if bridge.session_configured:
        logger.warning(f"Ignoring repeated session.created for call {bridge.session_id}")
        return
    if not bridge.session.transition(CallState.CONFIGURING):
        return

    logger.info(f"Provider session created for call {bridge.session_id}: {event.session.get('id')}")
    config = await bridge.load_agent_config()
    if config is None:
        logger.info("No agent configuration found, using default instructions")

    update = build_session_update(config, bridge.codec.provider_format)
    if not await bridge.send_to_provider(update):
        logger.error(f"Failed to send session.update for call {bridge.session_id}")
        await bridge.end("session_update_failed")
        return
    logger.info(f"Sent session.update for call {bridge.session_id}")
    bridge.activate()


async def handle_session_updated(event: SessionUpdatedEvent, bridge) -> None:
    logger.info(f"Provider acknowledged session configuration for call {bridge.session_id}")


async def handle_audio_delta(event: AudioDeltaEvent, bridge) -> None:
    """Re-frame a chunk of model audio as a Twilio media message."""
    stream_sid = bridge.session.stream_sid
    if not stream_sid:
        logger.debug("Dropping audio delta: stream id not known yet")
        return
    payload = bridge.codec.provider_to_carrier(event.delta)
    await bridge.send_to_carrier(build_media_message(stream_sid, payload))


async def handle_audio_done(event: AudioDoneEvent, bridge) -> None:
    logger.debug(f"Audio response complete for call {bridge.session_id}")


async def handle_function_call_arguments_delta(event: FunctionCallArgumentsDeltaEvent, bridge) -> None:
    bridge.session.pending_tool_calls.append(event.call_id, event.delta)


async def handle_function_call_arguments_done(event: FunctionCallArgumentsDoneEvent, bridge) -> None:
    """Assemble the call's arguments and run the tool in the background."""
    arguments = bridge.session.pending_tool_calls.complete(event.call_id, event.arguments)
    logger.info(f"Function call {event.name} ({event.call_id}) complete for call {bridge.session_id}")
    bridge.spawn_side_effect(execute_tool_call(bridge, event.call_id, event.name, arguments))


async def execute_tool_call(bridge, call_id: str, name: Optional[str], arguments: str) -> None:
    """Run the tool and always report a result, even when the tool itself fails."""
    try:
        conversation_id = await bridge.wait_for_conversation()
        result = await run_tool_call(
            name,
            arguments,
            bridge.store,
            bridge.notifier,
            conversation_id=conversation_id,
            spawn=bridge.spawn_side_effect,
        )
    except Exception as e:
        logger.error(f"Function call {call_id} failed for call {bridge.session_id}: {e}", exc_info=True)
        result = {"success": False, "error": "The reservation could not be completed. Please try again."}
    await report_tool_result(bridge.client, call_id, result)


async def handle_speech_started(event: SpeechStartedEvent, bridge) -> None:
    """Caller barged in: flush audio Twilio has queued for playback."""
    stream_sid = bridge.session.stream_sid
    if stream_sid:
        logger.debug(f"Caller started speaking, clearing playback for call {bridge.session_id}")
        await bridge.send_to_carrier(build_clear_message(stream_sid))


async def handle_input_transcription(event: InputTranscriptionCompletedEvent, bridge) -> None:
    logger.info(f"Caller: {event.transcript}")
    bridge.session.add_transcript("user", event.transcript)


async def handle_audio_transcript_done(event: AudioTranscriptDoneEvent, bridge) -> None:
    logger.info(f"Agent: {event.transcript}")
    bridge.session.add_transcript("assistant", event.transcript)


async def handle_error(event: RealtimeErrorEvent, bridge) -> None:
    logger.error(
        f"OpenAI error for call {bridge.session_id}: "
        f"{event.error.type or 'error'} {event.error.code or ''} {event.error.message or ''}".rstrip()
    )


PROVIDER_EVENT_HANDLERS: Dict[str, ProviderHandler] = {
    EVENT_SESSION_CREATED: handle_session_created,
    EVENT_SESSION_UPDATED: handle_session_updated,
    EVENT_AUDIO_DELTA: handle_audio_delta,
    EVENT_AUDIO_DONE: handle_audio_done,
    EVENT_FUNCTION_CALL_ARGUMENTS_DELTA: handle_function_call_arguments_delta,
    EVENT_FUNCTION_CALL_ARGUMENTS_DONE: handle_function_call_arguments_done,
    EVENT_SPEECH_STARTED: handle_speech_started,
    EVENT_INPUT_TRANSCRIPTION_COMPLETED: handle_input_transcription,
    EVENT_AUDIO_TRANSCRIPT_DONE: handle_audio_transcript_done,
    EVENT_ERROR: handle_error,
}
