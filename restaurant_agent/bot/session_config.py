"""
Builds the OpenAI Realtime session configuration for a call.

The configuration is derived from the restaurant's agent configuration row when
one exists; otherwise the model is given a generic receptionist instruction.
"""

import os
from typing import Optional

from restaurant_agent.config.constants import (
    AUDIO_FORMAT_G711_ULAW,
    DEFAULT_INSTRUCTIONS,
    DEFAULT_REALTIME_VOICE,
    MODEL_TEMPERATURE,
    TOOL_CREATE_RESERVATION,
    TRANSCRIPTION_MODEL,
    VAD_PREFIX_PADDING_MS,
    VAD_SILENCE_DURATION_MS,
    VAD_THRESHOLD,
)
from restaurant_agent.models.openai_schemas import (
    FunctionTool,
    InputAudioTranscription,
    SessionConfig,
    SessionUpdateEvent,
    TurnDetection,
)
from restaurant_agent.models.records import AgentConfig

REALTIME_VOICE = os.getenv("OPENAI_REALTIME_VOICE", DEFAULT_REALTIME_VOICE)

RESERVATION_INSTRUCTIONS = """When a customer wants to make a reservation, collect the following information:
1. Their name
2. Their email address (important for confirmation)
3. The date they want to dine (YYYY-MM-DD)
4. The time they prefer (HH:MM, 24-hour)
5. Number of guests

Once you have all information, use the create_reservation function to book their table."""

CREATE_RESERVATION_TOOL = FunctionTool(
    name=TOOL_CREATE_RESERVATION,
    description=(
        "Create a restaurant reservation with customer details. "
        "Use this when a customer wants to book a table."
    ),
    parameters={
        "type": "object",
        "properties": {
            "name": {"type": "string", "description": "Customer's full name"},
            "email": {
                "type": "string",
                "description": "Customer's email address for confirmation",
            },
            "date": {
                "type": "string",
                "description": "Reservation date in YYYY-MM-DD format",
            },
            "time": {
                "type": "string",
                "description": "Reservation time in HH:MM format (24-hour)",
            },
            "guests": {"type": "number", "description": "Number of guests"},
        },
        "required": ["name", "email", "date", "time", "guests"],
        "additionalProperties": False,
    },
)


def build_instructions(config: Optional[AgentConfig]) -> str:
    """Render the system instructions for the model."""
    if config is None:
        return DEFAULT_INSTRUCTIONS
    return (
        f"You are a receptionist for {config.restaurant_name}.\n"
        f"Hours: {config.restaurant_hours}\n"
        f"Menu: {config.menu}\n"
        f"{config.instructions}\n\n"
        f"{RESERVATION_INSTRUCTIONS}"
    )


def build_session_config(
    config: Optional[AgentConfig],
    audio_format: str = AUDIO_FORMAT_G711_ULAW,
    voice: str = REALTIME_VOICE,
) -> SessionConfig:
    """
    Build the ``session`` object for session.update or ephemeral session creation.

    Args:
        config: The restaurant's agent configuration, or None to use the fallback
        audio_format: Input and output audio format negotiated with the provider
        voice: Provider voice name
    """
    return SessionConfig(
        modalities=["text", "audio"],
        instructions=build_instructions(config),
        voice=voice,
        input_audio_format=audio_format,
        output_audio_format=audio_format,
        input_audio_transcription=InputAudioTranscription(model=TRANSCRIPTION_MODEL),
        turn_detection=TurnDetection(
            type="server_vad",
            threshold=VAD_THRESHOLD,
            prefix_padding_ms=VAD_PREFIX_PADDING_MS,
            silence_duration_ms=VAD_SILENCE_DURATION_MS,
        ),
        temperature=MODEL_TEMPERATURE,
        tools=[CREATE_RESERVATION_TOOL],
        tool_choice="auto",
    )


def build_session_update(
    config: Optional[AgentConfig], audio_format: str = AUDIO_FORMAT_G711_ULAW
) -> SessionUpdateEvent:
    return SessionUpdateEvent(session=build_session_config(config, audio_format))
