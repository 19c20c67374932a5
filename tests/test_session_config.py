"""
Unit tests for the Realtime session configuration builder.
"""

import json

from restaurant_agent.bot.session_config import (
    build_instructions,
    build_session_config,
    build_session_update,
)
from restaurant_agent.models.records import AgentConfig


def _config():
    return AgentConfig(
        restaurant_name="Chez Test",
        restaurant_hours="Tue-Sun 17:00-23:00",
        menu="Steak frites, moules marinieres",
        instructions="Be warm and brief.",
    )


def test_instructions_without_config():
    assert build_instructions(None) == "You are a helpful restaurant receptionist."


def test_instructions_with_config():
    instructions = build_instructions(_config())
    assert "You are a receptionist for Chez Test." in instructions
    assert "Hours: Tue-Sun 17:00-23:00" in instructions
    assert "Menu: Steak frites, moules marinieres" in instructions
    assert "Be warm and brief." in instructions
    assert "create_reservation" in instructions


def test_session_config_defaults_to_mulaw():
    session = build_session_config(_config())
    assert session.input_audio_format == "g711_ulaw"
    assert session.output_audio_format == "g711_ulaw"
    assert session.modalities == ["text", "audio"]
    assert session.input_audio_transcription.model == "whisper-1"
    assert session.turn_detection.type == "server_vad"
    assert session.turn_detection.threshold == 0.5
    assert session.turn_detection.prefix_padding_ms == 300
    assert session.turn_detection.silence_duration_ms == 1000
    assert session.temperature == 0.8
    assert session.tool_choice == "auto"


def test_session_config_pcm16():
    session = build_session_config(None, audio_format="pcm16")
    assert session.input_audio_format == "pcm16"
    assert session.output_audio_format == "pcm16"


def test_create_reservation_tool_declared():
    session = build_session_config(None)
    assert len(session.tools) == 1
    tool = session.tools[0]
    assert tool.type == "function"
    assert tool.name == "create_reservation"
    assert tool.parameters["required"] == ["name", "email", "date", "time", "guests"]
    assert set(tool.parameters["properties"]) == {"name", "email", "date", "time", "guests"}


def test_session_update_event():
    data = json.loads(build_session_update(_config()).model_dump_json(exclude_none=True))
    assert data["type"] == "session.update"
    assert data["session"]["voice"]
    assert "Chez Test" in data["session"]["instructions"]
    assert data["session"]["tools"][0]["name"] == "create_reservation"
