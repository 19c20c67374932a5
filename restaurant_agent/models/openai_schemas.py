"""
Pydantic models for OpenAI Realtime API message structures.

This module provides type-safe models for the messages exchanged with the OpenAI Realtime API,
including both the server events the bridge reacts to and the client events it sends.
Server events not listed in ``SERVER_EVENT_MODELS`` are parsed into
``UnrecognizedServerEvent`` so the dispatcher can log and skip them.
"""

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class RealtimeBaseMessage(BaseModel):
    """Base model for Realtime API messages."""

    model_config = ConfigDict(extra="ignore")

    type: str
    event_id: Optional[str] = None


# Server events
class SessionCreatedEvent(RealtimeBaseMessage):
    """Sent by the provider once the session handshake is complete."""

    type: Literal["session.created"]
    session: Dict[str, Any] = Field(default_factory=dict)


class SessionUpdatedEvent(RealtimeBaseMessage):
    type: Literal["session.updated"]
    session: Dict[str, Any] = Field(default_factory=dict)


class AudioDeltaEvent(RealtimeBaseMessage):
    """A chunk of synthesized audio, base64 encoded in the output audio format."""

    type: Literal["response.audio.delta"]
    delta: str
    response_id: Optional[str] = None
    item_id: Optional[str] = None


class AudioDoneEvent(RealtimeBaseMessage):
    type: Literal["response.audio.done"]
    response_id: Optional[str] = None
    item_id: Optional[str] = None


class FunctionCallArgumentsDeltaEvent(RealtimeBaseMessage):
    """A fragment of the JSON arguments of an in-flight function call."""

    type: Literal["response.function_call_arguments.delta"]
    call_id: str
    delta: str = ""


class FunctionCallArgumentsDoneEvent(RealtimeBaseMessage):
    """Signals that the model finished streaming a function call's arguments."""

    type: Literal["response.function_call_arguments.done"]
    call_id: str
    name: Optional[str] = None
    arguments: Optional[str] = None


class SpeechStartedEvent(RealtimeBaseMessage):
    type: Literal["input_audio_buffer.speech_started"]
    audio_start_ms: Optional[int] = None
    item_id: Optional[str] = None


class InputTranscriptionCompletedEvent(RealtimeBaseMessage):
    type: Literal["conversation.item.input_audio_transcription.completed"]
    transcript: str = ""
    item_id: Optional[str] = None


class AudioTranscriptDoneEvent(RealtimeBaseMessage):
    type: Literal["response.audio_transcript.done"]
    transcript: str = ""
    item_id: Optional[str] = None


class RealtimeErrorDetail(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Optional[str] = None
    code: Optional[str] = None
    message: Optional[str] = None
    param: Optional[str] = None


class RealtimeErrorEvent(RealtimeBaseMessage):
    """Error message from OpenAI Realtime API. Non-fatal to the socket."""

    type: Literal["error"]
    error: RealtimeErrorDetail = Field(default_factory=RealtimeErrorDetail)


class UnrecognizedServerEvent(RealtimeBaseMessage):
    """Any server event the bridge does not act on."""

    model_config = ConfigDict(extra="allow")


ServerEvent = Union[
    SessionCreatedEvent,
    SessionUpdatedEvent,
    AudioDeltaEvent,
    AudioDoneEvent,
    FunctionCallArgumentsDeltaEvent,
    FunctionCallArgumentsDoneEvent,
    SpeechStartedEvent,
    InputTranscriptionCompletedEvent,
    AudioTranscriptDoneEvent,
    RealtimeErrorEvent,
    UnrecognizedServerEvent,
]

SERVER_EVENT_MODELS = {
    "session.created": SessionCreatedEvent,
    "session.updated": SessionUpdatedEvent,
    "response.audio.delta": AudioDeltaEvent,
    "response.audio.done": AudioDoneEvent,
    "response.function_call_arguments.delta": FunctionCallArgumentsDeltaEvent,
    "response.function_call_arguments.done": FunctionCallArgumentsDoneEvent,
    "input_audio_buffer.speech_started": SpeechStartedEvent,
    "conversation.item.input_audio_transcription.completed": InputTranscriptionCompletedEvent,
    "response.audio_transcript.done": AudioTranscriptDoneEvent,
    "error": RealtimeErrorEvent,
}


def parse_server_event(data: Dict[str, Any]) -> ServerEvent:
    """
    Parse a decoded provider frame into its event model.

    Raises:
        pydantic.ValidationError: If a known event is missing required fields
    """
    model = SERVER_EVENT_MODELS.get(data.get("type"))
    if model is None:
        return UnrecognizedServerEvent(**{**data, "type": str(data.get("type"))})
    return model(**data)


# Session configuration
class TurnDetection(BaseModel):
    type: str = "server_vad"
    threshold: float = 0.5
    prefix_padding_ms: int = 300
    silence_duration_ms: int = 1000


class InputAudioTranscription(BaseModel):
    model: str = "whisper-1"


class FunctionTool(BaseModel):
    """Function tool declaration in a session configuration."""

    type: Literal["function"] = "function"
    name: str
    description: str
    parameters: Dict[str, Any]


class SessionConfig(BaseModel):
    """The ``session`` object pushed with session.update."""

    modalities: List[str] = Field(default_factory=lambda: ["text", "audio"])
    instructions: str
    voice: str = "alloy"
    input_audio_format: str = "g711_ulaw"
    output_audio_format: str = "g711_ulaw"
    input_audio_transcription: InputAudioTranscription = Field(
        default_factory=InputAudioTranscription
    )
    turn_detection: TurnDetection = Field(default_factory=TurnDetection)
    temperature: float = 0.8
    tools: List[FunctionTool] = Field(default_factory=list)
    tool_choice: str = "auto"


# Client events
class SessionUpdateEvent(RealtimeBaseMessage):
    type: Literal["session.update"] = "session.update"
    session: SessionConfig


class InputAudioBufferAppendEvent(RealtimeBaseMessage):
    type: Literal["input_audio_buffer.append"] = "input_audio_buffer.append"
    audio: str


class FunctionCallOutputItem(BaseModel):
    type: Literal["function_call_output"] = "function_call_output"
    call_id: str
    output: str


class ConversationItemCreateEvent(RealtimeBaseMessage):
    type: Literal["conversation.item.create"] = "conversation.item.create"
    item: FunctionCallOutputItem


class ResponseCreateEvent(RealtimeBaseMessage):
    type: Literal["response.create"] = "response.create"


class ClientSecret(BaseModel):
    value: str
    expires_at: Optional[int] = None


class RealtimeSessionResponse(BaseModel):
    """Response from the ephemeral session creation endpoint."""

    model_config = ConfigDict(extra="allow")

    id: str
    client_secret: ClientSecret
    model: Optional[str] = None
