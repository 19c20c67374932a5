"""
Pydantic models for Twilio Media Streams message schemas.

This module defines structured data models for the incoming and outgoing messages
of the Twilio bidirectional media stream WebSocket, providing type validation and
documentation. Incoming frames are parsed into a closed set of event models; any
event name this module does not know becomes an ``UnrecognizedCarrierEvent`` that
callers log and ignore.
"""

import base64
import logging
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from restaurant_agent.config.constants import LOGGER_NAME

logger = logging.getLogger(LOGGER_NAME)


class CarrierMessage(BaseModel):
    """Base model for all Twilio media stream messages."""

    model_config = ConfigDict(extra="ignore")

    event: str = Field(..., description="Event type identifier")
    sequenceNumber: Optional[str] = Field(
        None, description="Order of the message within the stream"
    )
    streamSid: Optional[str] = Field(None, description="Stream identifier")


class ConnectedEvent(CarrierMessage):
    """First message sent by Twilio once the WebSocket is established."""

    event: Literal["connected"]
    protocol: Optional[str] = None
    version: Optional[str] = None


class MediaFormat(BaseModel):
    """Audio format announced in the start message."""

    encoding: str = "audio/x-mulaw"
    sampleRate: int = 8000
    channels: int = 1


class StartMetadata(BaseModel):
    """Metadata block of the start message."""

    model_config = ConfigDict(extra="ignore")

    streamSid: str = Field(..., description="Twilio-assigned stream identifier")
    accountSid: Optional[str] = None
    callSid: Optional[str] = None
    tracks: List[str] = Field(default_factory=list)
    customParameters: Dict[str, str] = Field(default_factory=dict)
    mediaFormat: Optional[MediaFormat] = None

    @field_validator("streamSid")
    def validate_stream_sid(cls, v):
        """Validate that the stream id is not empty."""
        if not v.strip():
            raise ValueError("streamSid cannot be empty")
        return v


class StartEvent(CarrierMessage):
    """Model for the start message, sent once when the stream begins."""

    event: Literal["start"]
    start: StartMetadata


class MediaPayload(BaseModel):
    """Media block of a media message."""

    model_config = ConfigDict(extra="ignore")

    payload: str = Field(..., description="Base64-encoded audio")
    track: Optional[str] = None
    chunk: Optional[str] = None
    timestamp: Optional[str] = None

    @field_validator("payload")
    def validate_payload(cls, v):
        """Validate that payload is valid base64."""
        try:
            if v:
                base64.b64decode(v, validate=True)
            else:
                raise ValueError("Audio payload cannot be empty")
        except Exception:
            raise ValueError("Invalid base64 encoded audio data")
        return v


class MediaEvent(CarrierMessage):
    """Model for the media message carrying one chunk of caller audio."""

    event: Literal["media"]
    media: MediaPayload


class MarkLabel(BaseModel):
    name: str


class MarkEvent(CarrierMessage):
    """Model for the mark message, echoed once queued playback reaches a mark."""

    event: Literal["mark"]
    mark: MarkLabel


class DtmfDigit(BaseModel):
    track: Optional[str] = None
    digit: str


class DtmfEvent(CarrierMessage):
    """Model for the dtmf message sent when the caller presses a key."""

    event: Literal["dtmf"]
    dtmf: DtmfDigit


class StopMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore")

    accountSid: Optional[str] = None
    callSid: Optional[str] = None


class StopEvent(CarrierMessage):
    """Model for the stop message, sent when the stream ends or the call hangs up."""

    event: Literal["stop"]
    stop: Optional[StopMetadata] = None


class UnrecognizedCarrierEvent(CarrierMessage):
    """Any message whose event name is not part of the supported protocol."""

    model_config = ConfigDict(extra="allow")


# Outgoing messages
class OutboundMediaPayload(BaseModel):
    payload: str = Field(..., description="Base64-encoded audio")


class OutboundMediaMessage(BaseModel):
    """Model for a media message sent back to Twilio for playback."""

    event: Literal["media"] = "media"
    streamSid: str
    media: OutboundMediaPayload


class ClearMessage(BaseModel):
    """Model for the clear message that flushes Twilio's queued playback."""

    event: Literal["clear"] = "clear"
    streamSid: str


CarrierEvent = Union[
    ConnectedEvent,
    StartEvent,
    MediaEvent,
    MarkEvent,
    DtmfEvent,
    StopEvent,
    UnrecognizedCarrierEvent,
]

CARRIER_EVENT_MODELS = {
    "connected": ConnectedEvent,
    "start": StartEvent,
    "media": MediaEvent,
    "mark": MarkEvent,
    "dtmf": DtmfEvent,
    "stop": StopEvent,
}


def parse_carrier_event(data: Dict[str, Any]) -> CarrierEvent:
    """
    Parse a decoded Twilio frame into its event model.

    Args:
        data: The JSON-decoded frame

    Returns:
        The matching event model, or UnrecognizedCarrierEvent for unknown events

    Raises:
        pydantic.ValidationError: If a known event is missing required fields
    """
    model = CARRIER_EVENT_MODELS.get(data.get("event"))
    if model is None:
        return UnrecognizedCarrierEvent(**{**data, "event": str(data.get("event"))})
    return model(**data)


def build_media_message(stream_sid: str, payload: str) -> str:
    """Serialize a Twilio outbound media message."""
    return OutboundMediaMessage(
        streamSid=stream_sid, media=OutboundMediaPayload(payload=payload)
    ).model_dump_json()


def build_clear_message(stream_sid: str) -> str:
    """Serialize a Twilio clear message."""
    return ClearMessage(streamSid=stream_sid).model_dump_json()
