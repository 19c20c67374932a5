"""
TwiML answering an inbound call by greeting the caller and connecting a media stream.
"""

import os
from typing import Optional

from twilio.twiml.voice_response import Connect, Stream, VoiceResponse

DEFAULT_GREETING = "Please wait while I connect you to our AI receptionist"
TWIML_GREETING = os.getenv("TWIML_GREETING", DEFAULT_GREETING)
PUBLIC_HOST = os.getenv("PUBLIC_HOST")
MEDIA_STREAM_PATH = "/media-stream"


def media_stream_url(host: str, path: str = MEDIA_STREAM_PATH) -> str:
    """
    Build the wss:// URL Twilio connects its media stream to.

    Args:
        host: Public host name, optionally with a scheme that is replaced by wss://
        path: WebSocket endpoint path
    """
    host = PUBLIC_HOST or host
    for scheme in ("https://", "http://", "wss://", "ws://"):
        if host.startswith(scheme):
            host = host[len(scheme):]
            break
    return f"wss://{host.rstrip('/')}{path}"


def build_stream_twiml(stream_url: str, greeting: Optional[str] = None) -> str:
    """Return the TwiML document: a <Say> followed by <Connect><Stream url=.../></Connect>."""
    response = VoiceResponse()
    response.say(greeting if greeting is not None else TWIML_GREETING)
    connect = Connect()
    connect.append(Stream(url=stream_url))
    response.append(connect)
    return str(response)
