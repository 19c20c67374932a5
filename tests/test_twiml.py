from unittest.mock import patch

from restaurant_agent.services import twiml as twiml_module
from restaurant_agent.services.twiml import build_stream_twiml, media_stream_url


def test_media_stream_url_from_host():
    with patch.object(twiml_module, "PUBLIC_HOST", None):
        assert media_stream_url("agent.example.com") == "wss://agent.example.com/media-stream"


def test_media_stream_url_strips_scheme():
    with patch.object(twiml_module, "PUBLIC_HOST", None):
        assert media_stream_url("https://agent.example.com/") == "wss://agent.example.com/media-stream"


def test_public_host_wins_over_request_host():
    with patch.object(twiml_module, "PUBLIC_HOST", "https://public.example.com"):
        assert media_stream_url("localhost:8000") == "wss://public.example.com/media-stream"


def test_stream_twiml():
    document = build_stream_twiml("wss://agent.example.com/media-stream", greeting="Hello there")
    assert document.startswith("<?xml")
    assert "<Say>Hello there</Say>" in document
    assert '<Connect><Stream url="wss://agent.example.com/media-stream"' in document
    assert document.index("<Say>") < document.index("<Connect>")


def test_stream_twiml_default_greeting():
    with patch.object(twiml_module, "TWIML_GREETING", "Please hold"):
        document = build_stream_twiml("wss://agent.example.com/media-stream")
    assert "<Say>Please hold</Say>" in document
