from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from restaurant_agent import main
from restaurant_agent.main import app, media_stream_manager
from restaurant_agent.services import twiml as twiml_module
from restaurant_agent.websocket_manager import MediaStreamManager

client = TestClient(app)


def test_health_check():
    """Test the health check endpoint returns correct response"""
    response = client.get("/health")
    assert response.status_code == 200

    response_json = response.json()
    assert response_json["status"] == "healthy"
    assert "openai_api_key_configured" in response_json
    assert isinstance(response_json["openai_api_key_configured"], bool)
    assert response_json["active_calls"] == 0


def test_root_endpoint():
    """Test the root endpoint returns the correct API information"""
    response = client.get("/")
    assert response.status_code == 200

    response_json = response.json()
    assert response_json["name"] == "Restaurant Voice Agent"
    assert "description" in response_json
    assert response_json["version"] == "1.0.0"
    assert "endpoints" in response_json
    assert "/twiml" in response_json["endpoints"]
    assert "/media-stream" in response_json["endpoints"]
    assert "/health" in response_json["endpoints"]


def test_media_stream_manager_initialization():
    """Test that media_stream_manager is properly initialized"""
    assert media_stream_manager is not None
    assert media_stream_manager.call_manager is not None
    assert "start" in media_stream_manager.handlers
    assert "media" in media_stream_manager.handlers


@pytest.mark.parametrize("method", ["get", "post"])
def test_twiml_connects_media_stream(method):
    """Twilio may fetch the voice webhook with GET or POST"""
    with patch.object(twiml_module, "PUBLIC_HOST", None):
        response = getattr(client, method)("/twiml")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/xml")
    assert '<Stream url="wss://testserver/media-stream"' in response.text
    assert "<Say>" in response.text


def test_twiml_uses_public_host():
    with patch.object(twiml_module, "PUBLIC_HOST", "agent.example.com"):
        response = client.post("/twiml")
    assert 'url="wss://agent.example.com/media-stream"' in response.text


def test_media_stream_endpoint_handles_stop(store, notifier, client_factory):
    """A stream that stops before starting is closed without touching the provider"""
    manager = MediaStreamManager(store, notifier, client_factory=client_factory, audio_format="g711_ulaw")
    with patch.object(main, "media_stream_manager", manager):
        with client.websocket_connect("/media-stream") as websocket:
            websocket.send_json({"event": "connected", "protocol": "Call", "version": "1.0.0"})
            websocket.send_json({"event": "stop", "streamSid": "MZ1"})
            with pytest.raises(WebSocketDisconnect):
                websocket.receive_text()

    assert client_factory.clients == []
    assert manager.active_calls == 0
