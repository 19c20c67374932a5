"""
FastAPI server for the restaurant voice reservation agent.

This module initializes the FastAPI application that answers Twilio voice
webhooks with TwiML, terminates Twilio media streams and bridges each call to
the OpenAI Realtime API. It also serves the browser session endpoints and the
dashboard API over the same record store.
"""

import os
from contextlib import asynccontextmanager
from pathlib import Path

import dotenv
from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import Response

# Load environment variables from .env file if it exists
env_path = Path(".") / ".env"
if env_path.exists():
    dotenv.load_dotenv(env_path)

from restaurant_agent.api import browser_session, dashboard  # noqa: E402
from restaurant_agent.config.logging_config import configure_logging  # noqa: E402
from restaurant_agent.services.notifications import create_notification_sender  # noqa: E402
from restaurant_agent.services.record_store import create_record_store  # noqa: E402
from restaurant_agent.services.twiml import build_stream_twiml, media_stream_url  # noqa: E402
from restaurant_agent.websocket_manager import MediaStreamManager  # noqa: E402

# Configure logging
logger = configure_logging()

# Get configuration from environment variables
PORT = int(os.getenv("PORT", "8000"))
HOST = os.getenv("HOST", "0.0.0.0")

APP_NAME = "Restaurant Voice Agent"
APP_DESCRIPTION = "Twilio Media Streams to OpenAI Realtime API bridge for restaurant reservations"
APP_VERSION = "1.0.0"

record_store = create_record_store()
notifier = create_notification_sender()
media_stream_manager = MediaStreamManager(record_store, notifier)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    logger.info("Shutting down, closing record store and notification sender")
    await app.state.record_store.close()
    await app.state.notifier.close()


# Create FastAPI application
app = FastAPI(
    title=APP_NAME,
    description=APP_DESCRIPTION,
    version=APP_VERSION,
    lifespan=lifespan,
)
app.state.record_store = record_store
app.state.notifier = notifier
app.include_router(dashboard.router)
app.include_router(browser_session.router)


@app.api_route("/twiml", methods=["GET", "POST"])
async def twiml(request: Request):
    """Answer an inbound Twilio call: greet the caller and connect the media stream."""
    stream_url = media_stream_url(request.headers.get("host") or request.url.netloc)
    logger.info(f"Answering call with media stream at {stream_url}")
    return Response(content=build_stream_twiml(stream_url), media_type="application/xml")


@app.websocket("/media-stream")
async def media_stream_endpoint(websocket: WebSocket):
    """WebSocket endpoint for Twilio bidirectional media streams.

    Each connection is one phone call, bridged to its own OpenAI Realtime session.
    """
    await media_stream_manager.handle_websocket(websocket)


@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring system status.

    Returns:
        dict: Status, whether the OpenAI key is configured and the number of active calls.
    """
    return {
        "status": "healthy",
        "openai_api_key_configured": bool(os.getenv("OPENAI_API_KEY")),
        "active_calls": media_stream_manager.active_calls,
    }


@app.get("/")
async def root():
    """Root endpoint to display basic information about the API."""
    return {
        "name": APP_NAME,
        "description": APP_DESCRIPTION,
        "version": APP_VERSION,
        "endpoints": {
            "/twiml": "TwiML webhook for inbound Twilio calls",
            "/media-stream": "WebSocket endpoint for Twilio Media Streams",
            "/realtime-session": "Ephemeral OpenAI Realtime session for the browser",
            "/api": "Dashboard API (conversations, reservations, agent configuration)",
            "/health": "Health check endpoint",
        },
    }
