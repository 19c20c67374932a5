"""
Launch the restaurant voice agent under uvicorn.

The WebSocket settings keep Twilio media streams responsive: keepalive pings
detect dead carrier connections quickly and the frame size limit leaves room
for bursts of buffered audio.

Usage:
    python run.py [--port PORT] [--host HOST] [--log-level LEVEL] [--reload]
"""

import argparse
import os

import uvicorn

from restaurant_agent.config.logging_config import configure_logging

WS_PING_INTERVAL = 5  # seconds
WS_PING_TIMEOUT = 20  # seconds
WS_MAX_SIZE = 16 * 1024 * 1024


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Start the restaurant voice agent server")
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.getenv("PORT", "8000")),
        help="Port to listen on (default: 8000 or PORT env var)",
    )
    parser.add_argument(
        "--host",
        default=os.getenv("HOST", "0.0.0.0"),
        help="Interface to bind (default: 0.0.0.0 or HOST env var)",
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        default=os.getenv("LOG_LEVEL", "INFO").upper(),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO or LOG_LEVEL env var)",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        default=os.getenv("ENV", "production").lower() == "development",
        help="Reload on code changes (default: on when ENV=development)",
    )
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    logger = configure_logging(args.log_level)

    # Calls fail per call without a key; the dashboard and TwiML endpoints still work
    if not os.getenv("OPENAI_API_KEY"):
        logger.warning("OPENAI_API_KEY is not set, incoming calls will be ended immediately")

    logger.info(f"Starting server on http://{args.host}:{args.port} (log level {args.log_level})")

    uvicorn.run(
        "restaurant_agent.main:app",
        host=args.host,
        port=args.port,
        log_level=args.log_level.lower(),
        http="h11",
        # Request logging goes through the application logger
        access_log=False,
        ws_ping_interval=WS_PING_INTERVAL,
        ws_ping_timeout=WS_PING_TIMEOUT,
        ws_max_size=WS_MAX_SIZE,
        reload=args.reload,
    )


if __name__ == "__main__":
    main()
