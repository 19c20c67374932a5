"""
WebSocket client that plays the Twilio side of a media stream.

Used to exercise a running server without a phone: it sends the same
connected/start/media/stop frames Twilio sends and collects the media frames
the server plays back.
"""

import argparse
import asyncio
import base64
import json
import logging
import uuid
from typing import List, Optional

import websockets

from restaurant_agent.config.constants import (
    CARRIER_EVENT_CLEAR,
    CARRIER_EVENT_MEDIA,
    LOGGER_NAME,
)
from restaurant_agent.config.logging_config import configure_logging

logger = logging.getLogger(LOGGER_NAME)

FRAME_BYTES = 160  # 20ms of 8kHz mu-law


class MediaStreamClient:
    """
    Client simulating a Twilio bidirectional media stream.

    Args:
        url: WebSocket URL of the media stream endpoint, e.g. ws://localhost:8000/media-stream
    """

    def __init__(self, url: str):
        self.url = url
        self.websocket = None
        self.stream_sid: Optional[str] = None
        self.call_sid: Optional[str] = None
        self.sequence = 0
        self.received_audio: List[bytes] = []
        self.clear_count = 0
        self._recv_task: Optional[asyncio.Task] = None

    def _next_sequence(self) -> str:
        self.sequence += 1
        return str(self.sequence)

    async def connect(self) -> bool:
        """
        Establish a connection to the media stream endpoint.

        Returns:
            True if connection was successful, False otherwise
        """
        try:
            self.websocket = await websockets.connect(self.url)
            logger.info(f"Connected to media stream endpoint at {self.url}")
        except Exception as e:
            logger.error(f"Failed to connect to media stream endpoint: {e}")
            return False
        self._recv_task = asyncio.create_task(self._recv_loop())
        return True

    async def _send(self, message: dict) -> None:
        if not self.websocket:
            logger.error("Cannot send: not connected")
            return
        await self.websocket.send(json.dumps(message))

    async def start_stream(self, custom_parameters: Optional[dict] = None) -> str:
        """Send the connected and start frames. Returns the stream id."""
        self.stream_sid = f"MZ{uuid.uuid4().hex}"
        self.call_sid = f"CA{uuid.uuid4().hex}"
        await self._send({"event": "connected", "protocol": "Call", "version": "1.0.0"})
        await self._send({
            "event": "start",
            "sequenceNumber": self._next_sequence(),
            "streamSid": self.stream_sid,
            "start": {
                "streamSid": self.stream_sid,
                "callSid": self.call_sid,
                "tracks": ["inbound"],
                "customParameters": custom_parameters or {},
                "mediaFormat": {"encoding": "audio/x-mulaw", "sampleRate": 8000, "channels": 1},
            },
        })
        logger.info(f"Started media stream {self.stream_sid}")
        return self.stream_sid

    async def send_audio(self, audio: bytes) -> int:
        """
        Send mu-law audio as 20ms media frames.

        Returns:
            The number of frames sent
        """
        frames = 0
        for offset in range(0, len(audio), FRAME_BYTES):
            chunk = audio[offset:offset + FRAME_BYTES]
            await self._send({
                "event": "media",
                "sequenceNumber": self._next_sequence(),
                "streamSid": self.stream_sid,
                "media": {
                    "track": "inbound",
                    "chunk": str(frames + 1),
                    "payload": base64.b64encode(chunk).decode("utf-8"),
                },
            })
            frames += 1
        logger.debug(f"Sent {frames} media frames")
        return frames

    async def send_dtmf(self, digit: str) -> None:
        await self._send({
            "event": "dtmf",
            "streamSid": self.stream_sid,
            "sequenceNumber": self._next_sequence(),
            "dtmf": {"track": "inbound_track", "digit": digit},
        })

    async def stop_stream(self) -> None:
        """Send the stop frame, as Twilio does when the caller hangs up."""
        await self._send({
            "event": "stop",
            "sequenceNumber": self._next_sequence(),
            "streamSid": self.stream_sid,
            "stop": {"callSid": self.call_sid},
        })
        logger.info(f"Stopped media stream {self.stream_sid}")

    def handle_message(self, data: str) -> None:
        """Record one frame sent by the server."""
        try:
            message = json.loads(data)
        except json.JSONDecodeError:
            logger.warning(f"Received invalid JSON: {data[:100]}")
            return
        event = message.get("event")
        if event == CARRIER_EVENT_MEDIA:
            self.received_audio.append(base64.b64decode(message["media"]["payload"]))
        elif event == CARRIER_EVENT_CLEAR:
            self.clear_count += 1
            logger.debug("Server cleared playback")
        else:
            logger.debug(f"Received {event} frame")

    async def _recv_loop(self) -> None:
        try:
            async for data in self.websocket:
                self.handle_message(data)
        except websockets.exceptions.ConnectionClosed:
            logger.info("Media stream connection closed by server")

    async def close(self) -> None:
        if self._recv_task:
            self._recv_task.cancel()
        if self.websocket:
            await self.websocket.close()
            self.websocket = None
        logger.info("Media stream client closed")


async def simulate_call(url: str, seconds: float, listen: float) -> MediaStreamClient:
    """Place a simulated call: send silence for ``seconds``, wait ``listen`` seconds, hang up."""
    client = MediaStreamClient(url)
    if not await client.connect():
        return client
    try:
        await client.start_stream()
        silence = b"\xff" * int(8000 * seconds)  # mu-law silence
        await client.send_audio(silence)
        await asyncio.sleep(listen)
        await client.stop_stream()
    finally:
        await client.close()
    logger.info(f"Received {len(client.received_audio)} audio frames from the agent")
    return client


def main():
    parser = argparse.ArgumentParser(description="Simulate a Twilio media stream call")
    parser.add_argument("--url", default="ws://localhost:8000/media-stream", help="Media stream endpoint")
    parser.add_argument("--seconds", type=float, default=2.0, help="Seconds of silence to send")
    parser.add_argument("--listen", type=float, default=5.0, help="Seconds to wait for agent audio")
    args = parser.parse_args()

    configure_logging(log_to_file=False)
    asyncio.run(simulate_call(args.url, args.seconds, args.listen))


if __name__ == "__main__":
    main()
