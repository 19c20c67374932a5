"""
Bot module bridging Twilio phone calls to the OpenAI Realtime API.

Key components:
- RealtimeSpeechClient: WebSocket client for one OpenAI Realtime session
- TwilioRealtimeBridge: Per-call bridge owning the call state, the provider
  client and the background tasks of one call
- session_config: Builds the session configuration (instructions, voice, audio
  formats, turn detection and the create_reservation tool)
- audio_codec: Converts audio between Twilio's 8kHz mu-law and the provider format

Usage examples:
```python
from restaurant_agent.bot.twilio_realtime_bridge import TwilioRealtimeBridge

bridge = TwilioRealtimeBridge(websocket, store, notifier)
bridge.start_conversation()
bridge.ensure_provider_connection()
bridge.enqueue_audio(payload)
await bridge.end("carrier_stop")
```
"""

# Bot module initialization
