"""
Handlers module for the events of a bridged call.

Key components:
- stream_handlers: Twilio media stream events (connected, start, media, mark, dtmf, stop)
- realtime_handlers: OpenAI Realtime server events, looked up by event type
- reservation_handlers: Validation and execution of the create_reservation tool call,
  shared by the phone bridge and the browser session path
"""

# Handlers module initialization
