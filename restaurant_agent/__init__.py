"""
Restaurant Voice Agent - Twilio Media Streams to OpenAI Realtime API Bridge

This application answers restaurant phone calls with an AI receptionist. Twilio
streams the caller's audio over a WebSocket; each call is bridged to its own
OpenAI Realtime session, and reservations the model books through the
create_reservation function are saved and confirmed by email.

Architecture Overview:
- FastAPI server exposing the TwiML webhook and the media stream WebSocket
- One TwilioRealtimeBridge per call, translating between the two protocols
- Record store (Supabase or in-memory) for conversations, reservations and the
  agent configuration
- Dashboard and browser session endpoints sharing the same record store

Key Components:
- api: Dashboard and browser session routers
- bot: OpenAI Realtime client, per-call bridge, session configuration and audio codec
- config: Application-wide constants and logging setup
- handlers: Handlers for carrier events, provider events and reservation tool calls
- models: Wire schemas, call state and record models
- services: Record store, email notifications, TwiML and a media stream simulator
- websocket_manager: Accepts media stream connections and routes their events

Getting Started:
1. Set up environment variables:
   - OPENAI_API_KEY: Your OpenAI API key
   - SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY: Record store (optional)
   - RESEND_API_KEY: Confirmation emails (optional)

2. Start the server:
   ```bash
   python run.py
   ```

3. Point your Twilio number's voice webhook at https://your-server/twiml
"""
