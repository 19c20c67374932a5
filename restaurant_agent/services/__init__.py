"""
Services module for the external systems the agent talks to.

Key components:
- record_store: Conversations, reservations and agent configuration, backed by
  Supabase's REST API or kept in memory
- notifications: Reservation confirmation emails through Resend
- twiml: TwiML that connects an inbound call to the media stream endpoint
- media_stream_client: Simulates the Twilio side of a media stream for local testing
"""

# Services module initialization
