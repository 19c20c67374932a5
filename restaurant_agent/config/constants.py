"""
Constants and configuration values used throughout the application.

This module defines constants that are used across different parts of the application,
providing a centralized location for protocol names, audio formats and model defaults
shared by the Twilio media stream side and the OpenAI Realtime side of the bridge.
"""

# Logger name used throughout the application
LOGGER_NAME = "restaurant_agent"

# Default OpenAI model and voice for the Realtime API
DEFAULT_REALTIME_MODEL = "gpt-4o-realtime-preview-2024-12-17"
DEFAULT_REALTIME_VOICE = "alloy"
OPENAI_REALTIME_URL = "wss://api.openai.com/v1/realtime"
OPENAI_REALTIME_SESSIONS_URL = "https://api.openai.com/v1/realtime/sessions"

# Provider audio formats
AUDIO_FORMAT_G711_ULAW = "g711_ulaw"
AUDIO_FORMAT_PCM16 = "pcm16"

# Twilio media streams always carry 8kHz mu-law; the provider's pcm16 is 24kHz
CARRIER_SAMPLE_RATE = 8000
PROVIDER_PCM16_SAMPLE_RATE = 24000

# Session configuration defaults
TRANSCRIPTION_MODEL = "whisper-1"
VAD_THRESHOLD = 0.5
VAD_PREFIX_PADDING_MS = 300
VAD_SILENCE_DURATION_MS = 1000
MODEL_TEMPERATURE = 0.8

# Fallbacks used when no agent configuration row exists
DEFAULT_INSTRUCTIONS = "You are a helpful restaurant receptionist."
DEFAULT_RESTAURANT_NAME = "Restaurant"

# Tool names
TOOL_CREATE_RESERVATION = "create_reservation"

# Twilio media stream event types
CARRIER_EVENT_CONNECTED = "connected"
CARRIER_EVENT_START = "start"
CARRIER_EVENT_MEDIA = "media"
CARRIER_EVENT_MARK = "mark"
CARRIER_EVENT_DTMF = "dtmf"
CARRIER_EVENT_STOP = "stop"
CARRIER_EVENT_CLEAR = "clear"

# OpenAI Realtime server event types
EVENT_SESSION_CREATED = "session.created"
EVENT_SESSION_UPDATED = "session.updated"
EVENT_AUDIO_DELTA = "response.audio.delta"
EVENT_AUDIO_DONE = "response.audio.done"
EVENT_FUNCTION_CALL_ARGUMENTS_DELTA = "response.function_call_arguments.delta"
EVENT_FUNCTION_CALL_ARGUMENTS_DONE = "response.function_call_arguments.done"
EVENT_SPEECH_STARTED = "input_audio_buffer.speech_started"
EVENT_INPUT_TRANSCRIPTION_COMPLETED = "conversation.item.input_audio_transcription.completed"
EVENT_AUDIO_TRANSCRIPT_DONE = "response.audio_transcript.done"
EVENT_ERROR = "error"

# OpenAI Realtime client event types
EVENT_SESSION_UPDATE = "session.update"
EVENT_INPUT_AUDIO_BUFFER_APPEND = "input_audio_buffer.append"
EVENT_CONVERSATION_ITEM_CREATE = "conversation.item.create"
EVENT_RESPONSE_CREATE = "response.create"

# Maximum number of inbound audio frames queued for the provider, before and after activation
MAX_PENDING_AUDIO_FRAMES = 500
