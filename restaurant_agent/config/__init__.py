"""
Configuration module for the restaurant voice agent.

This module provides centralized configuration management for the application,
including constants and logging setup. Runtime settings (API keys, record store
and email credentials) come from environment variables, optionally loaded from a
``.env`` file by the application entry point.

Key components:
- constants: Application-wide constants, including Twilio and OpenAI Realtime
  event types, audio formats and session defaults.
- logging_config: Console and rotating-file logging for the application logger.

Usage examples:
```python
from restaurant_agent.config.constants import LOGGER_NAME, DEFAULT_REALTIME_MODEL
from restaurant_agent.config.logging_config import configure_logging

logger = configure_logging()
logger.info("Application started")
```
"""
