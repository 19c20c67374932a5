"""
Logging setup for the restaurant agent.

All modules log through the named application logger. Output always goes to
stdout; a rotating file under LOG_DIR is added unless LOG_TO_FILE is off,
which suits container deployments where stdout is collected.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from restaurant_agent.config.constants import LOGGER_NAME

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

LOG_DIR = Path(os.getenv("LOG_DIR", "logs"))
LOG_FILE_NAME = "restaurant_agent.log"
LOG_TO_FILE = os.getenv("LOG_TO_FILE", "true").lower() not in ("0", "false", "no")
MAX_LOG_SIZE = 10 * 1024 * 1024  # 10 MB
BACKUP_COUNT = 5

# Third-party loggers that emit per-frame or per-request noise at DEBUG
QUIET_LOGGERS = ("websockets", "httpx", "httpcore")


def configure_logging(level: str = LOG_LEVEL, log_to_file: Optional[bool] = None):
    """
    Configure the application logger. Safe to call more than once.

    Args:
        level: Log level name; unknown names fall back to INFO
        log_to_file: Add the rotating file handler (defaults to LOG_TO_FILE)

    Returns:
        logging.Logger: The application logger
    """
    if log_to_file is None:
        log_to_file = LOG_TO_FILE

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_to_file:
        try:
            LOG_DIR.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                LOG_DIR / LOG_FILE_NAME,
                maxBytes=MAX_LOG_SIZE,
                backupCount=BACKUP_COUNT,
            )
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError as e:
            logger.warning(f"File logging disabled, cannot write to {LOG_DIR}: {e}")

    logger.propagate = False

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.debug(f"Logging configured at {logging.getLevelName(logger.level)}")
    return logger
