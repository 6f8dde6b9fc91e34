"""
Configure logging for the relay.

Relay messages go to the "voice_relay" logger, which writes to stdout and,
unless disabled, to a rotating file. Media streams generate a frame every
20 ms, so the WebSocket libraries' own loggers are held at WARNING unless the
relay itself runs at DEBUG.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

from voice_relay.config.constants import LOGGER_NAME

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# An empty LOG_DIR turns file logging off, e.g. in containers that collect stdout
LOG_DIR = os.getenv("LOG_DIR", "logs")
LOG_FILE_NAME = "voice_relay.log"
MAX_LOG_SIZE = 10 * 1024 * 1024  # 10 MB
BACKUP_COUNT = 5

# Per-frame chatter from these is only useful when debugging the relay
NOISY_LOGGERS = ("websockets",)


def _file_handler(log_dir: Path, formatter: logging.Formatter) -> RotatingFileHandler:
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(log_dir / LOG_FILE_NAME, maxBytes=MAX_LOG_SIZE, backupCount=BACKUP_COUNT)
    handler.setFormatter(formatter)
    return handler


def configure_logging(
    level: Optional[str] = None,
    log_dir: Optional[Union[str, Path]] = None,
) -> logging.Logger:
    """
    Configure the relay logger.

    Args:
        level: Level name overriding the LOG_LEVEL environment variable
        log_dir: Directory for the rotating log file, overriding LOG_DIR;
            an empty value disables file logging

    Returns:
        logging.Logger: The configured logger instance
    """
    level_value = getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO)
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level_value)

    # Reconfiguring must not stack duplicate handlers
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    directory = LOG_DIR if log_dir is None else log_dir
    if directory:
        try:
            logger.addHandler(_file_handler(Path(directory), formatter))
        except OSError as e:
            logger.warning(f"Could not set up file logging in {directory}: {e}")

    logger.propagate = False

    library_level = logging.DEBUG if level_value <= logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)

    logger.info(f"Logging configured at {logging.getLevelName(level_value)}")
    return logger
