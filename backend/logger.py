import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

# Overridable so tests and containers can log elsewhere
LOGS_DIR = os.getenv("MEDITATION_LOGS_DIR") or os.path.join(os.path.dirname(__file__), "logs")
LOG_FILE_NAME = "meditation.log"


class ColourFormatter(logging.Formatter):
    """Console formatter that colours the whole line by level"""

    COLOURS = {
        logging.DEBUG: "\x1b[38;20m",
        logging.INFO: "\x1b[34;20m",
        logging.WARNING: "\x1b[33;20m",
        logging.ERROR: "\x1b[31;20m",
        logging.CRITICAL: "\x1b[31;1m",
    }
    RESET = "\x1b[0m"
    LINE = "%(asctime)s - %(name)s - %(levelname)s - %(message)s (%(filename)s:%(lineno)d)"

    def __init__(self):
        super().__init__(datefmt="%Y-%m-%d %H:%M:%S")
        self._formatters = {
            level: logging.Formatter(colour + self.LINE + self.RESET, datefmt=self.datefmt)
            for level, colour in self.COLOURS.items()
        }

    def format(self, record):
        formatter = self._formatters.get(record.levelno)
        if formatter is None:
            return super().format(record)
        return formatter.format(record)


def _resolve_level(level: Optional[int]) -> int:
    if level is not None:
        return level
    resolved = logging.getLevelName(os.getenv("MEDITATION_LOG_LEVEL", "INFO").upper())
    # getLevelName returns "Level X" for unknown names
    return resolved if isinstance(resolved, int) else logging.INFO


def _file_logging_enabled() -> bool:
    return os.getenv("MEDITATION_LOG_FILE", "1").lower() not in ("0", "false", "no")


def setup_logger(name: str = "meditation", level: Optional[int] = None) -> logging.Logger:
    """
    Configure the project logger.

    Console output is coloured. Unless MEDITATION_LOG_FILE=0, records are also
    written to a rotating file (5MB x 5) under LOGS_DIR.
    """
    logger = logging.getLogger(name)
    logger.setLevel(_resolve_level(level))

    if logger.handlers:
        return logger

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(ColourFormatter())
    logger.addHandler(console_handler)

    if _file_logging_enabled():
        os.makedirs(LOGS_DIR, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(LOGS_DIR, LOG_FILE_NAME),
            maxBytes=5 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8"
        )
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))
        logger.addHandler(file_handler)

    return logger


def get_logger(component: str) -> logging.Logger:
    """Child logger, e.g. meditation.streaks, sharing the project handlers"""
    return logger.getChild(component)


# Global logger instance
logger = setup_logger()
