import logging
import os
import sys
from datetime import datetime

# ANSI escape codes for colors
RESET = "\033[0m"
GREEN = "\033[32m"
YELLOW = "\033[33m"
BLUE = "\033[34m"
RED = "\033[31m"


class ColoredFormatter(logging.Formatter):
    COLORS = {
        logging.DEBUG: BLUE,
        logging.INFO: GREEN,
        logging.WARNING: YELLOW,
        logging.ERROR: RED,
        logging.CRITICAL: RED,
    }

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def format(self, record):
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        level_name = record.levelname.ljust(8)
        log_message = record.getMessage()
        if record.exc_info:
            log_message = f"{log_message}\n{self.formatException(record.exc_info)}"

        if not self.use_color:
            return f"{timestamp} | {level_name} | {log_message}"

        level_color = self.COLORS.get(record.levelno, RESET)
        return f"{timestamp} | {level_color}{level_name}{RESET} | {log_message}"


def resolve_level(level=None) -> int:
    """Turn a level name or number (or LOG_LEVEL from the environment) into a logging level."""
    if level is None:
        level = os.environ.get("LOG_LEVEL", "INFO")
    if isinstance(level, int):
        return level
    return getattr(logging, str(level).upper(), logging.INFO)


def setup_logging(level=None):
    """Configure logging with color and timestamps."""
    logger = logging.getLogger("activity_poller")
    logger.setLevel(resolve_level(level))
    logger.propagate = False

    # Remove any existing handlers
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    # Colors only when attached to a terminal
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(ColoredFormatter(use_color=sys.stdout.isatty()))
    logger.addHandler(console_handler)

    return logger


# Shared package logger
logger = setup_logging()
