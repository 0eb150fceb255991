"""Logging configuration for the cloudadaptor package."""
import logging
import sys

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

_LEVELS = {
    "trace": TRACE,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def level_from_name(name: str) -> int:
    """Map a LOG_LEVEL value to a logging level, defaulting to INFO."""
    return _LEVELS.get((name or "").lower(), logging.INFO)


def setup_logging(level_name: str = "info") -> logging.Logger:
    """
    Configure the root logger for the service.

    Args:
        level_name: One of trace, debug, info, warn, error

    Returns:
        The package logger
    """
    level = level_from_name(level_name)
    root = logging.getLogger()
    root.setLevel(level)

    # Don't add handlers if they're already configured
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        root.addHandler(handler)
    for handler in root.handlers:
        handler.setLevel(level)

    # Disable debug logging for noisy libraries
    if level > logging.DEBUG:
        for noisy in ("paramiko", "urllib3", "kubernetes"):
            logging.getLogger(noisy).setLevel(logging.WARNING)

    return logging.getLogger("cloudadaptor")


def install_log_handler(path: str) -> logging.FileHandler:
    """Build an append-mode file handler used as an installer log sink."""
    handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    handler.setLevel(TRACE)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    return handler
