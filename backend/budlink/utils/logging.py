"""Logging setup shared by every budlink module."""

import logging
import sys

from budlink import config

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_root = logging.getLogger("budlink")


def _configure_root() -> None:
    if _root.handlers:
        return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    _root.addHandler(handler)
    _root.setLevel(getattr(logging, config.LOG_LEVEL, logging.INFO))


def get_logger(name: str) -> logging.Logger:
    """Return a child of the ``budlink`` logger, configuring it on first use."""
    _configure_root()
    return logging.getLogger(f"budlink.{name}")


discovery_logger = get_logger("discovery")
pairing_logger = get_logger("pairing")
connection_logger = get_logger("connection")
channel_logger = get_logger("channel")
api_logger = get_logger("api")
