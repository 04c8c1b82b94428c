"""
Logging setup shared by the service, the CLI and the model backends.
"""

import logging
import sys
from typing import Optional

FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"

_configured = False


def configure_logging(level: Optional[str] = None) -> None:
    """Install a single stderr handler on the package logger (idempotent)."""
    global _configured
    from .config import LOG_LEVEL

    root = logging.getLogger("semsearch")
    root.setLevel(level or LOG_LEVEL)
    if _configured:
        return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(FORMAT))
    root.addHandler(handler)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(name)
