"""Process-wide logging setup."""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def configure_logging(log_level: str = "info") -> None:
    """Configure root logging once. ``silent`` turns logging off."""
    level_name = (log_level or "info").lower()
    if level_name == "silent":
        logging.disable(logging.CRITICAL)
        return
    logging.disable(logging.NOTSET)
    logging.basicConfig(
        level=_LEVELS.get(level_name, logging.INFO),
        format=LOG_FORMAT,
        force=True,
    )
    # Keep third-party loggers quiet
    for name in ("uvicorn", "uvicorn.access", "uvicorn.error", "fastapi", "websockets"):
        logging.getLogger(name).setLevel(logging.WARNING)
