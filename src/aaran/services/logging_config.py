"""Logging setup shared by the demo app and scripts."""

from __future__ import annotations

import logging

from ..config.settings import LOG_LEVEL

_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

# Third-party clients that are chatty at INFO
_QUIET_LOGGERS = ("httpx", "httpcore", "openai", "urllib3", "weaviate")


def set_up_logging(level: str | int | None = None) -> None:
    """Configure the root logger once and quiet noisy client libraries."""
    resolved = level if level is not None else LOG_LEVEL
    if isinstance(resolved, str):
        resolved = getattr(logging, resolved.upper(), logging.INFO)

    logging.basicConfig(level=resolved, format=_FORMAT, datefmt="%H:%M:%S")
    logging.getLogger().setLevel(resolved)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
