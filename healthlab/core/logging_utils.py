"""Logging configuration shared by the server and the command line."""

from __future__ import annotations

import logging

DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s:%(lineno)d | %(message)s"
_CONFIGURED = False


def resolve_level(level: int | str | None) -> int:
    """Resolve a logging level from an int or a level name."""
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        resolved = logging.getLevelName(level.strip().upper())
        if isinstance(resolved, int):
            return resolved
    return logging.INFO


def configure_logging(level: int | str | None = None, *, force: bool = False) -> None:
    """Configure root logging once with a single stream handler."""
    global _CONFIGURED

    if _CONFIGURED and not force:
        return
    logging.basicConfig(level=resolve_level(level), format=DEFAULT_FORMAT, force=True)
    # request lines from httpx are too chatty at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    _CONFIGURED = True
