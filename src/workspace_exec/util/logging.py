"""Logging setup shared by the runtimes, the engine and the CLI."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from typing import Final

DEFAULT_LOG_FORMAT: Final[str] = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_LEVEL_ENV: Final[str] = "WORKSPACE_EXEC_LOG_LEVEL"
REDACTED: Final[str] = "<redacted>"

_MIN_SECRET_LENGTH = 4


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    """Configure root logging for the process.

    Args:
        level: Level name such as "INFO". When omitted, ``WORKSPACE_EXEC_LOG_LEVEL``
            is consulted and WARNING is used if it is unset.
        fmt: Optional format string; defaults to ``DEFAULT_LOG_FORMAT``.
    """

    chosen = level or os.environ.get(LOG_LEVEL_ENV) or "WARNING"
    logging.basicConfig(level=normalize_level(chosen), format=fmt or DEFAULT_LOG_FORMAT)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def normalize_level(level: str) -> int:
    """Map a level name to its ``logging`` constant; unknown names map to INFO."""

    value = logging.getLevelName(level.strip().upper())
    return value if isinstance(value, int) else logging.INFO


def redact_secrets(text: str, secrets: Iterable[str]) -> str:
    """Replace every known secret value in ``text`` with ``<redacted>``.

    Values shorter than four characters are left alone; replacing them would
    mangle ordinary output without protecting anything.
    """

    if not text:
        return text
    for value in sorted({secret.strip() for secret in secrets}, key=len, reverse=True):
        if len(value) >= _MIN_SECRET_LENGTH:
            text = text.replace(value, REDACTED)
    return text

