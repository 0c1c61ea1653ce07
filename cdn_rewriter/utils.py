"""Utility helpers for hashing, query strings, logging and inline data."""

from __future__ import annotations

import hashlib
import json
import logging
import re
from typing import Any, Optional

logger = logging.getLogger("cdn_rewriter")

QUERY_PATTERN = re.compile(r"[?#].*$", re.S)
BYTE_UNITS = ("B", "KB", "MB", "GB")


def cache_key(value: str) -> str:
    """Stable key for a normalized URL."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def strip_query(url: str) -> str:
    """Drop the query string and fragment from a URL."""
    return QUERY_PATTERN.sub("", url)


def append_query_param(url: str, name: str, value: str) -> str:
    """Append ``name=value`` using ``?`` or ``&`` as appropriate."""
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{name}={value}"


def format_bytes(size: int, precision: int = 2) -> str:
    """Render a byte count with binary units, e.g. ``1.5 KB``."""
    if size <= 0:
        return "0 B"
    power = 0
    while power < len(BYTE_UNITS) - 1 and size >= 1024 ** (power + 1):
        power += 1
    value = round(size / (1024**power), precision)
    if value == int(value):
        value = int(value)
    return f"{value} {BYTE_UNITS[power]}"


def script_json(value: Any) -> str:
    """Serialize ``value`` for embedding inside an inline ``<script>``.

    Every ``<`` is escaped so the payload can never terminate the script
    element or look like a tag to later text passes.
    """
    return json.dumps(value).replace("<", "\\u003c")


class DebugGatedLogger(logging.LoggerAdapter):
    """Logger that always emits errors but everything else only in debug mode."""

    def __init__(self, base: logging.Logger, debug: bool) -> None:
        super().__init__(base, {})
        self.debug_mode = debug

    def isEnabledFor(self, level: int) -> bool:  # noqa: N802 - logging API name
        if level < logging.ERROR and not self.debug_mode:
            return False
        return self.logger.isEnabledFor(level)


def gated_logger(debug: bool, base: Optional[logging.Logger] = None) -> DebugGatedLogger:
    return DebugGatedLogger(base or logger, debug)
