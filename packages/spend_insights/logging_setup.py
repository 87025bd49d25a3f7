"""Logging for ``spend_insights``.

Library modules call ``get_logger("spend_insights.<module>")`` and log
``stage:event key=value`` messages (``categorize:batch_retry batch_index=2
attempt=1``). Nothing is emitted until an entrypoint calls
:func:`configure_logging`; the CLI does so from its root callback.

The OpenAI SDK logs every HTTP request through ``httpx`` at INFO. Those
loggers are held at WARNING unless the package itself runs at DEBUG.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

PACKAGE_LOGGER = "spend_insights"
LEVEL_ENV = "SPEND_INSIGHTS_LOG_LEVEL"
CLIENT_LOGGERS: tuple[str, ...] = ("openai", "httpx", "httpcore")
DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

_configured = False


def resolve_level(level: int | str | None = None) -> int:
    """``level``, else ``SPEND_INSIGHTS_LOG_LEVEL``, else INFO.

    Unknown names fall back to INFO rather than failing a run.
    """

    if level is None:
        level = os.getenv(LEVEL_ENV) or logging.INFO
    if isinstance(level, int):
        return level
    name = level.strip().upper()
    if name.isdigit():
        return int(name)
    value = logging.getLevelName(name)
    return value if isinstance(value, int) else logging.INFO


def configure_logging(level: int | str | None = None, *, stream: IO[str] = sys.stderr) -> int:
    """Attach one stream handler to the package logger; returns the level used.

    Repeated calls are no-ops.
    """

    global _configured
    pkg = logging.getLogger(PACKAGE_LOGGER)
    if _configured:
        return pkg.level

    resolved = resolve_level(level)
    for h in [h for h in pkg.handlers if isinstance(h, logging.NullHandler)]:
        pkg.removeHandler(h)
    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))
    pkg.addHandler(handler)
    pkg.setLevel(resolved)
    pkg.propagate = False

    client_level = logging.DEBUG if resolved <= logging.DEBUG else logging.WARNING
    for name in CLIENT_LOGGERS:
        logging.getLogger(name).setLevel(client_level)

    _configured = True
    return resolved


def get_logger(name: str) -> logging.Logger:
    pkg = logging.getLogger(PACKAGE_LOGGER)
    if not _configured and not pkg.handlers:
        pkg.addHandler(logging.NullHandler())
    return logging.getLogger(name)
