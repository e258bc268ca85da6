# swapsync/logging/logger.py
from __future__ import annotations

import logging
import re
import sys
import time
from typing import Dict, Optional, Tuple

from swapsync.configuration.config import settings

APP_NAMESPACE = "swapsync"

_RESET = "\033[0m"
_DIM = "\033[2m"
_BOLD_BLUE = "\033[1;34m"

# level name -> (emoji, ANSI color)
_LEVEL_STYLES: Dict[str, Tuple[str, str]] = {
    "DEBUG": ("🔍", "\033[36m"),
    "INFO": ("ℹ️", "\033[32m"),
    "WARNING": ("⚠️", "\033[33m"),
    "ERROR": ("❌", "\033[31m"),
    "CRITICAL": ("🛑", "\033[35m"),
}

# Leading "[CACHE][FETCH]"-style tags of a message
_TAG_PREFIX = re.compile(r"^((?:\[[A-Z0-9_]+\])+)")

_HANDLER_MARKER = "_swapsync_handler"

_WEBSOCKET_LOGGERS = ("websockets", "websockets.server", "wsproto", "uvicorn.protocols.websockets")
_UVICORN_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "uvicorn.asgi", "uvicorn.protocols.http")


def _level(value: Optional[str]) -> int:
    level = logging.getLevelName((value or "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


class ColorFormatter(logging.Formatter):
    """
    One-line formatter: millisecond timestamp, level emoji, logger name, message.

    With colors on, the leading bracketed tags of a message are highlighted.
    Example:
      2026-10-18 09:12:03.481 ℹ️ INFO     swapsync.core.sync.sync_coordinator - [SYNC][SWAP] source=ETH target=USDC
    """

    def __init__(self, use_color: bool = True) -> None:
        super().__init__()
        self.use_color = use_color

    def formatTime(self, record: logging.LogRecord, datefmt: Optional[str] = None) -> str:
        return time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(record.created)) + f".{int(record.msecs):03d}"

    @staticmethod
    def _highlight_tags(message: str) -> str:
        return _TAG_PREFIX.sub(lambda match: f"{_BOLD_BLUE}{match.group(1)}{_RESET}", message, count=1)

    def format(self, record: logging.LogRecord) -> str:
        timestamp = self.formatTime(record)
        level_name = record.levelname.upper()
        emoji, color = _LEVEL_STYLES.get(level_name, ("", ""))
        message = record.getMessage()

        if self.use_color:
            line = (
                f"{_DIM}{timestamp}{_RESET} {color}{emoji} {level_name:<8}{_RESET} "
                f"{record.name} {_DIM}-{_RESET} {self._highlight_tags(message)}"
            )
        else:
            line = f"{timestamp} {emoji} {level_name:<8} {record.name} - {message}"

        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def _library_levels() -> Dict[str, str]:
    """Configured levels of third-party loggers that keep propagating to the root handler."""
    return {
        "httpx": settings.LOG_LEVEL_LIB_HTTPX,
        "httpcore": settings.LOG_LEVEL_LIB_HTTPCORE,
        "asyncio": settings.LOG_LEVEL_LIB_ASYNCIO,
        "anyio": settings.LOG_LEVEL_LIB_ANYIO,
    }


def _console_handler(root: logging.Logger) -> logging.Handler:
    """Return the swapsync console handler of `root`, installing it on first use."""
    for handler in root.handlers:
        if getattr(handler, _HANDLER_MARKER, False):
            return handler

    handler = logging.StreamHandler(stream=sys.stderr)
    setattr(handler, _HANDLER_MARKER, True)
    handler.setFormatter(ColorFormatter(use_color=sys.stderr.isatty() and not settings.NO_COLOR))
    root.addHandler(handler)
    return handler


def init_logging() -> None:
    """
    Route all logging through one colored console handler.

    Safe to call more than once. LOG_LEVEL drives the root and uvicorn loggers,
    LOG_LEVEL_SWAPSYNC the application loggers, LOG_LEVEL_LIB_* the libraries.
    """
    root = logging.getLogger()
    root.setLevel(_level(settings.LOG_LEVEL))
    _console_handler(root).setLevel(logging.NOTSET)

    logging.getLogger(APP_NAMESPACE).setLevel(_level(settings.LOG_LEVEL_SWAPSYNC))
    for name, level in _library_levels().items():
        logging.getLogger(name).setLevel(_level(level))

    # Websocket protocol traces attach their own raw handlers
    websocket_level = _level(settings.LOG_LEVEL_LIB_WEBSOCKETS)
    for name in _WEBSOCKET_LOGGERS:
        library_logger = logging.getLogger(name)
        library_logger.handlers.clear()
        library_logger.setLevel(websocket_level)
        library_logger.propagate = False

    # uvicorn formats through the root handler
    for name in _UVICORN_LOGGERS:
        server_logger = logging.getLogger(name)
        server_logger.handlers.clear()
        server_logger.setLevel(_level(settings.LOG_LEVEL))
        server_logger.propagate = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a logger in the 'swapsync.*' namespace."""
    base = name or APP_NAMESPACE
    if base != APP_NAMESPACE and not base.startswith(APP_NAMESPACE + "."):
        base = f"{APP_NAMESPACE}.{base}"
    return logging.getLogger(base)
