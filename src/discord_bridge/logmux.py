"""Route transport-layer logs into loguru under a prefixed module name."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from loguru import logger

DEFAULT_PREFIX = "bot-sdk"

# Stdlib loggers owned by the transport layer
TRANSPORT_LOGGERS = ("discord_bridge.appservice", "aiohttp")

# Raised by the homeserver whenever two requests race to register the same
# ghost user. Harmless and very frequent.
SUPPRESSED_MARKERS = ("M_USER_IN_USE",)

LEVELS = {
    "silly": "TRACE",
    "debug": "DEBUG",
    "verbose": "DEBUG",
    "info": "INFO",
    "warn": "WARNING",
    "warning": "WARNING",
    "error": "ERROR",
    "critical": "CRITICAL",
}


def to_loguru_level(level: str) -> str:
    """Map a transport or config level name (silly, warn, ...) onto a loguru level."""
    return LEVELS.get(level.lower(), level.upper())


def _is_suppressed(args: list[Any]) -> bool:
    return any(isinstance(a, str) and marker in a for a in args for marker in SUPPRESSED_MARKERS)


class LogMultiplexer:
    """Forwards leveled (module, args) log calls to one cached loguru logger per module."""

    def __init__(self, prefix: str = DEFAULT_PREFIX) -> None:
        self._prefix = prefix
        self._loggers: dict[str, Any] = {}
        self._handler: _MultiplexHandler | None = None

    @property
    def prefix(self) -> str:
        return self._prefix

    def logger_for(self, module: str) -> Any:
        """Get (or create and cache) the loguru logger for a transport module."""
        name = f"{self._prefix}.{module}" if module else self._prefix
        bound = self._loggers.get(name)
        if bound is None:
            bound = logger.patch(lambda r, n=name: r.update(name=n))
            self._loggers[name] = bound
        return bound

    def log(
        self,
        level: str,
        module: str,
        args: Any,
        *,
        exc_info: Any = None,
        levelno: int | None = None,
    ) -> bool:
        """Forward one log call. Returns False when the call was suppressed.

        Level names loguru does not know (custom stdlib levels) fall back to
        levelno, or INFO when there is none.
        """
        if not isinstance(args, (list, tuple)):
            args = [args]
        args = list(args)
        if _is_suppressed(args):
            return False
        message = " ".join(str(a) for a in args)
        loguru_level: str | int = to_loguru_level(level)
        try:
            loguru_level = logger.level(loguru_level).name
        except ValueError:
            loguru_level = levelno if levelno is not None else "INFO"
        self.logger_for(module).opt(exception=exc_info).log(loguru_level, "{}", message)
        return True

    def install(self, logger_names: Iterable[str] = TRANSPORT_LOGGERS, level: str = "DEBUG") -> logging.Handler:
        """Attach to the transport's stdlib loggers. Replaces any earlier multiplexer handler.

        Not guarded against repeated calls; call once per process.
        """
        handler = _MultiplexHandler(self)
        for name in logger_names:
            std_logger = logging.getLogger(name)
            std_logger.handlers = [h for h in std_logger.handlers if not isinstance(h, _MultiplexHandler)]
            std_logger.addHandler(handler)
            std_logger.propagate = False
            std_logger.setLevel(level)
        self._handler = handler
        return handler


class _MultiplexHandler(logging.Handler):
    """Stdlib handler feeding records into a LogMultiplexer."""

    def __init__(self, mux: LogMultiplexer) -> None:
        super().__init__()
        self._mux = mux

    def emit(self, record: logging.LogRecord) -> None:
        try:
            args = [record.getMessage()]
        except (TypeError, ValueError):
            args = [str(record.msg), *map(str, record.args or ())]
        self._mux.log(record.levelname, record.name, args, exc_info=record.exc_info, levelno=record.levelno)
