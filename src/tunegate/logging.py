"""Structured logging for the Tunegate gateway.

Every event goes through structlog and ends up in stdlib handlers:

- ``gateway.log``: console-style lines for every event
- ``proxy.log``: one JSON object per upstream event (``tunegate.proxy.*``)

Without a log directory the console-style lines go to stderr.  Events logged
while a request is in flight carry its ``method``, ``path`` and ``route``.
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import structlog
from starlette.types import ASGIApp, Receive, Scope, Send

PROXY_LOGGER = "tunegate.proxy"

# Chatty at info level; only their warnings are kept.
QUIET_LOGGERS = ("uvicorn", "uvicorn.access", "uvicorn.error", "httpx", "httpcore", "aiosqlite")

_ROTATE_BYTES = 10 * 1024 * 1024
_ROTATE_KEEP = 5


def _pre_chain() -> list[structlog.types.Processor]:
    """Processors run for structlog events and for plain stdlib records alike."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.ExtraAdder(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _rotating(path: Path, formatter: logging.Formatter) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        path, maxBytes=_ROTATE_BYTES, backupCount=_ROTATE_KEEP, encoding="utf-8"
    )
    handler.setFormatter(formatter)
    return handler


def _log_uncaught(exc_type: type[BaseException], exc_value: BaseException, exc_tb: object) -> None:
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_tb)  # type: ignore[arg-type]
        return
    logging.getLogger("tunegate").critical("Unhandled exception", exc_info=(exc_type, exc_value, exc_tb))


def setup_logging(log_level: str = "info", log_dir: Path | None = None) -> None:
    """Route structlog and stdlib logging to the gateway's handlers.

    Parameters
    ----------
    log_level:
        Python log-level name (``debug``, ``info``, ``warning``, etc.).
    log_dir:
        Directory for ``gateway.log`` and ``proxy.log``.  *None* logs to stderr.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    pre_chain = _pre_chain()

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    console = structlog.stdlib.ProcessorFormatter(
        processor=structlog.dev.ConsoleRenderer(colors=False),
        foreign_pre_chain=pre_chain,
    )

    if log_dir is None:
        stream = logging.StreamHandler(sys.stderr)
        stream.setFormatter(console)
        handlers: list[logging.Handler] = [stream]
    else:
        log_dir.mkdir(parents=True, exist_ok=True)
        proxy_handler = _rotating(
            log_dir / "proxy.log",
            structlog.stdlib.ProcessorFormatter(
                processor=structlog.processors.JSONRenderer(),
                foreign_pre_chain=pre_chain,
            ),
        )
        proxy_handler.addFilter(logging.Filter(PROXY_LOGGER))
        handlers = [_rotating(log_dir / "gateway.log", console), proxy_handler]

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)
    for handler in handlers:
        root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    sys.excepthook = _log_uncaught  # type: ignore[assignment]


class RequestLogContext:
    """Bind the request's method and path to every event logged while serving it.

    Pure ASGI so the binding also covers events logged mid-stream.  Route
    handlers add their own fields (such as ``route``) with
    ``structlog.contextvars.bind_contextvars``.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(method=scope["method"], path=scope["path"])
        try:
            await self.app(scope, receive, send)
        finally:
            structlog.contextvars.clear_contextvars()
