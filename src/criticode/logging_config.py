# Author: Bradley R. Kinnard — logs or it didn't happen

"""
Structlog over stdlib logging. Modules keep using logging.getLogger(__name__),
the formatter turns every record into JSON (or colors, with VERBOSE=1).
Each request binds its id, method and path so every line it causes carries them.
"""

import logging
import os
import sys
from contextvars import ContextVar
import structlog

request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)

# chatty libraries we only care about when they complain
QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpx", "openai", "aiosqlite")


def bind_request(rid: str, method: str, path: str) -> None:
    """called once per request by the middleware"""
    request_id_ctx.set(rid)
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(method=method, path=path)


def get_request_id() -> str | None:
    return request_id_ctx.get()


def _add_request_id(logger, method, event_dict):
    # startup and shutdown lines have no request, leave the key off
    rid = request_id_ctx.get()
    if rid:
        event_dict["request_id"] = rid
    return event_dict


def _verbose() -> bool:
    return os.getenv("VERBOSE", "").lower() in ("1", "true", "yes")


def setup_logging(level: str = "INFO") -> None:
    """Once, from lifespan. Safe to call again, handlers are replaced not stacked."""
    shared = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _add_request_id,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if _verbose():
        renderer = structlog.dev.ConsoleRenderer(colors=True)
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=shared + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    ))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
