"""
structlog setup for pipemap.

Every module logs through `get_logger(__name__)` with snake_case event names.
Edit-session correlation ids live in a context variable and are merged into
each event while bound (see `session_context`).
"""
import sys
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Union

import structlog

session_id_ctx: ContextVar[str] = ContextVar("session_id", default="")

def get_session_id() -> str:
    return session_id_ctx.get()

@contextmanager
def session_context(sid: str) -> Iterator[str]:
    """Binds `sid` for the duration of the block and restores the previous id afterwards."""
    token = session_id_ctx.set(sid)
    bound = structlog.contextvars.bind_contextvars(session_id=sid)
    try:
        yield sid
    finally:
        structlog.contextvars.reset_contextvars(**bound)
        session_id_ctx.reset(token)

def configure_logging(level: Union[int, str] = logging.INFO, json: bool = True) -> None:
    """
    Routes structlog through the stdlib root logger.
    `json=False` swaps the JSON renderer for the colored console one.
    """
    shared = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    renderer = structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=shared + [renderer],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

def get_logger(name: str):
    return structlog.get_logger(name)
