"""structlog setup shared by ``kubesnap collect`` and ``kubesnap serve``.

Both modes log JSON lines to stderr so stdout stays free for command
output.  ``log_context`` binds fields (the snapshot root, the run id) onto
every event emitted inside it, including events from worker tasks spawned
within the block, since asyncio copies contextvars into new tasks.
"""

from __future__ import annotations

import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog


def setup_logging(level: str = "info", console: bool = False) -> None:
    """Configure structlog.

    Args:
        level: Minimum level name (debug, info, warning, error).
        console: Render human-readable lines instead of JSON.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    renderer: Any = structlog.dev.ConsoleRenderer(colors=False) if console else structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(component: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(component=component)  # type: ignore[return-value]


def new_run_id() -> str:
    return uuid.uuid4().hex[:12]


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Bind *fields* to every log event emitted inside the block."""
    with structlog.contextvars.bound_contextvars(**fields):
        yield
