"""Loguru configuration for SkillHub.

Every log line can carry the request it belongs to, the acting user and
the service operation that produced it. ``traced()`` binds the operation
for each service call; a transport handler binds the request id and actor
with ``request_context()`` before calling into the core.

Sinks:
    - stdout, human-readable or one JSON object per line
    - an optional rotating file under ``settings.data_dir``

Example:
    >>> from skillhub.logging import logger, request_context
    >>> with request_context(request_id="req-1", actor_id="u2"):
    ...     logger.info("Like recorded", post_id="p1")
"""

import json
import sys
import traceback
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Any, TextIO

from loguru import logger as loguru_logger

from skillhub.config import settings

# =============================================================================
# Request Context
# =============================================================================

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
actor_id_var: ContextVar[str | None] = ContextVar("actor_id", default=None)
operation_var: ContextVar[str | None] = ContextVar("operation", default=None)

_CONTEXT_VARS: dict[str, ContextVar[str | None]] = {
    "request_id": request_id_var,
    "actor_id": actor_id_var,
    "operation": operation_var,
}


def current_context() -> dict[str, str]:
    """Context fields that are currently set."""
    context = {}
    for name, var in _CONTEXT_VARS.items():
        value = var.get()
        if value is not None:
            context[name] = value
    return context


@contextmanager
def request_context(
    request_id: str | None = None,
    actor_id: str | None = None,
    operation: str | None = None,
) -> Iterator[None]:
    """Bind context fields for the duration of a block.

    Only the fields passed are changed; on exit each one is restored to
    the value it had before, so blocks nest.
    """
    values = {"request_id": request_id, "actor_id": actor_id, "operation": operation}
    tokens = [_CONTEXT_VARS[name].set(value) for name, value in values.items() if value is not None]
    try:
        yield
    finally:
        for token in reversed(tokens):
            token.var.reset(token)


# =============================================================================
# Record Rendering
# =============================================================================

HUMAN_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> | "
    "{extra[context]}<level>{message}</level>"
)

FILE_FORMAT = "{time} | {level} | {name} | {extra[context]}{message}"


def to_json(record: dict[str, Any]) -> str:
    """Render a record as one JSON object.

    Context fields come first, then anything bound with ``logger.bind()``
    or passed as keywords.
    """
    line: dict[str, Any] = {
        "time": record["time"].isoformat(),
        "level": record["level"].name,
        "logger": record["name"],
        "message": record["message"],
    }
    line.update(current_context())
    line.update({key: value for key, value in record["extra"].items() if key != "context"})

    exc = record["exception"]
    if exc is not None:
        line["error"] = {
            "type": exc.type.__name__ if exc.type else None,
            "message": str(exc.value),
            "traceback": "".join(traceback.format_exception(exc.type, exc.value, exc.traceback)),
        }

    return json.dumps(line, default=str)


def _attach_context(record: dict[str, Any]) -> None:
    context = current_context()
    record["extra"]["context"] = "".join(f"[{key}={value}] " for key, value in context.items())
    record["serialized"] = to_json(record)


def _json_format(record: dict[str, Any]) -> str:
    return "{serialized}\n"


# =============================================================================
# Sinks
# =============================================================================


def setup_logging(
    level: str = "INFO",
    json_logs: bool = False,
    log_file: Path | None = None,
    colorize: bool = True,
    stream: TextIO | None = None,
) -> Any:
    """Replace every Loguru sink with the SkillHub ones.

    Args:
        level: Minimum level for all sinks
        json_logs: One JSON object per line instead of the human format
        log_file: Rotating file sink, if given
        colorize: Colour the human format
        stream: Console stream, defaults to stdout

    Returns:
        Logger that attaches the request context to each record
    """
    stream = stream or sys.stdout
    loguru_logger.remove()
    contextual = loguru_logger.patch(_attach_context)

    if json_logs:
        contextual.add(stream, level=level, format=_json_format)
    else:
        contextual.add(stream, level=level, format=HUMAN_FORMAT, colorize=colorize)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        contextual.add(
            log_file,
            level=level,
            format=_json_format if json_logs else FILE_FORMAT,
            rotation="50 MB",
            retention="14 days",
            compression="zip",
            enqueue=True,
        )

    return contextual


logger = setup_logging(
    level=settings.log_level,
    json_logs=settings.log_json,
    log_file=settings.log_file if settings.log_to_file else None,
    colorize=not settings.log_json,
)


__all__ = [
    "logger",
    "request_id_var",
    "actor_id_var",
    "operation_var",
    "current_context",
    "request_context",
    "setup_logging",
    "to_json",
]
