"""
Council logging.

Module loggers are plain ``logging.getLogger("council.engine.<module>")``.
Command audit lines go through structlog so every applied client command is
one JSON record carrying the connection it came from.
"""
import contextvars
import logging
import time
import uuid

import structlog

correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)

AUDIT_EVENT = "council_command"


def new_correlation_id() -> str:
    """Short id for one WebSocket connection."""
    return uuid.uuid4().hex[:8]


def add_correlation_id(logger, method_name, event_dict):
    cid = correlation_id_var.get("")
    if cid:
        event_dict["correlation_id"] = cid
    return event_dict


def bind_connection(connection_id: str) -> None:
    """Tag log records of the current task with its WebSocket connection."""
    correlation_id_var.set(connection_id)
    structlog.contextvars.bind_contextvars(connection_id=connection_id)


def unbind_connection() -> None:
    structlog.contextvars.unbind_contextvars("connection_id")


def log_command(command: str, session_id: str | None, success: bool, started: float) -> None:
    """Audit one client command; ``started`` is a ``time.monotonic()`` reading."""
    structlog.get_logger().info(
        AUDIT_EVENT,
        command=command,
        session_id=session_id,
        success=success,
        latency_ms=round((time.monotonic() - started) * 1000, 2),
    )


def resolve_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(level: int | str = logging.INFO, debug: bool = False):
    """
    Configure stdlib logging for the engine and the structlog audit pipeline.

    ``debug`` (or a DEBUG level) switches audit lines from JSON to the
    console renderer.
    """
    level = resolve_level(level)
    # force=True: uvicorn may have installed handlers before the lifespan runs.
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )

    console = debug or level <= logging.DEBUG
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            add_correlation_id,
            structlog.dev.ConsoleRenderer() if console else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
    )
