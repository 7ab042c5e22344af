"""Logging configuration with structlog for JSON output in production."""

import logging
import sys
from uuid import uuid4

import structlog


def configure_logging(level: str, *, app_env: str = "dev", json_output: bool | None = None) -> None:
    """Configure stdlib logging to render through structlog.

    Args:
        level: Log level string (DEBUG, INFO, WARNING, ERROR).
        app_env: Deployment environment; ``prod`` switches to JSON lines.
        json_output: Force JSON output regardless of ``app_env``.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    if json_output is None:
        json_output = app_env == "prod"

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_output:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Records from logging.getLogger(__name__) go through foreign_pre_chain.
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(log_level)
    logging.getLogger("httpx").setLevel(max(log_level, logging.WARNING))


def new_trace_id() -> str:
    return f"trc_{uuid4().hex}"


def bind_context(**kwargs: object) -> None:
    """Bind key-value pairs to the structlog context for the current request."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
