"""
Logging configuration using structlog for structured, JSON-based logging.

Every module logs through ``structlog.get_logger(__name__)``; the CLI calls
:func:`configure_logging` once at startup. Step-level operator messages go
through the per-step logger callable instead (see :func:`step_logger`).
"""

import inspect
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

StepLogger = Callable[[str], None | Awaitable[None]]


def configure_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """Configure structured logging.

    Args:
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: Render JSON lines; when False use the console renderer
    """
    renderer: Any = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level.upper()),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> Any:
    """Get a logger instance.

    Example:
        >>> log = get_logger(__name__)
        >>> log.info("step_started", step_id="commit-1", action="git.commit")
    """
    return structlog.get_logger(name)


def step_logger(step_id: str, **context: Any) -> StepLogger:
    """Build a per-step logger callable backed by structlog.

    The returned callable takes a plain operator-facing message, which is
    emitted as a ``step_message`` event bound to the step id.
    """
    bound = structlog.get_logger("agentfarm.step").bind(step_id=step_id, **context)

    def _log(message: str) -> None:
        bound.info("step_message", message=message)

    return _log


async def emit_step_message(logger: StepLogger | None, message: str) -> None:
    """Send ``message`` to a sync or async step logger, if one is set."""
    if logger is None:
        return
    outcome = logger(message)
    if inspect.isawaitable(outcome):
        await outcome
