"""Retry and timeout utilities for handling transient failures.

Two layers live here:

- ``async_retry``: a decorator for HTTP-level retries of idempotent reads.
  It re-raises the last exception once attempts are exhausted.
- The step combinators (``with_step_timeout``, ``with_step_retry`` and
  ``execute_with_timeout_and_retry``): every workflow step runs through
  these. They never raise; raised exceptions and failed results alike come
  back as a failed :class:`~agentfarm.models.domain.StepResult`.

Example:
    >>> result = await execute_with_timeout_and_retry(
    ...     lambda: execute_git_push(request),
    ...     "push-1",
    ...     StepExecutionConfig(timeout_ms=60_000, retry_count=2),
    ... )
    >>> if not result.ok:
    ...     print(result.error)

Backoff Formula:
    Steps sleep ``min(1000 * 2 ** (attempt - 1), 30000)`` ms between
    attempts: 1s, 2s, 4s, 8s, 16s, 30s, 30s, ...
"""

import asyncio
import functools
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import structlog

from agentfarm.exceptions import StepRetryExhaustedError, StepTimeoutError
from agentfarm.models.domain import StepResult
from agentfarm.utils.logging_config import StepLogger, emit_step_message

log = structlog.get_logger(__name__)

T = TypeVar("T")

DEFAULT_STEP_TIMEOUT_MS = 5 * 60 * 1000
DEFAULT_RETRY_COUNT = 0
MAX_BACKOFF_MS = 30_000

StepFunction = Callable[[], Awaitable[Any]]


def async_retry(
    max_attempts: int = 3,
    backoff_factor: float = 2.0,
    exceptions: tuple[type[Exception], ...] = (Exception,),
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorator for async functions with exponential backoff retry logic.

    Args:
        max_attempts: Maximum number of calls before giving up
        backoff_factor: Delay before retry N is ``backoff_factor ** N`` seconds
        exceptions: Exception types that trigger a retry. Anything else
            propagates immediately.

    Raises:
        The last caught exception once all attempts are exhausted.

    Example:
        >>> @async_retry(max_attempts=3, exceptions=(httpx.TransportError,))
        ... async def get_work_item(self, item_id: str) -> WorkItem:
        ...     ...
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_attempts:
                        log.error(
                            "retry_exhausted",
                            function=func.__name__,
                            attempts=attempt,
                            error=str(e),
                        )
                        raise

                    delay = backoff_factor**attempt
                    log.warning(
                        "retry_attempt",
                        function=func.__name__,
                        attempt=attempt,
                        max_attempts=max_attempts,
                        delay=delay,
                        error=str(e),
                    )
                    await asyncio.sleep(delay)

            raise RuntimeError("Retry logic error")

        return wrapper

    return decorator


# =============================================================================
# Step combinators
# =============================================================================


@dataclass
class StepExecutionConfig:
    """Timeout and retry settings for one step.

    Attributes:
        timeout_ms: Deadline for each attempt, in milliseconds
        retry_count: Extra attempts after the first failure
        continue_on_error: Let the job continue when this step fails
        logger: Operator-facing message sink (sync or async)
    """

    timeout_ms: int = DEFAULT_STEP_TIMEOUT_MS
    retry_count: int = DEFAULT_RETRY_COUNT
    continue_on_error: bool = False
    logger: StepLogger | None = None


def backoff_delay_ms(attempt: int) -> int:
    """Delay after failed attempt number ``attempt`` (1-based)."""
    return min(1000 * 2 ** (attempt - 1), MAX_BACKOFF_MS)


async def _settle(fn: StepFunction) -> StepResult[Any]:
    """Run ``fn`` once, folding exceptions and plain values into a StepResult."""
    try:
        outcome = await fn()
    except Exception as e:
        return StepResult.failure(e)
    if isinstance(outcome, StepResult):
        return outcome
    return StepResult.success(outcome)


def with_step_timeout(
    fn: StepFunction, timeout_ms: int, step_id: str
) -> Callable[[], Awaitable[StepResult[Any]]]:
    """Wrap ``fn`` so each call races it against a deadline.

    When the deadline fires first the pending operation is cancelled and a
    failed result carrying :class:`StepTimeoutError` is returned. Exceptions
    raised by ``fn`` are returned as failed results, never re-raised.
    """

    async def run() -> StepResult[Any]:
        try:
            return await asyncio.wait_for(_settle(fn), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            log.warning("step_timed_out", step_id=step_id, timeout_ms=timeout_ms)
            return StepResult.failure(StepTimeoutError(step_id, timeout_ms))

    return run


def with_step_retry(
    fn: StepFunction,
    max_retries: int,
    step_id: str,
    logger: StepLogger | None = None,
) -> Callable[[], Awaitable[StepResult[Any]]]:
    """Wrap ``fn`` so each call makes up to ``max_retries + 1`` attempts.

    A failure is either a raised exception or a failed StepResult. Once all
    attempts fail the result wraps the last error in
    :class:`StepRetryExhaustedError`.
    """
    total_attempts = max_retries + 1

    async def run() -> StepResult[Any]:
        last_error: BaseException = RuntimeError("No attempts made")

        for attempt in range(1, total_attempts + 1):
            result = await _settle(fn)

            if result.ok:
                if attempt > 1:
                    await emit_step_message(
                        logger,
                        f"Step '{step_id}' succeeded on attempt {attempt}/{total_attempts}",
                    )
                return result

            assert result.error is not None
            last_error = result.error

            if attempt < total_attempts:
                await emit_step_message(
                    logger,
                    f"Step '{step_id}' failed (attempt {attempt}/{total_attempts}): "
                    f"{last_error}. Retrying...",
                )
                delay_ms = backoff_delay_ms(attempt)
                log.info(
                    "step_retry_scheduled",
                    step_id=step_id,
                    attempt=attempt,
                    delay_ms=delay_ms,
                    error=str(last_error),
                )
                await asyncio.sleep(delay_ms / 1000)

        log.error("step_retry_exhausted", step_id=step_id, attempts=total_attempts)
        return StepResult.failure(StepRetryExhaustedError(step_id, total_attempts, last_error))

    return run


async def execute_with_timeout_and_retry(
    fn: StepFunction,
    step_id: str,
    config: StepExecutionConfig | None = None,
) -> StepResult[Any]:
    """Run a step under its timeout, retrying only when ``retry_count > 0``.

    Retries wrap the timeout-wrapped function, so every attempt gets a fresh
    deadline.
    """
    config = config or StepExecutionConfig()
    operation = with_step_timeout(fn, config.timeout_ms, step_id)

    if config.retry_count > 0:
        operation = with_step_retry(operation, config.retry_count, step_id, config.logger)

    return await operation()


def is_timeout_error(error: BaseException | None) -> bool:
    return isinstance(error, StepTimeoutError)


def is_retry_exhausted_error(error: BaseException | None) -> bool:
    return isinstance(error, StepRetryExhaustedError)
