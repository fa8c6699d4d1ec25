"""
Step dispatcher and sequential job runner.

:func:`execute_step` is the step boundary: it validates the configuration,
routes the action to its executor family, runs it through the timeout/retry
wrapper and never raises. The returned :class:`StepOutcome` carries a new
context reflecting the step's effects; :func:`run_job` threads it into the
next step.

Example:
    >>> outcome = await execute_step(StepExecutionRequest(step=step, context=context))
    >>> if outcome.result.ok:
    ...     context = outcome.context
"""

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

import structlog

from agentfarm.engine.context import ExecutionContext
from agentfarm.engine.executors.git import execute_git_action
from agentfarm.engine.executors.platform import execute_platform_action
from agentfarm.engine.types import StepDescriptor, StepExecutionRequest, StepFlags, StepServices
from agentfarm.engine.validation import parse_action, validate_step_config
from agentfarm.enums import WorktreeOperation
from agentfarm.models.domain import BranchCreated, StepResult, WorktreeStepOutput
from agentfarm.utils.logging_config import StepLogger, step_logger
from agentfarm.utils.retry import StepExecutionConfig, execute_with_timeout_and_retry

log = structlog.get_logger(__name__)

Executor = Callable[[StepExecutionRequest], Awaitable[Any]]

EXECUTOR_FAMILIES: dict[str, Executor] = {
    "git": execute_git_action,
    "platform": execute_platform_action,
}


@dataclass
class StepOutcome:
    """Result of one step plus the context the next step should see."""

    result: StepResult[Any]
    context: ExecutionContext


@dataclass
class JobResult:
    outcomes: list[StepOutcome] = field(default_factory=list)
    context: ExecutionContext | None = None

    @property
    def ok(self) -> bool:
        return all(o.result.ok for o in self.outcomes)


def apply_step_effects(
    context: ExecutionContext, request: StepExecutionRequest, value: Any
) -> ExecutionContext:
    """Return the context updated with what a successful step produced."""
    if isinstance(value, BranchCreated):
        return context.with_updates(branch_name=value.new_branch_name)

    if isinstance(value, WorktreeStepOutput) and not request.flags.preview_mode:
        operation = request.step.config.get("operation")
        if operation == WorktreeOperation.CREATE and value.worktree_path:
            return context.with_updates(worktree_path=value.worktree_path)
        if operation == WorktreeOperation.REMOVE and request.step.config.get("path") == context.worktree_path:
            return context.with_updates(worktree_path=None)

    return context


async def execute_step(request: StepExecutionRequest) -> StepOutcome:
    """Run one step under its timeout and retry settings.

    Unknown actions and invalid configurations fail immediately, without
    retries.
    """
    step = request.step
    context = request.context
    bound = log.bind(step_id=step.id, action=step.action)

    try:
        action = parse_action(step.action)
        validate_step_config(action, step.config)
    except Exception as e:
        bound.error("step_rejected", error=str(e), error_type=type(e).__name__)
        return StepOutcome(result=StepResult.failure(e), context=context)

    executor = EXECUTOR_FAMILIES[action.family]
    bound.info("step_started", timeout_ms=step.timeout_ms, retry_count=step.retry_count)

    result = await execute_with_timeout_and_retry(
        lambda: executor(request),
        step.id,
        StepExecutionConfig(
            timeout_ms=step.timeout_ms,
            retry_count=step.retry_count,
            continue_on_error=step.continue_on_error,
            logger=request.logger,
        ),
    )

    if not result.ok:
        bound.error("step_failed", error=str(result.error), error_type=type(result.error).__name__)
        return StepOutcome(result=result, context=context)

    bound.info("step_completed", result=str(result.value))
    return StepOutcome(result=result, context=apply_step_effects(context, request, result.value))


async def run_job(
    steps: Sequence[StepDescriptor],
    context: ExecutionContext,
    flags: StepFlags | None = None,
    services: StepServices | None = None,
    logger_factory: Callable[[str], StepLogger] = step_logger,
) -> JobResult:
    """Execute steps strictly in order, threading the context between them.

    Stops at the first failed step unless that step sets ``continue_on_error``.
    """
    flags = flags or StepFlags()
    services = services or StepServices()
    job = JobResult(context=context)

    for step in steps:
        request = StepExecutionRequest(
            step=step,
            context=context,
            logger=logger_factory(step.id),
            flags=flags,
            services=services,
        )
        outcome = await execute_step(request)
        job.outcomes.append(outcome)
        context = outcome.context
        job.context = context

        if not outcome.result.ok and not step.continue_on_error:
            log.warning("job_stopped", step_id=step.id, completed=len(job.outcomes) - 1)
            break

    return job
