"""Platform step executors (``platform.create_pr``, ``platform.post_comment``).

Both use the adapter injected through ``request.services.platform_adapter``;
building it is the caller's job (see :func:`agentfarm.platforms.resolve_platform_adapter`).
"""

import structlog

from agentfarm.engine.context import ExecutionContext
from agentfarm.engine.types import StepExecutionRequest
from agentfarm.engine.validation import (
    PlatformCreatePrConfig,
    PlatformPostCommentConfig,
    validate_step_config,
)
from agentfarm.enums import StepAction
from agentfarm.exceptions import ConfigurationError, StepNotFoundError, StepValidationError
from agentfarm.models.domain import PullRequestParams
from agentfarm.platforms.base import PlatformAdapter
from agentfarm.utils.logging_config import emit_step_message

log = structlog.get_logger(__name__)

DEFAULT_PR_TITLE = "fix: {title}"
DEFAULT_PR_DESCRIPTION = "Automated changes for work item #{id}: {title}"


def _render(template: str, context: ExecutionContext) -> str:
    return template.replace("{title}", context.work_item.title).replace("{id}", context.work_item.id)


def _adapter(request: StepExecutionRequest) -> PlatformAdapter:
    adapter = request.services.platform_adapter
    if adapter is None:
        raise ConfigurationError(
            f"No platform adapter available for step '{request.step.id}' ({request.step.action})"
        )
    return adapter


async def execute_create_pr(request: StepExecutionRequest) -> str:
    """Open a pull request from the job branch into the default branch.

    Defaults: title and description from the work item, source from the
    context's branch, target from the context's default branch.
    """
    config = validate_step_config(StepAction.PLATFORM_CREATE_PR, request.step.config)
    assert isinstance(config, PlatformCreatePrConfig)

    context = request.context
    source = config.source or context.branch_name
    if not source:
        raise StepValidationError(
            StepAction.PLATFORM_CREATE_PR, ["source: no source branch configured or recorded"]
        )

    params = PullRequestParams(
        title=_render(config.title or DEFAULT_PR_TITLE, context),
        description=_render(config.description or DEFAULT_PR_DESCRIPTION, context),
        source=source,
        target=config.target or context.default_branch,
    )

    if request.flags.preview_mode:
        await emit_step_message(
            request.logger, f"[Dry Run] Would create PR: {params.source} -> {params.target}"
        )
        return "Dry run: PR creation skipped"

    adapter = _adapter(request)
    await emit_step_message(
        request.logger,
        f"Creating pull request on {adapter.get_name()}: {params.source} -> {params.target}",
    )
    url = await adapter.create_pull_request(params)

    log.info("pull_request_ready", url=url, step_id=request.step.id)
    await emit_step_message(request.logger, f"Pull request: {url}")
    return f"Created PR: {url}"


async def execute_post_comment(request: StepExecutionRequest) -> str:
    config = validate_step_config(StepAction.PLATFORM_POST_COMMENT, request.step.config)
    assert isinstance(config, PlatformPostCommentConfig)

    if not config.comment or not config.comment.strip():
        raise StepValidationError(StepAction.PLATFORM_POST_COMMENT, ["comment: must not be empty"])

    work_item_id = request.context.work_item.id
    comment = _render(config.comment, request.context)

    if request.flags.preview_mode:
        await emit_step_message(request.logger, f"[Dry Run] Would comment on work item {work_item_id}")
        return "Dry run: Comment skipped"

    await _adapter(request).post_comment(work_item_id, comment)
    return f"Posted comment on work item {work_item_id}"


PLATFORM_EXECUTORS = {
    StepAction.PLATFORM_CREATE_PR: execute_create_pr,
    StepAction.PLATFORM_POST_COMMENT: execute_post_comment,
}


async def execute_platform_action(request: StepExecutionRequest) -> str:
    try:
        executor = PLATFORM_EXECUTORS[StepAction(request.step.action)]
    except (KeyError, ValueError):
        raise StepNotFoundError(request.step.action) from None
    return await executor(request)
