"""
Git step executors.

One executor per ``git.*`` action. Each resolves the execution environment
for the request (local, or the job's pod), derives a git configuration whose
repository path is valid there, and calls the git collaborators in
:mod:`agentfarm.git`.

Preview Mode:
    With ``flags.preview_mode`` set, executors describe what they would do
    and touch nothing. ``git.branch`` still returns the computed branch name
    so later steps see a consistent context.

Soft Outcomes:
    ``git.commit`` reports success when there is nothing to commit. The
    condition is detected structurally first (``HEAD`` unchanged and a clean
    ``git status --porcelain``); message matching on known "nothing to commit"
    phrasings is kept as a compatibility fallback.
"""

import tempfile
import time

import structlog

from agentfarm.engine.context import ExecutionContext
from agentfarm.engine.types import StepExecutionRequest
from agentfarm.engine.validation import (
    GitBranchConfig,
    GitCheckoutConfig,
    GitCommitConfig,
    GitWorktreeConfig,
    validate_step_config,
)
from agentfarm.enums import StepAction, WorktreeOperation
from agentfarm.exceptions import (
    CommandExecutionError,
    NothingToCommitError,
    StepNotFoundError,
    StepValidationError,
)
from agentfarm.execution.environment import ExecutionEnvironment
from agentfarm.git.operations import (
    checkout_branch,
    commit_changes,
    current_branch,
    git_command,
    push_branch,
)
from agentfarm.git.repository import render_branch_name
from agentfarm.git.worktree import WorktreeManager
from agentfarm.models.domain import BranchCreated, GitConfig, WorktreeSpec, WorktreeStepOutput
from agentfarm.utils.logging_config import emit_step_message

log = structlog.get_logger(__name__)

DEFAULT_COMMIT_MESSAGE = "fix: {title}"

NO_CHANGES_MARKERS = (
    "no changes detected",
    "nothing to commit",
    "nothing added to commit",
    "no changes to commit",
)


def is_no_changes_error(error: BaseException) -> bool:
    """Whether a commit failure only means the tree had nothing to commit."""
    if isinstance(error, NothingToCommitError):
        return True
    text = str(error).lower()
    return any(marker in text for marker in NO_CHANGES_MARKERS)


def render_commit_message(context: ExecutionContext, template: str | None) -> str:
    return (
        (template or DEFAULT_COMMIT_MESSAGE)
        .replace("{title}", context.work_item.title)
        .replace("{id}", context.work_item.id)
    )


def _git_setup(request: StepExecutionRequest) -> tuple[ExecutionEnvironment, GitConfig]:
    env = request.environment()
    config = env.git_config_for(request.context)
    if env.is_remote:
        log.debug("pod_git_config", pod=request.context.pod_name, repo_path=config.repo_path)
    return env, config


async def _read_head(env: ExecutionEnvironment, repo_path: str) -> str | None:
    try:
        result = await env.exec(git_command(repo_path, "rev-parse", "HEAD"))
    except CommandExecutionError:
        return None
    return result.stdout.strip() or None


# =============================================================================
# Executors
# =============================================================================


async def execute_git_checkout(request: StepExecutionRequest) -> str:
    config = validate_step_config(StepAction.GIT_CHECKOUT, request.step.config)
    assert isinstance(config, GitCheckoutConfig)

    default_branch = request.context.default_branch
    branch = config.branch or default_branch
    env, git_config = _git_setup(request)

    await emit_step_message(request.logger, f"Checking out branch: {branch}")
    await checkout_branch(git_config, branch, default_branch, env.path_exists, env.exec)
    return f"Checked out branch: {branch}"


async def execute_git_branch(request: StepExecutionRequest) -> BranchCreated:
    """Create or check out the job branch named by the configured pattern."""
    config = validate_step_config(StepAction.GIT_BRANCH, request.step.config)
    assert isinstance(config, GitBranchConfig)

    context = request.context
    branch = render_branch_name(context.work_item, config.pattern)

    if request.flags.preview_mode:
        await emit_step_message(request.logger, f"[Dry Run] Would create/checkout branch: {branch}")
        return BranchCreated(
            message=f"[Dry Run] Simulated branch creation: {branch}", new_branch_name=branch
        )

    env, git_config = _git_setup(request)
    await emit_step_message(request.logger, f"Creating branch: {branch}")
    await checkout_branch(git_config, branch, context.default_branch, env.path_exists, env.exec)

    log.info("branch_created", branch=branch, step_id=request.step.id)
    return BranchCreated(message=f"Created branch: {branch}", new_branch_name=branch)


async def execute_git_commit(request: StepExecutionRequest) -> str:
    """Commit all changes in the job checkout.

    Returns a success message in every "nothing to commit" situation; only
    real git failures raise.
    """
    config = validate_step_config(StepAction.GIT_COMMIT, request.step.config)
    assert isinstance(config, GitCommitConfig)

    message = render_commit_message(request.context, config.message)
    logger = request.logger

    if request.flags.preview_mode:
        await emit_step_message(logger, f'[Dry Run] Would execute: git commit -m "{message}"')
        return "Dry run: Commit skipped"

    env, git_config = _git_setup(request)
    repo = git_config.repo_path

    await emit_step_message(logger, f"Committing changes: {message}")
    head_before = await _read_head(env, repo)

    try:
        await commit_changes(git_config, message, env.path_exists, env.exec)
    except Exception as e:
        if not is_no_changes_error(e):
            raise
        log.warning("commit_skipped_no_changes", repo_path=repo, reason=str(e))
        await emit_step_message(logger, f"Warning: {e}. Skipping commit and continuing workflow.")
        return f"No changes to commit: {e}"

    head_after = await _read_head(env, repo)
    if head_before and head_before == head_after:
        try:
            status = await env.exec(git_command(repo, "status", "--porcelain"))
        except CommandExecutionError:
            log.warning("commit_unverified", repo_path=repo)
            await emit_step_message(
                logger,
                "Warning: Could not verify if changes exist. No commit was created. "
                "Continuing workflow.",
            )
            return "No commit created - continuing workflow"

        if not status.stdout.strip():
            log.warning("commit_head_unchanged", repo_path=repo, head=head_after)
            await emit_step_message(
                logger,
                "Warning: No changes to commit. The workflow attempted to commit but no file "
                "changes were detected. Continuing workflow.",
            )
            return "No changes to commit - continuing workflow"

        log.warning("commit_head_unchanged_dirty", repo_path=repo, head=head_after)
        await emit_step_message(
            logger,
            "Warning: git commit reported success but HEAD did not move and uncommitted "
            "changes remain. Continuing workflow.",
        )
        return "No commit created - uncommitted changes remain"

    log.info("commit_created", repo_path=repo, head=head_after, step_id=request.step.id)
    return f"Committed: {message}"


async def execute_git_push(request: StepExecutionRequest) -> str:
    """Push the branch actually checked out, not the one the context remembers."""
    validate_step_config(StepAction.GIT_PUSH, request.step.config)

    recorded = request.context.branch_name
    logger = request.logger

    if request.flags.preview_mode:
        await emit_step_message(logger, f"[Dry Run] Would execute: git push -u origin {recorded}")
        return "Dry run: Push skipped"

    env, git_config = _git_setup(request)

    branch = recorded
    try:
        detected = await current_branch(git_config.repo_path, env.exec)
    except CommandExecutionError as e:
        await emit_step_message(
            logger,
            f"[Git] Warning: Failed to detect current branch: {e}. Using context branch: {recorded}",
        )
    else:
        if detected and detected != "HEAD":
            if detected != recorded:
                log.info("push_branch_override", detected=detected, recorded=recorded)
                await emit_step_message(
                    logger,
                    f"[Git] Detected actual branch: {detected} (overriding context branch: {recorded})",
                )
            branch = detected

    if not branch:
        raise StepValidationError(StepAction.GIT_PUSH, ["no branch checked out and none recorded"])

    await emit_step_message(logger, f"Pushing branch: {branch}")
    await push_branch(git_config, branch, env.path_exists, env.exec)
    return f"Pushed branch: {branch}"


async def execute_git_worktree(request: StepExecutionRequest) -> WorktreeStepOutput:
    config = validate_step_config(StepAction.GIT_WORKTREE, request.step.config)
    assert isinstance(config, GitWorktreeConfig)

    context = request.context
    logger = request.logger
    env = request.environment()
    # Worktrees hang off the main clone, never off the job's current worktree.
    repo = env.git_config_for(context.with_updates(worktree_path=None)).repo_path

    if config.operation is WorktreeOperation.CREATE:
        stamp = int(time.time() * 1000)
        path = config.path or f"{tempfile.gettempdir()}/agentfarm-worktree-{stamp}"
        branch = config.branch or context.branch_name or f"task-{stamp}"
        base_branch = config.base_branch or context.default_branch or "main"

        if request.flags.preview_mode:
            await emit_step_message(
                logger, f"[Dry Run] Would create worktree: {path} for branch {branch}"
            )
            return WorktreeStepOutput(message=f"[Dry Run] Would create worktree: {path}", worktree_path=path)

        await emit_step_message(logger, f"Creating worktree: {path}")
        await emit_step_message(logger, f"Ensuring branch exists: {branch}")
        try:
            await env.exec(git_command(repo, "branch", branch))
        except CommandExecutionError as e:
            log.debug("worktree_branch_exists", branch=branch, error=str(e))

        manager = WorktreeManager.for_environment(env)
        worktree = await manager.create(
            repo,
            WorktreeSpec(path=path, branch=branch, base_branch=base_branch),
            request.services.is_in_use,
        )
        await emit_step_message(logger, f"Worktree created: {worktree.path}")
        return WorktreeStepOutput(message=f"Created worktree: {worktree.path}", worktree_path=worktree.path)

    if not config.path:
        raise StepValidationError(StepAction.GIT_WORKTREE, ["path: required for worktree remove operation"])

    if request.flags.preview_mode:
        await emit_step_message(logger, f"[Dry Run] Would remove worktree: {config.path}")
        return WorktreeStepOutput(message=f"[Dry Run] Would remove worktree: {config.path}")

    await emit_step_message(logger, f"Removing worktree: {config.path}")
    await WorktreeManager.for_environment(env).remove(repo, config.path, force=True)
    await emit_step_message(logger, f"Worktree removed: {config.path}")
    return WorktreeStepOutput(message=f"Removed worktree: {config.path}")


GIT_EXECUTORS = {
    StepAction.GIT_CHECKOUT: execute_git_checkout,
    StepAction.GIT_BRANCH: execute_git_branch,
    StepAction.GIT_COMMIT: execute_git_commit,
    StepAction.GIT_PUSH: execute_git_push,
    StepAction.GIT_WORKTREE: execute_git_worktree,
}


async def execute_git_action(request: StepExecutionRequest) -> str | BranchCreated | WorktreeStepOutput:
    """Route a ``git.*`` step to its executor.

    Raises:
        StepNotFoundError: If the action is not a git action
    """
    try:
        executor = GIT_EXECUTORS[StepAction(request.step.action)]
    except (KeyError, ValueError):
        raise StepNotFoundError(request.step.action) from None
    return await executor(request)
