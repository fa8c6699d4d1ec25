"""Repository and worktree preparation for a job.

A job's checkout lives in ``<work_dir>/<repo>-wt-<work item id>``, a worktree
of the shared main clone at ``<work_dir>/<repo>``. :func:`setup_repository`
makes sure both exist and decides whether an existing worktree may be reused.
"""

import asyncio
import shlex
from dataclasses import dataclass

import structlog

from agentfarm.exceptions import CommandExecutionError, GitOperationError, WorktreeError, WorktreeInUseError
from agentfarm.execution.environment import ExecutionEnvironment, LocalEnvironment
from agentfarm.git.operations import FALLBACK_BRANCHES, configure_identity, git_command
from agentfarm.git.urls import repo_name_from_url
from agentfarm.git.worktree import WorktreeInUseCheck, WorktreeManager
from agentfarm.models.domain import GitConfig, WorkItem, WorktreeSpec
from agentfarm.utils.logging_config import StepLogger, emit_step_message

log = structlog.get_logger(__name__)

DEFAULT_BRANCH_PATTERN = "fix/{type}-{id}"
MAX_WORKTREE_ATTEMPTS = 3


def render_branch_name(work_item: WorkItem, pattern: str | None = None) -> str:
    """Substitute ``{type}`` (lowercased) and ``{id}`` into a branch pattern."""
    return (
        (pattern or DEFAULT_BRANCH_PATTERN)
        .replace("{type}", work_item.work_item_type.lower())
        .replace("{id}", work_item.id)
    )


@dataclass
class RepositorySetup:
    """Paths and names resolved for a job's checkout."""

    repo_name: str
    main_repo_path: str
    worktree_path: str
    branch_name: str
    default_branch: str
    reused: bool = False


async def ensure_main_repo(
    main_repo_path: str,
    authenticated_url: str,
    env: ExecutionEnvironment,
    git_config: GitConfig | None = None,
) -> None:
    """Clone the main repository, or refresh it if already present.

    Refresh failures (offline remote, diverged history) are logged and the
    existing local state is used.

    Raises:
        GitOperationError: If the repository is missing and cannot be cloned
    """
    exec_fn = env.exec

    if await asyncio.to_thread(env.path_exists, main_repo_path):
        for args in (("remote", "set-url", "origin", authenticated_url), ("fetch", "origin", "--prune")):
            try:
                await exec_fn(git_command(main_repo_path, *args))
            except CommandExecutionError as e:
                log.warning("main_repo_refresh_failed", step=args[0], exit_code=e.exit_code)
        try:
            await exec_fn(git_command(main_repo_path, "pull", "origin", "--rebase=false"))
        except CommandExecutionError:
            try:
                await exec_fn(git_command(main_repo_path, "reset", "--hard", "origin/HEAD"))
            except CommandExecutionError as e:
                log.warning("main_repo_reset_failed", path=main_repo_path, exit_code=e.exit_code)
        return

    quoted_url, quoted_path = shlex.quote(authenticated_url), shlex.quote(main_repo_path)
    try:
        await exec_fn(f"git clone {quoted_url} {quoted_path}")
    except CommandExecutionError:
        log.warning("full_clone_failed", path=main_repo_path)
        try:
            await exec_fn(f"git clone --single-branch {quoted_url} {quoted_path}")
        except CommandExecutionError as e:
            raise GitOperationError(f"Failed to clone repository (exit code {e.exit_code})") from None

    identity = git_config.with_repo_path(main_repo_path) if git_config else GitConfig(repo_path=main_repo_path)
    await configure_identity(identity, exec_fn)


async def _update_default_branch(main_repo_path: str, default_branch: str, env: ExecutionEnvironment) -> None:
    candidates = list(dict.fromkeys((default_branch, *FALLBACK_BRANCHES)))
    try:
        await env.exec(git_command(main_repo_path, "fetch", "origin", default_branch))
    except CommandExecutionError:
        pass
    for action in ("checkout", "pull"):
        for branch in candidates:
            args = (action, branch) if action == "checkout" else (action, "origin", branch)
            try:
                await env.exec(git_command(main_repo_path, *args))
                break
            except CommandExecutionError:
                continue


async def _release_branch(
    manager: WorktreeManager,
    main_repo_path: str,
    branch: str,
    default_branch: str,
    env: ExecutionEnvironment,
    is_in_use: WorktreeInUseCheck | None = None,
) -> None:
    """Free ``branch`` so a worktree can check it out.

    Stale worktrees holding it are removed; the main clone is moved to the
    default branch. The branch itself is kept.

    Raises:
        WorktreeInUseError: If a live job holds the branch in its worktree.
            Nothing is removed in that case.
    """
    holders = [
        wt
        for wt in await manager.list_worktrees(main_repo_path, include_stale=True)
        if wt.branch == branch and not wt.is_main
    ]
    if is_in_use is not None:
        for worktree in holders:
            if await is_in_use(worktree.path):
                log.warning("branch_held_by_live_worktree", branch=branch, path=worktree.path)
                raise WorktreeInUseError(worktree.path)

    for worktree in holders:
        try:
            await manager.remove(main_repo_path, worktree.path, force=True)
        except WorktreeError:
            log.warning("stale_worktree_remove_failed", path=worktree.path)
    for candidate in dict.fromkeys((default_branch, *FALLBACK_BRANCHES)):
        try:
            await env.exec(git_command(main_repo_path, "checkout", candidate))
            break
        except CommandExecutionError:
            continue
    await manager.prune(main_repo_path)


async def create_job_worktree(
    main_repo_path: str,
    worktree_path: str,
    branch: str,
    default_branch: str,
    env: ExecutionEnvironment,
    is_in_use: WorktreeInUseCheck | None = None,
    git_config: GitConfig | None = None,
    logger: StepLogger | None = None,
) -> None:
    """Create the job worktree, repairing known git conflicts between attempts.

    Raises:
        WorktreeInUseError: If another job holds ``worktree_path`` or has
            ``branch`` checked out
        WorktreeError: If every attempt fails
    """
    manager = WorktreeManager.for_environment(env)

    if not await asyncio.to_thread(env.path_exists, main_repo_path):
        raise WorktreeError(f"Main repository does not exist: {main_repo_path}")

    try:
        await manager.prune(main_repo_path)
    except WorktreeError as e:
        log.warning("worktree_prune_failed", error=str(e))

    await manager.cleanup_existing(main_repo_path, worktree_path, is_in_use)
    await _update_default_branch(main_repo_path, default_branch, env)

    for attempt in range(1, MAX_WORKTREE_ATTEMPTS + 1):
        status = await manager.branch_status(main_repo_path, branch)
        spec = WorktreeSpec(path=worktree_path, branch=branch, create_branch=not status.local)
        await emit_step_message(
            logger, f"Creating worktree (attempt {attempt}/{MAX_WORKTREE_ATTEMPTS})..."
        )
        try:
            await manager.create(main_repo_path, spec, is_in_use)
            break
        except WorktreeInUseError:
            raise
        except WorktreeError as e:
            message = str(e)
            await emit_step_message(logger, f"Worktree creation failed: {message}")
            if attempt == MAX_WORKTREE_ATTEMPTS:
                raise WorktreeError(
                    f"Failed to create worktree after {MAX_WORKTREE_ATTEMPTS} attempts: {message}",
                    path=worktree_path,
                ) from e
            if "already exists" in message or "used by worktree" in message or "checked out at" in message:
                await _release_branch(manager, main_repo_path, branch, default_branch, env, is_in_use)
            elif "already a registered worktree" in message or "is a missing worktree" in message:
                await manager.prune(main_repo_path)

    identity = git_config.with_repo_path(worktree_path) if git_config else GitConfig(repo_path=worktree_path)
    await configure_identity(identity, env.exec)


async def setup_repository(
    work_item: WorkItem,
    work_dir: str,
    authenticated_url: str,
    env: ExecutionEnvironment | None = None,
    *,
    default_branch: str = "main",
    branch_pattern: str | None = None,
    existing_worktree_path: str | None = None,
    existing_branch_name: str | None = None,
    is_in_use: WorktreeInUseCheck | None = None,
    git_config: GitConfig | None = None,
    logger: StepLogger | None = None,
) -> RepositorySetup:
    """Prepare the main clone and the job's worktree.

    Reuse rules:
        - An explicit ``existing_worktree_path``/``existing_branch_name`` pair is
          reused once ``git rev-parse --git-dir`` succeeds in it.
        - Otherwise a worktree already at the computed path is reused only if it
          verifies and ``is_in_use`` (when given) reports it free.
        - In every other case the worktree is (re)created.

    The in-use check is advisory: another job can claim the path between the
    check and the reuse.

    Raises:
        GitOperationError: If the work item has no repository URL or the main
            clone cannot be prepared
        WorktreeInUseError: If the worktree path is held by another job
        WorktreeError: If the worktree cannot be created
    """
    env = env or LocalEnvironment()
    if not work_item.repository_url:
        raise GitOperationError("Work item does not have a repository URL assigned")

    try:
        await env.exec(f"mkdir -p {shlex.quote(work_dir)}")
    except CommandExecutionError as e:
        raise GitOperationError(f"Cannot create work directory {work_dir}: {e}") from e

    work_dir = work_dir.rstrip("/")
    repo_name = repo_name_from_url(work_item.repository_url) or f"repo-{work_item.id}"
    main_repo_path = f"{work_dir}/{repo_name}"
    branch_name = existing_branch_name or render_branch_name(work_item, branch_pattern)
    worktree_path = existing_worktree_path or f"{work_dir}/{repo_name}-wt-{work_item.id}"
    manager = WorktreeManager.for_environment(env)

    def result(reused: bool) -> RepositorySetup:
        return RepositorySetup(
            repo_name=repo_name,
            main_repo_path=main_repo_path,
            worktree_path=worktree_path,
            branch_name=branch_name,
            default_branch=default_branch,
            reused=reused,
        )

    await emit_step_message(logger, f"Ensuring main repository exists: {repo_name}")
    try:
        await ensure_main_repo(main_repo_path, authenticated_url, env, git_config)
    except GitOperationError as e:
        raise GitOperationError(f"Failed to ensure main repository: {e}") from e

    if existing_worktree_path and existing_branch_name:
        reusable = await asyncio.to_thread(env.path_exists, existing_worktree_path)
        if reusable and await manager.is_valid(existing_worktree_path):
            await emit_step_message(
                logger,
                f"Reusing existing worktree: {existing_worktree_path}, branch: {existing_branch_name}",
            )
            return result(reused=True)
        await emit_step_message(
            logger, f"Existing worktree at {existing_worktree_path} is not usable, will create new one"
        )
    elif await asyncio.to_thread(env.path_exists, worktree_path):
        if await manager.is_valid(worktree_path):
            if is_in_use is None or not await is_in_use(worktree_path):
                await emit_step_message(logger, f"Existing worktree at {worktree_path} is valid, reusing it")
                return result(reused=True)
            await emit_step_message(
                logger, f"Worktree at {worktree_path} is in use by another execution, cannot reuse"
            )
        else:
            await emit_step_message(
                logger, f"Existing worktree verification failed at {worktree_path}, will create new one"
            )

    await emit_step_message(logger, f"Creating worktree for branch: {branch_name}")
    await create_job_worktree(
        main_repo_path,
        worktree_path,
        branch_name,
        default_branch,
        env,
        is_in_use=is_in_use,
        git_config=git_config,
        logger=logger,
    )

    if not await asyncio.to_thread(env.path_exists, worktree_path):
        raise WorktreeError(f"Worktree does not exist at {worktree_path}", path=worktree_path)

    log.info("repository_ready", worktree_path=worktree_path, branch=branch_name)
    return result(reused=False)
