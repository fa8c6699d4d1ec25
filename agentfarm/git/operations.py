"""Git checkout, commit and push operations.

Every function takes the exec function and path-existence check of an
execution environment, so the same code drives a local checkout or one inside
an agent pod. Failures raise :class:`~agentfarm.exceptions.GitOperationError`
subclasses.

Key Exports:
    checkout_branch: Switch to a branch, creating it from the default branch
    commit_changes: Stage everything and commit
    push_branch: Push a branch with credentials injected into ``origin``
"""

import asyncio
import re
import shlex

import structlog

from agentfarm.exceptions import CommandExecutionError, GitOperationError, NothingToCommitError
from agentfarm.execution.environment import ExecFunction, LocalEnvironment, PathExistenceCheck
from agentfarm.git.urls import authenticate_url
from agentfarm.models.domain import ExecResult, GitConfig

log = structlog.get_logger(__name__)

DEFAULT_GIT_USER_NAME = "AgentFarm Agent"
DEFAULT_GIT_USER_EMAIL = "agentfarm@automated.local"

WORKTREE_CONFLICT_MARKERS = ("already used by worktree", "is checked out at")
NOTHING_TO_COMMIT_MARKERS = ("nothing to commit", "nothing added to commit")
FALLBACK_BRANCHES = ("main", "master")

WORKTREE_PATH_PATTERN = re.compile(r"^(.*)-wt-[^/]+$")


def git_command(repo_path: str, *args: str) -> str:
    """Build ``git -C <repo_path> <args...>`` with every argument shell-quoted."""
    return " ".join(["git", "-C", shlex.quote(repo_path), *(shlex.quote(a) for a in args)])


def is_worktree_conflict(error: BaseException) -> bool:
    text = str(error)
    return any(marker in text for marker in WORKTREE_CONFLICT_MARKERS)


def _resolve(
    path_exists: PathExistenceCheck | None, exec_fn: ExecFunction | None
) -> tuple[PathExistenceCheck, ExecFunction]:
    local = LocalEnvironment()
    return path_exists or local.path_exists, exec_fn or local.exec


async def _try(exec_fn: ExecFunction, command: str) -> ExecResult | None:
    """Run a command whose failure is not fatal."""
    try:
        return await exec_fn(command)
    except CommandExecutionError as e:
        log.debug("git_command_ignored", command=command, exit_code=e.exit_code)
        return None


async def _missing_worktree_diagnostic(
    repo_path: str, path_exists: PathExistenceCheck, exec_fn: ExecFunction
) -> str:
    match = WORKTREE_PATH_PATTERN.match(repo_path)
    if not match:
        return ""

    main_repo = match.group(1)
    if not await asyncio.to_thread(path_exists, main_repo):
        return f" Main repository path {main_repo} also does not exist."

    try:
        listing = await exec_fn(git_command(main_repo, "worktree", "list", "--porcelain"))
    except CommandExecutionError as e:
        return f" Unable to check worktree status from main repo: {e}."

    if repo_path in listing.stdout:
        return f" Worktree is registered in main repo at {main_repo} but directory is missing."
    return f" Worktree directory missing and not registered in main repo at {main_repo}."


async def _ensure_repository(
    config: GitConfig,
    path_exists: PathExistenceCheck,
    exec_fn: ExecFunction,
    verify_git_dir: bool = False,
) -> None:
    if not await asyncio.to_thread(path_exists, config.repo_path):
        diagnostic = await _missing_worktree_diagnostic(config.repo_path, path_exists, exec_fn)
        raise GitOperationError(f"Repository directory does not exist: {config.repo_path}.{diagnostic}")

    if not verify_git_dir:
        return

    try:
        await exec_fn(git_command(config.repo_path, "rev-parse", "--git-dir"))
    except CommandExecutionError as e:
        if "not a git" in str(e) or "No such file or directory" in str(e):
            raise GitOperationError(
                f"Path exists but is not a valid git repository: {config.repo_path}. Error: {e}"
            ) from e
        log.debug("git_dir_check_inconclusive", repo_path=config.repo_path, error=str(e))


async def configure_identity(config: GitConfig, exec_fn: ExecFunction) -> None:
    """Set ``user.email``/``user.name`` for the repository; errors are ignored."""
    email = config.git_user_email or DEFAULT_GIT_USER_EMAIL
    name = config.git_user_name or DEFAULT_GIT_USER_NAME
    await _try(exec_fn, git_command(config.repo_path, "config", "user.email", email))
    await _try(exec_fn, git_command(config.repo_path, "config", "user.name", name))


async def current_branch(repo_path: str, exec_fn: ExecFunction) -> str:
    result = await exec_fn(git_command(repo_path, "rev-parse", "--abbrev-ref", "HEAD"))
    return result.stdout.strip()


async def checkout_branch(
    config: GitConfig,
    branch: str,
    default_branch: str = "main",
    path_exists: PathExistenceCheck | None = None,
    exec_fn: ExecFunction | None = None,
) -> None:
    """Check out ``branch``, creating it from the default branch if needed.

    A branch already checked out by another worktree is not an error: the
    current checkout is kept.

    Raises:
        GitOperationError: If the repository is missing or the checkout fails
    """
    path_exists, exec_fn = _resolve(path_exists, exec_fn)
    repo = config.repo_path
    await _ensure_repository(config, path_exists, exec_fn, verify_git_dir=True)
    await configure_identity(config, exec_fn)

    try:
        if await current_branch(repo, exec_fn) == branch:
            await _try(exec_fn, git_command(repo, "pull", "origin", branch))
            return
    except CommandExecutionError:
        pass

    if branch in (default_branch, *FALLBACK_BRANCHES):
        try:
            await exec_fn(git_command(repo, "checkout", branch))
        except CommandExecutionError as e:
            if is_worktree_conflict(e):
                log.warning("branch_used_by_worktree", branch=branch, repo_path=repo)
                return
            raise GitOperationError(f"Failed to checkout branch {branch}: {e}") from e
        await _try(exec_fn, git_command(repo, "pull", "origin", branch))
        return

    # Move to the base branch first; a base checked out elsewhere is fine.
    for base in dict.fromkeys((default_branch, *FALLBACK_BRANCHES)):
        try:
            await exec_fn(git_command(repo, "checkout", base))
            break
        except CommandExecutionError as e:
            if is_worktree_conflict(e):
                break

    await _try(exec_fn, git_command(repo, "fetch", "origin", default_branch))
    for base in dict.fromkeys((default_branch, *FALLBACK_BRANCHES)):
        if await _try(exec_fn, git_command(repo, "pull", "origin", base)) is not None:
            break

    existing = await _try(exec_fn, git_command(repo, "branch", "--list", branch))
    if existing is not None and existing.stdout.strip():
        await _checkout_existing(repo, branch, exec_fn)
        await _try(exec_fn, git_command(repo, "pull", "origin", branch))
        return

    if not await asyncio.to_thread(path_exists, repo):
        raise GitOperationError(
            f"Repository directory disappeared before creating branch {branch}: {repo}"
        )

    try:
        await exec_fn(git_command(repo, "checkout", "-b", branch))
    except CommandExecutionError as e:
        if "already exists" not in str(e):
            raise GitOperationError(f"Failed to checkout branch {branch}: {e}") from e
        await _checkout_existing(repo, branch, exec_fn)

    log.info("branch_checked_out", branch=branch, repo_path=repo)


async def _checkout_existing(repo: str, branch: str, exec_fn: ExecFunction) -> None:
    try:
        await exec_fn(git_command(repo, "checkout", branch))
    except CommandExecutionError as e:
        if is_worktree_conflict(e):
            log.warning("branch_used_by_worktree", branch=branch, repo_path=repo)
            return
        raise GitOperationError(f"Failed to checkout branch {branch}: {e}") from e


async def commit_changes(
    config: GitConfig,
    message: str,
    path_exists: PathExistenceCheck | None = None,
    exec_fn: ExecFunction | None = None,
) -> None:
    """Stage all changes and commit them.

    Raises:
        NothingToCommitError: If the working tree is clean
        GitOperationError: If staging or committing fails
    """
    path_exists, exec_fn = _resolve(path_exists, exec_fn)
    repo = config.repo_path
    await _ensure_repository(config, path_exists, exec_fn)
    await configure_identity(config, exec_fn)

    status = await _try(exec_fn, git_command(repo, "status", "--porcelain"))
    if status is not None and not status.stdout.strip():
        raise NothingToCommitError("No changes detected in the repository. Nothing to commit.")

    try:
        await exec_fn(git_command(repo, "add", "."))
    except CommandExecutionError as e:
        raise GitOperationError(f"Failed to commit changes: {e}") from e

    # `diff --cached --quiet` exits 0 when nothing is staged, 1 otherwise.
    try:
        await exec_fn(git_command(repo, "diff", "--cached", "--quiet"))
    except CommandExecutionError as e:
        if e.exit_code != 1:
            log.debug("staged_diff_check_failed", repo_path=repo, error=str(e))
    else:
        raise NothingToCommitError(
            "No changes to commit after staging. All changes were already committed "
            "or there are no file modifications."
        )

    try:
        await exec_fn(git_command(repo, "commit", "-m", message))
    except CommandExecutionError as e:
        if any(marker in str(e).lower() for marker in NOTHING_TO_COMMIT_MARKERS):
            raise NothingToCommitError(
                "Git commit failed: No changes to commit. "
                "The repository has no staged changes to commit."
            ) from e
        raise GitOperationError(f"Failed to commit changes: {e}") from e

    log.info("changes_committed", repo_path=repo)


async def push_branch(
    config: GitConfig,
    branch: str,
    path_exists: PathExistenceCheck | None = None,
    exec_fn: ExecFunction | None = None,
    force: bool = True,
) -> None:
    """Push ``branch`` to ``origin`` with upstream tracking.

    When the configuration carries a token, ``origin`` is first rewritten to
    an authenticated URL.

    Raises:
        GitOperationError: If the push fails
    """
    path_exists, exec_fn = _resolve(path_exists, exec_fn)
    repo = config.repo_path
    await _ensure_repository(config, path_exists, exec_fn)
    await configure_identity(config, exec_fn)

    if config.pat and config.repo_url:
        authenticated = authenticate_url(config.repo_url, config.pat)
        if authenticated != config.repo_url:
            try:
                await exec_fn(git_command(repo, "remote", "set-url", "origin", authenticated))
            except CommandExecutionError as e:
                # The command line carries the token; report only the exit code.
                raise GitOperationError(
                    f"Failed to push branch {branch}: could not set authenticated remote "
                    f"(exit code {e.exit_code})"
                ) from None

    try:
        args = ["push", "-u", "origin", branch]
        if force:
            args.append("--force")
        await exec_fn(git_command(repo, *args))
    except CommandExecutionError as e:
        raise GitOperationError(f"Failed to push branch {branch}: {e}") from e

    log.info("branch_pushed", branch=branch, repo_path=repo, force=force)
