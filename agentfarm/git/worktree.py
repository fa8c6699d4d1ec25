"""Git worktree lifecycle management.

Each job works in its own worktree so concurrent jobs never share a checkout.
Before a path is reused or replaced, an optional liveness predicate is asked
whether another job still holds it; a claimed path is never overwritten.

The predicate is advisory. Nothing is locked between the check and the
``git worktree add`` that follows, so two jobs racing for the same path can
both pass the check.

Example:
    >>> manager = WorktreeManager.for_environment(LocalEnvironment())
    >>> wt = await manager.create(
    ...     "/work/repo",
    ...     WorktreeSpec(path="/work/repo-wt-42", branch="fix/bug-42",
    ...                  base_branch="main", create_branch=True),
    ... )
    >>> wt.branch
    'fix/bug-42'
"""

import asyncio
import os
import posixpath
import shlex
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog

from agentfarm.exceptions import CommandExecutionError, WorktreeError, WorktreeInUseError
from agentfarm.execution.environment import (
    ExecFunction,
    ExecutionEnvironment,
    LocalEnvironment,
    PathExistenceCheck,
)
from agentfarm.git.operations import git_command
from agentfarm.models.domain import Worktree, WorktreeSpec

log = structlog.get_logger(__name__)

WorktreeInUseCheck = Callable[[str], Awaitable[bool]]


@dataclass(frozen=True)
class BranchStatus:
    """Whether a branch exists locally and as ``origin/<branch>``."""

    local: bool
    remote: bool


def parse_worktree_list(output: str) -> list[tuple[str, str, str, bool]]:
    """Parse ``git worktree list --porcelain`` into (path, branch, commit, is_main).

    The first entry is the main worktree.
    """
    entries: list[tuple[str, str, str, bool]] = []
    path = branch = commit = ""
    bare = False

    def flush() -> None:
        if path:
            entries.append((path, branch, commit, bare or not entries))

    for line in output.splitlines():
        line = line.strip()
        if line.startswith("worktree "):
            flush()
            path, branch, commit, bare = line[len("worktree ") :], "", "", False
        elif line.startswith("HEAD "):
            commit = line[len("HEAD ") :]
        elif line.startswith("branch "):
            branch = line[len("branch ") :].removeprefix("refs/heads/")
        elif line == "bare":
            bare = True
    flush()

    return entries


def _path_keys(path: str) -> set[str]:
    return {posixpath.normpath(path), os.path.realpath(path)}


class WorktreeManager:
    """Create, inspect and remove worktrees through an execution environment."""

    def __init__(self, exec_fn: ExecFunction, path_exists: PathExistenceCheck) -> None:
        self._exec = exec_fn
        self._path_exists = path_exists

    @classmethod
    def for_environment(cls, env: ExecutionEnvironment | None = None) -> "WorktreeManager":
        env = env or LocalEnvironment()
        return cls(env.exec, env.path_exists)

    async def _exists(self, path: str) -> bool:
        return await asyncio.to_thread(self._path_exists, path)

    async def list_worktrees(self, repo_path: str, include_stale: bool = False) -> list[Worktree]:
        """List registered worktrees.

        Args:
            repo_path: Main repository path
            include_stale: Also return worktrees whose directory is gone

        Raises:
            WorktreeError: If git cannot list worktrees
        """
        try:
            result = await self._exec(git_command(repo_path, "worktree", "list", "--porcelain"))
        except CommandExecutionError as e:
            log.error("worktree_list_failed", repo_path=repo_path, error=str(e))
            raise WorktreeError(f"Failed to list worktrees: {e}") from e

        worktrees = []
        for path, branch, commit, is_main in parse_worktree_list(result.stdout):
            exists = await self._exists(path)
            if exists or include_stale:
                worktrees.append(
                    Worktree(path=path, branch=branch, commit=commit, is_main=is_main, exists=exists)
                )
        return worktrees

    async def create(
        self,
        repo_path: str,
        spec: WorktreeSpec,
        is_in_use: WorktreeInUseCheck | None = None,
    ) -> Worktree:
        """Create a worktree and verify git registered it.

        An existing directory at ``spec.path`` is cleaned up first, unless the
        liveness predicate reports it in use.

        Raises:
            WorktreeInUseError: If another job holds ``spec.path``
            WorktreeError: If creation or verification fails
        """
        await self.cleanup_existing(repo_path, spec.path, is_in_use)

        args = ["worktree", "add"]
        if spec.force:
            args.append("--force")
        if spec.create_branch:
            args += ["-b", spec.branch, spec.path]
            if spec.base_branch:
                args.append(spec.base_branch)
        else:
            args += [spec.path, spec.branch]

        try:
            await self._exec(git_command(repo_path, *args))
        except CommandExecutionError as e:
            log.error("worktree_create_failed", path=spec.path, branch=spec.branch, error=str(e))
            raise WorktreeError(f"Failed to create worktree: {e}", path=spec.path) from e

        expected = _path_keys(spec.path)
        worktrees = await self.list_worktrees(repo_path, include_stale=True)
        for worktree in worktrees:
            if _path_keys(worktree.path) & expected:
                log.info("worktree_created", path=spec.path, branch=spec.branch)
                return worktree

        available = ", ".join(wt.path for wt in worktrees)
        raise WorktreeError(
            f"Worktree was not created successfully. Expected: {spec.path}, Available: [{available}]",
            path=spec.path,
        )

    async def remove(self, repo_path: str, path: str, force: bool = False) -> None:
        """Remove a worktree.

        Raises:
            WorktreeError: If git refuses to remove it
        """
        args = ["worktree", "remove"]
        if force:
            args.append("--force")
        args.append(path)

        try:
            await self._exec(git_command(repo_path, *args))
        except CommandExecutionError as e:
            log.error("worktree_remove_failed", path=path, error=str(e))
            raise WorktreeError(f"Failed to remove worktree: {e}", path=path) from e

        log.info("worktree_removed", path=path)

    async def prune(self, repo_path: str) -> None:
        try:
            await self._exec(git_command(repo_path, "worktree", "prune"))
        except CommandExecutionError as e:
            raise WorktreeError(f"Failed to prune worktrees: {e}") from e
        log.debug("worktrees_pruned", repo_path=repo_path)

    async def is_valid(self, path: str) -> bool:
        """Whether ``path`` is a usable git checkout (its git dir resolves)."""
        try:
            await self._exec(git_command(path, "rev-parse", "--git-dir"))
        except CommandExecutionError:
            return False
        return True

    async def branch_status(self, repo_path: str, branch: str) -> BranchStatus:
        local = remote = False
        try:
            result = await self._exec(git_command(repo_path, "branch", "--list", branch))
            local = bool(result.stdout.strip())
        except CommandExecutionError:
            pass
        try:
            result = await self._exec(
                git_command(repo_path, "branch", "-r", "--list", f"origin/{branch}")
            )
            remote = bool(result.stdout.strip())
        except CommandExecutionError:
            pass
        return BranchStatus(local=local, remote=remote)

    async def cleanup_existing(
        self,
        repo_path: str,
        path: str,
        is_in_use: WorktreeInUseCheck | None = None,
    ) -> bool:
        """Remove whatever occupies ``path`` so a worktree can be created there.

        Returns:
            True if something was removed, False if the path was free

        Raises:
            WorktreeInUseError: If the liveness predicate claims the path
        """
        if not await self._exists(path):
            return False

        if is_in_use is not None and await is_in_use(path):
            log.warning("worktree_in_use", path=path)
            raise WorktreeInUseError(path)

        log.info("worktree_cleanup", path=path)
        try:
            await self.remove(repo_path, path, force=True)
        except WorktreeError:
            try:
                await self._exec(f"rm -rf {shlex.quote(path)}")
            except CommandExecutionError as e:
                raise WorktreeError(f"Failed to clean up existing worktree: {e}", path=path) from e
            await self.prune(repo_path)
        return True


async def create_worktree(
    repo_path: str,
    spec: WorktreeSpec,
    env: ExecutionEnvironment | None = None,
    is_in_use: WorktreeInUseCheck | None = None,
) -> Worktree:
    """Create a worktree with the manager of ``env`` (local by default)."""
    return await WorktreeManager.for_environment(env).create(repo_path, spec, is_in_use)


async def remove_worktree(
    repo_path: str,
    path: str,
    force: bool = False,
    env: ExecutionEnvironment | None = None,
) -> None:
    await WorktreeManager.for_environment(env).remove(repo_path, path, force)


async def list_worktrees(
    repo_path: str, include_stale: bool = False, env: ExecutionEnvironment | None = None
) -> list[Worktree]:
    return await WorktreeManager.for_environment(env).list_worktrees(repo_path, include_stale)


async def prune_worktrees(repo_path: str, env: ExecutionEnvironment | None = None) -> None:
    await WorktreeManager.for_environment(env).prune(repo_path)


async def is_valid_worktree(path: str, env: ExecutionEnvironment | None = None) -> bool:
    return await WorktreeManager.for_environment(env).is_valid(path)


async def branch_status(
    repo_path: str, branch: str, env: ExecutionEnvironment | None = None
) -> BranchStatus:
    return await WorktreeManager.for_environment(env).branch_status(repo_path, branch)
