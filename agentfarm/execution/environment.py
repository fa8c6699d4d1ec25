"""Local and remote (pod) execution environments.

Git operations never spawn processes themselves: they receive an exec
function and a path-existence check from an :class:`ExecutionEnvironment`.
The local environment runs commands through ``/bin/sh`` on this host; the
remote one wraps every command in ``kubectl exec <pod> -- sh -c <command>``
so the caller's command string is interpreted exactly as it would be
locally. Both raise :class:`~agentfarm.exceptions.CommandExecutionError` on
failure, so callers cannot tell which one they hold.

Example:
    >>> env = ExecutionEnvironment.from_context(context)
    >>> result = await env.exec("git -C /workspace/repo status --porcelain")
    >>> env.path_exists("/workspace/repo")
    True
"""

from __future__ import annotations

import subprocess
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from agentfarm.config.settings import KubernetesExecConfig
from agentfarm.engine.context import ExecutionContext
from agentfarm.exceptions import CommandExecutionError
from agentfarm.git.urls import pod_repo_path
from agentfarm.models.domain import ExecResult, GitConfig
from agentfarm.utils.async_subprocess import run_command, run_shell_command

log = structlog.get_logger(__name__)

ExecFunction = Callable[[str], Awaitable[ExecResult]]
PathExistenceCheck = Callable[[str], bool]


class ExecutionEnvironment(ABC):
    """Where a job's git commands run."""

    @abstractmethod
    async def exec(self, command: str) -> ExecResult:
        """Run a shell command.

        Raises:
            CommandExecutionError: On a non-zero exit, an unknown exit status
                or a spawn failure (``exit_code=-1`` for the last two)
        """

    @abstractmethod
    def path_exists(self, path: str) -> bool:
        """Whether a directory exists. Never raises, never suspends."""

    @abstractmethod
    def git_config_for(self, context: ExecutionContext) -> GitConfig:
        """Git configuration with the repository path valid in this environment."""

    @property
    def is_remote(self) -> bool:
        return False

    @staticmethod
    def from_context(
        context: ExecutionContext,
        kube_config: KubernetesExecConfig | None = None,
    ) -> ExecutionEnvironment:
        """Remote environment when the context names a pod, else local."""
        if context.pod_name:
            return RemoteEnvironment(pod_name=context.pod_name, config=kube_config or KubernetesExecConfig())
        return LocalEnvironment()


@dataclass(frozen=True)
class LocalEnvironment(ExecutionEnvironment):
    """Runs commands on this host."""

    cwd: str | None = None

    async def exec(self, command: str) -> ExecResult:
        log.debug("local_exec", command=command)
        try:
            stdout, stderr, _ = await run_shell_command(command, cwd=self.cwd, check=True)
        except OSError as e:
            raise CommandExecutionError(
                f"Failed to spawn command: {e}", command=command, exit_code=-1, stderr=str(e)
            ) from e
        return ExecResult(stdout=stdout, stderr=stderr)

    def path_exists(self, path: str) -> bool:
        return Path(path).exists()

    def git_config_for(self, context: ExecutionContext) -> GitConfig:
        if context.git_config.repo_path == context.working_path:
            return context.git_config
        return context.git_config.with_repo_path(context.working_path)


@dataclass(frozen=True)
class RemoteEnvironment(ExecutionEnvironment):
    """Runs commands inside a container of a Kubernetes pod."""

    pod_name: str
    config: KubernetesExecConfig = field(default_factory=KubernetesExecConfig)

    @property
    def is_remote(self) -> bool:
        return True

    def kubectl_args(self, *command: str) -> list[str]:
        """Argument vector for ``kubectl exec`` running ``command`` in the pod."""
        return [
            self.config.kubectl_binary,
            "exec",
            self.pod_name,
            "-n",
            self.config.namespace,
            "-c",
            self.config.container,
            "--",
            *command,
        ]

    async def exec(self, command: str) -> ExecResult:
        log.info("pod_exec", pod=self.pod_name, command=command)
        try:
            stdout, stderr, code = await run_command(
                *self.kubectl_args("sh", "-c", command), check=False
            )
        except OSError as e:
            log.error("pod_exec_spawn_failed", pod=self.pod_name, error=str(e))
            raise CommandExecutionError(
                f"Failed to execute kubectl command: {e}",
                command=command,
                exit_code=-1,
                stderr=str(e),
            ) from e

        if code != 0:
            raise CommandExecutionError(
                f"Command failed with exit code {code} in pod {self.pod_name}: {stderr or stdout}",
                command=command,
                exit_code=code,
                stdout=stdout,
                stderr=stderr,
            )
        return ExecResult(stdout=stdout, stderr=stderr)

    def path_exists(self, path: str) -> bool:
        try:
            completed = subprocess.run(
                self.kubectl_args("test", "-d", path),
                capture_output=True,
                timeout=self.config.path_check_timeout,
                check=False,
            )
        except (subprocess.TimeoutExpired, OSError) as e:
            log.debug("pod_path_check_failed", pod=self.pod_name, path=path, error=str(e))
            return False
        return completed.returncode == 0

    def git_config_for(self, context: ExecutionContext) -> GitConfig:
        repo_url = context.git_config.repo_url or context.repo_url
        return context.git_config.with_repo_path(
            pod_repo_path(repo_url, context.work_item.id, self.config.workspace_root)
        )
