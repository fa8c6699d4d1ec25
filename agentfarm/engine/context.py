"""Execution context for workflow steps.

This module provides the ExecutionContext dataclass that carries job state
through a sequence of steps. Contexts are frozen: a step reports its effects
by returning an updated copy, which the job runner threads into the next step.
"""

from dataclasses import dataclass, replace
from typing import Any

from agentfarm.models.domain import GitConfig, WorkItem


@dataclass(frozen=True)
class ExecutionContext:
    """Per-job state passed between workflow steps.

    Attributes:
        repo_path: Path of the main repository checkout
        worktree_path: Path of the job's isolated worktree, once created
        branch_name: Branch the job is working on
        default_branch: Base branch for checkouts and pull requests
        repo_url: Remote repository URL
        pod_name: Remote pod the job runs in; None for local execution
        git_config: Git identity and credentials for this job
        work_item: The work item being processed
    """

    repo_path: str
    work_item: WorkItem
    git_config: GitConfig

    worktree_path: str | None = None
    branch_name: str | None = None
    default_branch: str = "main"
    repo_url: str = ""

    pod_name: str | None = None

    @property
    def is_remote(self) -> bool:
        """Whether steps run inside a remote pod."""
        return bool(self.pod_name)

    @property
    def working_path(self) -> str:
        """Directory git commands should run in."""
        return self.worktree_path or self.repo_path

    def with_updates(self, **kwargs: Any) -> "ExecutionContext":
        """Create a new context with updated fields."""
        return replace(self, **kwargs)
