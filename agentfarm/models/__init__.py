"""Data models for the step runner."""

from agentfarm.models.domain import (
    BranchCreated,
    ExecResult,
    GitConfig,
    Integration,
    PullRequestParams,
    StepResult,
    WorkItem,
    Worktree,
    WorktreeSpec,
    WorktreeStepOutput,
)

__all__ = [
    "BranchCreated",
    "ExecResult",
    "GitConfig",
    "Integration",
    "PullRequestParams",
    "StepResult",
    "WorkItem",
    "Worktree",
    "WorktreeSpec",
    "WorktreeStepOutput",
]
