"""
Domain models for the step runner.

This module contains the data classes representing the entities that flow
through workflow steps: work items pulled from a platform, git configuration,
worktrees, platform integrations, and step results. These models are the
normalized internal representation, converted from platform-specific formats
(GitHub issues, Azure DevOps work items).

Example:
    Creating a work item from a GitHub issue::

        work_item = WorkItem(
            id="42",
            title="Fix login bug",
            work_item_type="Bug",
            source="github",
            repository_url="https://github.com/org/repo.git",
        )
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Generic, TypeVar

T = TypeVar("T")


@dataclass
class WorkItem:
    """A unit of work (issue, bug, task) fetched from a platform.

    Example:
        Converting from a GitHub issue payload::

            work_item = WorkItem(
                id=str(data["number"]),
                title=data["title"],
                description=data["body"] or "",
                source="github",
                repository_url=f"https://github.com/{owner}/{repo}.git",
            )
    """

    id: str
    """Platform identifier (issue number or work item id), always a string."""

    title: str

    description: str = ""

    work_item_type: str = "Task"
    """Free-form type ("Bug", "Task", "User Story"). Used in branch patterns."""

    source: str | None = None
    """Explicit platform tag: ``"github"`` or ``"azure-devops"``.

    When present this takes priority over URL-based platform detection.
    """

    repository_url: str | None = None

    project: str = ""
    """Repository name on GitHub, project name on Azure DevOps."""

    status: str = "new"
    state: str | None = None
    tags: list[str] = field(default_factory=list)
    assigned_to: str | None = None

    azure_repository_id: str | None = None
    """Azure DevOps repository GUID, required to open pull requests there."""

    azure_repository_project: str | None = None


@dataclass(frozen=True)
class GitConfig:
    """Git settings for one step invocation.

    Immutable: executors running inside a pod derive a rewritten copy with
    :meth:`with_repo_path` instead of mutating the job's configuration.
    """

    repo_path: str
    repo_url: str = ""
    git_user_name: str | None = None
    git_user_email: str | None = None
    pat: str | None = None
    """Token injected into the remote URL before pushing."""

    def with_repo_path(self, repo_path: str) -> "GitConfig":
        """Return a copy pointing at a different checkout path."""
        return replace(self, repo_path=repo_path)


@dataclass(frozen=True)
class ExecResult:
    """Captured output of a successful shell command."""

    stdout: str
    stderr: str = ""


@dataclass
class Worktree:
    """A git worktree as reported by ``git worktree list --porcelain``."""

    path: str
    branch: str = ""
    commit: str = ""
    is_main: bool = False
    exists: bool = True


@dataclass
class WorktreeSpec:
    """Options for creating a worktree.

    Attributes:
        path: Directory where the worktree is created
        branch: Branch checked out in the worktree
        base_branch: Start point when ``create_branch`` is set
        create_branch: Create ``branch`` with ``-b`` instead of checking it out
        force: Pass ``--force`` to ``git worktree add``
    """

    path: str
    branch: str
    base_branch: str | None = None
    create_branch: bool = False
    force: bool = False


@dataclass
class Integration:
    """A stored platform integration record.

    ``credentials`` holds the GitHub token or the Azure DevOps PAT;
    ``organization`` is the Azure DevOps organization URL.
    """

    id: str
    name: str
    type: str
    credentials: str
    organization: str | None = None
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class PullRequestParams:
    """Parameters for opening a pull request."""

    title: str
    source: str
    target: str
    description: str = ""


@dataclass
class BranchCreated:
    """Payload of the ``git.branch`` step."""

    message: str
    new_branch_name: str

    def __str__(self) -> str:
        return self.message


@dataclass
class WorktreeStepOutput:
    """Payload of the ``git.worktree`` step."""

    message: str
    worktree_path: str | None = None

    def __str__(self) -> str:
        return self.message


@dataclass
class StepResult(Generic[T]):
    """Outcome of a step: either a success payload or a typed error.

    Never carries both. Built with :meth:`success` / :meth:`failure`.

    Example:
        >>> result = StepResult.success("Pushed branch: feat/x")
        >>> result.ok
        True
    """

    ok: bool
    value: T | None = None
    error: BaseException | None = None

    @classmethod
    def success(cls, value: T) -> "StepResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: BaseException) -> "StepResult[T]":
        return cls(ok=False, error=error)

    def unwrap(self) -> T:
        """Return the payload or raise the recorded error."""
        if not self.ok:
            assert self.error is not None
            raise self.error
        return self.value  # type: ignore[return-value]

    def to_dict(self) -> dict[str, Any]:
        if self.ok:
            return {"ok": True, "value": str(self.value)}
        return {"ok": False, "error": str(self.error), "error_type": type(self.error).__name__}
