"""Enumerations for agentfarm step actions and platforms."""

from enum import Enum


class StepAction(str, Enum):
    """Workflow step actions handled by the step executors.

    The prefix before the dot selects the executor family.
    """

    GIT_CHECKOUT = "git.checkout"
    GIT_BRANCH = "git.branch"
    GIT_COMMIT = "git.commit"
    GIT_PUSH = "git.push"
    GIT_WORKTREE = "git.worktree"

    PLATFORM_CREATE_PR = "platform.create_pr"
    PLATFORM_POST_COMMENT = "platform.post_comment"

    def __str__(self) -> str:
        return self.value

    @property
    def family(self) -> str:
        """Executor family (``git`` or ``platform``)."""
        return self.value.split(".", 1)[0]


class PlatformType(str, Enum):
    """Code-hosting platforms a work item can belong to."""

    GITHUB = "github"
    AZURE = "azure"
    UNKNOWN = "unknown"

    def __str__(self) -> str:
        return self.value


class WorkItemSource(str, Enum):
    """Explicit source tags carried by work items."""

    GITHUB = "github"
    AZURE_DEVOPS = "azure-devops"

    def __str__(self) -> str:
        return self.value


class WorktreeOperation(str, Enum):
    """Operations supported by the ``git.worktree`` step."""

    CREATE = "create"
    REMOVE = "remove"

    def __str__(self) -> str:
        return self.value
