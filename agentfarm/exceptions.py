"""Custom exception hierarchy for the agentfarm step runner.

This module defines a structured exception hierarchy that enables precise
error handling at the step boundary, where every failure is normalized into
a failed ``StepResult`` instead of escaping to the caller.

Exception Hierarchy:
    AgentFarmError (base)
    ├── ConfigurationError
    ├── GitOperationError
    │   ├── CommandExecutionError
    │   ├── NothingToCommitError
    │   ├── InvalidGitUrlError
    │   └── WorktreeError
    │       └── WorktreeInUseError
    ├── WorkflowError
    │   ├── StepTimeoutError
    │   ├── StepRetryExhaustedError
    │   ├── StepValidationError
    │   └── StepNotFoundError
    ├── ExternalServiceError
    │   └── PlatformAPIError
    └── PlatformError
        ├── UnsupportedPlatformError
        ├── PullRequestValidationError
        ├── BaseBranchNotFoundError
        └── ConsistencyError
            ├── SourceBranchNotFoundError
            ├── NoCommitsBetweenBranchesError
            └── BranchComparisonError

Example Usage:
    >>> from agentfarm.exceptions import ConfigurationError
    >>> try:
    ...     load_config(path)
    ... except FileNotFoundError as e:
    ...     raise ConfigurationError(f"Config file not found: {path}") from e
"""

from typing import Any


class AgentFarmError(Exception):
    """Base exception for all agentfarm errors.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str) -> None:
        """Initialize exception.

        Args:
            message: Error message
        """
        self.message = message
        super().__init__(message)


class ConfigurationError(AgentFarmError):
    """Configuration-related errors.

    Examples:
        - Configuration file not found
        - Invalid YAML syntax
        - Missing token for the detected platform
    """

    pass


# =============================================================================
# Git Errors
# =============================================================================


class GitOperationError(AgentFarmError):
    """Git operation errors.

    Raised when git operations fail (checkout, commit, push, worktree
    management) or the repository state is invalid.
    """

    pass


class CommandExecutionError(GitOperationError):
    """A shell command exited unsuccessfully.

    Raised by both the local and the remote (pod) exec functions so callers
    cannot tell which environment produced the failure.

    Attributes:
        command: The command string that was executed
        exit_code: Process exit code, ``-1`` when unknown (killed or not spawned)
        stdout: Captured standard output
        stderr: Captured standard error
    """

    def __init__(
        self,
        message: str,
        command: str | None = None,
        exit_code: int = -1,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        """Initialize exception.

        Args:
            message: Error message
            command: The command that failed
            exit_code: Exit code of the process
            stdout: Captured standard output
            stderr: Captured standard error
        """
        super().__init__(message)
        self.command = command
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr


class NothingToCommitError(GitOperationError):
    """The working tree had no changes to commit."""

    pass


class InvalidGitUrlError(GitOperationError):
    """Raised when a repository URL format is not recognized.

    Attributes:
        url: The invalid URL
    """

    def __init__(self, url: str, reason: str | None = None) -> None:
        """Initialize exception.

        Args:
            url: The invalid URL
            reason: Optional reason for the error
        """
        msg = f"Cannot parse repository URL: {url}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)
        self.url = url


class WorktreeError(GitOperationError):
    """Worktree creation, verification, or removal failed.

    Attributes:
        path: Worktree path involved in the failure
    """

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class WorktreeInUseError(WorktreeError):
    """A worktree path is claimed by another live job."""

    def __init__(self, path: str) -> None:
        super().__init__(
            f"Worktree is currently in use by another workflow execution: {path}",
            path=path,
        )


# =============================================================================
# Workflow / Step Errors
# =============================================================================


class WorkflowError(AgentFarmError):
    """Workflow step execution errors."""

    pass


class StepTimeoutError(WorkflowError):
    """A step exceeded its deadline.

    Attributes:
        step_id: Identifier of the step that timed out
        timeout_ms: The deadline that was exceeded, in milliseconds
    """

    def __init__(self, step_id: str, timeout_ms: int) -> None:
        super().__init__(f"Step '{step_id}' timed out after {timeout_ms}ms")
        self.step_id = step_id
        self.timeout_ms = timeout_ms


class StepRetryExhaustedError(WorkflowError):
    """All attempts of a step failed.

    Attributes:
        step_id: Identifier of the step
        attempts: Total number of attempts made
        last_error: The error observed on the final attempt
    """

    def __init__(self, step_id: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"Step '{step_id}' failed after {attempts} attempt(s): {last_error}")
        self.step_id = step_id
        self.attempts = attempts
        self.last_error = last_error


class StepValidationError(WorkflowError):
    """A step's configuration failed schema validation.

    Attributes:
        action: The step action whose configuration was invalid
        details: Field-level validation messages
    """

    def __init__(self, action: str, details: list[str] | None = None) -> None:
        self.action = action
        self.details = details or []
        message = f"Invalid configuration for action '{action}'"
        if self.details:
            message = f"{message}: {'; '.join(self.details)}"
        super().__init__(message)


class StepNotFoundError(WorkflowError):
    """No executor is registered for a step action."""

    def __init__(self, action: str) -> None:
        super().__init__(f"Unknown step action: {action}")
        self.action = action


# =============================================================================
# Platform Errors
# =============================================================================


class ExternalServiceError(AgentFarmError):
    """External service communication errors.

    Raised when communication with external services fails
    (HTTP errors, API failures, timeouts, etc.).
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_text: str | None = None,
    ) -> None:
        """Initialize exception.

        Args:
            message: Error message
            status_code: HTTP status code (if applicable)
            response_text: Response body text (if applicable)
        """
        self.status_code = status_code
        self.response_text = response_text

        full_message = message
        if status_code:
            full_message = f"{message} (HTTP {status_code})"

        super().__init__(full_message)
        self.message = message


class PlatformAPIError(ExternalServiceError):
    """A code-hosting platform API returned an error response.

    Attributes:
        details: Structured validation entries returned by the API
            (``resource``/``field``/``code``/``message`` for GitHub)
        endpoint: The endpoint that was called
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_text: str | None = None,
        details: list[dict[str, Any]] | None = None,
        endpoint: str | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code, response_text=response_text)
        self.details = details or []
        self.endpoint = endpoint


class PlatformError(AgentFarmError):
    """Platform operation failed for a reason other than a raw API error.

    Attributes:
        owner: Repository owner (or Azure project)
        repo: Repository name
    """

    def __init__(self, message: str, owner: str | None = None, repo: str | None = None) -> None:
        super().__init__(message)
        self.owner = owner
        self.repo = repo


class UnsupportedPlatformError(PlatformError):
    """The platform of a work item could not be determined."""

    pass


class PullRequestValidationError(PlatformError):
    """PR parameters are invalid (same source and target, empty title)."""

    pass


class BaseBranchNotFoundError(PlatformError):
    """Neither the requested base branch nor its fallbacks exist."""

    pass


class ConsistencyError(PlatformError):
    """The remote platform does not yet reflect a just-completed push.

    Attributes:
        retryable: Whether the caller may retry the whole operation later
    """

    retryable: bool = False


class SourceBranchNotFoundError(ConsistencyError):
    """The source branch was not visible remotely after all attempts."""

    pass


class NoCommitsBetweenBranchesError(ConsistencyError):
    """The source branch has no commits ahead of the base branch."""

    pass


class BranchComparisonError(ConsistencyError):
    """Comparing the branches failed, typically during push propagation."""

    retryable = True
