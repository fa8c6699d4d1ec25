"""Tests for agentfarm.exceptions module."""

import pytest

from agentfarm.exceptions import (
    AgentFarmError,
    BaseBranchNotFoundError,
    BranchComparisonError,
    CommandExecutionError,
    ConsistencyError,
    ExternalServiceError,
    GitOperationError,
    InvalidGitUrlError,
    NoCommitsBetweenBranchesError,
    PlatformAPIError,
    PlatformError,
    SourceBranchNotFoundError,
    StepNotFoundError,
    StepRetryExhaustedError,
    StepTimeoutError,
    StepValidationError,
    WorkflowError,
    WorktreeError,
    WorktreeInUseError,
)


class TestAgentFarmError:
    """Test base AgentFarmError class."""

    def test_message_attribute(self):
        error = AgentFarmError("Test error message")

        assert error.message == "Test error message"
        assert str(error) == "Test error message"

    @pytest.mark.parametrize(
        "error",
        [
            CommandExecutionError("x"),
            WorktreeInUseError("/tmp/wt"),
            StepTimeoutError("s", 1),
            PlatformAPIError("x"),
            SourceBranchNotFoundError("x"),
        ],
    )
    def test_hierarchy_roots_at_base(self, error):
        assert isinstance(error, AgentFarmError)


class TestGitErrors:
    def test_command_execution_defaults(self):
        error = CommandExecutionError("failed")

        assert isinstance(error, GitOperationError)
        assert error.exit_code == -1
        assert error.stdout == ""
        assert error.command is None

    def test_invalid_url_message(self):
        error = InvalidGitUrlError("ftp://x", "unsupported scheme")

        assert error.message == "Cannot parse repository URL: ftp://x (unsupported scheme)"
        assert error.url == "ftp://x"

    def test_worktree_in_use(self):
        error = WorktreeInUseError("/tmp/wt")

        assert isinstance(error, WorktreeError)
        assert error.path == "/tmp/wt"
        assert "in use by another workflow execution" in error.message


class TestStepErrors:
    """Workflow step errors."""

    def test_timeout(self):
        error = StepTimeoutError("push-1", 60000)

        assert isinstance(error, WorkflowError)
        assert str(error) == "Step 'push-1' timed out after 60000ms"

    def test_retry_exhausted_keeps_last_error(self):
        last = RuntimeError("network down")
        error = StepRetryExhaustedError("push-1", 3, last)

        assert error.last_error is last
        assert error.attempts == 3
        assert str(error) == "Step 'push-1' failed after 3 attempt(s): network down"

    def test_validation_details(self):
        error = StepValidationError("git.worktree", ["operation: Field required"])

        assert error.message == (
            "Invalid configuration for action 'git.worktree': operation: Field required"
        )

    def test_validation_without_details(self):
        assert StepValidationError("git.push").details == []

    def test_not_found(self):
        assert StepNotFoundError("git.rebase").message == "Unknown step action: git.rebase"


class TestPlatformErrors:
    def test_status_code_in_string(self):
        error = ExternalServiceError("Bad request", status_code=400)

        assert str(error) == "Bad request (HTTP 400)"
        assert error.message == "Bad request"

    def test_api_error_details(self):
        details = [{"resource": "PullRequest", "code": "custom", "message": "No commits"}]
        error = PlatformAPIError("Validation Failed", 422, details=details, endpoint="/pulls")

        assert error.details == details
        assert error.endpoint == "/pulls"
        assert error.status_code == 422

    def test_consistency_retryable_flags(self):
        assert BranchComparisonError("x").retryable is True
        assert NoCommitsBetweenBranchesError("x").retryable is False
        assert isinstance(SourceBranchNotFoundError("x"), ConsistencyError)

    def test_owner_and_repo(self):
        error = BaseBranchNotFoundError("missing", owner="octo", repo="widgets")

        assert isinstance(error, PlatformError)
        assert (error.owner, error.repo) == ("octo", "widgets")
