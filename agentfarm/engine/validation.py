"""Pydantic schemas for step configurations.

Each action has a schema; :func:`validate_step_config` parses a raw config
dict into it and reports every field problem at once.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from agentfarm.enums import StepAction, WorktreeOperation
from agentfarm.exceptions import StepNotFoundError, StepValidationError


class StepConfig(BaseModel):
    """Base for action configs: camelCase aliases accepted, unknown keys ignored."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class GitCheckoutConfig(StepConfig):
    branch: str | None = None


class GitBranchConfig(StepConfig):
    pattern: str | None = Field(default=None, description="Branch pattern with {type}/{id}")


class GitCommitConfig(StepConfig):
    message: str | None = Field(default=None, description="Commit message with {title}/{id}")


class GitPushConfig(StepConfig):
    pass


class GitWorktreeConfig(StepConfig):
    operation: WorktreeOperation
    path: str | None = None
    branch: str | None = None
    base_branch: str | None = Field(default=None, alias="baseBranch")


class PlatformCreatePrConfig(StepConfig):
    title: str | None = None
    description: str | None = None
    source: str | None = None
    target: str | None = None


class PlatformPostCommentConfig(StepConfig):
    comment: str | None = None


ACTION_SCHEMAS: dict[StepAction, type[StepConfig]] = {
    StepAction.GIT_CHECKOUT: GitCheckoutConfig,
    StepAction.GIT_BRANCH: GitBranchConfig,
    StepAction.GIT_COMMIT: GitCommitConfig,
    StepAction.GIT_PUSH: GitPushConfig,
    StepAction.GIT_WORKTREE: GitWorktreeConfig,
    StepAction.PLATFORM_CREATE_PR: PlatformCreatePrConfig,
    StepAction.PLATFORM_POST_COMMENT: PlatformPostCommentConfig,
}


def parse_action(action: str) -> StepAction:
    """Map an action name to :class:`StepAction`.

    Raises:
        StepNotFoundError: If no executor handles the action
    """
    try:
        return StepAction(action)
    except ValueError:
        raise StepNotFoundError(action) from None


def validate_step_config(action: str, config: dict[str, Any] | None) -> StepConfig:
    """Validate a raw step config against its action's schema.

    Raises:
        StepNotFoundError: If the action is unknown
        StepValidationError: With one ``field: message`` entry per problem
    """
    schema = ACTION_SCHEMAS[parse_action(action)]
    try:
        return schema.model_validate(config or {})
    except ValidationError as e:
        details = [
            f"{'.'.join(str(part) for part in error['loc']) or 'config'}: {error['msg']}"
            for error in e.errors()
        ]
        raise StepValidationError(action, details) from e
