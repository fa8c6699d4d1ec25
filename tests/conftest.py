"""Pytest configuration and shared fixtures."""

from collections.abc import Iterable

import pytest

from agentfarm.engine.context import ExecutionContext
from agentfarm.exceptions import CommandExecutionError
from agentfarm.execution.environment import ExecutionEnvironment
from agentfarm.models.domain import ExecResult, GitConfig, WorkItem


class ScriptedEnvironment(ExecutionEnvironment):
    """Execution environment answering commands from a script.

    Rules match on a substring of the command; the most recently added
    matching rule wins.
    A rule's outcome is an ExecResult, an exception, or a list of either
    consumed one per call (the last entry repeats). Unmatched commands
    succeed with empty output.
    """

    def __init__(self, existing_paths: Iterable[str] = (), remote: bool = False) -> None:
        self.existing_paths = set(existing_paths)
        self.rules: list[tuple[str, list[ExecResult | Exception]]] = []
        self.commands: list[str] = []
        self.remote = remote

    def on(self, fragment: str, *outcomes: str | ExecResult | Exception) -> "ScriptedEnvironment":
        normalized = [ExecResult(stdout=o) if isinstance(o, str) else o for o in outcomes]
        self.rules.append((fragment, normalized or [ExecResult(stdout="")]))
        return self

    def fail(self, fragment: str, message: str = "error", exit_code: int = 1) -> "ScriptedEnvironment":
        return self.on(
            fragment,
            CommandExecutionError(message, command=fragment, exit_code=exit_code, stderr=message),
        )

    async def exec(self, command: str) -> ExecResult:
        self.commands.append(command)
        for fragment, outcomes in reversed(self.rules):
            if fragment in command:
                outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
                if isinstance(outcome, Exception):
                    raise outcome
                return outcome
        return ExecResult(stdout="")

    def path_exists(self, path: str) -> bool:
        return path in self.existing_paths

    def git_config_for(self, context: ExecutionContext) -> GitConfig:
        return context.git_config.with_repo_path(context.working_path)

    @property
    def is_remote(self) -> bool:
        return self.remote

    def ran(self, fragment: str) -> list[str]:
        """Commands containing ``fragment``."""
        return [c for c in self.commands if fragment in c]


@pytest.fixture
def scripted_env() -> ScriptedEnvironment:
    return ScriptedEnvironment(existing_paths=["/work/repo"])


@pytest.fixture
def work_item() -> WorkItem:
    """Sample GitHub work item."""
    return WorkItem(
        id="42",
        title="Fix login redirect",
        description="Users land on a blank page after login.",
        work_item_type="Bug",
        source="github",
        repository_url="https://github.com/octo/widgets.git",
        project="widgets",
    )


@pytest.fixture
def git_config() -> GitConfig:
    return GitConfig(
        repo_path="/work/repo",
        repo_url="https://github.com/octo/widgets.git",
        git_user_name="Test Agent",
        git_user_email="agent@example.com",
    )


@pytest.fixture
def execution_context(work_item: WorkItem, git_config: GitConfig) -> ExecutionContext:
    return ExecutionContext(
        repo_path="/work/repo",
        work_item=work_item,
        git_config=git_config,
        branch_name="fix/bug-42",
        repo_url="https://github.com/octo/widgets.git",
    )
