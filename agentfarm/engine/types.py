"""Types passed to step executors.

A step executor receives one :class:`StepExecutionRequest` bundling the step
descriptor, the job's current context, the operator-facing logger, run flags
and injected services. Executors return a payload or raise; the dispatcher
folds both into a :class:`~agentfarm.models.domain.StepResult`.

Example:
    Building a request for a push step::

        request = StepExecutionRequest(
            step=StepDescriptor(id="push-1", action="git.push"),
            context=context,
            logger=step_logger("push-1"),
        )
"""

from dataclasses import dataclass, field
from typing import Any

from agentfarm.config.settings import KubernetesExecConfig
from agentfarm.engine.context import ExecutionContext
from agentfarm.execution.environment import ExecutionEnvironment
from agentfarm.git.worktree import WorktreeInUseCheck
from agentfarm.platforms.base import PlatformAdapter
from agentfarm.utils.logging_config import StepLogger
from agentfarm.utils.retry import DEFAULT_RETRY_COUNT, DEFAULT_STEP_TIMEOUT_MS


@dataclass
class StepDescriptor:
    """One step of a workflow as declared in the workflow definition.

    Attributes:
        id: Unique step identifier within the workflow
        action: Action name such as ``git.commit`` or ``platform.create_pr``
        config: Raw action configuration, validated before execution
        timeout_ms: Deadline for each attempt
        retry_count: Extra attempts after a failure
        continue_on_error: Keep running the job when this step fails
    """

    id: str
    action: str
    config: dict[str, Any] = field(default_factory=dict)
    timeout_ms: int = DEFAULT_STEP_TIMEOUT_MS
    retry_count: int = DEFAULT_RETRY_COUNT
    continue_on_error: bool = False


@dataclass(frozen=True)
class StepFlags:
    """Run-wide switches."""

    preview_mode: bool = False
    """Report what would happen without touching git or the platform."""


@dataclass
class StepServices:
    """Collaborators injected into executors.

    ``environment`` overrides the environment normally derived from the
    context's pod name; tests use it to inject fakes.
    """

    platform_adapter: PlatformAdapter | None = None
    environment: ExecutionEnvironment | None = None
    kube_config: KubernetesExecConfig | None = None
    is_in_use: WorktreeInUseCheck | None = None


@dataclass
class StepExecutionRequest:
    step: StepDescriptor
    context: ExecutionContext
    logger: StepLogger | None = None
    flags: StepFlags = field(default_factory=StepFlags)
    services: StepServices = field(default_factory=StepServices)

    def environment(self) -> ExecutionEnvironment:
        """Execution environment for this invocation (local or the context's pod)."""
        if self.services.environment is not None:
            return self.services.environment
        return ExecutionEnvironment.from_context(self.context, self.services.kube_config)
