"""Runner configuration."""

from agentfarm.config.settings import (
    AzureDevOpsConfig,
    KubernetesExecConfig,
    RunnerSettings,
    StepDefaults,
)

__all__ = ["AzureDevOpsConfig", "KubernetesExecConfig", "RunnerSettings", "StepDefaults"]
