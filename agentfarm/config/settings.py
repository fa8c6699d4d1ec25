"""
Configuration system using Pydantic for type-safe settings management.

Settings come from environment variables (platform tokens, git identity) and
optionally from a YAML file whose values may reference ``${VAR_NAME}``
placeholders.
"""

from __future__ import annotations

import os
import re
from pathlib import Path

import yaml
from pydantic import AliasChoices, BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from agentfarm.exceptions import ConfigurationError


class KubernetesExecConfig(BaseModel):
    """Constants of the remote (pod) execution environment."""

    kubectl_binary: str = Field(default="kubectl", description="kubectl executable")
    namespace: str = Field(default="minions-farm", description="Namespace of the agent pods")
    container: str = Field(default="claude-code", description="Container to exec into")
    path_check_timeout: float = Field(
        default=5.0, gt=0, description="Seconds before a remote path check counts as missing"
    )
    workspace_root: str = Field(default="/workspace", description="Repository root inside the pod")


class StepDefaults(BaseModel):
    """Timeout and retry applied to steps that do not set their own."""

    timeout_ms: int = Field(default=300_000, gt=0, description="Per-attempt deadline")
    retry_count: int = Field(default=0, ge=0, description="Extra attempts after a failure")


class AzureDevOpsConfig(BaseModel):
    """Ambient Azure DevOps credentials used by the fallback adapter."""

    org_url: str = Field(..., description="Organization URL, e.g. https://dev.azure.com/org")
    project: str = Field(..., description="Project name")
    pat: SecretStr = Field(..., description="Personal access token")


class RunnerSettings(BaseSettings):
    """Step runner settings.

    Platform tokens use the conventional unprefixed variable names
    (``GITHUB_TOKEN``, ``AZURE_PAT``, ...). Everything else can be overridden
    with ``AGENTFARM_`` variables, nested with ``__``
    (``AGENTFARM_KUBERNETES__NAMESPACE``).
    """

    model_config = SettingsConfigDict(
        env_prefix="AGENTFARM_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    github_token: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("github_token", "GITHUB_TOKEN", "COPILOT_TOKEN"),
    )
    azure_org_url: str | None = Field(
        default=None, validation_alias=AliasChoices("azure_org_url", "AZURE_ORG_URL")
    )
    azure_project: str | None = Field(
        default=None, validation_alias=AliasChoices("azure_project", "AZURE_PROJECT")
    )
    azure_pat: SecretStr | None = Field(
        default=None, validation_alias=AliasChoices("azure_pat", "AZURE_PAT")
    )
    git_user_name: str | None = Field(
        default=None, validation_alias=AliasChoices("git_user_name", "GIT_USER_NAME")
    )
    git_user_email: str | None = Field(
        default=None, validation_alias=AliasChoices("git_user_email", "GIT_USER_EMAIL")
    )

    default_branch: str = Field(default="main", description="Base branch when none is given")
    kubernetes: KubernetesExecConfig = Field(default_factory=KubernetesExecConfig)
    steps: StepDefaults = Field(default_factory=StepDefaults)

    @property
    def github_token_value(self) -> str | None:
        return self.github_token.get_secret_value() if self.github_token else None

    @property
    def azure_config(self) -> AzureDevOpsConfig | None:
        """Azure fallback credentials, only when all three values are set."""
        if not (self.azure_org_url and self.azure_project and self.azure_pat):
            return None
        return AzureDevOpsConfig(
            org_url=self.azure_org_url,
            project=self.azure_project,
            pat=self.azure_pat,
        )

    @classmethod
    def from_yaml(cls, config_path: str) -> RunnerSettings:
        """Load settings from a YAML file with environment variable interpolation.

        Raises:
            ConfigurationError: If the file is missing, unreadable, not a YAML
                mapping, or fails validation
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            yaml_content = config_file.read_text()
        except OSError as e:
            raise ConfigurationError(f"Cannot read configuration file: {config_path}") from e

        try:
            yaml_content = cls._interpolate_env_vars(yaml_content)
        except ValueError as e:
            raise ConfigurationError(f"Invalid environment variable reference in config: {e}") from e

        try:
            config_dict = yaml.safe_load(yaml_content) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML syntax in {config_path}: {e}") from e

        if not isinstance(config_dict, dict):
            raise ConfigurationError("Configuration must be a YAML object, not a list or scalar")

        try:
            return cls(**config_dict)
        except Exception as e:
            raise ConfigurationError(f"Failed to validate configuration: {e}") from e

    @staticmethod
    def _interpolate_env_vars(content: str) -> str:
        """Replace ``${VAR}`` and ``${VAR:-default}`` outside comment lines.

        Raises:
            ValueError: If a required environment variable is not set
        """
        pattern = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")

        def replace_var(match: re.Match[str]) -> str:
            var_name, default_value = match.group(1), match.group(2)
            value = os.getenv(var_name)
            if value is not None:
                return value
            if default_value is not None:
                return default_value
            raise ValueError(f"Environment variable {var_name} is not set")

        return "\n".join(
            line if line.lstrip().startswith("#") else pattern.sub(replace_var, line)
            for line in content.split("\n")
        )
