"""
Platform adapter factory.

Adapters come from two tiers:

- the integration tier, backed by a stored :class:`Integration`;
- the fallback tier, backed by ambient credentials (``GITHUB_TOKEN`` /
  ``COPILOT_TOKEN`` or the ``AZURE_*`` variables) when no integration exists.

Both tiers produce the same adapter classes; fallback adapters only differ in
name (`` [Fallback]`` suffix).
"""

import structlog

from agentfarm.config.settings import AzureDevOpsConfig, RunnerSettings
from agentfarm.enums import PlatformType, WorkItemSource
from agentfarm.exceptions import ConfigurationError, UnsupportedPlatformError
from agentfarm.git.urls import parse_github_url
from agentfarm.models.domain import Integration, WorkItem
from agentfarm.platforms.azure import AzurePlatformAdapter
from agentfarm.platforms.base import PlatformAdapter
from agentfarm.platforms.github import GitHubPlatformAdapter

log = structlog.get_logger(__name__)

AZURE_HOST_MARKERS = ("dev.azure.com", "visualstudio.com")

INTEGRATION_TYPES = {
    "github": PlatformType.GITHUB,
    "azure": PlatformType.AZURE,
    "azure-devops": PlatformType.AZURE,
}

__all__ = [
    "detect_platform_type",
    "parse_github_url",
    "create_platform_adapter",
    "create_fallback_adapter",
    "resolve_platform_adapter",
]


def detect_platform_type(work_item: WorkItem) -> PlatformType:
    """Detect the hosting platform of a work item.

    The explicit source tag wins; otherwise the repository URL is matched by
    host substring. Anything else is ``UNKNOWN``.
    """
    if work_item.source == WorkItemSource.GITHUB:
        return PlatformType.GITHUB
    if work_item.source == WorkItemSource.AZURE_DEVOPS:
        return PlatformType.AZURE

    repo_url = (work_item.repository_url or "").lower()
    if "github.com" in repo_url:
        return PlatformType.GITHUB
    if any(marker in repo_url for marker in AZURE_HOST_MARKERS):
        return PlatformType.AZURE
    return PlatformType.UNKNOWN


def _unsupported(work_item: WorkItem) -> UnsupportedPlatformError:
    return UnsupportedPlatformError(
        f"Cannot detect platform type for repository: {work_item.repository_url}. "
        "Supported platforms: GitHub, Azure DevOps."
    )


def _github_adapter(
    integration: Integration, work_item: WorkItem, fallback: bool = False
) -> GitHubPlatformAdapter:
    if not work_item.repository_url:
        raise ConfigurationError("Repository URL is required for GitHub adapter")
    owner, repo = parse_github_url(work_item.repository_url)
    return GitHubPlatformAdapter(integration, owner, repo, fallback=fallback)


def create_platform_adapter(integration: Integration, work_item: WorkItem) -> PlatformAdapter:
    """Build an adapter from a stored integration.

    The platform is detected from the work item; when detection is
    inconclusive the integration's own ``type`` decides.

    Raises:
        ConfigurationError: If required repository or organization data is missing
        InvalidGitUrlError: If a GitHub repository URL cannot be parsed
        UnsupportedPlatformError: If no platform can be determined
    """
    platform = detect_platform_type(work_item)
    if platform is PlatformType.UNKNOWN:
        platform = INTEGRATION_TYPES.get(integration.type.lower(), PlatformType.UNKNOWN)

    if platform is PlatformType.GITHUB:
        adapter: PlatformAdapter = _github_adapter(integration, work_item)
    elif platform is PlatformType.AZURE:
        if not integration.organization:
            raise ConfigurationError("Organization URL is required for Azure DevOps adapter")
        adapter = AzurePlatformAdapter(
            integration,
            work_item.project,
            repo_id=work_item.azure_repository_id,
            repository_project=work_item.azure_repository_project,
        )
    else:
        raise _unsupported(work_item)

    log.info("platform_adapter_created", adapter=adapter.get_name(), integration=integration.id)
    return adapter


def create_fallback_adapter(
    work_item: WorkItem,
    github_token: str | None = None,
    azure_config: AzureDevOpsConfig | None = None,
) -> PlatformAdapter:
    """Build an adapter from ambient credentials.

    Raises:
        ConfigurationError: If the credential for the detected platform is missing
        UnsupportedPlatformError: If the platform cannot be detected
    """
    platform = detect_platform_type(work_item)

    if platform is PlatformType.GITHUB:
        if not github_token:
            raise ConfigurationError(
                "GitHub token is required for GitHub repositories. "
                "Set GITHUB_TOKEN or COPILOT_TOKEN environment variable."
            )
        integration = Integration(
            id="fallback-github", name="GitHub Fallback", type="github", credentials=github_token
        )
        adapter: PlatformAdapter = _github_adapter(integration, work_item, fallback=True)

    elif platform is PlatformType.AZURE:
        if azure_config is None:
            raise ConfigurationError(
                "Azure DevOps configuration is required for Azure repositories. "
                "Set AZURE_ORG_URL, AZURE_PROJECT, and AZURE_PAT environment variables."
            )
        integration = Integration(
            id="fallback-azure",
            name="Azure DevOps Fallback",
            type="azure",
            credentials=azure_config.pat.get_secret_value(),
            organization=azure_config.org_url,
        )
        adapter = AzurePlatformAdapter(
            integration,
            azure_config.project,
            repo_id=work_item.azure_repository_id,
            repository_project=work_item.azure_repository_project,
            fallback=True,
        )

    else:
        raise _unsupported(work_item)

    log.info("fallback_adapter_created", adapter=adapter.get_name(), platform=str(platform))
    return adapter


def resolve_platform_adapter(
    work_item: WorkItem,
    integration: Integration | None = None,
    settings: RunnerSettings | None = None,
) -> PlatformAdapter:
    """Use the integration tier when an integration exists, else the fallback tier."""
    if integration is not None:
        return create_platform_adapter(integration, work_item)

    settings = settings or RunnerSettings()
    return create_fallback_adapter(
        work_item,
        github_token=settings.github_token_value,
        azure_config=settings.azure_config,
    )
