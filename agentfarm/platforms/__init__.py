"""Code-hosting platform adapters.

Key Components:
    - PlatformAdapter: Abstract base shared by all adapters
    - GitHubPlatformAdapter: GitHub REST API, with the PR-creation consistency checks
    - AzurePlatformAdapter: Azure DevOps REST API
    - resolve_platform_adapter: Integration tier first, fallback tier otherwise

Example:
    >>> adapter = resolve_platform_adapter(work_item, settings=RunnerSettings())
    >>> url = await adapter.create_pull_request(
    ...     PullRequestParams(title="fix: login", source="fix/bug-42", target="main")
    ... )
"""

from agentfarm.platforms.azure import AzurePlatformAdapter
from agentfarm.platforms.base import PlatformAdapter
from agentfarm.platforms.factory import (
    create_fallback_adapter,
    create_platform_adapter,
    detect_platform_type,
    resolve_platform_adapter,
)
from agentfarm.platforms.github import GitHubPlatformAdapter

__all__ = [
    "PlatformAdapter",
    "GitHubPlatformAdapter",
    "AzurePlatformAdapter",
    "detect_platform_type",
    "create_platform_adapter",
    "create_fallback_adapter",
    "resolve_platform_adapter",
]
