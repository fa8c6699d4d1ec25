"""Repository URL helpers.

Parses GitHub remote URLs, derives the repository path used inside agent
pods, and injects push credentials into HTTPS remote URLs.

Supported GitHub URL formats:
    HTTPS:
        - https://github.com/owner/repo.git
        - https://github.com/owner/repo
    SSH:
        - git@github.com:owner/repo.git
        - git@github.com:owner/repo

Example:
    >>> parse_github_url("git@github.com:octo/widgets.git")
    ('octo', 'widgets')
    >>> pod_repo_path("https://github.com/octo/widgets.git", "42")
    '/workspace/widgets'
"""

import re
from urllib.parse import quote, urlsplit, urlunsplit

from agentfarm.exceptions import InvalidGitUrlError

GITHUB_HTTPS_PATTERN = re.compile(r"github\.com[/:]([^/]+)/([^/]+?)(?:\.git)?/?$", re.IGNORECASE)
GITHUB_SSH_PATTERN = re.compile(r"git@github\.com:([^/]+)/([^/]+?)(?:\.git)?/?$", re.IGNORECASE)

AUTHENTICATED_URL_PATTERN = re.compile(r"^https?://[^/@]+@")

DEFAULT_WORKSPACE_ROOT = "/workspace"


def parse_github_url(url: str) -> tuple[str, str]:
    """Extract ``(owner, repo)`` from a GitHub HTTPS or SSH URL.

    Raises:
        InvalidGitUrlError: If neither pattern matches
    """
    for pattern in (GITHUB_HTTPS_PATTERN, GITHUB_SSH_PATTERN):
        match = pattern.search(url.strip())
        if match:
            return match.group(1), match.group(2)

    raise InvalidGitUrlError(url, "not a GitHub repository URL")


def repo_name_from_url(repo_url: str) -> str:
    """Last path segment of ``repo_url`` without a trailing ``.git``."""
    return repo_url.rstrip().split("/")[-1].removesuffix(".git")


def pod_repo_path(
    repo_url: str, work_item_id: str, workspace_root: str = DEFAULT_WORKSPACE_ROOT
) -> str:
    """Path of the repository checkout inside an agent pod.

    Falls back to ``repo-<work_item_id>`` when the URL has no usable last
    segment.
    """
    repo_name = repo_name_from_url(repo_url or "") or f"repo-{work_item_id}"
    return f"{workspace_root.rstrip('/')}/{repo_name}"


def is_authenticated_url(url: str) -> bool:
    return bool(AUTHENTICATED_URL_PATTERN.match(url))


def _with_userinfo(url: str, userinfo: str) -> str:
    parts = urlsplit(url)
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    return urlunsplit((parts.scheme, f"{userinfo}@{host}", parts.path, parts.query, parts.fragment))


def authenticate_github_url(url: str, token: str | None) -> str:
    """Rewrite a GitHub HTTPS URL to ``https://x-access-token:<token>@github.com/...``.

    URLs that are not GitHub HTTPS URLs, or already carry credentials, are
    returned unchanged.
    """
    if not token or is_authenticated_url(url) or "github.com" not in url:
        return url
    if not url.startswith(("https://", "http://")):
        return url
    return _with_userinfo(url, f"x-access-token:{quote(token, safe='')}")


def authenticate_azure_url(url: str, pat: str | None) -> str:
    """Rewrite an Azure DevOps HTTPS URL to carry the PAT as username."""
    if not pat or is_authenticated_url(url):
        return url
    if "dev.azure.com" not in url and "visualstudio.com" not in url:
        return url
    if not url.startswith(("https://", "http://")):
        return url
    return _with_userinfo(url, quote(pat, safe=""))


def authenticate_url(url: str, token: str | None) -> str:
    """Inject ``token`` using the scheme of the URL's platform."""
    if "github.com" in url:
        return authenticate_github_url(url, token)
    return authenticate_azure_url(url, token)
