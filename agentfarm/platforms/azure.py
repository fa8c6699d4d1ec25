"""
Azure DevOps platform adapter using the REST API (``api-version=6.0``).

Authentication is HTTP Basic with an empty user name and the PAT as password.
Pull requests need the repository GUID, which Azure work items carry in
``azure_repository_id``.
"""

import base64
from typing import Any

import httpx
import structlog

from agentfarm.exceptions import ConfigurationError, PlatformAPIError, PullRequestValidationError
from agentfarm.models.domain import Integration, PullRequestParams, WorkItem
from agentfarm.platforms.base import PlatformAdapter
from agentfarm.utils.connection_pool import HTTPConnectionPool, get_pool
from agentfarm.utils.retry import async_retry

log = structlog.get_logger(__name__)

API_VERSION = "6.0"
BRANCH_REF_PREFIX = "refs/heads/"
PR_EXISTS_TYPE_KEY = "GitPullRequestExistsException"


def branch_ref(branch: str) -> str:
    """Qualify a branch name as ``refs/heads/<branch>`` unless it already is."""
    return branch if branch.startswith("refs/") else f"{BRANCH_REF_PREFIX}{branch}"


def _parse_tags(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [tag.strip() for tag in raw.split(";") if tag.strip()]


def _assigned_to(raw: Any) -> str | None:
    if isinstance(raw, dict):
        return raw.get("uniqueName") or raw.get("displayName")
    return raw or None


class AzurePlatformAdapter(PlatformAdapter):
    """Azure DevOps adapter scoped to one project.

    Args:
        integration: Credentials (PAT) and organization URL
        project: Project holding the work items and, by default, the repository
        repo_id: Repository GUID, required only for pull requests
        repository_project: Project owning the repository when it differs
        fallback: Built from environment settings instead of a stored integration
    """

    def __init__(
        self,
        integration: Integration,
        project: str,
        repo_id: str | None = None,
        repository_project: str | None = None,
        fallback: bool = False,
    ) -> None:
        if not integration.organization:
            raise ConfigurationError("Organization URL is required for Azure DevOps integration")

        self.integration = integration
        self.org_url = integration.organization.rstrip("/")
        self.project = project
        self.repo_id = repo_id
        self.repository_project = repository_project or project
        self.fallback = fallback
        self._pool: HTTPConnectionPool | None = None

    def get_name(self) -> str:
        name = f"Azure DevOps ({self.project})"
        return f"{name} [Fallback]" if self.fallback else name

    async def _get_pool(self) -> HTTPConnectionPool:
        if self._pool is None:
            token = base64.b64encode(f":{self.integration.credentials}".encode()).decode()
            self._pool = await get_pool(
                name=f"azure-{self.integration.id}",
                base_url=self.org_url,
                headers={
                    "Authorization": f"Basic {token}",
                    "Content-Type": "application/json",
                },
            )
        return self._pool

    async def _request(self, method: str, endpoint: str, **kwargs: Any) -> Any:
        pool = await self._get_pool()
        params = {**kwargs.pop("params", {}), "api-version": API_VERSION}
        response = await pool.request(method, endpoint, params=params, **kwargs)

        if response.is_error:
            try:
                body = response.json()
            except ValueError:
                body = {}
            if not isinstance(body, dict):
                body = {}
            message = body.get("message") or response.reason_phrase or "Unknown error"
            log.error(
                "azure_api_error",
                status=response.status_code,
                endpoint=endpoint,
                error=message,
            )
            raise PlatformAPIError(
                f"Azure DevOps API Error: {message}",
                status_code=response.status_code,
                response_text=response.text,
                details=[body] if body.get("typeKey") else [],
                endpoint=endpoint,
            )

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    @property
    def _pull_requests_path(self) -> str:
        return f"/{self.repository_project}/_apis/git/repositories/{self.repo_id}/pullrequests"

    # -------------------------------------------------------------------------
    # Work items
    # -------------------------------------------------------------------------

    @async_retry(max_attempts=3, backoff_factor=2.0, exceptions=(httpx.TransportError,))
    async def get_work_item(self, work_item_id: str) -> WorkItem:
        data = await self._request(
            "GET", f"/{self.project}/_apis/wit/workitems", params={"ids": work_item_id}
        )
        items = (data or {}).get("value") or []
        if not items:
            raise PlatformAPIError(f"Work item {work_item_id} not found", status_code=404)

        item = items[0]
        fields = item.get("fields") or {}
        return WorkItem(
            id=str(item.get("id") or fields.get("System.Id") or work_item_id),
            title=fields.get("System.Title") or "Untitled",
            description=fields.get("System.Description") or "",
            work_item_type=fields.get("System.WorkItemType") or "Task",
            source="azure-devops",
            status="new",
            state=fields.get("System.State"),
            project=fields.get("System.TeamProject") or self.project,
            tags=_parse_tags(fields.get("System.Tags")),
            assigned_to=_assigned_to(fields.get("System.AssignedTo")),
        )

    async def post_comment(self, work_item_id: str, comment: str) -> None:
        await self._request(
            "PATCH",
            f"/{self.project}/_apis/wit/workitems/{work_item_id}",
            json=[{"op": "add", "path": "/fields/System.History", "value": comment}],
            headers={"Content-Type": "application/json-patch+json"},
        )
        log.info("azure_comment_posted", project=self.project, work_item=work_item_id)

    async def test_connection(self) -> bool:
        try:
            await self._request("GET", "/_apis/projects")
        except (PlatformAPIError, httpx.HTTPError) as e:
            log.warning("azure_connection_failed", error=str(e))
            return False
        return True

    # -------------------------------------------------------------------------
    # Pull requests
    # -------------------------------------------------------------------------

    async def _find_active_pull_request(self, source_ref: str, target_ref: str) -> str | None:
        """Return the URL of an active PR for the ref pair; lookup failures give None."""
        try:
            data = await self._request(
                "GET",
                self._pull_requests_path,
                params={
                    "searchCriteria.sourceRefName": source_ref,
                    "searchCriteria.targetRefName": target_ref,
                    "searchCriteria.status": "active",
                },
            )
        except (PlatformAPIError, httpx.HTTPError) as e:
            log.warning("azure_pr_search_failed", error=str(e))
            return None

        for pr in (data or {}).get("value") or []:
            if (
                pr.get("sourceRefName") == source_ref
                and pr.get("targetRefName") == target_ref
                and pr.get("status") == "active"
                and pr.get("url")
            ):
                return pr["url"]
        return None

    async def create_pull_request(self, params: PullRequestParams) -> str:
        if not self.repo_id:
            raise PullRequestValidationError(
                "Repository ID is required for Azure DevOps Pull Request", owner=self.project
            )

        source_ref = branch_ref(params.source)
        target_ref = branch_ref(params.target)

        existing = await self._find_active_pull_request(source_ref, target_ref)
        if existing:
            log.info("pull_request_exists", source=source_ref, target=target_ref, url=existing)
            return existing

        payload = {
            "sourceRefName": source_ref,
            "targetRefName": target_ref,
            "title": params.title,
            "description": params.description or "",
        }

        try:
            data = await self._request("POST", self._pull_requests_path, json=payload)
        except PlatformAPIError as e:
            if not self._is_conflict(e):
                raise
            log.info("pull_request_conflict", source=source_ref, target=target_ref)
            existing = await self._find_active_pull_request(source_ref, target_ref)
            if existing:
                return existing
            raise

        url = (data or {}).get("url") or ""
        log.info("pull_request_created", source=source_ref, target=target_ref, url=url)
        return url

    @staticmethod
    def _is_conflict(error: PlatformAPIError) -> bool:
        if any(d.get("typeKey") == PR_EXISTS_TYPE_KEY for d in error.details):
            return True
        return "active pull request" in error.message
