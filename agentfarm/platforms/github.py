"""
GitHub platform adapter using the REST API over httpx.

Pull request creation runs right after a push, while GitHub's API may not yet
show the new branch or its commits. :meth:`GitHubPlatformAdapter.create_pull_request`
therefore walks a fixed sequence of checks:

1. reject ``source == target`` without any request;
2. resolve the base branch: ``target``, then ``main``, then ``master``;
3. return an already-open PR for ``owner:source`` if there is one;
4. require a non-blank title (a blank description only warns);
5. wait for propagation;
6. confirm the source ref exists, with backoff;
7. compare base and source, failing when there is nothing to merge;
8. create the PR;
9. on "Validation Failed" / "No commits between", retry with backoff,
   re-checking for an open PR and re-resolving the base each time.
"""

import asyncio
from typing import Any

import httpx
import structlog

from agentfarm.exceptions import (
    BaseBranchNotFoundError,
    BranchComparisonError,
    NoCommitsBetweenBranchesError,
    PlatformAPIError,
    PullRequestValidationError,
    SourceBranchNotFoundError,
)
from agentfarm.models.domain import Integration, PullRequestParams, WorkItem
from agentfarm.platforms.base import PlatformAdapter
from agentfarm.utils.connection_pool import HTTPConnectionPool, get_pool
from agentfarm.utils.retry import async_retry

log = structlog.get_logger(__name__)

GITHUB_API_URL = "https://api.github.com"
USER_AGENT = "agentfarm"

FALLBACK_BASE_BRANCHES = ("main", "master")
PROPAGATION_DELAY = 2.0
SOURCE_BRANCH_ATTEMPTS = 3
VALIDATION_RETRY_ATTEMPTS = 3
VALIDATION_FAILURE_MARKERS = ("Validation Failed", "No commits between")


def format_github_error(body: Any, fallback: str) -> tuple[str, list[dict[str, Any]]]:
    """Build the error text for a failed GitHub response.

    GitHub reports field validation problems as
    ``errors: [{resource, field, code, message}]``; each becomes
    ``resource.field: message`` (or the code when there is no message).
    """
    if not isinstance(body, dict):
        return f"GitHub API Error: {fallback}", []

    message = body.get("message") or fallback
    errors = body.get("errors")
    details: list[dict[str, Any]] = []
    suffix = ""

    if isinstance(errors, list):
        details = [e for e in errors if isinstance(e, dict)]
        parts = []
        for entry in details:
            target = entry.get("resource") or ""
            if entry.get("field"):
                target = f"{target}.{entry['field']}"
            parts.append(f"{target}: {entry.get('message') or entry.get('code') or 'unknown error'}")
        suffix = f" Details: {', '.join(parts)}"
    elif errors:
        suffix = f" Details: {errors}"

    return f"GitHub API Error: {message}{suffix}", details


def _is_validation_failure(error: Exception) -> bool:
    text = str(error)
    return any(marker in text for marker in VALIDATION_FAILURE_MARKERS)


class GitHubPlatformAdapter(PlatformAdapter):
    """GitHub adapter for one repository.

    Built either from a stored integration or, by the factory's fallback tier,
    from an ambient ``GITHUB_TOKEN``; both paths share this class.
    """

    def __init__(
        self,
        integration: Integration,
        owner: str,
        repo: str,
        base_url: str = GITHUB_API_URL,
        fallback: bool = False,
    ) -> None:
        self.integration = integration
        self.owner = owner
        self.repo = repo
        self.base_url = base_url.rstrip("/")
        self.fallback = fallback
        self._pool: HTTPConnectionPool | None = None

    def get_name(self) -> str:
        name = f"GitHub ({self.owner}/{self.repo})"
        return f"{name} [Fallback]" if self.fallback else name

    @property
    def _repo_path(self) -> str:
        return f"/repos/{self.owner}/{self.repo}"

    async def _get_pool(self) -> HTTPConnectionPool:
        if self._pool is None:
            self._pool = await get_pool(
                name=f"github-{self.integration.id}",
                base_url=self.base_url,
                headers={
                    "Authorization": f"token {self.integration.credentials}",
                    "Accept": "application/vnd.github.v3+json",
                    "User-Agent": USER_AGENT,
                },
            )
        return self._pool

    async def _request(self, method: str, endpoint: str, **kwargs: Any) -> Any:
        """Send a request and decode the JSON body.

        Returns:
            Decoded JSON, or None for ``204 No Content``

        Raises:
            PlatformAPIError: For any non-2xx response
            httpx.TransportError: For connection-level failures
        """
        pool = await self._get_pool()
        response = await pool.request(method, endpoint, **kwargs)

        if response.is_error:
            try:
                body = response.json()
            except ValueError:
                body = None
            message, details = format_github_error(body, response.reason_phrase or "Unknown error")
            log.error(
                "github_api_error",
                status=response.status_code,
                endpoint=endpoint,
                error=message,
            )
            raise PlatformAPIError(
                message,
                status_code=response.status_code,
                response_text=response.text,
                details=details,
                endpoint=endpoint,
            )

        if response.status_code == 204:
            return None
        return response.json()

    # -------------------------------------------------------------------------
    # Work items
    # -------------------------------------------------------------------------

    @async_retry(max_attempts=3, backoff_factor=2.0, exceptions=(httpx.TransportError,))
    async def get_work_item(self, work_item_id: str) -> WorkItem:
        data = await self._request("GET", f"{self._repo_path}/issues/{work_item_id}")
        assignee = data.get("assignee") or {}
        return WorkItem(
            id=str(data["number"]),
            title=data["title"],
            description=data.get("body") or "",
            work_item_type="Task",
            source="github",
            status="new" if data.get("state") == "open" else "completed",
            state=data.get("state"),
            project=self.repo,
            repository_url=f"https://github.com/{self.owner}/{self.repo}.git",
            tags=[label["name"] for label in data.get("labels") or []],
            assigned_to=assignee.get("login"),
        )

    async def post_comment(self, work_item_id: str, comment: str) -> None:
        await self._request(
            "POST", f"{self._repo_path}/issues/{work_item_id}/comments", json={"body": comment}
        )
        log.info("github_comment_posted", owner=self.owner, repo=self.repo, issue=work_item_id)

    async def update_issue(
        self,
        issue_number: str,
        state: str | None = None,
        title: str | None = None,
        body: str | None = None,
        labels: list[str] | None = None,
        assignees: list[str] | None = None,
    ) -> None:
        """Partially update an issue; fields left as None are not sent."""
        payload = {
            key: value
            for key, value in {
                "state": state,
                "title": title,
                "body": body,
                "labels": labels,
                "assignees": assignees,
            }.items()
            if value is not None
        }
        if not payload:
            return

        await self._request("PATCH", f"{self._repo_path}/issues/{issue_number}", json=payload)
        log.info("github_issue_updated", owner=self.owner, repo=self.repo, issue=issue_number)

    async def test_connection(self) -> bool:
        try:
            await self._request("GET", "/user")
        except (PlatformAPIError, httpx.HTTPError) as e:
            log.warning("github_connection_failed", error=str(e))
            return False
        return True

    # -------------------------------------------------------------------------
    # Pull requests
    # -------------------------------------------------------------------------

    async def _branch_exists(self, branch: str) -> bool:
        try:
            await self._request("GET", f"{self._repo_path}/git/refs/heads/{branch}")
        except (PlatformAPIError, httpx.HTTPError):
            return False
        return True

    async def _resolve_base_branch(self, target: str) -> str:
        for candidate in dict.fromkeys((target, *FALLBACK_BASE_BRANCHES)):
            if await self._branch_exists(candidate):
                if candidate != target:
                    log.info(
                        "base_branch_fallback",
                        owner=self.owner,
                        repo=self.repo,
                        target=target,
                        base=candidate,
                    )
                return candidate

        raise BaseBranchNotFoundError(
            f"Cannot create PR: Base branch '{target}' and fallback branches (main, master) "
            f"do not exist in repository {self.owner}/{self.repo}",
            owner=self.owner,
            repo=self.repo,
        )

    async def _find_open_pull_request(self, source: str) -> str | None:
        pulls = await self._request(
            "GET",
            f"{self._repo_path}/pulls",
            params={"head": f"{self.owner}:{source}", "state": "open"},
        )
        if isinstance(pulls, list) and pulls:
            return pulls[0]["html_url"]
        return None

    async def _wait_for_source_branch(self, source: str) -> None:
        for attempt in range(1, SOURCE_BRANCH_ATTEMPTS + 1):
            if await self._branch_exists(source):
                return
            if attempt < SOURCE_BRANCH_ATTEMPTS:
                delay = float(attempt)
                log.warning(
                    "source_branch_not_visible",
                    branch=source,
                    attempt=attempt,
                    retry_in=delay,
                )
                await asyncio.sleep(delay)

        log.error(
            "source_branch_missing",
            owner=self.owner,
            repo=self.repo,
            branch=source,
            attempts=SOURCE_BRANCH_ATTEMPTS,
        )
        raise SourceBranchNotFoundError(
            f"Cannot create PR: Source branch '{source}' does not exist in remote repository "
            f"{self.owner}/{self.repo} after {SOURCE_BRANCH_ATTEMPTS} attempts. "
            "The git push step may have failed. "
            "Please check if the branch was pushed successfully.",
            owner=self.owner,
            repo=self.repo,
        )

    async def _ensure_commits_ahead(self, base: str, source: str) -> None:
        try:
            comparison = await self._request("GET", f"{self._repo_path}/compare/{base}...{source}")
        except (PlatformAPIError, httpx.HTTPError) as e:
            log.warning("branch_compare_failed", base=base, source=source, error=str(e))
            raise BranchComparisonError(
                f"Cannot create PR right now: failed to compare '{source}' against '{base}'. "
                "This is often a transient GitHub propagation issue right after pushing. "
                "Please retry.",
                owner=self.owner,
                repo=self.repo,
            ) from e

        ahead_by = comparison.get("ahead_by", 0)
        if comparison.get("status") == "identical" or ahead_by == 0:
            raise NoCommitsBetweenBranchesError(
                f"Cannot create PR: No commits between '{source}' and '{base}'. "
                "The source branch may not have any new changes, or the changes were "
                "not committed/pushed successfully.",
                owner=self.owner,
                repo=self.repo,
            )

        log.info("branch_comparison", source=source, base=base, ahead_by=ahead_by)

    async def create_pull_request(self, params: PullRequestParams) -> str:
        if params.source == params.target:
            raise PullRequestValidationError(
                f"Cannot create PR: source branch '{params.source}' and target branch "
                f"'{params.target}' are the same",
                owner=self.owner,
                repo=self.repo,
            )

        base = await self._resolve_base_branch(params.target)

        existing = await self._find_open_pull_request(params.source)
        if existing:
            log.info("pull_request_exists", branch=params.source, url=existing)
            return existing

        if not params.title or not params.title.strip():
            raise PullRequestValidationError(
                "Cannot create PR: Title is required and cannot be empty for repository "
                f"{self.owner}/{self.repo}",
                owner=self.owner,
                repo=self.repo,
            )
        if not params.description or not params.description.strip():
            log.warning("pull_request_description_empty", branch=params.source)

        await asyncio.sleep(PROPAGATION_DELAY)
        await self._wait_for_source_branch(params.source)
        await self._ensure_commits_ahead(base, params.source)

        payload = {
            "title": params.title.strip(),
            "body": (params.description or "").strip(),
            "head": params.source,
            "base": base,
        }
        log.info("pull_request_creating", source=params.source, base=base, title=payload["title"])

        try:
            data = await self._request("POST", f"{self._repo_path}/pulls", json=payload)
        except PlatformAPIError as e:
            log.error("pull_request_create_failed", branch=params.source, error=str(e))
            if not _is_validation_failure(e):
                raise
            return await self._retry_after_validation_failure(params, payload, e)

        log.info("pull_request_created", branch=params.source, url=data["html_url"])
        return data["html_url"]

    async def _retry_after_validation_failure(
        self,
        params: PullRequestParams,
        payload: dict[str, Any],
        original: PlatformAPIError,
    ) -> str:
        log.warning("pull_request_validation_retry", branch=params.source, error=original.message)

        for attempt in range(1, VALIDATION_RETRY_ATTEMPTS + 1):
            await asyncio.sleep(float(2 ** (attempt - 1)))

            try:
                existing = await self._find_open_pull_request(params.source)
                if existing:
                    log.info("pull_request_found_after_retry", branch=params.source, url=existing)
                    return existing

                base = await self._resolve_base_branch(params.target)
                data = await self._request(
                    "POST", f"{self._repo_path}/pulls", json={**payload, "base": base}
                )
            except BaseBranchNotFoundError:
                raise
            except (PlatformAPIError, httpx.HTTPError) as e:
                log.warning(
                    "pull_request_retry_failed",
                    branch=params.source,
                    attempt=attempt,
                    error=str(e),
                )
                continue

            log.info(
                "pull_request_created_after_retry",
                branch=params.source,
                attempt=attempt,
                url=data["html_url"],
            )
            return data["html_url"]

        try:
            existing = await self._find_open_pull_request(params.source)
        except (PlatformAPIError, httpx.HTTPError):
            existing = None
        if existing:
            log.info("pull_request_found_on_final_check", branch=params.source, url=existing)
            return existing

        raise PlatformAPIError(
            f"{original.message} (after {VALIDATION_RETRY_ATTEMPTS} retries with backoff)",
            status_code=original.status_code,
            response_text=original.response_text,
            details=original.details,
            endpoint=original.endpoint,
        )
