"""
Abstract base class for code-hosting platform adapters.

Adapters normalize GitHub and Azure DevOps APIs behind one interface used by
the platform step executors. The set of implementations is closed: adapters
are built by :mod:`agentfarm.platforms.factory`, never discovered at runtime.
"""

from abc import ABC, abstractmethod

from agentfarm.models.domain import PullRequestParams, WorkItem


class PlatformAdapter(ABC):
    """Contract shared by all platform adapters.

    Implementations handle platform-specific details such as:
    - Authentication scheme (``token`` header for GitHub, Basic PAT for Azure)
    - Branch reference format (``feat/x`` vs ``refs/heads/feat/x``)
    - Eventual consistency between a push and the platform's API view of it

    All methods are async to support non-blocking I/O with HTTP clients.
    """

    @abstractmethod
    def get_name(self) -> str:
        """Human-readable adapter name, used in logs and operator messages."""
        pass

    @abstractmethod
    async def test_connection(self) -> bool:
        """Check that the credentials are accepted.

        Returns:
            True if an authenticated request succeeded, False otherwise.
            Never raises for HTTP or transport failures.
        """
        pass

    @abstractmethod
    async def get_work_item(self, work_item_id: str) -> WorkItem:
        """Fetch a work item (GitHub issue, Azure DevOps work item).

        Args:
            work_item_id: Platform identifier as a string

        Returns:
            WorkItem with ``source`` set to the adapter's platform.

        Raises:
            PlatformAPIError: If the API request fails or the item is missing.
        """
        pass

    @abstractmethod
    async def create_pull_request(self, params: PullRequestParams) -> str:
        """Open a pull request, or return the one already open for the source branch.

        Args:
            params: Title, description, source and target branches

        Returns:
            URL of the pull request.

        Raises:
            PullRequestValidationError: If the parameters are invalid.
            PlatformAPIError: If the API rejects the request.
            ConsistencyError: If the platform does not yet reflect the pushed
                source branch (see the subclass for retry guidance).
        """
        pass

    @abstractmethod
    async def post_comment(self, work_item_id: str, comment: str) -> None:
        """Add a comment to a work item.

        Raises:
            PlatformAPIError: If the API request fails.
        """
        pass

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.get_name()!r}>"
