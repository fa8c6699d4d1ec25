"""Git operations, worktree management and repository URL helpers.

All commands run through an execution environment, so the same calls work
against a local checkout or one inside an agent pod. The submodules depend on
:mod:`agentfarm.execution`, so only the URL helpers are re-exported here.

Example:
    >>> from agentfarm.git.operations import checkout_branch, push_branch
    >>> await checkout_branch(config, "fix/bug-42", "main", env.path_exists, env.exec)
    >>> await push_branch(config, "fix/bug-42", env.path_exists, env.exec)
"""

from agentfarm.git.urls import (
    authenticate_azure_url,
    authenticate_github_url,
    authenticate_url,
    parse_github_url,
    pod_repo_path,
    repo_name_from_url,
)

__all__ = [
    "authenticate_azure_url",
    "authenticate_github_url",
    "authenticate_url",
    "parse_github_url",
    "pod_repo_path",
    "repo_name_from_url",
]
