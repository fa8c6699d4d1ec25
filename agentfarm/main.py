"""CLI entry point for the agentfarm step runner."""

import asyncio
import json
import sys
from collections.abc import Coroutine
from typing import Any

import click
import structlog

from agentfarm.config.settings import RunnerSettings
from agentfarm.engine.context import ExecutionContext
from agentfarm.engine.dispatcher import execute_step
from agentfarm.engine.types import StepDescriptor, StepExecutionRequest, StepFlags, StepServices
from agentfarm.exceptions import AgentFarmError, ConfigurationError
from agentfarm.execution.environment import LocalEnvironment, RemoteEnvironment
from agentfarm.git.worktree import create_worktree, remove_worktree
from agentfarm.models.domain import GitConfig, PullRequestParams, WorkItem, WorktreeSpec
from agentfarm.platforms.factory import detect_platform_type, resolve_platform_adapter
from agentfarm.utils.connection_pool import close_all_pools
from agentfarm.utils.logging_config import configure_logging, step_logger

log = structlog.get_logger(__name__)


@click.group()
@click.option("--config", default=None, help="Path to a YAML configuration file")
@click.option("--log-level", default="INFO", help="Logging level")
@click.option("--json-logs/--console-logs", default=True, help="Log output format")
@click.pass_context
def cli(ctx: click.Context, config: str | None, log_level: str, json_logs: bool) -> None:
    """agentfarm: run workflow steps against local or pod checkouts."""
    configure_logging(log_level, json_output=json_logs)

    try:
        settings = RunnerSettings.from_yaml(config) if config else RunnerSettings()
    except ConfigurationError as e:
        click.echo(f"Error: {e.message}", err=True)
        log.debug("config_error", exc_info=True)
        sys.exit(1)

    ctx.obj = {"settings": settings}


def _run(coro: Coroutine[Any, Any, Any], event: str) -> Any:
    """Run a coroutine with the CLI's error reporting and exit codes."""
    try:
        return asyncio.run(coro)
    except AgentFarmError as e:
        click.echo(f"Error: {e.message}", err=True)
        log.debug(f"{event}_error", exc_info=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        sys.exit(130)
    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        log.error(f"{event}_unexpected", exc_info=True)
        sys.exit(1)


@cli.command("detect-platform")
@click.option("--repo-url", required=True, help="Repository URL")
@click.option("--source", default=None, help="Explicit source tag (github, azure-devops)")
def detect_platform(repo_url: str, source: str | None) -> None:
    """Print the platform a repository belongs to."""
    work_item = WorkItem(id="0", title="", repository_url=repo_url, source=source)
    click.echo(str(detect_platform_type(work_item)))


@cli.command("create-pr")
@click.option("--repo-url", required=True, help="Repository URL")
@click.option("--source-branch", required=True, help="Branch with the changes")
@click.option("--target", default=None, help="Base branch (default: configured default branch)")
@click.option("--title", required=True, help="Pull request title")
@click.option("--description", default="", help="Pull request body")
@click.option("--azure-repo-id", default=None, help="Azure DevOps repository GUID")
@click.pass_context
def create_pr(
    ctx: click.Context,
    repo_url: str,
    source_branch: str,
    target: str | None,
    title: str,
    description: str,
    azure_repo_id: str | None,
) -> None:
    """Open a pull request using ambient platform credentials."""
    settings: RunnerSettings = ctx.obj["settings"]
    work_item = WorkItem(
        id="0", title=title, repository_url=repo_url, azure_repository_id=azure_repo_id
    )
    params = PullRequestParams(
        title=title,
        description=description,
        source=source_branch,
        target=target or settings.default_branch,
    )

    async def run() -> str:
        try:
            adapter = resolve_platform_adapter(work_item, settings=settings)
            return await adapter.create_pull_request(params)
        finally:
            await close_all_pools()

    click.echo(_run(run(), "create_pr"))


@cli.group()
def worktree() -> None:
    """Manage job worktrees."""


def _environment(settings: RunnerSettings, pod: str | None) -> LocalEnvironment | RemoteEnvironment:
    if pod:
        return RemoteEnvironment(pod_name=pod, config=settings.kubernetes)
    return LocalEnvironment()


@worktree.command("create")
@click.option("--repo", "repo_path", required=True, help="Main repository path")
@click.option("--path", required=True, help="Worktree directory")
@click.option("--branch", required=True, help="Branch to check out")
@click.option("--base", default=None, help="Start point when creating the branch")
@click.option("--new-branch", is_flag=True, help="Create the branch")
@click.option("--pod", default=None, help="Run inside this pod")
@click.pass_context
def worktree_create(
    ctx: click.Context,
    repo_path: str,
    path: str,
    branch: str,
    base: str | None,
    new_branch: bool,
    pod: str | None,
) -> None:
    """Create a worktree."""
    env = _environment(ctx.obj["settings"], pod)
    spec = WorktreeSpec(path=path, branch=branch, base_branch=base, create_branch=new_branch)
    created = _run(create_worktree(repo_path, spec, env=env), "worktree_create")
    click.echo(f"Created worktree: {created.path} ({created.branch})")


@worktree.command("remove")
@click.option("--repo", "repo_path", required=True, help="Main repository path")
@click.option("--path", required=True, help="Worktree directory")
@click.option("--force", is_flag=True, help="Remove even with local changes")
@click.option("--pod", default=None, help="Run inside this pod")
@click.pass_context
def worktree_remove(
    ctx: click.Context, repo_path: str, path: str, force: bool, pod: str | None
) -> None:
    """Remove a worktree."""
    env = _environment(ctx.obj["settings"], pod)
    _run(remove_worktree(repo_path, path, force=force, env=env), "worktree_remove")
    click.echo(f"Removed worktree: {path}")


@cli.command("run-step")
@click.option("--action", required=True, help="Step action, e.g. git.commit")
@click.option("--step-id", default=None, help="Step identifier (default: the action)")
@click.option("--step-config", default="{}", help="Step configuration as JSON")
@click.option("--repo-path", required=True, help="Repository or worktree path")
@click.option("--repo-url", default="", help="Remote repository URL")
@click.option("--work-item-id", default="0", help="Work item id")
@click.option("--title", default="", help="Work item title")
@click.option("--work-item-type", default="Task", help="Work item type")
@click.option("--branch", default=None, help="Branch recorded for the job")
@click.option("--pod", default=None, help="Run inside this pod")
@click.option("--preview", is_flag=True, help="Describe the step without side effects")
@click.option("--timeout-ms", type=int, default=None, help="Per-attempt deadline")
@click.option("--retry-count", type=int, default=None, help="Extra attempts after a failure")
@click.pass_context
def run_step(
    ctx: click.Context,
    action: str,
    step_id: str | None,
    step_config: str,
    repo_path: str,
    repo_url: str,
    work_item_id: str,
    title: str,
    work_item_type: str,
    branch: str | None,
    pod: str | None,
    preview: bool,
    timeout_ms: int | None,
    retry_count: int | None,
) -> None:
    """Run a single workflow step."""
    settings: RunnerSettings = ctx.obj["settings"]

    try:
        config = json.loads(step_config)
    except json.JSONDecodeError as e:
        click.echo(f"Error: --step-config is not valid JSON: {e}", err=True)
        sys.exit(1)

    work_item = WorkItem(
        id=work_item_id, title=title, work_item_type=work_item_type, repository_url=repo_url
    )
    context = ExecutionContext(
        repo_path=repo_path,
        work_item=work_item,
        git_config=GitConfig(
            repo_path=repo_path,
            repo_url=repo_url,
            git_user_name=settings.git_user_name,
            git_user_email=settings.git_user_email,
            pat=settings.github_token_value
            or (settings.azure_pat.get_secret_value() if settings.azure_pat else None),
        ),
        branch_name=branch,
        default_branch=settings.default_branch,
        repo_url=repo_url,
        pod_name=pod,
    )
    step = StepDescriptor(
        id=step_id or action,
        action=action,
        config=config,
        timeout_ms=timeout_ms or settings.steps.timeout_ms,
        retry_count=settings.steps.retry_count if retry_count is None else retry_count,
    )

    async def run() -> Any:
        adapter = None
        if step.action.startswith("platform.") and not preview:
            adapter = resolve_platform_adapter(work_item, settings=settings)
        try:
            return await execute_step(
                StepExecutionRequest(
                    step=step,
                    context=context,
                    logger=step_logger(step.id),
                    flags=StepFlags(preview_mode=preview),
                    services=StepServices(platform_adapter=adapter, kube_config=settings.kubernetes),
                )
            )
        finally:
            await close_all_pools()

    outcome = _run(run(), "run_step")
    if not outcome.result.ok:
        click.echo(f"Step failed: {outcome.result.error}", err=True)
        sys.exit(1)
    click.echo(str(outcome.result.value))


if __name__ == "__main__":
    cli()
