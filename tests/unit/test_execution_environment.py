"""Tests for agentfarm/execution/environment.py."""

import subprocess
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from agentfarm.config.settings import KubernetesExecConfig
from agentfarm.exceptions import CommandExecutionError
from agentfarm.execution.environment import (
    ExecutionEnvironment,
    LocalEnvironment,
    RemoteEnvironment,
)
from agentfarm.models.domain import GitConfig

# =============================================================================
# Environment selection
# =============================================================================


class TestFromContext:
    def test_local_without_pod(self, execution_context):
        env = ExecutionEnvironment.from_context(execution_context)

        assert isinstance(env, LocalEnvironment)
        assert not env.is_remote

    def test_remote_with_pod(self, execution_context):
        context = execution_context.with_updates(pod_name="agent-42")

        env = ExecutionEnvironment.from_context(context, KubernetesExecConfig(namespace="ci"))

        assert isinstance(env, RemoteEnvironment)
        assert env.is_remote
        assert env.pod_name == "agent-42"
        assert env.config.namespace == "ci"


# =============================================================================
# LocalEnvironment
# =============================================================================


class TestLocalEnvironment:
    """Commands run through /bin/sh on this host."""

    @pytest.mark.asyncio
    async def test_exec_captures_output(self):
        result = await LocalEnvironment().exec("echo hello && echo warn >&2")

        assert result.stdout.strip() == "hello"
        assert result.stderr.strip() == "warn"

    @pytest.mark.asyncio
    async def test_exec_nonzero_exit(self):
        with pytest.raises(CommandExecutionError) as exc_info:
            await LocalEnvironment().exec("echo broken >&2; exit 4")

        assert exc_info.value.exit_code == 4
        assert exc_info.value.stderr.strip() == "broken"

    @pytest.mark.asyncio
    async def test_spawn_failure_reports_minus_one(self):
        with patch(
            "agentfarm.execution.environment.run_shell_command",
            AsyncMock(side_effect=OSError("no shell")),
        ):
            with pytest.raises(CommandExecutionError) as exc_info:
                await LocalEnvironment().exec("git status")

        assert exc_info.value.exit_code == -1
        assert "no shell" in exc_info.value.message

    def test_path_exists(self, tmp_path):
        env = LocalEnvironment()

        assert env.path_exists(str(tmp_path))
        assert not env.path_exists(str(tmp_path / "missing"))

    def test_git_config_follows_worktree(self, execution_context):
        env = LocalEnvironment()

        assert env.git_config_for(execution_context) is execution_context.git_config

        context = execution_context.with_updates(worktree_path="/work/repo-wt-42")
        assert env.git_config_for(context).repo_path == "/work/repo-wt-42"
        assert context.git_config.repo_path == "/work/repo"


# =============================================================================
# RemoteEnvironment
# =============================================================================


class TestRemoteEnvironment:
    """Commands run through kubectl exec in the agent pod."""

    def test_kubectl_args(self):
        env = RemoteEnvironment(pod_name="agent-42")

        assert env.kubectl_args("test", "-d", "/workspace/r") == [
            "kubectl",
            "exec",
            "agent-42",
            "-n",
            "minions-farm",
            "-c",
            "claude-code",
            "--",
            "test",
            "-d",
            "/workspace/r",
        ]

    @pytest.mark.asyncio
    async def test_exec_wraps_command_in_shell(self):
        env = RemoteEnvironment(pod_name="agent-42")
        mock_run = AsyncMock(return_value=("ok\n", "", 0))

        with patch("agentfarm.execution.environment.run_command", mock_run):
            result = await env.exec("cd /workspace/r && git status")

        assert result.stdout == "ok\n"
        args = mock_run.await_args.args
        assert args[-3:] == ("sh", "-c", "cd /workspace/r && git status")
        assert mock_run.await_args.kwargs == {"check": False}

    @pytest.mark.asyncio
    async def test_exec_nonzero_exit(self):
        env = RemoteEnvironment(pod_name="agent-42")

        with patch(
            "agentfarm.execution.environment.run_command",
            AsyncMock(return_value=("", "fatal: bad ref\n", 128)),
        ):
            with pytest.raises(CommandExecutionError) as exc_info:
                await env.exec("git checkout nope")

        error = exc_info.value
        assert error.exit_code == 128
        assert error.stderr == "fatal: bad ref\n"
        assert "in pod agent-42" in error.message

    @pytest.mark.asyncio
    async def test_exec_killed_process(self):
        env = RemoteEnvironment(pod_name="agent-42")

        with patch(
            "agentfarm.execution.environment.run_command", AsyncMock(return_value=("", "", -1))
        ):
            with pytest.raises(CommandExecutionError) as exc_info:
                await env.exec("git fetch")

        assert exc_info.value.exit_code == -1

    @pytest.mark.asyncio
    async def test_exec_kubectl_missing(self):
        env = RemoteEnvironment(pod_name="agent-42")

        with patch(
            "agentfarm.execution.environment.run_command",
            AsyncMock(side_effect=FileNotFoundError("kubectl")),
        ):
            with pytest.raises(CommandExecutionError) as exc_info:
                await env.exec("git status")

        assert exc_info.value.exit_code == -1
        assert exc_info.value.message.startswith("Failed to execute kubectl command")

    @pytest.mark.parametrize("returncode,expected", [(0, True), (1, False), (137, False)])
    def test_path_exists_exit_codes(self, returncode, expected):
        env = RemoteEnvironment(pod_name="agent-42")

        with patch(
            "agentfarm.execution.environment.subprocess.run",
            return_value=MagicMock(returncode=returncode),
        ) as mock_run:
            assert env.path_exists("/workspace/r") is expected

        assert mock_run.call_args.kwargs["timeout"] == 5.0
        assert mock_run.call_args.args[0][-3:] == ["test", "-d", "/workspace/r"]

    def test_path_exists_timeout(self):
        env = RemoteEnvironment(pod_name="agent-42")

        with patch(
            "agentfarm.execution.environment.subprocess.run",
            side_effect=subprocess.TimeoutExpired(cmd="kubectl", timeout=5.0),
        ):
            assert env.path_exists("/workspace/r") is False

    def test_path_exists_spawn_failure(self):
        env = RemoteEnvironment(pod_name="agent-42")

        with patch(
            "agentfarm.execution.environment.subprocess.run",
            side_effect=FileNotFoundError("kubectl"),
        ):
            assert env.path_exists("/workspace/r") is False

    def test_git_config_uses_pod_path(self, execution_context):
        env = RemoteEnvironment(pod_name="agent-42")

        config = env.git_config_for(execution_context)

        assert config.repo_path == "/workspace/widgets"
        assert execution_context.git_config.repo_path == "/work/repo"

    def test_git_config_falls_back_to_work_item_id(self, execution_context):
        context = execution_context.with_updates(
            repo_url="", git_config=GitConfig(repo_path="/x")
        )

        assert RemoteEnvironment(pod_name="p").git_config_for(context).repo_path == (
            "/workspace/repo-42"
        )
