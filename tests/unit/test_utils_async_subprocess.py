"""Tests for agentfarm/utils/async_subprocess.py."""

import asyncio

import pytest

from agentfarm.exceptions import CommandExecutionError
from agentfarm.utils.async_subprocess import run_command, run_shell_command

# =============================================================================
# run_command
# =============================================================================


class TestRunCommand:
    """Tests for argument-list execution."""

    @pytest.mark.asyncio
    async def test_captures_stdout(self):
        stdout, stderr, code = await run_command("echo", "hello")

        assert stdout.strip() == "hello"
        assert stderr == ""
        assert code == 0

    @pytest.mark.asyncio
    async def test_runs_in_cwd(self, tmp_path):
        stdout, _, _ = await run_command("pwd", cwd=tmp_path)

        assert stdout.strip() == str(tmp_path.resolve())

    @pytest.mark.asyncio
    async def test_nonzero_exit_raises_with_details(self):
        with pytest.raises(CommandExecutionError) as exc_info:
            await run_command("sh", "-c", "echo oops >&2; exit 3")

        error = exc_info.value
        assert error.exit_code == 3
        assert error.stderr.strip() == "oops"
        assert "exit code 3" in error.message
        assert "oops" in error.message

    @pytest.mark.asyncio
    async def test_check_false_returns_exit_code(self):
        _, _, code = await run_command("false", check=False)

        assert code == 1

    @pytest.mark.asyncio
    async def test_missing_executable(self):
        with pytest.raises(FileNotFoundError):
            await run_command("definitely-not-a-real-binary-xyz")


# =============================================================================
# run_shell_command
# =============================================================================


class TestRunShellCommand:
    """Tests for shell string execution."""

    @pytest.mark.asyncio
    async def test_supports_pipes_and_chains(self, tmp_path):
        stdout, _, _ = await run_shell_command(f"cd {tmp_path} && echo a b | wc -w")

        assert stdout.strip() == "2"

    @pytest.mark.asyncio
    async def test_failure_carries_command(self):
        with pytest.raises(CommandExecutionError) as exc_info:
            await run_shell_command("exit 7")

        assert exc_info.value.command == "exit 7"
        assert exc_info.value.exit_code == 7


# =============================================================================
# Timeouts and cancellation
# =============================================================================


class TestTermination:
    """The child process must not outlive its caller."""

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self, tmp_path):
        marker = tmp_path / "finished"

        with pytest.raises(asyncio.TimeoutError):
            await run_shell_command(f"sleep 2 && touch {marker}", timeout=0.1)

        await asyncio.sleep(2.2)
        assert not marker.exists()

    @pytest.mark.asyncio
    async def test_cancellation_kills_process(self, tmp_path):
        marker = tmp_path / "finished"
        task = asyncio.create_task(run_shell_command(f"sleep 2 && touch {marker}"))
        await asyncio.sleep(0.1)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        await asyncio.sleep(2.2)
        assert not marker.exists()
