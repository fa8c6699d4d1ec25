"""Async subprocess utilities.

Provides non-blocking subprocess execution for the local execution
environment and the kubectl transport of the remote one.

This module offers two main functions:
    - run_command: Execute commands with list arguments (no shell)
    - run_shell_command: Execute shell command strings (pipes, quoting, etc.)

Key Features:
    - Non-blocking execution compatible with asyncio
    - The child process is killed when the awaiting task is cancelled or the
      timeout expires, so a step timeout terminates the underlying work
    - Optional check mode that raises CommandExecutionError on non-zero exit

Example:
    >>> from agentfarm.utils.async_subprocess import run_command
    >>> stdout, stderr, code = await run_command("git", "status", cwd="/repo")
    >>> if code == 0:
    ...     print(stdout)
"""

import asyncio
from pathlib import Path

import structlog

from agentfarm.exceptions import CommandExecutionError

log = structlog.get_logger(__name__)


async def _communicate(
    process: asyncio.subprocess.Process,
    command: str,
    timeout: float | None,
) -> tuple[str, str]:
    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(
            process.communicate(),
            timeout=timeout,
        )
    except (TimeoutError, asyncio.CancelledError):
        if process.returncode is None:
            log.warning("subprocess_killed", command=command, pid=process.pid)
            process.kill()
            await process.wait()
        raise

    stdout = (stdout_bytes or b"").decode("utf-8", errors="replace")
    stderr = (stderr_bytes or b"").decode("utf-8", errors="replace")
    return stdout, stderr


def _check_result(command: str, returncode: int | None, stdout: str, stderr: str) -> None:
    if returncode == 0:
        return
    exit_code = -1 if returncode is None else returncode
    detail = stderr.strip() or stdout.strip()
    message = f"Command failed with exit code {exit_code}: {command}"
    if detail:
        message = f"{message}\n{detail}"
    raise CommandExecutionError(
        message,
        command=command,
        exit_code=exit_code,
        stdout=stdout,
        stderr=stderr,
    )


async def run_command(
    *args: str,
    cwd: Path | str | None = None,
    check: bool = True,
    timeout: float | None = None,
) -> tuple[str, str, int]:
    """Run a command asynchronously without shell interpolation.

    Args:
        *args: Command and arguments as separate strings.
            Example: "kubectl", "exec", "pod-1", "--", "sh", "-c", "git status"
        cwd: Working directory for command execution
        check: If True (default), raise CommandExecutionError when the command
            returns a non-zero exit code
        timeout: Maximum seconds to wait. The process is killed if exceeded.

    Returns:
        Tuple of (stdout, stderr, return_code). A missing return code
        (killed by a signal) is reported as ``-1``.

    Raises:
        CommandExecutionError: If check=True and the command exits non-zero
        TimeoutError: If timeout is exceeded. The process is killed first.
        asyncio.CancelledError: If the awaiting task is cancelled. The process
            is killed first.
        FileNotFoundError: If the executable is not found
    """
    command = " ".join(args)
    process = await asyncio.create_subprocess_exec(
        *args,
        cwd=cwd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await _communicate(process, command, timeout)

    if check:
        _check_result(command, process.returncode, stdout, stderr)

    return stdout, stderr, -1 if process.returncode is None else process.returncode


async def run_shell_command(
    command: str,
    *,
    cwd: Path | str | None = None,
    check: bool = True,
    timeout: float | None = None,
) -> tuple[str, str, int]:
    """Run a shell command asynchronously.

    Same as :func:`run_command` but the string is interpreted by ``/bin/sh``,
    so git invocations can use quoting, ``cd ... &&`` chains and redirects.

    Warning:
        Interpolated values must be quoted by the caller (see
        :func:`shlex.quote`).
    """
    process = await asyncio.create_subprocess_shell(
        command,
        cwd=cwd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await _communicate(process, command, timeout)

    if check:
        _check_result(command, process.returncode, stdout, stderr)

    return stdout, stderr, -1 if process.returncode is None else process.returncode
