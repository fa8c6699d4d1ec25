"""Execution environments for git commands."""

from agentfarm.execution.environment import (
    ExecFunction,
    ExecutionEnvironment,
    LocalEnvironment,
    PathExistenceCheck,
    RemoteEnvironment,
)

__all__ = [
    "ExecFunction",
    "ExecutionEnvironment",
    "LocalEnvironment",
    "PathExistenceCheck",
    "RemoteEnvironment",
]
