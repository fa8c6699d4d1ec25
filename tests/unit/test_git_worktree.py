"""Tests for agentfarm/git/worktree.py - worktree lifecycle."""

from unittest.mock import AsyncMock

import pytest

from agentfarm.exceptions import WorktreeError, WorktreeInUseError
from agentfarm.git.worktree import (
    WorktreeManager,
    branch_status,
    create_worktree,
    is_valid_worktree,
    list_worktrees,
    parse_worktree_list,
    prune_worktrees,
)
from agentfarm.models.domain import WorktreeSpec

PORCELAIN = """\
worktree /work/repo
HEAD 1111111111111111111111111111111111111111
branch refs/heads/main

worktree /work/repo-wt-42
HEAD 2222222222222222222222222222222222222222
branch refs/heads/fix/bug-42

worktree /work/repo-wt-7
HEAD 3333333333333333333333333333333333333333
detached
"""


@pytest.fixture
def manager(scripted_env) -> WorktreeManager:
    return WorktreeManager.for_environment(scripted_env)


# =============================================================================
# Parsing and listing
# =============================================================================


class TestParseWorktreeList:
    def test_parses_entries(self):
        entries = parse_worktree_list(PORCELAIN)

        assert entries == [
            ("/work/repo", "main", "1" * 40, True),
            ("/work/repo-wt-42", "fix/bug-42", "2" * 40, False),
            ("/work/repo-wt-7", "", "3" * 40, False),
        ]

    def test_empty_output(self):
        assert parse_worktree_list("") == []


class TestListWorktrees:
    """Listing filters out worktrees whose directory is gone."""

    @pytest.mark.asyncio
    async def test_skips_stale_by_default(self, scripted_env):
        scripted_env.existing_paths.add("/work/repo-wt-42")
        scripted_env.on("worktree list --porcelain", PORCELAIN)

        worktrees = await list_worktrees("/work/repo", env=scripted_env)

        assert [wt.path for wt in worktrees] == ["/work/repo-wt-42"]

    @pytest.mark.asyncio
    async def test_include_stale(self, scripted_env):
        scripted_env.on("worktree list --porcelain", PORCELAIN)

        worktrees = await list_worktrees("/work/repo", include_stale=True, env=scripted_env)

        assert len(worktrees) == 3
        assert worktrees[0].is_main
        assert not worktrees[2].exists

    @pytest.mark.asyncio
    async def test_list_failure(self, scripted_env):
        scripted_env.fail("worktree list", "fatal: not a git repository")

        with pytest.raises(WorktreeError, match="Failed to list worktrees"):
            await list_worktrees("/work/repo", env=scripted_env)


# =============================================================================
# Creation
# =============================================================================


class TestCreate:
    """WorktreeManager.create."""

    @pytest.mark.asyncio
    async def test_creates_new_branch_from_base(self, manager, scripted_env):
        scripted_env.on("worktree list --porcelain", PORCELAIN)
        spec = WorktreeSpec(
            path="/work/repo-wt-42", branch="fix/bug-42", base_branch="main", create_branch=True
        )

        worktree = await manager.create("/work/repo", spec)

        assert "git -C /work/repo worktree add -b fix/bug-42 /work/repo-wt-42 main" in (
            scripted_env.commands
        )
        assert worktree.branch == "fix/bug-42"

    @pytest.mark.asyncio
    async def test_checks_out_existing_branch(self, scripted_env):
        scripted_env.on("worktree list --porcelain", PORCELAIN)
        spec = WorktreeSpec(path="/work/repo-wt-42", branch="fix/bug-42", force=True)

        await create_worktree("/work/repo", spec, env=scripted_env)

        assert "git -C /work/repo worktree add --force /work/repo-wt-42 fix/bug-42" in (
            scripted_env.commands
        )

    @pytest.mark.asyncio
    async def test_unregistered_worktree_fails_verification(self, manager, scripted_env):
        scripted_env.on("worktree list --porcelain", "worktree /work/repo\nHEAD 1\nbranch refs/heads/main\n")

        with pytest.raises(WorktreeError, match="Expected: /work/repo-wt-9") as exc_info:
            await manager.create("/work/repo", WorktreeSpec(path="/work/repo-wt-9", branch="x"))

        assert "Available: [/work/repo]" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_git_failure(self, manager, scripted_env):
        scripted_env.fail("worktree add", "fatal: 'fix/bug-42' is already checked out at '/work/repo'")

        with pytest.raises(WorktreeError, match="Failed to create worktree") as exc_info:
            await manager.create("/work/repo", WorktreeSpec(path="/work/repo-wt-42", branch="fix/bug-42"))

        assert exc_info.value.path == "/work/repo-wt-42"

    @pytest.mark.asyncio
    async def test_path_in_use_is_never_touched(self, manager, scripted_env):
        scripted_env.existing_paths.add("/work/repo-wt-42")
        is_in_use = AsyncMock(return_value=True)

        with pytest.raises(WorktreeInUseError) as exc_info:
            await manager.create(
                "/work/repo",
                WorktreeSpec(path="/work/repo-wt-42", branch="fix/bug-42"),
                is_in_use=is_in_use,
            )

        assert exc_info.value.path == "/work/repo-wt-42"
        is_in_use.assert_awaited_once_with("/work/repo-wt-42")
        assert not scripted_env.ran("worktree remove")
        assert not scripted_env.ran("worktree add")
        assert not scripted_env.ran("rm -rf")

    @pytest.mark.asyncio
    async def test_free_existing_path_is_replaced(self, manager, scripted_env):
        scripted_env.existing_paths.add("/work/repo-wt-42")
        scripted_env.on("worktree list --porcelain", PORCELAIN)

        await manager.create(
            "/work/repo",
            WorktreeSpec(path="/work/repo-wt-42", branch="fix/bug-42"),
            is_in_use=AsyncMock(return_value=False),
        )

        remove = scripted_env.ran("worktree remove --force /work/repo-wt-42")
        add = scripted_env.ran("worktree add")
        assert remove and add
        assert scripted_env.commands.index(remove[0]) < scripted_env.commands.index(add[0])


# =============================================================================
# Cleanup, removal, inspection
# =============================================================================


class TestCleanupAndRemove:
    @pytest.mark.asyncio
    async def test_cleanup_free_path(self, manager, scripted_env):
        assert await manager.cleanup_existing("/work/repo", "/work/nothing-here") is False
        assert scripted_env.commands == []

    @pytest.mark.asyncio
    async def test_cleanup_falls_back_to_rm(self, manager, scripted_env):
        scripted_env.existing_paths.add("/work/leftover")
        scripted_env.fail("worktree remove", "fatal: '/work/leftover' is not a working tree")

        assert await manager.cleanup_existing("/work/repo", "/work/leftover") is True

        assert "rm -rf /work/leftover" in scripted_env.commands
        assert "git -C /work/repo worktree prune" in scripted_env.commands

    @pytest.mark.asyncio
    async def test_remove_failure(self, manager, scripted_env):
        scripted_env.fail("worktree remove", "fatal: contains modified files")

        with pytest.raises(WorktreeError, match="Failed to remove worktree"):
            await manager.remove("/work/repo", "/work/repo-wt-42")

    @pytest.mark.asyncio
    async def test_is_valid(self, scripted_env):
        assert await is_valid_worktree("/work/repo-wt-42", env=scripted_env)

        scripted_env.fail("rev-parse --git-dir", "fatal: not a git repository")
        assert not await is_valid_worktree("/work/repo-wt-42", env=scripted_env)

    @pytest.mark.asyncio
    async def test_branch_status(self, scripted_env):
        scripted_env.on("branch -r --list", "  origin/fix/bug-42\n").on("branch --list", "")

        status = await branch_status("/work/repo", "fix/bug-42", env=scripted_env)

        assert status.local is False
        assert status.remote is True

    @pytest.mark.asyncio
    async def test_prune(self, scripted_env):
        await prune_worktrees("/work/repo", env=scripted_env)
        assert scripted_env.commands == ["git -C /work/repo worktree prune"]

        scripted_env.fail("worktree prune", "fatal: unable to lock")
        with pytest.raises(WorktreeError, match="Failed to prune worktrees"):
            await prune_worktrees("/work/repo", env=scripted_env)
