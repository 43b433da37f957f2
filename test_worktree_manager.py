#!/usr/bin/env python3
"""
Worktree Manager Tests for claude-gwt
Tests porcelain parsing, the add-worktree decision table and real git worktrees
"""

import shutil
import sys
import tempfile
import unittest
from pathlib import Path

# Add parent directory to path
sys.path.append(str(Path(__file__).parent))

from claude_gwt.core.errors import CommandTimeoutError, GitOperationError
from claude_gwt.git.worktree_manager import WorktreeManager, parse_worktree_list
from testing_support import FakeRunner, fail, make_repo, ok

HAS_GIT = shutil.which("git") is not None

LISTING = """worktree /projects/app/.bare
bare

worktree /projects/app/main
HEAD 1111111111111111111111111111111111111111
branch refs/heads/main

worktree /projects/app/feature/login
HEAD 2222222222222222222222222222222222222222
branch refs/heads/feature/login
locked reason: on a usb stick

worktree /projects/app/old
HEAD 3333333333333333333333333333333333333333
detached
prunable gitdir file points to non-existent location
future-field something
"""


class TestParseWorktreeList(unittest.TestCase):
    """Test parse_worktree_list"""

    def test_empty_output(self):
        self.assertEqual(parse_worktree_list(""), [])
        self.assertEqual(parse_worktree_list("\n\n"), [])

    def test_excludes_bare_store(self):
        paths = [entry.path for entry in parse_worktree_list(LISTING)]
        self.assertEqual(paths, ["/projects/app/main", "/projects/app/feature/login", "/projects/app/old"])

    def test_fields(self):
        main, login, old = parse_worktree_list(LISTING)
        self.assertEqual(main.branch, "main")
        self.assertEqual(main.head_commit, "1" * 40)
        self.assertFalse(main.is_locked)
        self.assertEqual(login.branch, "feature/login")
        self.assertTrue(login.is_locked)
        self.assertIsNone(old.branch)
        self.assertTrue(old.is_detached)
        self.assertTrue(old.is_prunable)

    def test_bare_path_without_flag_is_excluded(self):
        listing = "worktree /p/.bare\nHEAD abc\n\nworktree /p/dev\nHEAD def\nbranch refs/heads/dev\n"
        self.assertEqual([e.branch for e in parse_worktree_list(listing)], ["dev"])

    def test_duplicate_paths_keep_first(self):
        listing = ("worktree /p/dev\nbranch refs/heads/dev\n\n"
                   "worktree /p/dev\nbranch refs/heads/other\n")
        entries = parse_worktree_list(listing)
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].branch, "dev")

    def test_bare_locked_flag_without_reason(self):
        entries = parse_worktree_list("worktree /p/a\nHEAD abc\nbranch refs/heads/a\nlocked\nprunable\n")
        self.assertTrue(entries[0].is_locked)
        self.assertTrue(entries[0].is_prunable)

    def test_session_branch_for_detached(self):
        old = parse_worktree_list(LISTING)[2]
        self.assertEqual(old.session_branch, "detached-3333333")


class TestWorktreeManagerCommands(unittest.IsolatedAsyncioTestCase):
    """Test the git commands issued by WorktreeManager"""

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()
        self.base = Path(self.test_dir) / "app"
        (self.base / ".bare").mkdir(parents=True)
        self.git = FakeRunner("git")
        self.manager = WorktreeManager(self.base, git=self.git, retry_delay=0)

    def tearDown(self):
        shutil.rmtree(self.test_dir)

    def _add_calls(self):
        return [call for call in self.git.calls if call[:2] == ["worktree", "add"]]

    async def test_git_runs_inside_bare_store(self):
        self.git.on("worktree", "list", result=ok(""))
        await self.manager.list()
        self.assertEqual(self.git.cwds[-1], str(self.manager.base_path / ".bare"))

    async def test_add_with_base_branch(self):
        path = await self.manager.add("feature", base_branch="develop")
        self.assertEqual(self._add_calls(), [["worktree", "add", "-b", "feature", path, "develop"]])
        # base branch short-circuits the existence checks
        self.assertEqual(self.git.commands("show-ref"), [])

    async def test_add_existing_local_branch(self):
        self.git.on("show-ref", "--verify", "--quiet", "refs/heads/develop", result=ok())
        path = await self.manager.add("develop")
        self.assertEqual(self._add_calls(), [["worktree", "add", path, "develop"]])

    async def test_add_remote_only_branch_tracks_remote(self):
        """Test that a remote-only branch gets a new local tracking branch"""
        self.git.on("show-ref", result=fail())
        self.git.on("show-ref", "--verify", "--quiet", "refs/remotes/origin/release", result=ok())
        path = await self.manager.add("release")
        self.assertEqual(self._add_calls(),
                         [["worktree", "add", "--track", "-b", "release", path, "origin/release"]])

    async def test_add_new_branch(self):
        self.git.on("show-ref", result=fail())
        path = await self.manager.add("brand-new")
        self.assertEqual(path, str(self.manager.base_path / "brand-new"))
        self.assertEqual(self._add_calls(), [["worktree", "add", "-b", "brand-new", path]])

    async def test_invalid_branch_fails_before_git(self):
        for name in ["../escape", "topic.lock", "has space", ".hidden"]:
            with self.assertRaises(GitOperationError) as ctx:
                await self.manager.add(name)
            self.assertEqual(ctx.exception.operation, "add_worktree")
        with self.assertRaises(GitOperationError):
            await self.manager.add("ok-name", base_branch="bad..base")
        self.assertEqual(self.git.calls, [])

    async def test_add_failure_carries_stderr(self):
        self.git.on("show-ref", result=fail())
        self.git.on("worktree", "add", result=fail("fatal: 'x' is already checked out"))
        with self.assertRaises(GitOperationError) as ctx:
            await self.manager.add("x")
        self.assertEqual(ctx.exception.operation, "add_worktree")
        self.assertIn("already checked out", str(ctx.exception))

    async def test_list_failure(self):
        self.git.on("worktree", "list", result=fail("fatal: not a git repository"))
        with self.assertRaises(GitOperationError) as ctx:
            await self.manager.list()
        self.assertEqual(ctx.exception.operation, "list_worktrees")
        self.assertEqual(len(self.git.calls), 1)

    async def test_list_retries_transient_failure(self):
        responses = [fail("fatal: Unable to create '/x/index.lock': File exists."), ok(LISTING)]
        self.git.on("worktree", "list", result=lambda args: responses.pop(0))
        entries = await self.manager.list()
        self.assertEqual(len(entries), 3)
        self.assertEqual(len(self.git.calls), 2)

    async def test_list_timeout_becomes_git_error(self):
        self.git.on("worktree", "list", result=CommandTimeoutError(["git", "worktree", "list"], 30))
        with self.assertRaises(GitOperationError) as ctx:
            await self.manager.list()
        self.assertEqual(ctx.exception.operation, "list_worktrees")

    async def test_remove_by_branch_and_path(self):
        await self.manager.remove("feature")
        await self.manager.remove("/elsewhere/wt", force=True)
        removes = self.git.commands("worktree")
        self.assertEqual(removes[0], ["worktree", "remove", str(self.manager.base_path / "feature")])
        self.assertEqual(removes[1], ["worktree", "remove", "--force", "/elsewhere/wt"])

    async def test_remove_failure(self):
        self.git.on("worktree", "remove", result=fail("fatal: contains modified files"))
        with self.assertRaises(GitOperationError) as ctx:
            await self.manager.remove("feature")
        self.assertEqual(ctx.exception.operation, "remove_worktree")

    async def test_prune(self):
        await self.manager.prune()
        self.assertEqual(self.git.calls, [["worktree", "prune"]])
        self.git.on("worktree", "prune", result=fail("boom"))
        with self.assertRaises(GitOperationError) as ctx:
            await self.manager.prune()
        self.assertEqual(ctx.exception.operation, "prune_worktrees")

    async def test_get_by_branch(self):
        self.git.on("worktree", "list", result=ok(LISTING))
        entry = await self.manager.get_by_branch("feature/login")
        self.assertEqual(entry.path, "/projects/app/feature/login")
        self.assertIsNone(await self.manager.get_by_branch("nope"))


@unittest.skipUnless(HAS_GIT, "git is not installed")
class TestWorktreeManagerWithGit(unittest.IsolatedAsyncioTestCase):
    """Test WorktreeManager against a real repository"""

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()
        self.repo = Path(self.test_dir) / "repo"
        make_repo(self.repo)
        self.manager = WorktreeManager(self.repo)

    def tearDown(self):
        shutil.rmtree(self.test_dir)

    async def test_add_list_remove(self):
        path = await self.manager.add("feature/x")
        self.assertTrue(Path(path, "README.md").exists())

        branches = [entry.branch for entry in await self.manager.list()]
        self.assertIn("main", branches)
        self.assertIn("feature/x", branches)

        await self.manager.remove("feature/x")
        branches = [entry.branch for entry in await self.manager.list()]
        self.assertNotIn("feature/x", branches)

    async def test_add_checks_out_existing_branch(self):
        created = await self.manager.git.run(["branch", "existing"], cwd=self.repo)
        self.assertTrue(created.ok)
        path = await self.manager.add("existing")
        entry = await self.manager.get_by_branch("existing")
        self.assertEqual(Path(entry.path).resolve(), Path(path).resolve())

    async def test_prune_after_manual_delete(self):
        path = await self.manager.add("gone")
        shutil.rmtree(path)
        await self.manager.prune()
        self.assertIsNone(await self.manager.get_by_branch("gone"))


if __name__ == '__main__':
    unittest.main()
