#!/usr/bin/env python3
"""
Directory Classifier Tests for claude-gwt
Tests classification of empty, non-git, plain, container and worktree paths
"""

import shutil
import sys
import tempfile
import unittest
from pathlib import Path

# Add parent directory to path
sys.path.append(str(Path(__file__).parent))

from claude_gwt.core.errors import CommandTimeoutError
from claude_gwt.core.models import DirectoryKind
from claude_gwt.git.classifier import DirectoryClassifier, is_container_root
from testing_support import FakeRunner, fail, git, make_repo

HAS_GIT = shutil.which("git") is not None


class TestContainerRootDetection(unittest.TestCase):
    """Test the filesystem-only container check"""

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()
        self.root = Path(self.test_dir)

    def tearDown(self):
        shutil.rmtree(self.test_dir)

    def _make_layout(self, pointer: str):
        (self.root / ".bare").mkdir()
        (self.root / ".bare" / "HEAD").write_text("ref: refs/heads/main\n")
        (self.root / ".git").write_text(pointer)

    def test_relative_pointer(self):
        self._make_layout("gitdir: ./.bare\n")
        self.assertTrue(is_container_root(self.root))

    def test_absolute_pointer(self):
        self._make_layout(f"gitdir: {self.root / '.bare'}\n")
        self.assertTrue(is_container_root(self.root))

    def test_pointer_elsewhere(self):
        self._make_layout("gitdir: /somewhere/else/.git/worktrees/x\n")
        self.assertFalse(is_container_root(self.root))

    def test_git_directory_is_not_container(self):
        (self.root / ".git").mkdir()
        (self.root / ".bare").mkdir()
        self.assertFalse(is_container_root(self.root))


class TestClassifierDegradation(unittest.IsolatedAsyncioTestCase):
    """Test that classification never raises"""

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()
        self.root = Path(self.test_dir)

    def tearDown(self):
        shutil.rmtree(self.test_dir)

    async def test_missing_path_is_empty(self):
        state = await DirectoryClassifier(FakeRunner("git")).classify(self.root / "missing")
        self.assertEqual(state.kind, DirectoryKind.EMPTY)

    async def test_empty_directory(self):
        runner = FakeRunner("git")
        state = await DirectoryClassifier(runner).classify(self.root)
        self.assertEqual(state.kind, DirectoryKind.EMPTY)
        self.assertEqual(runner.calls, [])

    async def test_git_failure_degrades_to_non_git(self):
        (self.root / "file.txt").write_text("content")
        runner = FakeRunner("git").on("rev-parse", result=CommandTimeoutError(["git", "rev-parse"], 30))
        state = await DirectoryClassifier(runner).classify(self.root)
        self.assertEqual(state.kind, DirectoryKind.NON_GIT)

    async def test_missing_git_binary_degrades_to_non_git(self):
        (self.root / "file.txt").write_text("content")
        runner = FakeRunner("git").on("rev-parse", result=fail("not found", exit_code=127))
        state = await DirectoryClassifier(runner).classify(self.root)
        self.assertEqual(state.kind, DirectoryKind.NON_GIT)


@unittest.skipUnless(HAS_GIT, "git is not installed")
class TestClassifierWithGit(unittest.IsolatedAsyncioTestCase):
    """Test classification against real repositories"""

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()
        self.root = Path(self.test_dir)
        self.classifier = DirectoryClassifier()

    def tearDown(self):
        shutil.rmtree(self.test_dir)

    async def test_non_git_directory(self):
        plain = self.root / "plain"
        plain.mkdir()
        (plain / "notes.txt").write_text("hello")
        state = await self.classifier.classify(plain)
        self.assertEqual(state.kind, DirectoryKind.NON_GIT)

    async def test_plain_repository(self):
        repo = self.root / "repo"
        make_repo(repo, branch="develop")
        state = await self.classifier.classify(repo)
        self.assertEqual(state.kind, DirectoryKind.PLAIN_REPO)
        self.assertEqual(state.current_branch, "develop")

    async def test_linked_worktree_of_plain_repository(self):
        repo = self.root / "repo"
        make_repo(repo)
        linked = self.root / "linked"
        git(repo, "worktree", "add", "-b", "topic", str(linked))
        state = await self.classifier.classify(linked)
        self.assertEqual(state.kind, DirectoryKind.WORKTREE_MEMBER)
        self.assertEqual(state.current_branch, "topic")

    async def test_container_and_member(self):
        source = self.root / "source"
        make_repo(source)
        container = self.root / "project"
        container.mkdir()
        git(container, "clone", "-q", "--bare", str(source), ".bare")
        (container / ".git").write_text("gitdir: ./.bare\n")
        git(container / ".bare", "worktree", "add", str(container / "main"), "main")

        self.assertEqual((await self.classifier.classify(container)).kind, DirectoryKind.WORKTREE_CONTAINER)

        member = await self.classifier.classify(container / "main")
        self.assertEqual(member.kind, DirectoryKind.WORKTREE_MEMBER)
        self.assertEqual(member.current_branch, "main")

        self.assertEqual(await self.classifier.container_root(container / "main"), container.resolve())
        self.assertEqual(await self.classifier.container_root(container), container.resolve())
        self.assertIsNone(await self.classifier.container_root(source))


if __name__ == '__main__':
    unittest.main()
