"""
Repository Bootstrapper Module

Creates bare-backed worktree containers and converts ordinary repositories
into that layout in place.

Container layout::

    <base>/.bare/    bare store shared by every worktree
    <base>/.git      file containing "gitdir: ./.bare"
    <base>/<branch>/ one worktree per branch
"""

import logging
import os
import shutil
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from rich.console import Console

from ..core.errors import (
    CommandTimeoutError,
    ConversionRefusedError,
    GitOperationError,
    OutputOverflowError,
)
from ..core.models import ConversionCheck, DirectoryKind, InitResult
from ..utils.command_runner import CommandResult, CommandRunner, git_runner
from ..utils.sanitize import is_valid_git_url, sanitize
from .classifier import BARE_DIR_NAME, DirectoryClassifier, is_container_root
from .worktree_manager import WorktreeManager

console = Console()
logger = logging.getLogger(__name__)

POINTER_FILE_CONTENT = "gitdir: ./.bare\n"
README_CONTENT = "# Git Worktree Project\n"
INITIAL_COMMIT_MESSAGE = "Initial commit"
DEFAULT_BRANCH = "main"

# Used only when no git identity is configured for the seed commit
_SEED_IDENTITY = {
    "GIT_AUTHOR_NAME": "claude-gwt",
    "GIT_AUTHOR_EMAIL": "claude-gwt@localhost",
    "GIT_COMMITTER_NAME": "claude-gwt",
    "GIT_COMMITTER_EMAIL": "claude-gwt@localhost",
}

_CONVERT_REFSPECS = [
    "+refs/heads/*:refs/heads/*",
    "+refs/tags/*:refs/tags/*",
    "+refs/remotes/*:refs/remotes/*",
]


class RepositoryBootstrapper:
    """
    Initializes or converts a repository at a fixed base path.

    Features:
    - Bare clone with default-branch detection
    - Seeded first commit for brand-new projects
    - Non-destructive pre-flight checks before conversion
    - Conversion that keeps the original ``.git`` until every step succeeded
    """

    def __init__(self,
                 base_path: Union[str, Path],
                 git: Optional[CommandRunner] = None,
                 worktrees: Optional[WorktreeManager] = None,
                 classifier: Optional[DirectoryClassifier] = None):
        self.base_path = Path(base_path).expanduser().resolve()
        self.git = git or git_runner()
        self.worktrees = worktrees or WorktreeManager(self.base_path, git=self.git)
        self.classifier = classifier or DirectoryClassifier(git=self.git)

    @property
    def bare_path(self) -> Path:
        return self.base_path / BARE_DIR_NAME

    async def initialize_container(self, remote_url: Optional[str] = None) -> InitResult:
        """
        Create the bare store and pointer file under the base path.

        Args:
            remote_url: Repository to clone; a fresh store with a seeded
                README commit is created when omitted

        Returns:
            InitResult with the detected or chosen default branch

        Raises:
            GitOperationError: Clone, init or seeding failed
        """
        if (self.base_path / ".git").exists() or self.bare_path.exists():
            raise GitOperationError(f"{self.base_path} already contains a git repository", "initialize")

        self.base_path.mkdir(parents=True, exist_ok=True)

        if remote_url:
            if not is_valid_git_url(remote_url):
                raise GitOperationError(f"Invalid repository URL: {remote_url}", "clone")
            console.print(f"[cyan]Cloning {remote_url} into {self.bare_path}[/cyan]")
            await self._git(["clone", "--bare", remote_url, str(self.bare_path)], "clone",
                            "Failed to clone repository", cwd=self.base_path)
            default_branch = await self._detect_default_branch()
            self._write_pointer_file()
            await self._configure_remote_tracking()
        else:
            await self._git(["init", "--bare", str(self.bare_path)], "initialize",
                            "Failed to initialize bare repository", cwd=self.base_path)
            default_branch = DEFAULT_BRANCH
            self._write_pointer_file()
            await self._seed_initial_commit(default_branch)

        console.print(f"[green]✓ Initialized worktree container at {self.base_path} ({default_branch})[/green]")
        logger.info("Container initialized", extra={"context": {
            "path": str(self.base_path), "remote": remote_url, "default_branch": default_branch}})
        return InitResult(default_branch=default_branch)

    async def can_convert(self) -> ConversionCheck:
        """Pre-flight check for :meth:`convert`; never modifies anything."""
        if is_container_root(self.base_path):
            return ConversionCheck(False, "repository already uses the worktree layout")

        state = await self.classifier.classify(self.base_path)
        if state.kind in (DirectoryKind.WORKTREE_CONTAINER, DirectoryKind.WORKTREE_MEMBER):
            return ConversionCheck(False, "repository already uses the worktree layout")
        if state.kind != DirectoryKind.PLAIN_REPO or not (self.base_path / ".git").is_dir():
            return ConversionCheck(False, "not a plain git repository root")

        if (self.base_path / ".gitmodules").exists():
            return ConversionCheck(False, "repository contains submodules")

        try:
            status = await self.git.run(["status", "--porcelain"], cwd=self.base_path)
        except (CommandTimeoutError, OutputOverflowError) as e:
            return ConversionCheck(False, f"could not read repository status: {e}")
        if not status.ok:
            return ConversionCheck(False, f"could not read repository status: {status.stderr.strip()}")
        if status.stdout.strip():
            return ConversionCheck(False, "repository has uncommitted changes")

        return ConversionCheck(True)

    async def convert(self) -> InitResult:
        """
        Convert the plain repository at the base path into the container layout.

        The original ``.git`` directory is kept as a backup until the new
        layout has been verified, and restored if any step fails.

        Returns:
            InitResult whose default branch is the branch that was checked out

        Raises:
            ConversionRefusedError: Pre-flight check failed; nothing changed
            GitOperationError: A conversion step failed; the original layout was restored
        """
        check = await self.can_convert()
        if not check.ok:
            raise ConversionRefusedError(check.reason or "unknown reason")

        original_git = self.base_path / ".git"
        staging = self.base_path.parent / f".{self.base_path.name}.cgwt-staging"
        backup = self.base_path.parent / f".{self.base_path.name}.cgwt-git-backup"
        for leftover in (staging, backup):
            if leftover.exists():
                raise ConversionRefusedError(f"leftover from an earlier conversion: {leftover}")

        branch = await self._current_branch(self.base_path)
        worktree_name = sanitize(self.base_path.name) or DEFAULT_BRANCH
        console.print(f"[cyan]Converting {self.base_path} to worktree layout[/cyan]")

        backed_up = False
        promoted = False
        try:
            await self._build_staging_store(staging, original_git, branch)
            self._write_worktree_admin(staging, original_git, worktree_name)

            os.rename(original_git, backup)
            backed_up = True
            (self.base_path / ".git").write_text(
                f"gitdir: {self.bare_path / 'worktrees' / worktree_name}\n", encoding="utf-8")

            os.rename(staging, self.bare_path)
            promoted = True

            await self._verify_conversion()
        except Exception as e:
            self._rollback(staging, backup, backed_up, promoted)
            logger.error("Conversion failed, original repository restored", extra={"context": {
                "path": str(self.base_path), "error": str(e)}})
            if isinstance(e, GitOperationError):
                raise
            raise GitOperationError(f"Failed to convert repository: {e}", "convert") from e

        shutil.rmtree(backup, ignore_errors=True)
        default_branch = branch or DEFAULT_BRANCH
        console.print(f"[green]✓ Converted {self.base_path} ({default_branch})[/green]")
        logger.info("Repository converted", extra={"context": {
            "path": str(self.base_path), "default_branch": default_branch}})
        return InitResult(default_branch=default_branch)

    async def _build_staging_store(self, staging: Path, original_git: Path, branch: Optional[str]) -> None:
        await self._git(["init", "--bare", str(staging)], "convert",
                        "Failed to create staging store", cwd=self.base_path.parent)
        await self._git(["fetch", "--no-tags", str(original_git)] + _CONVERT_REFSPECS, "convert",
                        "Failed to copy refs into staging store", cwd=staging)

        for key, value in await self._local_config_entries(self.base_path, r"^(remote|branch)\."):
            await self._git(["config", "--add", key, value], "convert",
                            f"Failed to copy config {key}", cwd=staging)

        if branch:
            await self._git(["symbolic-ref", "HEAD", f"refs/heads/{branch}"], "convert",
                            "Failed to set HEAD of staging store", cwd=staging)

        exclude = staging / "info" / "exclude"
        exclude.parent.mkdir(parents=True, exist_ok=True)
        original_exclude = original_git / "info" / "exclude"
        carried = original_exclude.read_text(encoding="utf-8") if original_exclude.exists() else ""
        if carried and not carried.endswith("\n"):
            carried += "\n"
        exclude.write_text(f"{carried}/{BARE_DIR_NAME}/\n", encoding="utf-8")

    def _write_worktree_admin(self, staging: Path, original_git: Path, worktree_name: str) -> None:
        """Register the base path as a linked worktree of the staging store."""
        admin = staging / "worktrees" / worktree_name
        admin.mkdir(parents=True)
        shutil.copyfile(original_git / "HEAD", admin / "HEAD")
        (admin / "commondir").write_text("../..\n", encoding="utf-8")
        (admin / "gitdir").write_text(f"{self.base_path / '.git'}\n", encoding="utf-8")
        if (original_git / "index").exists():
            shutil.copyfile(original_git / "index", admin / "index")

    async def _verify_conversion(self) -> None:
        status = await self._git(["status", "--porcelain"], "convert",
                                 "Converted worktree is not usable", cwd=self.base_path)
        if status.stdout.strip():
            raise GitOperationError("Converted worktree reports changes", "convert", status.stdout)

        entries = await self.worktrees.list()
        if not any(Path(entry.path).resolve() == self.base_path for entry in entries):
            raise GitOperationError("Converted worktree is not registered", "convert")

    def _rollback(self, staging: Path, backup: Path, backed_up: bool, promoted: bool) -> None:
        if promoted and self.bare_path.exists():
            shutil.rmtree(self.bare_path, ignore_errors=True)
        if backed_up:
            pointer = self.base_path / ".git"
            if pointer.is_file():
                pointer.unlink()
            if backup.exists():
                os.rename(backup, self.base_path / ".git")
        if staging.exists():
            shutil.rmtree(staging, ignore_errors=True)

    async def _detect_default_branch(self) -> str:
        result = await self.git.run(["symbolic-ref", "HEAD"], cwd=self.bare_path)
        ref = result.stdout.strip()
        if result.ok and ref.startswith("refs/heads/"):
            return ref[len("refs/heads/"):]

        probe = await self.git.run(["show-ref", "--verify", "--quiet", "refs/heads/master"], cwd=self.bare_path)
        return "master" if probe.ok else DEFAULT_BRANCH

    async def _configure_remote_tracking(self) -> None:
        # bare clones map remote heads onto local heads and never create refs/remotes
        await self._git(["config", "remote.origin.fetch", "+refs/heads/*:refs/remotes/origin/*"],
                        "clone", "Failed to configure remote tracking", cwd=self.bare_path)
        await self._git(["fetch", "origin"], "fetch", "Failed to fetch origin", cwd=self.bare_path)

    async def _seed_initial_commit(self, branch: str) -> None:
        (self.base_path / "README.md").write_text(README_CONTENT, encoding="utf-8")

        blob = await self._git(["hash-object", "-w", "--stdin"], "initialize",
                               "Failed to store README", cwd=self.bare_path, input_text=README_CONTENT)
        tree = await self._git(["mktree"], "initialize", "Failed to build initial tree",
                               cwd=self.bare_path, input_text=f"100644 blob {blob.stdout.strip()}\tREADME.md\n")

        env = None if await self._has_identity() else _SEED_IDENTITY
        commit = await self._git(["commit-tree", tree.stdout.strip(), "-m", INITIAL_COMMIT_MESSAGE],
                                 "initialize", "Failed to create initial commit", cwd=self.bare_path, env=env)

        await self._git(["update-ref", f"refs/heads/{branch}", commit.stdout.strip()], "initialize",
                        "Failed to create initial branch", cwd=self.bare_path)
        await self._git(["symbolic-ref", "HEAD", f"refs/heads/{branch}"], "initialize",
                        "Failed to point HEAD at initial branch", cwd=self.bare_path)

    async def _has_identity(self) -> bool:
        name = await self.git.run(["config", "user.name"], cwd=self.bare_path)
        email = await self.git.run(["config", "user.email"], cwd=self.bare_path)
        return name.ok and bool(name.stdout.strip()) and email.ok and bool(email.stdout.strip())

    async def _current_branch(self, cwd: Path) -> Optional[str]:
        result = await self.git.run(["symbolic-ref", "--short", "-q", "HEAD"], cwd=cwd)
        if not result.ok:
            return None
        return result.stdout.strip() or None

    async def _local_config_entries(self, cwd: Path, pattern: str) -> List[Tuple[str, str]]:
        result = await self.git.run(["config", "--local", "--get-regexp", pattern], cwd=cwd)
        if not result.ok:
            return []
        entries = []
        for line in result.stdout.splitlines():
            key, _, value = line.partition(" ")
            if key:
                entries.append((key, value))
        return entries

    def _write_pointer_file(self) -> None:
        (self.base_path / ".git").write_text(POINTER_FILE_CONTENT, encoding="utf-8")

    async def _git(self,
                   args: List[str],
                   operation: str,
                   message: str,
                   cwd: Path,
                   input_text: Optional[str] = None,
                   env: Optional[Dict[str, str]] = None) -> CommandResult:
        try:
            result = await self.git.run(args, cwd=cwd, input_text=input_text, env=env)
        except (CommandTimeoutError, OutputOverflowError) as e:
            raise GitOperationError(f"{message}: {e}", operation) from e
        if not result.ok:
            raise GitOperationError(message, operation, result.stderr)
        return result
