"""
Git Worktree Manager Module

Maps branches to isolated working directories under a fixed base path. All
git calls go through a bounded CommandRunner; read-only queries are retried
with backoff, mutating commands are not.
"""

import logging
import os
from pathlib import Path
from typing import List, Optional, Union

from rich.console import Console

from ..core.errors import CommandTimeoutError, GitOperationError, OutputOverflowError
from ..core.models import WorktreeEntry
from ..utils.command_runner import CommandResult, CommandRunner, git_runner
from ..utils.retry import is_retryable_error, retry_async
from ..utils.sanitize import is_valid_branch_name

console = Console()
logger = logging.getLogger(__name__)

BARE_DIR_NAME = ".bare"
HEADS_PREFIX = "refs/heads/"


def parse_worktree_list(output: str) -> List[WorktreeEntry]:
    """
    Parse ``git worktree list --porcelain`` output.

    Records are separated by blank lines. The bare store itself (flagged
    ``bare`` or living in a ``.bare`` directory) is excluded, unknown lines are
    ignored, and a repeated path keeps its first record.

    Args:
        output: Raw porcelain text

    Returns:
        Entries in listing order
    """
    entries: List[WorktreeEntry] = []
    seen = set()

    for block in _split_records(output or ""):
        fields = {}
        is_bare = False
        for line in block:
            key, _, value = line.partition(" ")
            if key == "worktree":
                fields["path"] = value
            elif key == "HEAD":
                fields["head_commit"] = value
            elif key == "branch":
                fields["branch"] = value[len(HEADS_PREFIX):] if value.startswith(HEADS_PREFIX) else value
            elif key == "locked":
                fields["is_locked"] = True
            elif key == "prunable":
                fields["is_prunable"] = True
            elif key == "bare":
                is_bare = True

        path = fields.get("path")
        if not path or is_bare or _is_bare_store_path(path):
            continue
        if path in seen:
            continue
        seen.add(path)
        entries.append(WorktreeEntry(**fields))

    return entries


def _split_records(output: str) -> List[List[str]]:
    records: List[List[str]] = []
    current: List[str] = []
    for raw_line in output.splitlines():
        line = raw_line.rstrip("\r")
        if not line.strip():
            if current:
                records.append(current)
                current = []
            continue
        current.append(line)
    if current:
        records.append(current)
    return records


def _is_bare_store_path(path: str) -> bool:
    return Path(path.rstrip("/")).name == BARE_DIR_NAME


class WorktreeManager:
    """
    Creates, lists and removes git worktrees under a base path.

    When the base path holds a ``.bare`` store, git is run from inside it so
    the commands work even though the base path itself has no checkout.
    """

    def __init__(self,
                 base_path: Union[str, Path],
                 git: Optional[CommandRunner] = None,
                 retry_attempts: int = 3,
                 retry_delay: float = 0.1):
        """
        Initialize worktree manager for a project.

        Args:
            base_path: Container (or plain repository) root
            git: Git command collaborator; a default runner is created if omitted
            retry_attempts: Attempts for read-only queries
            retry_delay: Initial backoff delay in seconds
        """
        self.base_path = Path(base_path).resolve()
        self.git = git or git_runner()
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay

    @property
    def git_cwd(self) -> Path:
        bare = self.base_path / BARE_DIR_NAME
        return bare if bare.is_dir() else self.base_path

    async def list(self) -> List[WorktreeEntry]:
        """
        List registered worktrees, excluding the bare store.

        Raises:
            GitOperationError: The listing command failed
        """
        result = await self._query(["worktree", "list", "--porcelain"], "list_worktrees",
                                   "Failed to list worktrees")
        return parse_worktree_list(result.stdout)

    async def get_by_branch(self, branch: str) -> Optional[WorktreeEntry]:
        for entry in await self.list():
            if entry.branch == branch:
                return entry
        return None

    async def local_branch_exists(self, branch: str) -> bool:
        return await self._ref_exists(f"refs/heads/{branch}")

    async def remote_branch_exists(self, branch: str, remote: str = "origin") -> bool:
        return await self._ref_exists(f"refs/remotes/{remote}/{branch}")

    def worktree_path(self, branch: str) -> Path:
        return self.base_path / branch

    async def add(self, branch: str, base_branch: Optional[str] = None) -> str:
        """
        Create a worktree for ``branch`` at ``base_path/branch``.

        Decision order: an explicit base branch always creates a new branch
        from it; otherwise an existing local branch is checked out, a branch
        found only on origin gets a new local branch tracking it, and anything
        else becomes a brand-new branch from HEAD.

        Args:
            branch: Branch to check out
            base_branch: Optional starting point for a new branch

        Returns:
            Absolute path of the new worktree

        Raises:
            GitOperationError: Invalid names or a failed git command
        """
        if not is_valid_branch_name(branch):
            raise GitOperationError(f"Invalid branch name: {branch!r}", "add_worktree")
        if base_branch is not None and not is_valid_branch_name(base_branch):
            raise GitOperationError(f"Invalid base branch name: {base_branch!r}", "add_worktree")

        target = self.worktree_path(branch)

        if base_branch:
            args = ["worktree", "add", "-b", branch, str(target), base_branch]
        elif await self.local_branch_exists(branch):
            args = ["worktree", "add", str(target), branch]
        elif await self.remote_branch_exists(branch):
            args = ["worktree", "add", "--track", "-b", branch, str(target), f"origin/{branch}"]
        else:
            args = ["worktree", "add", "-b", branch, str(target)]

        await self._mutate(args, "add_worktree", f"Failed to add worktree for {branch}")
        console.print(f"[green]✓ Created worktree for {branch} at {target}[/green]")
        logger.info("Worktree added", extra={"context": {"branch": branch, "path": str(target)}})
        return str(target)

    async def remove(self, branch_or_path: str, force: bool = False) -> None:
        """
        Remove a worktree given its branch name or absolute path.

        Raises:
            GitOperationError: The removal failed
        """
        path = Path(branch_or_path) if os.path.isabs(branch_or_path) else self.worktree_path(branch_or_path)
        args = ["worktree", "remove"]
        if force:
            args.append("--force")
        args.append(str(path))

        await self._mutate(args, "remove_worktree", f"Failed to remove worktree {path}")
        console.print(f"[green]✓ Removed worktree {path}[/green]")
        logger.info("Worktree removed", extra={"context": {"path": str(path), "force": force}})

    async def prune(self) -> None:
        """Drop administrative records of worktrees whose directories are gone."""
        await self._mutate(["worktree", "prune"], "prune_worktrees", "Failed to prune worktrees")
        logger.debug("Pruned worktrees", extra={"context": {"base_path": str(self.base_path)}})

    async def _ref_exists(self, ref: str) -> bool:
        async def attempt() -> CommandResult:
            return await self.git.run(["show-ref", "--verify", "--quiet", ref], cwd=self.git_cwd)

        try:
            result = await retry_async(attempt, max_attempts=self.retry_attempts,
                                       initial_delay=self.retry_delay, should_retry=is_retryable_error)
        except (CommandTimeoutError, OutputOverflowError) as e:
            raise GitOperationError(str(e), "add_worktree") from e
        return result.ok

    async def _query(self, args: List[str], operation: str, message: str) -> CommandResult:
        async def attempt() -> CommandResult:
            result = await self.git.run(args, cwd=self.git_cwd)
            if not result.ok:
                raise GitOperationError(message, operation, result.stderr)
            return result

        try:
            return await retry_async(attempt, max_attempts=self.retry_attempts,
                                     initial_delay=self.retry_delay, should_retry=is_retryable_error)
        except (CommandTimeoutError, OutputOverflowError) as e:
            raise GitOperationError(f"{message}: {e}", operation) from e

    async def _mutate(self, args: List[str], operation: str, message: str) -> CommandResult:
        try:
            result = await self.git.run(args, cwd=self.git_cwd)
        except (CommandTimeoutError, OutputOverflowError) as e:
            raise GitOperationError(f"{message}: {e}", operation) from e
        if not result.ok:
            raise GitOperationError(message, operation, result.stderr)
        return result
