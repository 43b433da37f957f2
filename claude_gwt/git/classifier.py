"""
Directory Classifier Module

Decides what a path currently is: empty, not git, a plain repository, the root
of a bare-backed worktree container, or one of that container's worktrees.
Classification never raises; any git failure degrades to the most
conservative answer.
"""

import logging
from pathlib import Path
from typing import Optional, Union

from ..core.models import DirectoryState
from ..utils.command_runner import CommandRunner, git_runner

logger = logging.getLogger(__name__)

BARE_DIR_NAME = ".bare"
POINTER_CONTENT = "gitdir: ./.bare"


def is_container_root(path: Union[str, Path]) -> bool:
    """True when ``path`` holds a ``.bare`` store and a ``.git`` file pointing at it."""
    root = Path(path)
    pointer = root / ".git"
    if not pointer.is_file() or not (root / BARE_DIR_NAME / "HEAD").exists():
        return False
    try:
        content = pointer.read_text(encoding="utf-8").strip()
    except OSError:
        return False
    if content == POINTER_CONTENT:
        return True
    if content.startswith("gitdir:"):
        target = Path(content[len("gitdir:"):].strip())
        if not target.is_absolute():
            target = root / target
        return target.resolve() == (root / BARE_DIR_NAME).resolve()
    return False


def _is_empty_dir(path: Path) -> bool:
    try:
        return not any(path.iterdir())
    except OSError:
        return True


class DirectoryClassifier:
    """Classifies directories using filesystem checks plus ``git rev-parse``."""

    def __init__(self, git: Optional[CommandRunner] = None):
        self.git = git or git_runner()

    async def classify(self, path: Union[str, Path]) -> DirectoryState:
        """
        Classify ``path``.

        Args:
            path: Directory to inspect

        Returns:
            DirectoryState; never raises
        """
        target = Path(path).expanduser()
        path_str = str(target)

        if not target.exists():
            return DirectoryState.empty(path_str)
        if target.is_dir() and _is_empty_dir(target):
            return DirectoryState.empty(path_str)

        try:
            return await self._classify_git(target)
        except Exception as e:
            logger.debug("Classification degraded", extra={"context": {"path": path_str, "error": str(e)}})
            if target.is_dir() and _is_empty_dir(target):
                return DirectoryState.empty(path_str)
            return DirectoryState.non_git(path_str)

    async def container_root(self, path: Union[str, Path]) -> Optional[Path]:
        """
        Find the container that owns ``path``.

        Returns the path itself for a container root, the parent of the shared
        ``.bare`` store for one of its worktrees, and None otherwise.
        """
        target = Path(path).expanduser().resolve()
        if is_container_root(target):
            return target
        try:
            common_dir = await self._common_dir(target)
        except Exception as e:
            logger.debug("Container lookup failed", extra={"context": {"path": str(target), "error": str(e)}})
            return None
        if common_dir is not None and common_dir.name == BARE_DIR_NAME:
            return common_dir.parent
        return None

    async def _classify_git(self, target: Path) -> DirectoryState:
        path_str = str(target)
        if is_container_root(target):
            return DirectoryState.worktree_container(path_str)

        inside = await self.git.run(["rev-parse", "--is-inside-work-tree"], cwd=target)
        if not inside.ok or inside.stdout.strip() != "true":
            return DirectoryState.non_git(path_str)

        git_dir = await self._rev_parse_path(target, "--absolute-git-dir")
        common_dir = await self._common_dir(target)
        branch = await self._current_branch(target)

        if common_dir is not None and common_dir.name == BARE_DIR_NAME:
            return DirectoryState.worktree_member(path_str, branch)
        if git_dir is not None and common_dir is not None and git_dir != common_dir:
            # linked worktree of an ordinary repository
            return DirectoryState.worktree_member(path_str, branch)
        return DirectoryState.plain_repo(path_str, branch)

    async def _common_dir(self, target: Path) -> Optional[Path]:
        return await self._rev_parse_path(target, "--git-common-dir")

    async def _rev_parse_path(self, target: Path, flag: str) -> Optional[Path]:
        result = await self.git.run(["rev-parse", flag], cwd=target)
        if not result.ok or not result.stdout.strip():
            return None
        value = Path(result.stdout.strip())
        if not value.is_absolute():
            value = target / value
        return value.resolve()

    async def _current_branch(self, target: Path) -> Optional[str]:
        result = await self.git.run(["symbolic-ref", "--short", "-q", "HEAD"], cwd=target)
        if not result.ok:
            return None
        return result.stdout.strip() or None
