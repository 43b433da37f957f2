"""
Assistant Command Module

Builds the shell command used to start the assistant inside a tmux session,
resuming the previous conversation when one is on disk.
"""

import logging
import re
import shlex
from pathlib import Path
from typing import Optional, Union

from ..utils.config_loader import GWTConfig

logger = logging.getLogger(__name__)

CONTINUE_FLAG = "--continue"

_WORKTREE_GITDIR = re.compile(r"^gitdir:\s*(.+?)/\.bare/worktrees(/|$)", re.MULTILINE)


def project_base_path(working_directory: Union[str, Path]) -> Path:
    """
    Resolve the project path whose conversation log applies to a directory.

    Worktrees of a container share the container's log, found through the
    ``gitdir: <container>/.bare/worktrees/<name>`` line in their ``.git`` file.
    """
    directory = Path(working_directory)
    git_file = directory / ".git"
    if git_file.is_file():
        try:
            match = _WORKTREE_GITDIR.search(git_file.read_text(encoding="utf-8"))
        except OSError as e:
            logger.debug("Could not read .git file", extra={"context": {"path": str(git_file), "error": str(e)}})
            match = None
        if match:
            container = Path(match.group(1))
            if not container.is_absolute():
                container = (directory / container).resolve()
            return container
    return directory


def conversation_log_dir(working_directory: Union[str, Path], home: Optional[Path] = None) -> Path:
    """``~/.claude/projects/<project path with '/' replaced by '-'>``."""
    project_key = str(project_base_path(working_directory)).replace("/", "-")
    return (home or Path.home()) / ".claude" / "projects" / project_key


def has_existing_conversation(working_directory: Union[str, Path], home: Optional[Path] = None) -> bool:
    log_dir = conversation_log_dir(working_directory, home)
    try:
        return any(entry.suffix == ".jsonl" for entry in log_dir.iterdir())
    except OSError:
        return False


def build_assistant_command(working_directory: Union[str, Path],
                            config: Optional[GWTConfig] = None,
                            home: Optional[Path] = None) -> str:
    """
    Command line typed into a session to start the assistant.

    Args:
        working_directory: Directory the assistant will run in
        config: Runtime settings; defaults apply when omitted
        home: Home directory override for locating conversation logs

    Returns:
        Shell-quoted command string
    """
    config = config or GWTConfig()
    command = shlex.quote(config.assistant_command)
    if config.always_continue and has_existing_conversation(working_directory, home):
        logger.info("Found existing conversation, resuming", extra={"context": {
            "working_directory": str(working_directory)}})
        command = f"{command} {CONTINUE_FLAG}"
    return command
