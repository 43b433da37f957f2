"""
Shared fakes for the claude-gwt test suites.

FakeRunner stands in for the git and tmux CommandRunner collaborators: it
records every argv and answers from scripted responses matched on argument
prefixes.
"""

import asyncio
import subprocess
from typing import Callable, List, Optional, Tuple, Union

from claude_gwt.utils.command_runner import CommandResult

Response = Union[CommandResult, Exception, Callable[[List[str]], CommandResult]]


def ok(stdout: str = "") -> CommandResult:
    return CommandResult(0, stdout, "")


def fail(stderr: str = "", exit_code: int = 1) -> CommandResult:
    return CommandResult(exit_code, "", stderr)


class FakeRunner:
    """Records calls; the most recently registered matching response wins."""

    def __init__(self, executable: str = "tmux", default: Optional[CommandResult] = None):
        self.executable = executable
        self.default = default or ok()
        self.calls: List[List[str]] = []
        self.cwds: List[Optional[str]] = []
        self._responses: List[Tuple[Tuple[str, ...], Response]] = []

    def on(self, *prefix: str, result: Response) -> "FakeRunner":
        self._responses.append((tuple(prefix), result))
        return self

    async def run(self, args, cwd=None, input_text=None, env=None, timeout=None) -> CommandResult:
        args = [str(arg) for arg in args]
        self.calls.append(args)
        self.cwds.append(str(cwd) if cwd else None)
        await asyncio.sleep(0)

        for prefix, response in reversed(self._responses):
            if tuple(args[:len(prefix)]) == prefix:
                if isinstance(response, Exception):
                    raise response
                if callable(response):
                    return response(args)
                return response
        return self.default

    def commands(self, name: str) -> List[List[str]]:
        return [call for call in self.calls if call and call[0] == name]


def git(cwd, *args) -> str:
    """Run real git for fixture setup; raises on failure."""
    result = subprocess.run(["git", *args], cwd=str(cwd), check=True, capture_output=True, text=True)
    return result.stdout.strip()


def make_repo(path, branch: str = "main") -> None:
    """Plain repository with one commit on ``branch``."""
    path.mkdir(parents=True, exist_ok=True)
    git(path, "init", "-q")
    git(path, "symbolic-ref", "HEAD", f"refs/heads/{branch}")
    git(path, "config", "user.email", "test@example.com")
    git(path, "config", "user.name", "Test User")
    git(path, "config", "commit.gpgsign", "false")
    (path / "README.md").write_text("# Test Project\n")
    git(path, "add", ".")
    git(path, "commit", "-q", "-m", "Initial commit")
