"""
Tmux Driver Module

Thin async wrapper over the tmux control surface. Every method maps to one
tmux command and returns its CommandResult; interpreting failures is left to
the session registry. Listing output is parsed by pure functions so it can be
tested without a tmux server.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

from ..core.errors import SessionOperationError
from ..utils.command_runner import CommandResult, CommandRunner, tmux_runner

logger = logging.getLogger(__name__)

SESSION_FORMAT = "#{session_name}|#{session_windows}|#{session_created}|#{session_attached}"
PANE_FORMAT = ("#{pane_id}|#{session_name}|#{window_index}|#{pane_index}|"
               "#{pane_current_command}|#{pane_pid}|#{pane_title}")

NO_SERVER_MARKERS = ("no server running", "error connecting to", "no sessions")


@dataclass(frozen=True)
class TmuxSession:
    name: str
    windows: int
    created: int
    attached: bool


@dataclass(frozen=True)
class TmuxPane:
    pane_id: str
    session_name: str
    window_index: int
    pane_index: int
    command: str
    pid: Optional[int] = None
    title: str = ""


def parse_sessions(output: str) -> List[TmuxSession]:
    """Parse ``list-sessions`` rows; malformed rows are skipped."""
    sessions = []
    for line in (output or "").splitlines():
        parts = line.strip().split("|")
        if len(parts) != 4 or not parts[0]:
            continue
        try:
            sessions.append(TmuxSession(
                name=parts[0],
                windows=int(parts[1]),
                created=int(parts[2]),
                attached=int(parts[3]) > 0,
            ))
        except ValueError:
            logger.debug("Skipping malformed session row", extra={"context": {"row": line}})
    return sessions


def parse_panes(output: str) -> List[TmuxPane]:
    """Parse ``list-panes`` rows; the title may itself contain ``|``."""
    panes = []
    for line in (output or "").splitlines():
        parts = line.rstrip("\n").split("|", 6)
        if len(parts) < 6:
            continue
        try:
            pid = int(parts[5]) if parts[5].strip() else None
            panes.append(TmuxPane(
                pane_id=parts[0],
                session_name=parts[1],
                window_index=int(parts[2]),
                pane_index=int(parts[3]),
                command=parts[4],
                pid=pid,
                title=parts[6] if len(parts) > 6 else "",
            ))
        except ValueError:
            logger.debug("Skipping malformed pane row", extra={"context": {"row": line}})
    return panes


def is_no_server_error(stderr: str) -> bool:
    text = (stderr or "").lower()
    return any(marker in text for marker in NO_SERVER_MARKERS)


def exact_target(target: str) -> str:
    """
    Pin a target to an exact session name.

    A bare ``-t name`` falls back to prefix and pattern matching when no
    session is called exactly ``name``, so a missing session would resolve
    to another one. The ``=`` form matches only the full name and also
    covers ``session:window`` targets.
    """
    return target if target.startswith("=") else f"={target}"


class TmuxDriver:
    """One method per tmux command used by claude-gwt."""

    def __init__(self, runner: Optional[CommandRunner] = None):
        self.runner = runner or tmux_runner()

    async def run(self, args: List[str]) -> CommandResult:
        return await self.runner.run(args)

    async def version(self) -> Optional[str]:
        result = await self.run(["-V"])
        return result.stdout.strip() if result.ok else None

    async def list_sessions(self) -> List[TmuxSession]:
        """
        List all sessions on the default server.

        A missing server means no sessions, not an error.
        """
        result = await self.run(["list-sessions", "-F", SESSION_FORMAT])
        if not result.ok:
            if is_no_server_error(result.stderr):
                return []
            raise SessionOperationError("Failed to list tmux sessions", "list_sessions", result.stderr)
        return parse_sessions(result.stdout)

    async def list_panes(self, session_name: str) -> List[TmuxPane]:
        result = await self.run(["list-panes", "-s", "-t", exact_target(session_name), "-F", PANE_FORMAT])
        if not result.ok:
            return []
        return parse_panes(result.stdout)

    async def has_session(self, session_name: str) -> bool:
        result = await self.run(["has-session", "-t", exact_target(session_name)])
        return result.ok

    async def new_session(self,
                          session_name: str,
                          working_directory: str,
                          window_name: Optional[str] = None,
                          command: Optional[str] = None) -> CommandResult:
        args = ["new-session", "-d", "-s", session_name, "-c", working_directory]
        if window_name:
            args += ["-n", window_name]
        if command:
            args.append(command)
        return await self.run(args)

    async def new_window(self,
                         session_name: str,
                         working_directory: str,
                         window_name: Optional[str] = None,
                         command: Optional[str] = None) -> CommandResult:
        args = ["new-window", "-t", exact_target(f"{session_name}:"), "-c", working_directory]
        if window_name:
            args += ["-n", window_name]
        if command:
            args.append(command)
        return await self.run(args)

    async def kill_session(self, session_name: str) -> CommandResult:
        return await self.run(["kill-session", "-t", exact_target(session_name)])

    async def switch_client(self, session_name: str) -> CommandResult:
        return await self.run(["switch-client", "-t", exact_target(session_name)])

    async def attach_session(self, session_name: str) -> int:
        """
        Attach the current terminal to a session.

        The child inherits stdio, so this returns only when the user detaches.
        """
        try:
            process = await asyncio.create_subprocess_exec(
                self.runner.executable, "attach-session", "-t", exact_target(session_name))
        except FileNotFoundError:
            return 127
        return await process.wait()

    async def send_keys(self, target: str, keys: str, enter: bool = True) -> CommandResult:
        args = ["send-keys", "-t", exact_target(target), keys]
        if enter:
            args.append("Enter")
        return await self.run(args)

    async def set_option(self, target: str, option: str, value: str) -> CommandResult:
        return await self.run(["set-option", "-t", exact_target(target), option, value])

    async def set_window_option(self, target: str, option: str, value: str) -> CommandResult:
        return await self.run(["set-window-option", "-t", exact_target(target), option, value])

    async def show_option(self, target: str, option: str) -> Optional[str]:
        result = await self.run(["show-options", "-v", "-t", exact_target(target), option])
        if not result.ok:
            return None
        return result.stdout.strip()

    async def show_window_option(self, target: str, option: str) -> Optional[str]:
        result = await self.run(["show-window-options", "-v", "-t", exact_target(target), option])
        if not result.ok:
            return None
        return result.stdout.strip()

    async def bind_key(self,
                       key: str,
                       command: List[str],
                       table: Optional[str] = None,
                       repeat: bool = False) -> CommandResult:
        args = ["bind-key"]
        if repeat:
            args.append("-r")
        if table:
            args += ["-T", table]
        args.append(key)
        return await self.run(args + list(command))

    async def unbind_key(self, key: str) -> CommandResult:
        return await self.run(["unbind-key", key])

    async def set_hook(self, target: str, hook: str, command: str) -> CommandResult:
        return await self.run(["set-hook", "-t", exact_target(target), hook, command])

    async def select_layout(self, target: str, layout: str) -> CommandResult:
        return await self.run(["select-layout", "-t", exact_target(target), layout])

    async def display_message(self, target: str, message: str) -> CommandResult:
        return await self.run(["display-message", "-t", exact_target(target), message])
