"""
Session Registry Module

Source of truth for which claude-gwt tmux sessions exist and whether an
assistant is running in each. Nothing is cached; every query goes to tmux.
"""

import logging
import os
import shutil
from datetime import datetime
from typing import Awaitable, List, Mapping, Optional

import psutil
from rich.console import Console

from ..claude.command import build_assistant_command
from ..claude.context_file import write_context_file
from ..core.errors import (
    ClaudeGWTError,
    CommandTimeoutError,
    OutputOverflowError,
    SessionOperationError,
    SessionUnavailableError,
)
from ..core.models import SUPERVISOR_BRANCH, BulkResult, Role, SessionDescriptor, SessionInfo
from ..utils.command_runner import CommandResult
from ..utils.config_loader import GWTConfig
from ..utils.retry import is_retryable_error, retry_async
from ..utils.sanitize import SESSION_PREFIX, parse_session_name, sanitize
from .driver import TmuxDriver, TmuxSession
from .enhancer import TmuxEnhancer

console = Console()
logger = logging.getLogger(__name__)

ASSISTANT_WINDOW = "claude"
ROLE_OPTION = "@cgwt_role"
BRANCH_OPTION = "@cgwt_branch"

_DUPLICATE_MARKERS = ("duplicate session",)
_MISSING_MARKERS = ("can't find session", "session not found", "no server running", "error connecting to")


def _stderr_has(result: CommandResult, markers) -> bool:
    text = result.stderr.lower()
    return any(marker in text for marker in markers)


def process_tree_runs(pid: int, process_name: str) -> bool:
    """True when ``pid`` or any descendant looks like ``process_name``."""
    try:
        root = psutil.Process(pid)
        candidates = [root] + root.children(recursive=True)
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return False

    needle = process_name.lower()
    for process in candidates:
        try:
            if needle in process.name().lower():
                return True
            if any(needle in os.path.basename(part).lower() for part in process.cmdline()[:2]):
                return True
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            continue
    return False


class SessionRegistry:
    """
    Query and control claude-gwt tmux sessions.

    Every operation first checks that tmux is installed and raises
    SessionUnavailableError otherwise.
    """

    def __init__(self,
                 driver: Optional[TmuxDriver] = None,
                 enhancer: Optional[TmuxEnhancer] = None,
                 config: Optional[GWTConfig] = None,
                 environ: Optional[Mapping[str, str]] = None):
        self.driver = driver or TmuxDriver()
        self.enhancer = enhancer or TmuxEnhancer(self.driver)
        self.config = config or GWTConfig()
        self.environ = environ if environ is not None else os.environ

    def is_available(self) -> bool:
        return shutil.which(self.driver.runner.executable) is not None

    def is_inside_session(self) -> bool:
        """True when this process runs inside a tmux client."""
        return bool(self.environ.get("TMUX"))

    def require_available(self) -> None:
        if not self.is_available():
            raise SessionUnavailableError()

    async def list_sessions(self) -> List[SessionInfo]:
        """
        List sessions carrying the claude-gwt prefix.

        Raises:
            SessionUnavailableError: tmux is not installed
            SessionOperationError: tmux failed for another reason
        """
        self.require_available()
        raw = await self._list_raw()
        infos = []
        for session in raw:
            infos.append(await self._to_info(session))
        return infos

    async def get_session(self, name: str) -> Optional[SessionInfo]:
        self.require_available()
        for session in await self._list_raw():
            if session.name == name:
                return await self._to_info(session)
        return None

    async def has_assistant_running(self, name: str) -> bool:
        """
        Best-effort check for a live assistant in any pane of the session.

        Matches the pane's foreground command first, then walks the pane
        process tree, since wrappers such as node report their own name.
        """
        process_name = self.config.assistant_process_name.lower()
        try:
            panes = await self.driver.list_panes(name)
        except (CommandTimeoutError, OutputOverflowError) as e:
            logger.debug("Pane listing failed", extra={"context": {"session": name, "error": str(e)}})
            return False

        for pane in panes:
            if process_name in pane.command.lower():
                return True
            if pane.pid and process_tree_runs(pane.pid, process_name):
                return True
        return False

    async def create_detached(self, descriptor: SessionDescriptor, project_name: str) -> bool:
        """
        Create a detached session and start the assistant in it.

        A session that already exists (for instance created by a concurrent
        invocation) is left untouched.

        Returns:
            True if a new session was created

        Raises:
            SessionOperationError: tmux refused to create the session
        """
        self.require_available()
        write_context_file(descriptor, project_name, self.config)

        result = await self._call(
            self.driver.new_session(descriptor.name, descriptor.working_directory, window_name=ASSISTANT_WINDOW),
            "create_session")
        if not result.ok:
            if _stderr_has(result, _DUPLICATE_MARKERS):
                logger.info("Session already exists", extra={"context": {"session": descriptor.name}})
                return False
            raise SessionOperationError(f"Failed to create session {descriptor.name}",
                                        "create_session", result.stderr)

        await self.enhancer.configure_session(descriptor, project_name)
        command = build_assistant_command(descriptor.working_directory, self.config)
        keys = await self._call(self.driver.send_keys(f"{descriptor.name}:{ASSISTANT_WINDOW}", command),
                                "start_assistant")
        if not keys.ok:
            raise SessionOperationError(f"Failed to start assistant in {descriptor.name}",
                                        "start_assistant", keys.stderr)
        await self._tag_session(descriptor)

        console.print(f"[green]✓ Created session {descriptor.name}[/green]")
        logger.info("Session created", extra={"context": {
            "session": descriptor.name, "branch": descriptor.branch_name, "role": descriptor.role.value}})
        return True

    async def start_assistant(self, descriptor: SessionDescriptor, project_name: str) -> None:
        """
        Start the assistant in a new window of an existing session.

        Other windows of the session are left as they are.
        """
        self.require_available()
        write_context_file(descriptor, project_name, self.config)
        command = build_assistant_command(descriptor.working_directory, self.config)

        await self.enhancer.configure_session(descriptor, project_name)
        result = await self._call(
            self.driver.new_window(descriptor.name, descriptor.working_directory,
                                   window_name=ASSISTANT_WINDOW, command=command),
            "start_assistant")
        if not result.ok:
            raise SessionOperationError(f"Failed to start assistant in {descriptor.name}",
                                        "start_assistant", result.stderr)
        await self._tag_session(descriptor)
        logger.info("Assistant restarted in existing session", extra={"context": {"session": descriptor.name}})

    async def attach(self, name: str) -> None:
        """Attach to a session, switching the client instead when already inside tmux."""
        self.require_available()
        if self.is_inside_session():
            await self.switch_client(name)
            return
        exit_code = await self.driver.attach_session(name)
        if exit_code != 0:
            raise SessionOperationError(f"Failed to attach to session {name} (exit {exit_code})", "attach")

    async def switch_client(self, name: str) -> None:
        self.require_available()
        result = await self._call(self.driver.switch_client(name), "switch_client")
        if not result.ok:
            raise SessionOperationError(f"Failed to switch to session {name}", "switch_client", result.stderr)

    async def kill(self, name: str) -> None:
        """Kill one session; killing a session that is already gone is a no-op."""
        self.require_available()
        result = await self._call(self.driver.kill_session(name), "kill_session")
        if not result.ok:
            if _stderr_has(result, _MISSING_MARKERS):
                logger.debug("Session already gone", extra={"context": {"session": name}})
                return
            raise SessionOperationError(f"Failed to kill session {name}", "kill_session", result.stderr)
        logger.info("Session killed", extra={"context": {"session": name}})

    async def kill_all_matching_project(self, repo_name: str) -> BulkResult:
        """
        Kill every session of one repository, children first and the supervisor last.

        Individual failures are recorded and do not stop the rest.
        """
        self.require_available()
        names = self.project_session_names(repo_name, [s.name for s in await self._list_raw()])
        report = BulkResult(targeted=len(names))

        for name in names:
            try:
                await self.kill(name)
                report.record_success(name)
            except ClaudeGWTError as e:
                logger.warning("Failed to kill session", extra={"context": {"session": name, "error": str(e)}})
                report.record_failure(name, str(e))

        if report.failed:
            console.print(f"[yellow]⚠️ Killed {len(report.succeeded)}/{report.targeted} sessions[/yellow]")
        return report

    @staticmethod
    def project_session_names(repo_name: str, names: List[str]) -> List[str]:
        """Names belonging to ``repo_name``, children before the supervisor."""
        repo = sanitize(repo_name)
        children, supervisors = [], []
        for name in names:
            parsed = parse_session_name(name)
            if parsed is None or parsed[0] != repo:
                continue
            (supervisors if parsed[1] == SUPERVISOR_BRANCH else children).append(name)
        return sorted(children) + supervisors

    async def get_role(self, name: str) -> Optional[Role]:
        value = await self.driver.show_option(name, ROLE_OPTION)
        if not value:
            return None
        try:
            return Role(value)
        except ValueError:
            return None

    async def _tag_session(self, descriptor: SessionDescriptor) -> None:
        for option, value in ((ROLE_OPTION, descriptor.role.value), (BRANCH_OPTION, descriptor.branch_name)):
            result = await self._call(self.driver.set_option(descriptor.name, option, value), "tag_session")
            if not result.ok:
                logger.debug("Failed to tag session", extra={"context": {
                    "session": descriptor.name, "option": option, "stderr": result.stderr.strip()}})

    async def _list_raw(self) -> List[TmuxSession]:
        prefix = f"{SESSION_PREFIX}-"
        try:
            sessions = await retry_async(self.driver.list_sessions,
                                         max_attempts=self.config.retry_max_attempts,
                                         initial_delay=self.config.retry_initial_delay,
                                         should_retry=is_retryable_error)
        except (CommandTimeoutError, OutputOverflowError) as e:
            raise SessionOperationError(f"Failed to list tmux sessions: {e}", "list_sessions") from e
        return [session for session in sessions if session.name.startswith(prefix)]

    async def _to_info(self, session: TmuxSession) -> SessionInfo:
        return SessionInfo(
            name=session.name,
            window_count=session.windows,
            created_at=datetime.fromtimestamp(session.created) if session.created else None,
            is_attached=session.attached,
            has_assistant_running=await self.has_assistant_running(session.name),
        )

    async def _call(self, call: Awaitable[CommandResult], operation: str) -> CommandResult:
        try:
            return await call
        except (CommandTimeoutError, OutputOverflowError) as e:
            raise SessionOperationError(str(e), operation) from e

