"""
Session Orchestrator Module

Keeps one tmux session per worktree branch plus a supervisor session for the
container, and moves the user between them. Session state is always read
back from tmux before anything is written, so running the same command twice
never destroys a live session.
"""

import asyncio
import logging
from pathlib import Path
from typing import Callable, List, Optional, Union

from rich.console import Console

from ..git.classifier import DirectoryClassifier
from ..git.worktree_manager import WorktreeManager
from ..tmux.session_registry import SessionRegistry
from ..utils.config_loader import GWTConfig
from .errors import TargetNotFoundError
from .models import (
    SUPERVISOR_BRANCH,
    BulkResult,
    EnsureOutcome,
    LaunchReport,
    Role,
    SessionDescriptor,
    SwitchAction,
    SwitchResult,
    SwitchTarget,
)

console = Console()
logger = logging.getLogger(__name__)

SUPERVISOR_ALIASES = ("supervisor", "sup")

WorktreeFactory = Callable[[Path], WorktreeManager]


class SessionOrchestrator:
    """
    Drives the per-branch session state machine.

    absent -> created -> assistant running -> absent (on kill)
    """

    def __init__(self,
                 sessions: SessionRegistry,
                 classifier: Optional[DirectoryClassifier] = None,
                 config: Optional[GWTConfig] = None,
                 worktree_factory: Optional[WorktreeFactory] = None):
        """
        Initialize the orchestrator.

        Args:
            sessions: tmux session registry
            classifier: Used to find the container that owns a path
            config: Runtime configuration
            worktree_factory: Builds a WorktreeManager for a container path
        """
        self.sessions = sessions
        self.classifier = classifier or DirectoryClassifier()
        self.config = config or GWTConfig()
        self.worktree_factory = worktree_factory or self._default_worktrees

    def _default_worktrees(self, container: Path) -> WorktreeManager:
        return WorktreeManager(container,
                               retry_attempts=self.config.retry_max_attempts,
                               retry_delay=self.config.retry_initial_delay)

    @staticmethod
    def repo_name(container_path: Union[str, Path]) -> str:
        return Path(container_path).resolve().name

    async def ensure(self, descriptor: SessionDescriptor, project_name: str) -> EnsureOutcome:
        """
        Make sure a session exists and runs the assistant.

        A missing session is created. An existing session without an
        assistant gets a new assistant window; the session itself is kept.

        Returns:
            What had to be done
        """
        info = await self.sessions.get_session(descriptor.name)
        if info is None:
            created = await self.sessions.create_detached(descriptor, project_name)
            # lost a creation race with another invocation
            return EnsureOutcome.CREATED if created else EnsureOutcome.ALREADY_RUNNING

        if info.has_assistant_running:
            logger.debug("Assistant already running", extra={"context": {"session": descriptor.name}})
            return EnsureOutcome.ALREADY_RUNNING

        logger.info("Restarting assistant in existing session", extra={"context": {"session": descriptor.name}})
        await self.sessions.start_assistant(descriptor, project_name)
        return EnsureOutcome.RESTARTED

    async def launch_all(self, container_path: Union[str, Path], attach: bool = True) -> LaunchReport:
        """
        Ensure the supervisor session and one session per worktree.

        The supervisor is ensured first and attached last. Branch sessions are
        ensured concurrently; a failing branch is recorded and never stops the
        others.

        Args:
            container_path: Worktree container root
            attach: Attach to the supervisor once everything is launched

        Returns:
            LaunchReport with per-branch outcomes
        """
        container = Path(container_path).resolve()
        repo = self.repo_name(container)
        self.sessions.require_available()

        supervisor = SessionDescriptor.supervisor(repo, str(container))
        await self.ensure(supervisor, repo)

        descriptors = await self._child_descriptors(container, repo)
        console.print(f"[blue]Launching {len(descriptors)} branch session(s) for {repo}[/blue]")

        results = await asyncio.gather(*(self.ensure(d, repo) for d in descriptors), return_exceptions=True)
        report = BulkResult(targeted=len(descriptors))
        for descriptor, result in zip(descriptors, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                logger.error("Failed to launch branch session", extra={"context": {
                    "branch": descriptor.branch_name, "session": descriptor.name, "error": str(result)}})
                report.record_failure(descriptor.name, str(result))
            else:
                report.record_success(descriptor.name)

        if report.failed:
            console.print(f"[yellow]⚠️ {report.failed_count} of {report.targeted} branch sessions failed[/yellow]")
        else:
            console.print(f"[green]✓ {report.targeted} branch session(s) ready[/green]")

        launch = LaunchReport(supervisor_session=supervisor.name, sessions=report)
        if attach:
            await self.sessions.attach(supervisor.name)
            launch.attached = True
        return launch

    async def list_targets(self, container_path: Union[str, Path]) -> List[SwitchTarget]:
        """Supervisor at index 0, then one target per worktree sorted by branch."""
        container = Path(container_path).resolve()
        repo = self.repo_name(container)
        supervisor = SessionDescriptor.supervisor(repo, str(container))

        targets = [SwitchTarget(0, SUPERVISOR_BRANCH, supervisor.working_directory, supervisor.name, Role.SUPERVISOR)]
        for index, descriptor in enumerate(await self._child_descriptors(container, repo), start=1):
            targets.append(SwitchTarget(index, descriptor.branch_name, descriptor.working_directory,
                                        descriptor.name, Role.CHILD))
        return targets

    async def switch_to(self, target: str, container_path: Union[str, Path]) -> SwitchResult:
        """
        Move to a branch session by index or branch name.

        Inside tmux the client is switched when the target session exists;
        otherwise the caller gets the directory to change into.

        Raises:
            TargetNotFoundError: ``target`` matches no index or branch
        """
        targets = await self.list_targets(container_path)
        chosen = resolve_target(target, targets)
        if chosen is None:
            raise TargetNotFoundError(target, [f"{t.index}: {t.branch}" for t in targets])

        if self.sessions.is_inside_session() and await self.sessions.get_session(chosen.session_name) is not None:
            await self.sessions.switch_client(chosen.session_name)
            logger.info("Switched client", extra={"context": {"session": chosen.session_name}})
            return SwitchResult(SwitchAction.SWITCHED, chosen.session_name, chosen.working_directory, chosen.branch)

        return SwitchResult(SwitchAction.CHANGE_DIRECTORY, chosen.session_name, chosen.working_directory,
                            chosen.branch)

    async def shutdown_all(self, repo_name: str) -> BulkResult:
        """Kill every session of ``repo_name``; individual failures are reported, not raised."""
        report = await self.sessions.kill_all_matching_project(repo_name)
        logger.info("Shutdown complete", extra={"context": {
            "repo": repo_name, "targeted": report.targeted, "failed": report.failed_count}})
        if report.ok:
            console.print(f"[green]✓ Stopped {report.targeted} session(s)[/green]")
        return report

    async def enter_supervisor_mode(self, path: Union[str, Path]) -> LaunchReport:
        """
        Bring the user to the supervisor session of the container owning ``path``.

        Outside tmux every session is launched and the supervisor attached.
        Inside tmux only the supervisor is ensured and the client switched.
        """
        container = await self.classifier.container_root(path)
        if container is None:
            container = Path(path).resolve()
            logger.warning("No worktree container found, using path as is", extra={"context": {
                "path": str(container)}})

        logger.info("Entering supervisor mode", extra={"context": {"container": str(container)}})
        if not self.sessions.is_inside_session():
            return await self.launch_all(container)

        repo = self.repo_name(container)
        supervisor = SessionDescriptor.supervisor(repo, str(container))
        await self.ensure(supervisor, repo)
        await self.sessions.switch_client(supervisor.name)
        return LaunchReport(supervisor_session=supervisor.name, sessions=BulkResult(), attached=True)

    async def _child_descriptors(self, container: Path, repo: str) -> List[SessionDescriptor]:
        entries = await self.worktree_factory(container).list()
        # a converted repository registers the container itself; the supervisor owns that directory
        entries = [e for e in entries if Path(e.path).resolve() != container]
        entries.sort(key=lambda e: e.session_branch)

        # distinct branches can sanitize to one name, and a branch called "supervisor" to the supervisor's
        taken = {SessionDescriptor.supervisor(repo, str(container)).name}
        descriptors = []
        for entry in entries:
            descriptor = SessionDescriptor.for_branch(repo, entry.session_branch, Role.CHILD, entry.path)
            if descriptor.name in taken:
                logger.warning("Session name already in use, skipping worktree", extra={"context": {
                    "session": descriptor.name, "branch": entry.session_branch, "path": entry.path}})
                continue
            taken.add(descriptor.name)
            descriptors.append(descriptor)
        return descriptors


def resolve_target(target: str, targets: List[SwitchTarget]) -> Optional[SwitchTarget]:
    """Resolve an index, a branch name or the supervisor alias against ``targets``."""
    target = target.strip()
    if target in SUPERVISOR_ALIASES:
        return targets[0] if targets else None
    if target.isdigit():
        index = int(target)
        return targets[index] if index < len(targets) else None
    for candidate in targets:
        if candidate.branch == target:
            return candidate
    return None
