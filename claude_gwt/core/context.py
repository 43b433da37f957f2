"""
Orchestration Context Module

Explicitly constructed bundle of every collaborator one claude-gwt run needs.
Nothing here is global: tests and embedding code can hold several contexts
side by side, each with its own instance registry and router.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from ..claude.instance import ClaudeInstance, create_instance
from ..claude.registry import InstanceRegistry
from ..claude.router import MessageRouter
from ..git.bootstrapper import RepositoryBootstrapper
from ..git.classifier import DirectoryClassifier
from ..git.worktree_manager import WorktreeManager
from ..tmux.driver import TmuxDriver
from ..tmux.session_registry import SessionRegistry
from ..utils.command_runner import CommandRunner, git_runner, tmux_runner
from ..utils.config_loader import GWTConfig
from ..utils.logging_config import setup_logging
from .models import DirectoryState, Role
from .session_orchestrator import SessionOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class OrchestrationContext:
    """Collaborators bound to one base path."""
    base_path: Path
    config: GWTConfig
    git: CommandRunner
    classifier: DirectoryClassifier
    worktrees: WorktreeManager
    bootstrapper: RepositoryBootstrapper
    sessions: SessionRegistry
    orchestrator: SessionOrchestrator
    instances: InstanceRegistry
    router: MessageRouter

    @classmethod
    def create(cls,
               base_path: Union[str, Path],
               config: Optional[GWTConfig] = None,
               git: Optional[CommandRunner] = None,
               tmux: Optional[CommandRunner] = None,
               configure_logging: bool = True) -> "OrchestrationContext":
        """
        Build a context.

        Args:
            base_path: Directory the run operates on
            config: Settings; defaults are used when omitted
            git: Git collaborator, mainly for tests
            tmux: tmux collaborator, mainly for tests
            configure_logging: Apply the configured log level and log file
        """
        config = config or GWTConfig()
        if configure_logging:
            setup_logging(config.log_level, config.log_file)
        base = Path(base_path).expanduser().resolve()
        git = git or git_runner(config.timeout_seconds, config.max_buffer_bytes)
        tmux = tmux or tmux_runner(config.timeout_seconds, config.max_buffer_bytes)

        classifier = DirectoryClassifier(git=git)
        worktrees = WorktreeManager(base, git=git,
                                    retry_attempts=config.retry_max_attempts,
                                    retry_delay=config.retry_initial_delay)
        bootstrapper = RepositoryBootstrapper(base, git=git, worktrees=worktrees, classifier=classifier)
        sessions = SessionRegistry(driver=TmuxDriver(tmux), config=config)

        def worktree_factory(container: Path) -> WorktreeManager:
            if container == base:
                return worktrees
            return WorktreeManager(container, git=git,
                                   retry_attempts=config.retry_max_attempts,
                                   retry_delay=config.retry_initial_delay)

        orchestrator = SessionOrchestrator(sessions, classifier=classifier, config=config,
                                           worktree_factory=worktree_factory)
        instances = InstanceRegistry()
        return cls(
            base_path=base,
            config=config,
            git=git,
            classifier=classifier,
            worktrees=worktrees,
            bootstrapper=bootstrapper,
            sessions=sessions,
            orchestrator=orchestrator,
            instances=instances,
            router=MessageRouter(instances),
        )

    async def classify(self) -> DirectoryState:
        return await self.classifier.classify(self.base_path)

    async def spawn_instance(self,
                             role: Role,
                             working_directory: Union[str, Path],
                             branch: str,
                             parent_id: Optional[str] = None) -> ClaudeInstance:
        """
        Create, register, attach and start one assistant instance.

        The instance is registered before it starts so a second supervisor
        is refused without spawning a process.
        """
        instance = create_instance(role, str(working_directory), branch, parent_id=parent_id, config=self.config)
        self.instances.register(instance)
        self.router.attach(instance)
        try:
            await instance.start()
        except Exception:
            await self.router.detach(instance.id)
            self.instances.unregister(instance.id)
            raise
        return instance

    async def close(self) -> None:
        """Stop every instance, then drop registrations and forwarding tasks."""
        await self.instances.stop_all()
        await self.router.close()
        self.instances.clear()
        logger.debug("Orchestration context closed", extra={"context": {"base_path": str(self.base_path)}})

    async def __aenter__(self) -> "OrchestrationContext":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
