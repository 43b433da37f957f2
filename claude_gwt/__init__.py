"""
claude-gwt - Git Worktree Session Orchestration

Runs one assistant session per git worktree branch, plus a supervisor
session for the whole project, on top of tmux.

- Directory classification and worktree container bootstrapping
- Worktree listing, creation and removal
- tmux session registry with an idempotent per-branch state machine
- Supervisor/child assistant processes with line-delimited JSON messaging
"""

from .core.context import OrchestrationContext
from .core.errors import ClaudeGWTError
from .core.models import DirectoryKind, DirectoryState, Role, SessionDescriptor, WorktreeEntry
from .core.session_orchestrator import SessionOrchestrator

# Git layer
from .git.bootstrapper import RepositoryBootstrapper
from .git.classifier import DirectoryClassifier
from .git.worktree_manager import WorktreeManager

# tmux layer
from .tmux.session_registry import SessionRegistry

# Assistant processes
from .claude.instance import ClaudeInstance, create_instance
from .claude.registry import InstanceRegistry
from .claude.router import MessageRouter

# Support modules
from .utils.config_loader import ConfigLoader, GWTConfig, load_gwt_config
from .utils.logging_config import setup_logging
from .utils.sanitize import sanitize, session_name

__version__ = "0.1.0"
__description__ = "Git worktree session orchestration for Claude"

__all__ = [
    # Core
    'OrchestrationContext',
    'SessionOrchestrator',
    'ClaudeGWTError',
    'DirectoryKind', 'DirectoryState', 'Role', 'SessionDescriptor', 'WorktreeEntry',

    # Git
    'RepositoryBootstrapper',
    'DirectoryClassifier',
    'WorktreeManager',

    # tmux
    'SessionRegistry',

    # Assistant processes
    'ClaudeInstance', 'create_instance',
    'InstanceRegistry',
    'MessageRouter',

    # Support modules
    'ConfigLoader', 'GWTConfig', 'load_gwt_config',
    'setup_logging',
    'sanitize', 'session_name',

    '__version__',
    '__description__',
]


def get_version():
    """Get the current version of claude-gwt."""
    return __version__
