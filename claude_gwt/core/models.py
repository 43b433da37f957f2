"""
Data Model Module

Value types passed between the classifier, worktree manager, session registry,
orchestrator and assistant-process layers. Everything here is recomputed on
demand and never persisted.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from ..utils.sanitize import session_name


class DirectoryKind(Enum):
    """What a directory currently is, from least to most structured."""
    EMPTY = "empty"
    NON_GIT = "non-git"
    PLAIN_REPO = "plain-repo"
    WORKTREE_CONTAINER = "worktree-container"
    WORKTREE_MEMBER = "worktree-member"


@dataclass(frozen=True)
class DirectoryState:
    """Tagged result of classifying a path. Only repo kinds carry a branch."""
    kind: DirectoryKind
    path: str
    current_branch: Optional[str] = None

    @classmethod
    def empty(cls, path: str) -> "DirectoryState":
        return cls(DirectoryKind.EMPTY, path)

    @classmethod
    def non_git(cls, path: str) -> "DirectoryState":
        return cls(DirectoryKind.NON_GIT, path)

    @classmethod
    def plain_repo(cls, path: str, current_branch: Optional[str]) -> "DirectoryState":
        return cls(DirectoryKind.PLAIN_REPO, path, current_branch)

    @classmethod
    def worktree_container(cls, path: str) -> "DirectoryState":
        return cls(DirectoryKind.WORKTREE_CONTAINER, path)

    @classmethod
    def worktree_member(cls, path: str, current_branch: Optional[str]) -> "DirectoryState":
        return cls(DirectoryKind.WORKTREE_MEMBER, path, current_branch)


@dataclass(frozen=True)
class WorktreeEntry:
    """One record of ``git worktree list --porcelain``."""
    path: str
    head_commit: str = ""
    branch: Optional[str] = None
    is_locked: bool = False
    is_prunable: bool = False

    @property
    def is_detached(self) -> bool:
        return self.branch is None

    @property
    def session_branch(self) -> str:
        """Branch label used for session naming; detached entries use their commit."""
        if self.branch:
            return self.branch
        if self.head_commit:
            return f"detached-{self.head_commit[:7]}"
        return "detached"


class Role(Enum):
    SUPERVISOR = "supervisor"
    CHILD = "child"


SUPERVISOR_BRANCH = "supervisor"


@dataclass(frozen=True)
class SessionDescriptor:
    """
    Immutable request for a tmux session bound to one branch.

    Changing the role or directory means building a new descriptor, which in
    turn yields a new session name.
    """
    name: str
    branch_name: str
    role: Role
    working_directory: str

    @classmethod
    def for_branch(cls,
                   repo_name: str,
                   branch_name: str,
                   role: Role,
                   working_directory: str) -> "SessionDescriptor":
        return cls(
            name=session_name(repo_name, branch_name),
            branch_name=branch_name,
            role=role,
            working_directory=str(working_directory),
        )

    @classmethod
    def supervisor(cls, repo_name: str, container_path: str) -> "SessionDescriptor":
        return cls.for_branch(repo_name, SUPERVISOR_BRANCH, Role.SUPERVISOR, container_path)


@dataclass(frozen=True)
class SessionInfo:
    """Runtime-observed state of one tmux session."""
    name: str
    window_count: int
    created_at: Optional[datetime]
    is_attached: bool
    has_assistant_running: bool


class InstanceStatus(Enum):
    IDLE = "idle"
    ACTIVE = "active"
    ERROR = "error"


class EnsureOutcome(Enum):
    CREATED = "created"
    RESTARTED = "restarted"
    ALREADY_RUNNING = "already_running"


@dataclass
class BulkResult:
    """Aggregate outcome of an operation applied to many sessions."""
    targeted: int = 0
    succeeded: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    @property
    def ok(self) -> bool:
        return not self.failed

    def record_success(self, name: str) -> None:
        self.succeeded.append(name)

    def record_failure(self, name: str, reason: str) -> None:
        self.failed[name] = reason


@dataclass
class LaunchReport:
    supervisor_session: str
    sessions: BulkResult
    attached: bool = False


class SwitchAction(Enum):
    SWITCHED = "switched"
    CHANGE_DIRECTORY = "change_directory"


@dataclass(frozen=True)
class SwitchResult:
    action: SwitchAction
    session_name: str
    working_directory: str
    branch: str


@dataclass(frozen=True)
class SwitchTarget:
    """One selectable entry in the ordered session list (index 0 is the supervisor)."""
    index: int
    branch: str
    working_directory: str
    session_name: str
    role: Role


@dataclass(frozen=True)
class ConversionCheck:
    ok: bool
    reason: Optional[str] = None


@dataclass(frozen=True)
class InitResult:
    default_branch: str
