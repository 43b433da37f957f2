"""
Git integration: directory classification, worktree management, bootstrapping.
"""

from .bootstrapper import RepositoryBootstrapper
from .classifier import DirectoryClassifier, is_container_root
from .worktree_manager import WorktreeManager, parse_worktree_list

__all__ = [
    'RepositoryBootstrapper',
    'DirectoryClassifier',
    'is_container_root',
    'WorktreeManager',
    'parse_worktree_list',
]
