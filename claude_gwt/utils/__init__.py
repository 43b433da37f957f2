"""
Shared utilities: bounded command execution, retry, naming, config and logging.
"""

from .command_runner import CommandResult, CommandRunner, git_runner, tmux_runner
from .config_loader import ConfigLoader, ConfigSchema, GWTConfig, load_gwt_config
from .logging_config import setup_logging
from .retry import is_retryable_error, retry_async
from .sanitize import (
    SESSION_PREFIX,
    is_valid_branch_name,
    is_valid_git_url,
    parse_session_name,
    sanitize,
    session_name,
)

__all__ = [
    'CommandResult',
    'CommandRunner',
    'git_runner',
    'tmux_runner',
    'ConfigLoader',
    'ConfigSchema',
    'GWTConfig',
    'load_gwt_config',
    'setup_logging',
    'is_retryable_error',
    'retry_async',
    'SESSION_PREFIX',
    'is_valid_branch_name',
    'is_valid_git_url',
    'parse_session_name',
    'sanitize',
    'session_name',
]
