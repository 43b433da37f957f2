"""
Core types: errors, data model, orchestration and context.
"""

from .errors import (
    ClaudeGWTError,
    CommandTimeoutError,
    ConfigError,
    ConversionRefusedError,
    GitOperationError,
    InstanceAlreadyRunningError,
    InstanceConfigurationError,
    InstanceError,
    InstanceNotRunningError,
    MessageRoutingError,
    OutputOverflowError,
    SessionOperationError,
    SessionUnavailableError,
    TargetNotFoundError,
)
from .models import (
    BulkResult,
    ConversionCheck,
    DirectoryKind,
    DirectoryState,
    EnsureOutcome,
    InitResult,
    InstanceStatus,
    LaunchReport,
    Role,
    SessionDescriptor,
    SessionInfo,
    SwitchAction,
    SwitchResult,
    WorktreeEntry,
)

__all__ = [
    'ClaudeGWTError',
    'CommandTimeoutError',
    'ConfigError',
    'ConversionRefusedError',
    'GitOperationError',
    'InstanceAlreadyRunningError',
    'InstanceConfigurationError',
    'InstanceError',
    'InstanceNotRunningError',
    'MessageRoutingError',
    'OutputOverflowError',
    'SessionOperationError',
    'SessionUnavailableError',
    'TargetNotFoundError',
    'BulkResult',
    'ConversionCheck',
    'DirectoryKind',
    'DirectoryState',
    'EnsureOutcome',
    'InitResult',
    'InstanceStatus',
    'LaunchReport',
    'Role',
    'SessionDescriptor',
    'SessionInfo',
    'SwitchAction',
    'SwitchResult',
    'WorktreeEntry',
]
