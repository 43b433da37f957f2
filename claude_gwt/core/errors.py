"""
Error Taxonomy Module

Exception hierarchy shared by the git, tmux and assistant-process layers.
Every error carries a stable ``code`` so callers can branch on the kind of
failure without matching message text.
"""

from typing import List, Optional


class ClaudeGWTError(Exception):
    """Base class for all claude-gwt failures."""

    def __init__(self, message: str, code: str = "CLAUDE_GWT_ERROR"):
        super().__init__(message)
        self.message = message
        self.code = code


class GitOperationError(ClaudeGWTError):
    """A git invocation returned non-zero, timed out, or was rejected up front."""

    def __init__(self, message: str, operation: str, stderr: str = ""):
        if stderr and stderr.strip() not in message:
            message = f"{message}: {stderr.strip()}"
        super().__init__(message, "GIT_OPERATION_ERROR")
        self.operation = operation
        self.stderr = stderr


class ConversionRefusedError(ClaudeGWTError):
    """Pre-flight refusal to convert a repository; nothing was modified."""

    def __init__(self, reason: str):
        super().__init__(f"Cannot convert repository: {reason}", "CONVERSION_REFUSED")
        self.reason = reason


class SessionUnavailableError(ClaudeGWTError):
    """tmux is not installed or its server cannot be reached."""

    INSTALL_HINT = (
        "tmux is required. Install it with your package manager, "
        "e.g. 'brew install tmux' or 'sudo apt-get install tmux'."
    )

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or f"tmux is not available. {self.INSTALL_HINT}", "SESSION_UNAVAILABLE")


class SessionOperationError(ClaudeGWTError):
    """A single tmux session command failed."""

    def __init__(self, message: str, operation: str, stderr: str = ""):
        if stderr and stderr.strip() not in message:
            message = f"{message}: {stderr.strip()}"
        super().__init__(message, "SESSION_OPERATION_ERROR")
        self.operation = operation
        self.stderr = stderr


class InstanceError(ClaudeGWTError):
    """Assistant-process lifecycle misuse or failure."""

    def __init__(self, message: str, instance_id: str, code: str = "CLAUDE_INSTANCE_ERROR"):
        super().__init__(message, code)
        self.instance_id = instance_id


class InstanceAlreadyRunningError(InstanceError):
    """Double start, duplicate registration, or a second supervisor."""

    def __init__(self, message: str, instance_id: str):
        super().__init__(message, instance_id, "INSTANCE_ALREADY_RUNNING")


class InstanceNotRunningError(InstanceError):
    """Operation requires a live process but the instance is stopped."""

    def __init__(self, message: str, instance_id: str):
        super().__init__(message, instance_id, "INSTANCE_NOT_RUNNING")


class InstanceConfigurationError(InstanceError):
    """Role-specific construction requirements were not met."""

    def __init__(self, message: str, instance_id: str = ""):
        super().__init__(message, instance_id, "INSTANCE_CONFIGURATION_ERROR")


class TargetNotFoundError(ClaudeGWTError):
    """A branch, index or session name resolved to nothing."""

    def __init__(self, target: str, alternatives: List[str]):
        listing = ", ".join(alternatives) if alternatives else "none"
        super().__init__(f"Target '{target}' not found. Valid targets: {listing}", "TARGET_NOT_FOUND")
        self.target = target
        self.alternatives = list(alternatives)


class MessageRoutingError(ClaudeGWTError):
    """A message could not be delivered to its destination instance."""

    def __init__(self, message: str, target: str):
        super().__init__(message, "MESSAGE_ROUTING_ERROR")
        self.target = target


class CommandTimeoutError(ClaudeGWTError):
    """An external command exceeded its time budget and was killed."""

    def __init__(self, command: List[str], timeout: float):
        super().__init__(f"Command timed out after {timeout:g}s: {' '.join(command)}", "COMMAND_TIMEOUT")
        self.command = list(command)
        self.timeout = timeout


class OutputOverflowError(ClaudeGWTError):
    """An external command produced more output than the buffer allows."""

    def __init__(self, command: List[str], limit: int):
        super().__init__(f"Command output exceeded {limit} bytes: {' '.join(command)}", "OUTPUT_OVERFLOW")
        self.command = list(command)
        self.limit = limit


class ConfigError(ClaudeGWTError):
    """Configuration file is unreadable or fails schema validation."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message, "CONFIG_ERROR")
        self.errors = list(errors or [])
