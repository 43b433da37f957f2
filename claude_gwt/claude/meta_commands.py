"""
Meta Commands Module

Interactive layer in front of the assistant instances. Input lines starting
with ``:`` are handled locally (help, list, select, broadcast, exit); any
other non-blank line is sent to the currently selected instance.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from ..core.errors import MessageRoutingError
from ..core.models import Role
from .instance import ClaudeInstance
from .protocol import Message
from .registry import InstanceRegistry
from .router import SUPERVISOR_ALIASES, MessageRouter

console = Console()
logger = logging.getLogger(__name__)

META_PREFIX = ":"

HELP_TEXT = """Meta commands:
  :h, :help               Show this help
  :l, :list               List instances
  :s, :select [n|branch]  Select an instance (no argument selects the supervisor)
  :b, :broadcast <text>   Send text to every other instance
  :exit, :quit            Leave the session"""


class MetaCommandKind(Enum):
    HELP = "help"
    LIST = "list"
    SELECT = "select"
    BROADCAST = "broadcast"
    EXIT = "exit"
    UNKNOWN = "unknown"


_ALIASES = {
    "h": MetaCommandKind.HELP,
    "help": MetaCommandKind.HELP,
    "l": MetaCommandKind.LIST,
    "list": MetaCommandKind.LIST,
    "s": MetaCommandKind.SELECT,
    "select": MetaCommandKind.SELECT,
    "b": MetaCommandKind.BROADCAST,
    "broadcast": MetaCommandKind.BROADCAST,
    "exit": MetaCommandKind.EXIT,
    "quit": MetaCommandKind.EXIT,
}


@dataclass(frozen=True)
class MetaCommand:
    kind: MetaCommandKind
    name: str
    argument: str = ""


def parse_meta_command(line: str) -> Optional[MetaCommand]:
    """Return the meta command in ``line``, or None for ordinary input."""
    stripped = line.strip()
    if not stripped.startswith(META_PREFIX):
        return None
    body = stripped[len(META_PREFIX):]
    name, _, argument = body.partition(" ")
    kind = _ALIASES.get(name.lower(), MetaCommandKind.UNKNOWN)
    return MetaCommand(kind, name, argument.strip())


class InputAction(Enum):
    SENT = "sent"
    HANDLED = "handled"
    USAGE = "usage"
    EXIT = "exit"
    IGNORED = "ignored"
    ERROR = "error"


@dataclass
class InputOutcome:
    action: InputAction
    text: str = ""
    selected: Optional[str] = None
    delivered: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


class InteractiveSession:
    """
    Dispatches user input to meta commands or the selected instance.

    Selection targets are the supervisor (index 0) followed by children
    sorted by branch.
    """

    def __init__(self, registry: InstanceRegistry, router: MessageRouter):
        self.registry = registry
        self.router = router
        self.selected_id: Optional[str] = None

    def targets(self) -> List[ClaudeInstance]:
        supervisor = self.registry.supervisor()
        head = [supervisor] if supervisor is not None else []
        return head + self.registry.children()

    def selected(self) -> Optional[ClaudeInstance]:
        instance = self.registry.get(self.selected_id) if self.selected_id else None
        return instance or self.registry.supervisor()

    async def handle_input(self, line: str) -> InputOutcome:
        command = parse_meta_command(line)
        if command is None:
            if not line.strip():
                return InputOutcome(InputAction.IGNORED)
            return await self._send(line)

        if command.kind == MetaCommandKind.HELP:
            return InputOutcome(InputAction.HANDLED, HELP_TEXT)
        if command.kind == MetaCommandKind.LIST:
            return InputOutcome(InputAction.HANDLED, self.render_list())
        if command.kind == MetaCommandKind.SELECT:
            return self._select(command.argument)
        if command.kind == MetaCommandKind.BROADCAST:
            return await self._broadcast(command.argument)
        if command.kind == MetaCommandKind.EXIT:
            return InputOutcome(InputAction.EXIT, "Exiting")
        return InputOutcome(InputAction.USAGE, f"Unknown command: {META_PREFIX}{command.name}\n{HELP_TEXT}")

    def render_list(self) -> str:
        targets = self.targets()
        if not targets:
            return "No instances running"
        current = self.selected()
        lines = []
        for index, instance in enumerate(targets):
            marker = "*" if current is not None and instance.id == current.id else " "
            lines.append(f"{marker} {index}: {instance.branch} ({instance.role.value}, {instance.status.value})")
        return "\n".join(lines)

    def print_list(self) -> None:
        table = Table(title="Instances")
        table.add_column("#", style="cyan")
        table.add_column("Branch", style="green")
        table.add_column("Role")
        table.add_column("Status")
        current = self.selected()
        for index, instance in enumerate(self.targets()):
            label = f"{instance.branch} *" if current is not None and instance.id == current.id else instance.branch
            table.add_row(str(index), label, instance.role.value, instance.status.value)
        console.print(table)

    def resolve(self, argument: str) -> Optional[ClaudeInstance]:
        targets = self.targets()
        if not argument or argument in SUPERVISOR_ALIASES:
            return self.registry.supervisor()
        if argument.isdigit():
            index = int(argument)
            return targets[index] if index < len(targets) else None
        for instance in targets:
            if instance.branch == argument or instance.id == argument:
                return instance
        return None

    def _select(self, argument: str) -> InputOutcome:
        instance = self.resolve(argument)
        if instance is None:
            alternatives = ", ".join(f"{i}:{t.branch}" for i, t in enumerate(self.targets())) or "none"
            return InputOutcome(InputAction.USAGE,
                                f"No instance matches '{argument}'. Available: {alternatives}")
        self.selected_id = instance.id
        label = "supervisor" if instance.role == Role.SUPERVISOR else instance.branch
        return InputOutcome(InputAction.HANDLED, f"Selected {label}", selected=instance.id)

    async def _broadcast(self, text: str) -> InputOutcome:
        if not text:
            return InputOutcome(InputAction.USAGE, "Usage: :b|:broadcast <message>")
        current = self.selected()
        result = await self.router.broadcast(text, sender_id=current.id if current else None)
        return InputOutcome(
            InputAction.HANDLED,
            f"Broadcast delivered to {len(result.delivered)} instance(s), skipped {len(result.skipped)}",
            delivered=result.delivered,
            skipped=result.skipped,
        )

    async def _send(self, line: str) -> InputOutcome:
        current = self.selected()
        if current is None:
            return InputOutcome(InputAction.ERROR, "No instance selected")
        try:
            await self.router.send_to(current.id, Message.user(line))
        except MessageRoutingError as e:
            logger.warning("Failed to send input", extra={"context": {"instance_id": current.id, "error": str(e)}})
            return InputOutcome(InputAction.ERROR, str(e), selected=current.id)
        return InputOutcome(InputAction.SENT, selected=current.id)
