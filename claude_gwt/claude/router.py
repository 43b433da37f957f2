"""
Message Router Module

Moves events between assistant instances and the interactive layer. Each
attached instance gets one forwarding task that drains its event queue into
the router's inbox; consumers read the inbox with a blocking receive.
Messages that name a recipient with a ``to`` field are forwarded between the
supervisor and its children on the way through.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..core.errors import InstanceNotRunningError, MessageRoutingError
from ..core.models import Role
from .instance import ClaudeInstance, EventKind, InstanceEvent
from .protocol import Message
from .registry import InstanceRegistry

logger = logging.getLogger(__name__)

SUPERVISOR_ALIASES = ("supervisor", "sup")
BROADCAST_TARGET = "broadcast"
DEFAULT_INBOX_SIZE = 1000


@dataclass(frozen=True)
class RoutedEvent:
    instance: ClaudeInstance
    event: InstanceEvent


@dataclass
class BroadcastResult:
    delivered: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


class MessageRouter:
    """
    Forwarding tasks plus an inbox for one InstanceRegistry.

    Routing between instances happens as events arrive, whether or not anyone
    reads the inbox. The inbox holds at most ``inbox_size`` unread events; when
    it is full the oldest one is discarded and counted in ``dropped``.
    """

    def __init__(self, registry: InstanceRegistry, inbox_size: int = DEFAULT_INBOX_SIZE):
        self.registry = registry
        self.inbox: "asyncio.Queue[RoutedEvent]" = asyncio.Queue(maxsize=inbox_size)
        self.dropped = 0
        self._tasks: Dict[str, asyncio.Task] = {}

    def attach(self, instance: ClaudeInstance) -> None:
        if instance.id in self._tasks:
            return
        self._tasks[instance.id] = asyncio.ensure_future(self._forward(instance))

    async def detach(self, instance_id: str) -> None:
        task = self._tasks.pop(instance_id, None)
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def close(self) -> None:
        for instance_id in list(self._tasks):
            await self.detach(instance_id)

    async def receive(self, timeout: Optional[float] = None) -> RoutedEvent:
        """
        Wait for the next event from any attached instance.

        Raises:
            asyncio.TimeoutError: Nothing arrived within ``timeout`` seconds
        """
        if timeout is None:
            return await self.inbox.get()
        return await asyncio.wait_for(self.inbox.get(), timeout=timeout)

    def resolve(self, target: str) -> Optional[ClaudeInstance]:
        if target in SUPERVISOR_ALIASES:
            return self.registry.supervisor()
        return self.registry.get(target) or self.registry.get_by_branch(target)

    async def send_to(self, target: str, message: Message) -> ClaudeInstance:
        """
        Deliver a message to one instance by id, branch or supervisor alias.

        Raises:
            MessageRoutingError: The target is unknown or not running
        """
        instance = self.resolve(target)
        if instance is None:
            raise MessageRoutingError(f"No instance matches '{target}'", target)
        try:
            await instance.send_message(message)
        except InstanceNotRunningError as e:
            raise MessageRoutingError(str(e), target) from e
        return instance

    async def broadcast(self,
                        text: str,
                        sender_id: Optional[str] = None,
                        children_only: bool = False) -> BroadcastResult:
        """
        Send a user message to every other instance.

        Instances not accepting input are skipped rather than failing the
        broadcast.
        """
        message = Message.user(text)
        result = BroadcastResult()
        targets = self.registry.children() if children_only else self.registry.all()

        for instance in targets:
            if instance.id == sender_id:
                continue
            if not instance.accepting_input:
                result.skipped.append(instance.id)
                continue
            try:
                await instance.send_message(message)
                result.delivered.append(instance.id)
            except InstanceNotRunningError:
                result.skipped.append(instance.id)

        logger.info("Broadcast sent", extra={"context": {
            "delivered": len(result.delivered), "skipped": len(result.skipped)}})
        return result

    async def _forward(self, instance: ClaudeInstance) -> None:
        while True:
            event = await instance.next_event()
            if event.kind == EventKind.MESSAGE and event.message is not None:
                await self._route(instance, event.message)
            self._deliver(RoutedEvent(instance, event))

            if event.kind == EventKind.EXIT:
                self.registry.unregister(instance.id)
                self._tasks.pop(instance.id, None)
                return

    def _deliver(self, routed: RoutedEvent) -> None:
        if self.inbox.full():
            self.inbox.get_nowait()
            self.dropped += 1
            if self.dropped == 1 or self.dropped % 100 == 0:
                logger.warning("Router inbox full, discarding oldest events", extra={"context": {
                    "dropped": self.dropped, "inbox_size": self.inbox.maxsize}})
        self.inbox.put_nowait(routed)

    async def _route(self, sender: ClaudeInstance, message: Message) -> None:
        payload = message.payload
        if not isinstance(payload, dict) or not payload.get("to"):
            return
        target = str(payload["to"])
        forwarded = Message(message.type, dict(payload, **{"from": sender.branch}))

        try:
            if sender.role == Role.CHILD:
                if target not in SUPERVISOR_ALIASES:
                    logger.debug("Child message not addressed to supervisor", extra={"context": {
                        "instance_id": sender.id, "to": target}})
                    return
                await self.send_to(target, forwarded)
            elif target == BROADCAST_TARGET:
                await self._broadcast_message(forwarded, sender.id)
            else:
                await self.send_to(target, forwarded)
        except MessageRoutingError as e:
            logger.warning("Failed to route message", extra={"context": {
                "from": sender.id, "to": target, "error": str(e)}})

    async def _broadcast_message(self, message: Message, sender_id: str) -> None:
        for child in self.registry.children():
            if child.id == sender_id or not child.accepting_input:
                continue
            try:
                await child.send_message(message)
            except InstanceNotRunningError:
                logger.debug("Skipped stopped child", extra={"context": {"instance_id": child.id}})


def describe_event(routed: RoutedEvent) -> Dict[str, Any]:
    """Flatten a routed event for logging or display."""
    event = routed.event
    data: Dict[str, Any] = {
        "instance_id": routed.instance.id,
        "branch": routed.instance.branch,
        "kind": event.kind.value,
    }
    if event.message is not None:
        data["type"] = event.message.type.value
        data["payload"] = event.message.payload
    if event.text is not None:
        data["text"] = event.text
    if event.status is not None:
        data["status"] = event.status.value
    if event.exit_code is not None:
        data["exit_code"] = event.exit_code
    return data

