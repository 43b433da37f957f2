"""
Instance Registry Module

Table of live assistant instances keyed by id. At most one supervisor may be
registered at a time. The registry is an ordinary object owned by an
OrchestrationContext, not a module-level singleton.
"""

import asyncio
import logging
from typing import Dict, List, Optional

from ..core.errors import InstanceAlreadyRunningError
from ..core.models import Role
from .instance import ClaudeInstance

logger = logging.getLogger(__name__)


class InstanceRegistry:
    """Live ClaudeInstance objects, keyed by id."""

    def __init__(self):
        self._instances: Dict[str, ClaudeInstance] = {}

    def __len__(self) -> int:
        return len(self._instances)

    def __contains__(self, instance_id: str) -> bool:
        return instance_id in self._instances

    def register(self, instance: ClaudeInstance) -> None:
        """
        Add an instance.

        Raises:
            InstanceAlreadyRunningError: Duplicate id, or a second supervisor
        """
        if instance.id in self._instances:
            raise InstanceAlreadyRunningError(f"Instance {instance.id} is already registered", instance.id)

        current = self.supervisor()
        if instance.role == Role.SUPERVISOR and current is not None:
            raise InstanceAlreadyRunningError(
                f"Supervisor {current.id} is already registered", instance.id)

        self._instances[instance.id] = instance
        if instance.role == Role.CHILD and current is not None and current.id == instance.parent_id:
            current.register_child(instance.id, instance.working_directory)

        logger.debug("Instance registered", extra={"context": {
            "instance_id": instance.id, "role": instance.role.value, "branch": instance.branch}})

    def unregister(self, instance_id: str) -> Optional[ClaudeInstance]:
        """Remove an instance; unknown ids are ignored."""
        instance = self._instances.pop(instance_id, None)
        if instance is None:
            return None

        supervisor = self.supervisor()
        if instance.role == Role.CHILD and supervisor is not None:
            supervisor.unregister_child(instance_id)
        logger.debug("Instance unregistered", extra={"context": {"instance_id": instance_id}})
        return instance

    def get(self, instance_id: str) -> Optional[ClaudeInstance]:
        return self._instances.get(instance_id)

    def get_by_branch(self, branch: str) -> Optional[ClaudeInstance]:
        for instance in self._instances.values():
            if instance.branch == branch:
                return instance
        return None

    def supervisor(self) -> Optional[ClaudeInstance]:
        for instance in self._instances.values():
            if instance.role == Role.SUPERVISOR:
                return instance
        return None

    def children(self) -> List[ClaudeInstance]:
        """Child instances sorted by branch."""
        children = [i for i in self._instances.values() if i.role == Role.CHILD]
        return sorted(children, key=lambda i: i.branch)

    def all(self) -> List[ClaudeInstance]:
        return list(self._instances.values())

    async def stop_all(self) -> None:
        """
        Stop every instance, children concurrently and then the supervisor.

        Each stop is bounded by the instance's grace period; a failing stop is
        logged and does not prevent the others.
        """
        children = self.children()
        results = await asyncio.gather(*(child.stop() for child in children), return_exceptions=True)
        for child, result in zip(children, results):
            if isinstance(result, Exception):
                logger.error("Failed to stop instance", extra={"context": {
                    "instance_id": child.id, "error": str(result)}})

        supervisor = self.supervisor()
        if supervisor is not None:
            try:
                await supervisor.stop()
            except Exception as e:
                logger.error("Failed to stop supervisor", extra={"context": {
                    "instance_id": supervisor.id, "error": str(e)}})

    def clear(self) -> None:
        self._instances.clear()
