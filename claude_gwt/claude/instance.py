"""
Claude Instance Module

Handle for one assistant process. A single ClaudeInstance type covers both
roles; ``create_instance`` validates the role-specific fields. Process output
is published as InstanceEvents on an asyncio queue that the owner drains with
a blocking receive.
"""

import asyncio
import logging
import os
import signal
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Union

import psutil

from ..core.errors import (
    InstanceAlreadyRunningError,
    InstanceConfigurationError,
    InstanceError,
    InstanceNotRunningError,
)
from ..core.models import InstanceStatus, Role
from ..utils.config_loader import GWTConfig
from .protocol import LineBuffer, Message, decode_line, encode_message

logger = logging.getLogger(__name__)

DEFAULT_GRACE_PERIOD = 5.0
_READ_CHUNK = 4096


class EventKind(Enum):
    MESSAGE = "message"
    OUTPUT = "output"
    STATUS = "status"
    EXIT = "exit"


@dataclass(frozen=True)
class InstanceEvent:
    kind: EventKind
    instance_id: str
    message: Optional[Message] = None
    text: Optional[str] = None
    stream: Optional[str] = None
    status: Optional[InstanceStatus] = None
    exit_code: Optional[int] = None


def initial_context(instance: "ClaudeInstance") -> str:
    if instance.role == Role.SUPERVISOR:
        return (
            "You are the supervisor instance coordinating a git worktree project.\n"
            f"Branch: {instance.branch}\nPath: {instance.working_directory}\nInstance ID: {instance.id}\n"
            "Messages from children arrive with a \"from\" field naming their branch. "
            "Reply with {\"to\": <branch|id|\"broadcast\">} in the payload to address them."
        )
    return (
        "You are a child instance working on one branch of a git worktree project.\n"
        f"Branch: {instance.branch}\nPath: {instance.working_directory}\n"
        f"Instance ID: {instance.id}\nParent ID: {instance.parent_id}\n"
        "Put {\"to\": \"supervisor\"} in a message payload to reach the supervisor."
    )


class ClaudeInstance:
    """
    One assistant process.

    Status moves idle -> active on start, then to idle on a clean exit or
    stop, or to error when the process fails.
    """

    def __init__(self,
                 role: Role,
                 working_directory: str,
                 branch: str,
                 parent_id: Optional[str] = None,
                 command: str = "claude",
                 args: Optional[List[str]] = None,
                 grace_period: float = DEFAULT_GRACE_PERIOD,
                 send_initial_context: bool = True,
                 instance_id: Optional[str] = None):
        self.id = instance_id or uuid.uuid4().hex
        self.role = role
        self.working_directory = str(working_directory)
        self.branch = branch
        self.parent_id = parent_id
        self.command = command
        self.args = list(args) if args is not None else ["chat"]
        self.grace_period = grace_period
        self.send_initial_context = send_initial_context
        self.status = InstanceStatus.IDLE

        self.events: "asyncio.Queue[InstanceEvent]" = asyncio.Queue()
        self._child_registry: Dict[str, str] = {}
        self._process: Optional[asyncio.subprocess.Process] = None
        self._watcher: Optional[asyncio.Task] = None
        self._stopping = False

    def __repr__(self) -> str:
        return f"ClaudeInstance(id={self.id!r}, role={self.role.value}, branch={self.branch!r}, status={self.status.value})"

    @property
    def is_supervisor(self) -> bool:
        return self.role == Role.SUPERVISOR

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def accepting_input(self) -> bool:
        return self.is_running and self.status == InstanceStatus.ACTIVE

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    @property
    def child_registry(self) -> Dict[str, str]:
        """Copy of child id -> working directory (supervisor only)."""
        return dict(self._child_registry)

    def register_child(self, child_id: str, working_directory: str) -> None:
        if not self.is_supervisor:
            raise InstanceConfigurationError("Only a supervisor tracks children", self.id)
        self._child_registry[child_id] = working_directory

    def unregister_child(self, child_id: str) -> None:
        if not self.is_supervisor:
            raise InstanceConfigurationError("Only a supervisor tracks children", self.id)
        self._child_registry.pop(child_id, None)

    def environment(self) -> Dict[str, str]:
        env = dict(os.environ)
        env["CLAUDE_GWT_ROLE"] = self.role.value
        env["CLAUDE_GWT_ID"] = self.id
        env["CLAUDE_GWT_BRANCH"] = self.branch
        if self.parent_id:
            env["CLAUDE_GWT_PARENT_ID"] = self.parent_id
        return env

    async def start(self) -> None:
        """
        Spawn the assistant process.

        Raises:
            InstanceAlreadyRunningError: The instance was already started
            InstanceError: The process could not be spawned
        """
        if self._process is not None:
            raise InstanceAlreadyRunningError(f"{self.role.value.capitalize()} instance already running", self.id)

        self._stopping = False
        try:
            self._process = await asyncio.create_subprocess_exec(
                self.command, *self.args,
                cwd=self.working_directory,
                env=self.environment(),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            self._set_status(InstanceStatus.ERROR)
            raise InstanceError(f"Failed to start {self.role.value} instance: {e}", self.id) from e

        self._set_status(InstanceStatus.ACTIVE)
        self._watcher = asyncio.ensure_future(self._watch(self._process))
        logger.info("Instance started", extra={"context": {
            "instance_id": self.id, "role": self.role.value, "branch": self.branch, "pid": self._process.pid}})

        if self.send_initial_context:
            try:
                await self.send_message(Message.system(initial_context(self)))
            except InstanceNotRunningError:
                logger.debug("Process exited before initial context", extra={"context": {"instance_id": self.id}})

    async def send_message(self, message: Message) -> None:
        """
        Write one envelope to the process's stdin.

        Raises:
            InstanceNotRunningError: No live process
        """
        process = self._process
        if process is None or process.returncode is not None or process.stdin is None:
            raise InstanceNotRunningError(f"{self.role.value.capitalize()} instance not running", self.id)
        try:
            process.stdin.write(encode_message(message).encode("utf-8"))
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise InstanceNotRunningError(f"{self.role.value.capitalize()} instance stopped accepting input",
                                          self.id) from e

    async def stop(self) -> None:
        """
        Terminate the process group, escalating to SIGKILL after the grace period.

        The assistant runs in its own process group, so processes it spawned
        are signalled with it. Every wait is bounded: ``stop()`` returns within
        a few grace periods even if the process and its descendants ignore
        SIGTERM or hold the output pipes open. Stopping an instance that is
        not running is a no-op.
        """
        process = self._process
        if process is None:
            return

        self._stopping = True
        strays = _descendants(process.pid)
        if process.returncode is None:
            _signal_group(process, signal.SIGTERM)
            if not await self._wait_exit(process):
                logger.warning("Instance ignored SIGTERM, killing", extra={"context": {"instance_id": self.id}})
                _signal_group(process, signal.SIGKILL)
                await asyncio.get_running_loop().run_in_executor(None, _reap, strays, 0)
                if not await self._wait_exit(process):
                    logger.error("Instance did not exit after SIGKILL", extra={"context": {
                        "instance_id": self.id, "pid": process.pid}})

        strays = [p for p in strays if p.is_running()]
        if strays:
            logger.info("Reaping leftover assistant processes", extra={"context": {
                "instance_id": self.id, "pids": [p.pid for p in strays]}})
            await asyncio.get_running_loop().run_in_executor(None, _reap, strays, self.grace_period)
        # members that escaped the descendant snapshot
        _signal_group(process, signal.SIGKILL)

        await self._finish_watcher()
        self._process = None
        self._set_status(InstanceStatus.IDLE)
        logger.info("Instance stopped", extra={"context": {"instance_id": self.id, "branch": self.branch}})

    async def _wait_exit(self, process: asyncio.subprocess.Process) -> bool:
        try:
            await asyncio.wait_for(process.wait(), timeout=self.grace_period)
        except asyncio.TimeoutError:
            # wait() also waits for the pipes, which a descendant may hold open
            pass
        return process.returncode is not None

    async def next_event(self, timeout: Optional[float] = None) -> InstanceEvent:
        """
        Blocking receive of the next event.

        Raises:
            asyncio.TimeoutError: Nothing arrived within ``timeout`` seconds
        """
        if timeout is None:
            return await self.events.get()
        return await asyncio.wait_for(self.events.get(), timeout=timeout)

    async def _watch(self, process: asyncio.subprocess.Process) -> None:
        await asyncio.gather(
            self._pump(process.stdout, "stdout"),
            self._pump(process.stderr, "stderr"),
        )
        exit_code = await process.wait()

        if self._process is process and not self._stopping:
            # unexpected exit: drop the handle so the instance can be started again
            self._process = None
            self._set_status(InstanceStatus.IDLE if exit_code == 0 else InstanceStatus.ERROR)
            log = logger.info if exit_code == 0 else logger.error
            log("Instance exited", extra={"context": {"instance_id": self.id, "exit_code": exit_code}})

        self._emit(InstanceEvent(EventKind.EXIT, self.id, exit_code=exit_code))

    async def _pump(self, stream: Optional[asyncio.StreamReader], name: str) -> None:
        if stream is None:
            return
        buffer = LineBuffer()
        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                break
            for line in buffer.feed(chunk):
                self._emit_line(line, name)
        for line in buffer.flush():
            self._emit_line(line, name)

    def _emit_line(self, line: str, stream: str) -> None:
        if not line.strip():
            return
        message = decode_line(line)
        if message is not None:
            self._emit(InstanceEvent(EventKind.MESSAGE, self.id, message=message, stream=stream))
        else:
            self._emit(InstanceEvent(EventKind.OUTPUT, self.id, text=line, stream=stream))

    async def _finish_watcher(self) -> None:
        watcher, self._watcher = self._watcher, None
        if watcher is None:
            return
        try:
            # a grandchild holding the pipes open must not block stop()
            await asyncio.wait_for(asyncio.shield(watcher), timeout=self.grace_period)
        except asyncio.TimeoutError:
            watcher.cancel()
            try:
                await watcher
            except asyncio.CancelledError:
                pass

    def _set_status(self, status: InstanceStatus) -> None:
        if status == self.status:
            return
        self.status = status
        self._emit(InstanceEvent(EventKind.STATUS, self.id, status=status))

    def _emit(self, event: InstanceEvent) -> None:
        self.events.put_nowait(event)


def _signal_group(process: asyncio.subprocess.Process, sig: int) -> None:
    try:
        os.killpg(process.pid, sig)
    except ProcessLookupError:
        pass
    except PermissionError:
        if process.returncode is None:
            process.send_signal(sig)


def _descendants(pid: int) -> List[psutil.Process]:
    try:
        return psutil.Process(pid).children(recursive=True)
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return []


def _reap(processes: List[psutil.Process], timeout: float) -> None:
    """Terminate processes left behind by an assistant, killing any that linger."""
    signalled = []
    for process in processes:
        try:
            process.terminate()
            signalled.append(process)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    _, alive = psutil.wait_procs(signalled, timeout=timeout)
    for process in alive:
        try:
            process.kill()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue


def create_instance(role: Union[Role, str],
                    working_directory: str,
                    branch: str,
                    parent_id: Optional[str] = None,
                    config: Optional[GWTConfig] = None,
                    **kwargs) -> ClaudeInstance:
    """
    Construct an instance after validating role-specific fields.

    A child needs a ``parent_id``; a supervisor must not have one.

    Raises:
        InstanceConfigurationError: Role fields are inconsistent
    """
    try:
        role = Role(role) if not isinstance(role, Role) else role
    except ValueError:
        raise InstanceConfigurationError(f"Unknown instance role: {role!r}")

    if role == Role.CHILD and not parent_id:
        raise InstanceConfigurationError("A child instance requires a parent_id")
    if role == Role.SUPERVISOR and parent_id:
        raise InstanceConfigurationError("A supervisor instance cannot have a parent_id")

    config = config or GWTConfig()
    kwargs.setdefault("command", config.assistant_command)
    kwargs.setdefault("args", config.assistant_args)
    kwargs.setdefault("grace_period", config.grace_period_seconds)
    return ClaudeInstance(role, working_directory, branch, parent_id=parent_id, **kwargs)
