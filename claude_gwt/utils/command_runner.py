"""
Command Runner Module

Bounded out-of-process execution for git and tmux. Every call has a timeout and
an output ceiling; non-zero exits come back as a CommandResult instead of being
raised so callers can decide what a failure means for their operation.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

from ..core.errors import CommandTimeoutError, OutputOverflowError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_BUFFER = 10 * 1024 * 1024
COMMAND_NOT_FOUND = 127

_READ_CHUNK = 64 * 1024


@dataclass(frozen=True)
class CommandResult:
    """Structured outcome of one external command."""
    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class _BufferLimitExceeded(Exception):
    pass


class CommandRunner:
    """
    Runs one executable with bounded time and output.

    Instances are cheap and stateless; the git and tmux layers each hold one
    pre-bound to their executable.
    """

    def __init__(self,
                 executable: str,
                 timeout: float = DEFAULT_TIMEOUT,
                 max_buffer: int = DEFAULT_MAX_BUFFER):
        self.executable = executable
        self.timeout = timeout
        self.max_buffer = max_buffer

    async def run(self,
                  args: List[str],
                  cwd: Optional[Union[str, Path]] = None,
                  input_text: Optional[str] = None,
                  env: Optional[Dict[str, str]] = None,
                  timeout: Optional[float] = None) -> CommandResult:
        """
        Run ``executable *args`` and collect its output.

        Args:
            args: Arguments following the executable
            cwd: Working directory for the command
            input_text: Text written to stdin before it is closed
            env: Extra environment variables layered over os.environ
            timeout: Per-call override of the runner timeout

        Returns:
            CommandResult with exit code and decoded output

        Raises:
            CommandTimeoutError: The command did not finish in time
            OutputOverflowError: stdout or stderr exceeded the buffer limit
        """
        command = [self.executable] + [str(arg) for arg in args]
        budget = self.timeout if timeout is None else timeout
        process_env = None
        if env:
            process_env = dict(os.environ)
            process_env.update(env)

        logger.debug("Running command", extra={"context": {"command": command, "cwd": str(cwd) if cwd else None}})

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=str(cwd) if cwd else None,
                env=process_env,
                stdin=asyncio.subprocess.PIPE if input_text is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, NotADirectoryError):
            if cwd and not Path(cwd).is_dir():
                return CommandResult(1, "", f"Working directory not found: {cwd}")
            return CommandResult(COMMAND_NOT_FOUND, "", f"Command not found: {self.executable}")

        try:
            stdout, stderr = await asyncio.wait_for(self._communicate(process, input_text), timeout=budget)
        except asyncio.TimeoutError:
            await self._kill(process)
            logger.warning("Command timed out", extra={"context": {"command": command, "timeout": budget}})
            raise CommandTimeoutError(command, budget)
        except _BufferLimitExceeded:
            await self._kill(process)
            logger.warning("Command output overflow", extra={"context": {"command": command, "limit": self.max_buffer}})
            raise OutputOverflowError(command, self.max_buffer)

        return CommandResult(
            exit_code=process.returncode,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )

    async def _communicate(self, process: asyncio.subprocess.Process, input_text: Optional[str]):
        if input_text is not None and process.stdin is not None:
            process.stdin.write(input_text.encode("utf-8"))
            try:
                await process.stdin.drain()
            except (BrokenPipeError, ConnectionResetError):
                pass
            process.stdin.close()

        stdout, stderr = await asyncio.gather(
            self._read_bounded(process.stdout),
            self._read_bounded(process.stderr),
        )
        await process.wait()
        return stdout, stderr

    async def _read_bounded(self, stream: Optional[asyncio.StreamReader]) -> bytes:
        if stream is None:
            return b""
        chunks = bytearray()
        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                return bytes(chunks)
            chunks.extend(chunk)
            if len(chunks) > self.max_buffer:
                raise _BufferLimitExceeded()

    @staticmethod
    async def _kill(process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        await process.wait()


def git_runner(timeout: float = DEFAULT_TIMEOUT, max_buffer: int = DEFAULT_MAX_BUFFER) -> CommandRunner:
    """Runner pre-bound to ``git``."""
    return CommandRunner("git", timeout=timeout, max_buffer=max_buffer)


def tmux_runner(timeout: float = DEFAULT_TIMEOUT, max_buffer: int = DEFAULT_MAX_BUFFER) -> CommandRunner:
    """Runner pre-bound to ``tmux``."""
    return CommandRunner("tmux", timeout=timeout, max_buffer=max_buffer)
