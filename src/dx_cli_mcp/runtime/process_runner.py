"""Process runner with subprocess isolation and reliable termination.

dx-cli-mcp runtime module v0.1.0

This module provides:
- Cross-platform subprocess isolation (new session/process group)
- Concurrent stdout/stderr draining into per-invocation buffers
- Detection of a missing CLI binary from spawn errors and stderr text
- Token-based cancellation through CancellationBridge (process-tree kill)
- Cancel-safe cleanup using asyncio.shield when the awaiting task is cancelled

Key design points:
- POSIX: start_new_session=True so the child leads its own process group
- Windows: CREATE_NEW_PROCESS_GROUP for signal isolation
- Each run() owns its buffers and process handle; nothing is shared
- The result is only built after both streams hit EOF and the process exited
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import signal
import subprocess
import sys
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from .cancellation import CancellationBridge, CancellationToken, Subscription

__all__ = [
    "Invocation",
    "InvocationContext",
    "ProcessResult",
    "ProcessRunner",
    "TOOL_MISSING_PATTERNS",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"

# Default timeouts
DEFAULT_TERM_TIMEOUT = 2.0  # seconds to wait after SIGTERM
DEFAULT_KILL_TIMEOUT = 1.0  # seconds to wait after SIGKILL

# stderr text that means the shell could not find or run the CLI itself
TOOL_MISSING_PATTERNS: tuple[str, ...] = (
    r"not found",
    r"not recognized",
)

_READ_SIZE = 4096


@dataclass(frozen=True)
class InvocationContext:
    """What was asked for, captured before the process starts.

    Attributes:
        command_line: The full composed command line
        created_at: Unix timestamp of construction
    """

    command_line: str
    created_at: float = field(default_factory=time.time)

    def describe(self) -> str:
        started = datetime.fromtimestamp(self.created_at).isoformat(timespec="seconds")
        return f'Command "{self.command_line}" failed (started {started})'


@dataclass(frozen=True)
class Invocation:
    """Everything needed to start one CLI invocation.

    Attributes:
        program: Executable name or path
        args: Argument vector, already decoded
        cwd: Working directory for the process
        env: Environment variables (None = inherit parent)
        json_mode: Whether stdout is expected to be a JSON document
        context: Pre-invocation context used for error messages
    """

    program: str
    args: tuple[str, ...]
    cwd: Path
    env: Mapping[str, str] | None = None
    json_mode: bool = True
    context: InvocationContext = field(
        default_factory=lambda: InvocationContext(command_line="")
    )

    @property
    def argv(self) -> list[str]:
        return [self.program, *self.args]


@dataclass
class ProcessResult:
    """Everything observed about one finished process.

    Attributes:
        exit_code: Process return code, None if it never started
        stdout: Accumulated stdout text
        stderr: Accumulated stderr text
        tool_missing: The executable could not be found or run
        cancelled: A cancellation token fired while the process was bound
        spawn_error: Error raised while starting the process, if any
    """

    exit_code: int | None
    stdout: str = ""
    stderr: str = ""
    tool_missing: bool = False
    cancelled: bool = False
    spawn_error: str | None = None


@dataclass
class _RunningProcess:
    """Per-call mutable state, discarded when run() returns."""

    process: asyncio.subprocess.Process
    stdout_chunks: list[bytes] = field(default_factory=list)
    stderr_chunks: list[bytes] = field(default_factory=list)
    tool_missing: bool = False
    subscription: Subscription | None = None

    @property
    def pid(self) -> int:
        return self.process.pid


@dataclass
class ProcessRunner:
    """Cross-platform process runner with isolation and reliable termination.

    Example:
        runner = ProcessRunner()
        invocation = Invocation(
            program="sfdx",
            args=("force:org:list", "--json"),
            cwd=Path("/workspace"),
        )
        result = await runner.run(invocation, cancel_token=token)
    """

    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    bridge: CancellationBridge = field(default_factory=CancellationBridge)
    tool_missing_patterns: tuple[str, ...] = TOOL_MISSING_PATTERNS

    def __post_init__(self) -> None:
        self._tool_missing_re = [
            re.compile(p, re.IGNORECASE) for p in self.tool_missing_patterns
        ]

    async def run(
        self,
        invocation: Invocation,
        *,
        cancel_token: CancellationToken | None = None,
        on_stderr: Callable[[str], None] | None = None,
    ) -> ProcessResult:
        """Run the invocation to completion and collect its output.

        This method:
        1. Starts the subprocess in an isolated process group/session
        2. Binds ``cancel_token`` to the process through the bridge
        3. Drains stdout and stderr concurrently, scanning stderr lines
           for tool-missing text
        4. Waits for exit, releases the token binding
        5. Terminates the process group if the awaiting task is cancelled

        Args:
            invocation: What to run
            cancel_token: Optional caller-owned cancellation token
            on_stderr: Optional callback for each decoded stderr chunk

        Returns:
            ProcessResult; spawn failures are reported in it, not raised
        """
        kwargs = self._build_subprocess_kwargs(invocation)

        try:
            process = await asyncio.create_subprocess_exec(
                *invocation.argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=invocation.cwd,
                **kwargs,
            )
        except (FileNotFoundError, PermissionError) as e:
            tool_missing = e.filename in (None, invocation.program)
            logger.debug(
                f"Failed to start {invocation.program}: {e} (tool_missing={tool_missing})"
            )
            return ProcessResult(
                exit_code=None,
                tool_missing=tool_missing,
                spawn_error=str(e),
            )
        except OSError as e:
            logger.debug(f"Failed to start {invocation.program}: {e}")
            return ProcessResult(exit_code=None, spawn_error=str(e))

        running = _RunningProcess(process=process)
        logger.debug(
            f"Started subprocess pid={process.pid} "
            f"argv={invocation.program} cwd={invocation.cwd}"
        )

        drain_tasks: list[asyncio.Task[None]] = []
        try:
            if cancel_token is not None:
                running.subscription = self.bridge.subscribe(cancel_token, process)

            drain_tasks = [
                asyncio.create_task(self._drain_stdout(running)),
                asyncio.create_task(self._drain_stderr(running, on_stderr)),
            ]
            await asyncio.gather(*drain_tasks)
            await process.wait()

            logger.debug(
                f"Subprocess completed pid={process.pid} "
                f"returncode={process.returncode}"
            )
            return ProcessResult(
                exit_code=process.returncode,
                stdout=b"".join(running.stdout_chunks).decode("utf-8", errors="replace"),
                stderr=b"".join(running.stderr_chunks).decode("utf-8", errors="replace"),
                tool_missing=running.tool_missing,
                cancelled=running.subscription is not None and running.subscription.fired,
            )

        finally:
            if running.subscription is not None:
                running.subscription.dispose()
            await self._safe_cleanup(process, drain_tasks)

    def _build_subprocess_kwargs(self, invocation: Invocation) -> dict[str, Any]:
        """Build platform-specific subprocess kwargs."""
        kwargs: dict[str, Any] = {}

        if invocation.env is not None:
            kwargs["env"] = dict(invocation.env)

        if IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            kwargs["start_new_session"] = True

        return kwargs

    async def _drain_stdout(self, running: _RunningProcess) -> None:
        stdout = running.process.stdout
        if stdout is None:
            return
        while True:
            chunk = await stdout.read(_READ_SIZE)
            if not chunk:
                break
            running.stdout_chunks.append(chunk)

    async def _drain_stderr(
        self,
        running: _RunningProcess,
        on_stderr: Callable[[str], None] | None = None,
    ) -> None:
        """Drain stderr, scanning complete lines for tool-missing text."""
        stderr = running.process.stderr
        if stderr is None:
            return

        line_buffer = b""
        while True:
            chunk = await stderr.read(_READ_SIZE)
            if not chunk:
                if line_buffer:
                    self._scan_stderr_line(running, line_buffer)
                break

            running.stderr_chunks.append(chunk)
            if on_stderr:
                on_stderr(chunk.decode("utf-8", errors="replace"))

            line_buffer += chunk
            while b"\n" in line_buffer:
                line, line_buffer = line_buffer.split(b"\n", 1)
                self._scan_stderr_line(running, line)

    def _scan_stderr_line(self, running: _RunningProcess, line: bytes) -> None:
        if running.tool_missing:
            return
        text = line.decode("utf-8", errors="replace")
        for pattern in self._tool_missing_re:
            if pattern.search(text):
                logger.debug(f"Tool-missing text on stderr pid={running.pid}: {text.strip()}")
                running.tool_missing = True
                return

    async def _safe_cleanup(
        self,
        process: asyncio.subprocess.Process,
        drain_tasks: list[asyncio.Task[None]],
    ) -> None:
        """Cleanup shielded from cancellation of the awaiting task."""
        try:
            await asyncio.shield(self._do_cleanup(process, drain_tasks))
        except asyncio.CancelledError:
            await self._do_cleanup(process, drain_tasks)
            raise

    async def _do_cleanup(
        self,
        process: asyncio.subprocess.Process,
        drain_tasks: list[asyncio.Task[None]],
    ) -> None:
        for task in drain_tasks:
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        if process.returncode is None:
            await self._terminate_process(process)

    async def _terminate_process(self, process: asyncio.subprocess.Process) -> None:
        """Terminate subprocess gracefully, then forcefully if needed.

        Termination strategy:
        1. Send SIGTERM to the group (or CTRL_BREAK_EVENT on Windows)
        2. Wait up to term_timeout for graceful exit
        3. If still running, SIGKILL the group (or kill() on Windows)
        4. Wait up to kill_timeout for forced exit
        """
        pid = process.pid
        logger.debug(f"Terminating subprocess pid={pid}")

        try:
            if IS_WINDOWS:
                self._windows_terminate(process)
            else:
                self._posix_signal_group(process, signal.SIGTERM)

            try:
                await asyncio.wait_for(process.wait(), timeout=self.term_timeout)
                logger.debug(
                    f"Subprocess terminated gracefully pid={pid} "
                    f"returncode={process.returncode}"
                )
                return
            except asyncio.TimeoutError:
                pass

            logger.debug(f"Force killing subprocess pid={pid}")
            self.bridge.kill_tree(process)

            try:
                await asyncio.wait_for(process.wait(), timeout=self.kill_timeout)
                logger.debug(
                    f"Subprocess killed pid={pid} returncode={process.returncode}"
                )
            except asyncio.TimeoutError:
                logger.warning(f"Subprocess did not exit after kill pid={pid}")

        except ProcessLookupError:
            logger.debug(f"Subprocess already exited pid={pid}")
        except Exception as e:
            logger.warning(f"Error terminating subprocess pid={pid}: {e}")

    def _posix_signal_group(
        self,
        process: asyncio.subprocess.Process,
        sig: signal.Signals,
    ) -> None:
        try:
            pgid = os.getpgid(process.pid)
            os.killpg(pgid, sig)
            logger.debug(f"Sent {sig.name} to process group pgid={pgid}")
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.debug(f"killpg failed, falling back to terminate: {e}")
            process.terminate()

    def _windows_terminate(self, process: asyncio.subprocess.Process) -> None:
        try:
            os.kill(process.pid, signal.CTRL_BREAK_EVENT)
            logger.debug(f"Sent CTRL_BREAK_EVENT to pid={process.pid}")
        except (ProcessLookupError, OSError) as e:
            logger.debug(f"CTRL_BREAK_EVENT failed, falling back: {e}")
            process.terminate()
