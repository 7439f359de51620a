"""Fixed-interval polling of server-side jobs.

Used for bulk loads and deployments: after a job is submitted, its status is
checked every ``interval`` seconds until ``is_terminal`` says it is done.

State machine:

    SCHEDULED -> CHECKING -> SCHEDULED   (status not terminal)
                          -> DONE        (status terminal)
                          -> ABORTED     (the tick raised)
    any       -> STOPPED                 (caller stopped polling)

Polling is progress reporting, not a correctness path: a failing status
check ends the loop without retrying and without raising. The failure is
kept on ``poller.error`` and passed to ``on_abort`` so callers can observe
it. There is no wall-clock limit here; ``JobHandle.timeout`` bounds each
individual check.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

import anyio

__all__ = [
    "PollState",
    "JobHandle",
    "JobPoller",
    "poll",
]

logger = logging.getLogger(__name__)

StatusT = TypeVar("StatusT")


class PollState(str, Enum):
    SCHEDULED = "scheduled"
    CHECKING = "checking"
    DONE = "done"
    ABORTED = "aborted"
    STOPPED = "stopped"


@dataclass(frozen=True)
class JobHandle(Generic[StatusT]):
    """A submitted server-side job.

    Attributes:
        job_id: Opaque job identifier
        interval: Seconds between status checks
        timeout: Upper bound in seconds for a single status check
        check_status: Coroutine function returning the current status
    """

    job_id: str
    interval: float
    timeout: float | None
    check_status: Callable[[], Awaitable[StatusT]]

    async def check(self) -> StatusT:
        if self.timeout is None:
            return await self.check_status()
        with anyio.fail_after(self.timeout):
            return await self.check_status()


class JobPoller(Generic[StatusT]):
    """Polls ``check_status`` until a terminal status, an error, or stop()."""

    def __init__(
        self,
        check_status: Callable[[], Awaitable[StatusT]],
        interval: float,
        on_update: Callable[[StatusT], None],
        is_terminal: Callable[[StatusT], bool],
        on_abort: Callable[[BaseException], None] | None = None,
    ) -> None:
        if interval < 0:
            raise ValueError(f"interval must be >= 0, got {interval}")
        self._check_status = check_status
        self.interval = interval
        self._on_update = on_update
        self._is_terminal = is_terminal
        self._on_abort = on_abort

        self.state = PollState.SCHEDULED
        self.checks = 0
        self.last_status: StatusT | None = None
        self.error: BaseException | None = None
        self._stop_requested = False
        self._task: asyncio.Task[PollState] | None = None

    @classmethod
    def from_handle(
        cls,
        handle: JobHandle[StatusT],
        on_update: Callable[[StatusT], None],
        is_terminal: Callable[[StatusT], bool],
        on_abort: Callable[[BaseException], None] | None = None,
    ) -> JobPoller[StatusT]:
        return cls(handle.check, handle.interval, on_update, is_terminal, on_abort)

    @property
    def finished(self) -> bool:
        return self.state in (PollState.DONE, PollState.ABORTED, PollState.STOPPED)

    async def run(self) -> PollState:
        """Poll until finished and return the final state."""
        try:
            while not self.finished:
                self.state = PollState.SCHEDULED
                await asyncio.sleep(self.interval)
                if self._stop_requested:
                    self.state = PollState.STOPPED
                    break
                await self._tick()
        except asyncio.CancelledError:
            self.state = PollState.STOPPED
            raise
        return self.state

    async def _tick(self) -> None:
        self.state = PollState.CHECKING
        try:
            self.checks += 1
            status = await self._check_status()
            self.last_status = status
            self._on_update(status)
            terminal = self._is_terminal(status)
        except Exception as e:
            logger.debug(f"Status check failed, polling stopped: {e}")
            self.error = e
            self.state = PollState.ABORTED
            if self._on_abort:
                try:
                    self._on_abort(e)
                except Exception as callback_error:
                    logger.warning(f"Error in on_abort callback: {callback_error}")
            return

        if terminal:
            self.state = PollState.DONE
        else:
            self.state = PollState.SCHEDULED

    def start(self) -> asyncio.Task[PollState]:
        """Run the loop as a background task."""
        if self._task is None:
            self._task = asyncio.create_task(self.run())
        return self._task

    def stop(self) -> None:
        """Abandon polling; the pending wait is cancelled."""
        if self.finished:
            return
        self._stop_requested = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait(self) -> PollState:
        """Wait for a started poller to finish. Stopping is not an error."""
        if self._task is None:
            return self.state
        await asyncio.wait({self._task})
        if self._task.cancelled():
            return PollState.STOPPED
        return self._task.result()


async def poll(
    check_status: Callable[[], Awaitable[StatusT]],
    interval: float,
    on_update: Callable[[StatusT], None],
    is_terminal: Callable[[StatusT], bool],
    on_abort: Callable[[BaseException], None] | None = None,
) -> PollState:
    """Poll until a terminal status or an aborting error; return the final state."""
    poller = JobPoller(check_status, interval, on_update, is_terminal, on_abort)
    return await poller.run()
