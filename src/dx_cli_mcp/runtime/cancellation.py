"""Cooperative cancellation mapped onto process-tree termination.

A ``CancellationToken`` is owned by the caller and handed to
``CommandRunner.run``. While a process is running, ``CancellationBridge``
binds the token to that process so that ``token.cancel()`` force-kills the
whole tree rooted at the child, not just the child itself: the DX CLI is a
node launcher that spawns further processes.

Key points:
- POSIX: the child runs in its own session (see ProcessRunner), so the tree
  is its process group and one ``killpg(SIGKILL)`` reaches every member
- Windows: ``taskkill /T /F`` is dispatched and not awaited
- The kill handler returns once the signal is dispatched; the runner sees the
  exit through its own ``wait()``
- At most one process is bound to a token at a time
- Cancelling a token with nothing bound sends no signal and is not replayed
  onto the next process bound to it
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
from typing import Callable

__all__ = [
    "CancellationToken",
    "CancellationBridge",
    "Subscription",
]

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"

CancelHandler = Callable[[], None]


class Subscription:
    """Handle returned by :meth:`CancellationToken.subscribe`.

    ``fired`` records whether a cancel reached this subscription.
    """

    def __init__(self, token: CancellationToken, handler: CancelHandler):
        self._token = token
        self._handler = handler
        self._on_dispose: list[Callable[[], None]] = []
        self.fired = False
        self.disposed = False

    def dispose(self) -> None:
        if self.disposed:
            return
        self.disposed = True
        self._token._remove(self)
        for callback in self._on_dispose:
            callback()
        self._on_dispose.clear()


class CancellationToken:
    """Cancellation event shared by a caller and the runner.

    ``cancel()`` reaches only the subscriptions live at that moment, each at
    most once. A cancel with nothing subscribed has no effect on later
    subscriptions, so one token can be reused across sequential runs.
    ``is_cancelled`` records that a cancel was ever requested.
    """

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []
        self._cancelled = False
        self.process_id: int | None = None

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def subscribe(self, handler: CancelHandler) -> Subscription:
        """Register ``handler`` to run on the next cancellation."""
        subscription = Subscription(self, handler)
        self._subscriptions.append(subscription)
        return subscription

    def cancel(self) -> None:
        """Fire every live subscription and release it."""
        self._cancelled = True
        subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            subscription.fired = True
            self._invoke(subscription._handler)

    def _remove(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    @staticmethod
    def _invoke(handler: CancelHandler) -> None:
        try:
            handler()
        except Exception as e:
            logger.warning(f"Cancellation handler failed: {e}")

    def __repr__(self) -> str:
        return (
            f"CancellationToken(cancelled={self._cancelled}, "
            f"process_id={self.process_id}, subscriptions={len(self._subscriptions)})"
        )


class CancellationBridge:
    """Binds tokens to running processes and kills process trees on cancel."""

    def subscribe(
        self,
        token: CancellationToken,
        process: asyncio.subprocess.Process,
    ) -> Subscription:
        """Bind ``token`` to ``process`` until the returned subscription is disposed.

        Raises:
            ValueError: If another process is already bound to the token
        """
        if token.process_id is not None:
            raise ValueError(
                f"Cancellation token already bound to pid={token.process_id}"
            )

        pid = process.pid
        token.process_id = pid

        def on_cancel() -> None:
            logger.info(f"Cancelling task, killing process tree pid={pid}")
            self.kill_tree(process)

        subscription = token.subscribe(on_cancel)
        subscription._on_dispose.append(lambda: self._unbind(token, pid))
        return subscription

    @staticmethod
    def _unbind(token: CancellationToken, pid: int) -> None:
        if token.process_id == pid:
            token.process_id = None

    def kill_tree(self, process: asyncio.subprocess.Process) -> None:
        """Dispatch a forceful kill to the tree rooted at ``process``."""
        if process.returncode is not None:
            logger.debug(f"Process already exited pid={process.pid}")
            return
        if IS_WINDOWS:
            self._windows_kill_tree(process)
        else:
            self._posix_kill_tree(process)

    def _posix_kill_tree(self, process: asyncio.subprocess.Process) -> None:
        try:
            pgid = os.getpgid(process.pid)
            os.killpg(pgid, signal.SIGKILL)
            logger.debug(f"Sent SIGKILL to process group pgid={pgid}")
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.debug(f"killpg failed, falling back to kill: {e}")
            process.kill()

    def _windows_kill_tree(self, process: asyncio.subprocess.Process) -> None:
        try:
            subprocess.Popen(
                ["taskkill", "/PID", str(process.pid), "/T", "/F"],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
            logger.debug(f"Dispatched taskkill for pid={process.pid}")
        except OSError as e:
            logger.debug(f"taskkill failed, falling back to kill: {e}")
            try:
                process.kill()
            except ProcessLookupError:
                pass
