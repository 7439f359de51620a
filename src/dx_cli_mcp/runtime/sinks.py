"""Output collaborators for the runtime.

Two write-only seams:
- LogSink: free-text diagnostic lines (CLI stderr, parse failures, ...)
- Notifier: user-visible error/info/status messages

The defaults route both through ``logging``. ``BufferedNotifier`` keeps the
messages so a tool response can include them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Literal, Protocol

__all__ = [
    "LogSink",
    "Notifier",
    "LoggerLogSink",
    "LoggingNotifier",
    "BufferedNotifier",
    "Notification",
]

logger = logging.getLogger(__name__)

# CLI output gets its own logger name so it can be filtered separately
OUTPUT_LOGGER_NAME = "dx_cli_mcp.output"


class LogSink(Protocol):
    def write(self, line: str) -> None: ...


class Notifier(Protocol):
    def show_error(self, message: str) -> None: ...

    def show_info(self, message: str) -> None: ...

    def show_status(self, message: str) -> None: ...


class LoggerLogSink:
    """LogSink backed by a ``logging.Logger``."""

    def __init__(self, name: str = OUTPUT_LOGGER_NAME, level: int = logging.INFO):
        self._logger = logging.getLogger(name)
        self._level = level

    def write(self, line: str) -> None:
        text = line.rstrip()
        if text:
            self._logger.log(self._level, text)


class LoggingNotifier:
    """Notifier that only logs."""

    def show_error(self, message: str) -> None:
        logger.error(message)

    def show_info(self, message: str) -> None:
        logger.info(message)

    def show_status(self, message: str) -> None:
        logger.info(message)


@dataclass(frozen=True)
class Notification:
    severity: Literal["error", "info", "status"]
    message: str


@dataclass
class BufferedNotifier:
    """Notifier that collects messages in order, and optionally logs them too."""

    notifications: list[Notification] = field(default_factory=list)
    log: bool = True

    def _push(self, severity: Literal["error", "info", "status"], message: str) -> None:
        self.notifications.append(Notification(severity, message))
        if self.log:
            level = logging.ERROR if severity == "error" else logging.INFO
            logger.log(level, message)

    def show_error(self, message: str) -> None:
        self._push("error", message)

    def show_info(self, message: str) -> None:
        self._push("info", message)

    def show_status(self, message: str) -> None:
        self._push("status", message)

    @property
    def errors(self) -> list[str]:
        return [n.message for n in self.notifications if n.severity == "error"]

    def messages(self) -> list[str]:
        return [n.message for n in self.notifications]
