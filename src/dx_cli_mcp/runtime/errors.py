"""Exception hierarchy for DX command execution.

- DXError is the base for everything raised by the runtime and the DX service
- InvocationFailure carries the invocation context it was built from
- Parse failures and polling aborts are not exceptions here: the first is
  logged, the second is recorded on the poller
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .process_runner import InvocationContext

__all__ = [
    "DXError",
    "ToolNotFoundError",
    "InvocationFailure",
    "NoActiveConnectionError",
    "ArgumentEncodingError",
]


class DXError(Exception):
    """Base exception for DX CLI errors."""


class ToolNotFoundError(DXError):
    """The CLI executable is missing or could not be executed."""

    def __init__(self, executable: str, message: str | None = None):
        self.executable = executable
        super().__init__(message or f"CLI executable not found: {executable}")


class InvocationFailure(DXError):
    """The CLI ran but reported a failure."""

    def __init__(
        self,
        message: str,
        *,
        context: InvocationContext | None = None,
        exit_code: int | None = None,
    ):
        self.message = message
        self.context = context
        self.exit_code = exit_code
        super().__init__(message)


class NoActiveConnectionError(DXError):
    """An org-scoped operation was requested without a target username."""

    def __init__(self, message: str = "Not currently connected to an org"):
        super().__init__(message)


class ArgumentEncodingError(DXError, ValueError):
    """An argument already contains the space sentinel and cannot be encoded."""
