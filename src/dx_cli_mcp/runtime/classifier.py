"""Classification of a finished DX CLI invocation.

The CLI's exit codes are not consistent across subcommands (a deploy report
exits nonzero for a failed deploy that the caller still wants to read), so
the outcome is decided per call from the exit code, the parsed JSON
envelope, the tool-missing flag and the caller's ``tolerate_nonzero_exit``
policy.

Decision order:
1. tool missing                  -> ToolNotFound
2. tolerate_nonzero_exit         -> Success(result)
3. nonzero exit, no JSON         -> Failure(invocation context)
4. status > 0 without result,
   or exitCode > 0               -> Failure(item errors | message | context)
5. otherwise                     -> Success(result)
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

if TYPE_CHECKING:
    from .process_runner import InvocationContext

__all__ = [
    "ResultEnvelope",
    "Success",
    "Failure",
    "ToolNotFound",
    "CommandOutcome",
    "parse_envelope",
    "classify",
]

logger = logging.getLogger(__name__)


class ResultEnvelope(BaseModel):
    """The JSON document printed by ``--json`` commands.

    Attributes:
        status: CLI status, 0 on success
        exit_code: ``exitCode`` reported by some failing commands
        result: Command payload, opaque to the runtime
        message: Error message on failure
        name: Error name on failure
        warnings: Warnings emitted alongside the result

    Only ``status``, ``exitCode`` and ``result`` drive classification; the
    descriptive fields accept any JSON shape.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    status: int | None = None
    exit_code: int | None = Field(default=None, alias="exitCode")
    result: Any = None
    message: str | None = None
    name: str | None = None
    warnings: list[Any] = Field(default_factory=list)

    @field_validator("message", "name", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str | None:
        if value is None or isinstance(value, str):
            return value
        return json.dumps(value, ensure_ascii=False, default=str)

    @field_validator("warnings", mode="before")
    @classmethod
    def _coerce_warnings(cls, value: Any) -> list[Any]:
        if value is None:
            return []
        if isinstance(value, list):
            return value
        return [value]

    def item_errors(self) -> list[str]:
        """Per-item ``error`` strings from a list-shaped result, in order."""
        if not isinstance(self.result, list):
            return []
        errors: list[str] = []
        for item in self.result:
            if isinstance(item, dict) and item.get("error"):
                errors.append(str(item["error"]))
        return errors

    def reports_failure(self) -> bool:
        """Whether the envelope itself signals a tool-level failure."""
        if self.status is not None and self.status > 0 and self.result is None:
            return True
        return self.exit_code is not None and self.exit_code > 0


@dataclass(frozen=True)
class Success:
    result: Any = None


@dataclass(frozen=True)
class Failure:
    message: str


@dataclass(frozen=True)
class ToolNotFound:
    pass


CommandOutcome = Union[Success, Failure, ToolNotFound]


def parse_envelope(stdout: str) -> ResultEnvelope | None:
    """Parse CLI stdout into an envelope, or ``None`` if it is not a JSON object.

    Raises:
        ValueError: If stdout is not valid JSON or not an envelope
    """
    try:
        data = json.loads(stdout)
    except json.JSONDecodeError as e:
        raise ValueError(f"invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    try:
        return ResultEnvelope.model_validate(data)
    except ValidationError as e:
        raise ValueError(str(e)) from e


def _failure_message(envelope: ResultEnvelope, context: InvocationContext | None) -> str:
    item_errors = envelope.item_errors()
    if item_errors:
        return " ".join(item_errors)
    if envelope.message:
        return envelope.message
    return _context_message(context)


def _context_message(context: InvocationContext | None) -> str:
    if context is None:
        return "Command failed"
    return context.describe()


def classify(
    exit_code: int | None,
    envelope: ResultEnvelope | None,
    stderr: str = "",
    tool_missing: bool = False,
    tolerate_nonzero_exit: bool = False,
    context: InvocationContext | None = None,
) -> CommandOutcome:
    """Decide the outcome of one invocation.

    Args:
        exit_code: Process exit code, ``None`` if the process never started
        envelope: Parsed stdout, ``None`` if it could not be parsed
        stderr: Accumulated stderr text
        tool_missing: Whether the CLI binary was found missing
        tolerate_nonzero_exit: Caller accepts whatever result is available
        context: Invocation context used as the last-resort failure message

    Returns:
        Success, Failure or ToolNotFound
    """
    if tool_missing:
        return ToolNotFound()

    result = envelope.result if envelope is not None else None

    if tolerate_nonzero_exit:
        return Success(result)

    if envelope is None:
        if exit_code is None or exit_code != 0:
            message = _context_message(context)
            if stderr.strip():
                logger.debug(f"Command failed with stderr: {stderr.strip()[:500]}")
            return Failure(message)
        return Success(None)

    if envelope.reports_failure():
        return Failure(_failure_message(envelope, context))

    return Success(result)
