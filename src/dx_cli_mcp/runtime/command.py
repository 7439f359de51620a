"""DX command execution: compose, run, classify.

``CommandRunner.run`` is the single entry point used by the DX service:

    runner = CommandRunner(ConnectionContext(workspace=Path("."), target_username="me@org"))
    orgs = await runner.run("org:list --clean --noprompt")

The runner appends ``--json`` and, when asked, the connection's
``--targetusername``; splits the line and decodes space-encoded tokens;
runs the process; classifies the output. Success returns the ``result``
payload; failures raise ``InvocationFailure`` or ``ToolNotFoundError``.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .argument_codec import split_command_line
from .cancellation import CancellationToken
from .classifier import (
    Failure,
    ResultEnvelope,
    ToolNotFound,
    classify,
    parse_envelope,
)
from .errors import InvocationFailure, ToolNotFoundError
from .process_runner import Invocation, InvocationContext, ProcessRunner
from .sinks import LoggerLogSink, LoggingNotifier, LogSink, Notifier

__all__ = [
    "CommandRunner",
    "ConnectionContext",
    "JSON_FLAG",
    "TARGET_USERNAME_FLAG",
    "TOOL_NOT_FOUND_MESSAGE",
]

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"

JSON_FLAG = "--json"
TARGET_USERNAME_FLAG = "--targetusername"

TOOL_NOT_FOUND_MESSAGE = (
    "The Salesforce CLI could not be found. Please download it from "
    "https://developer.salesforce.com/tools/sfdxcli and install it, "
    "then restart the server."
)


@dataclass(frozen=True)
class ConnectionContext:
    """Per-call configuration injected by the caller.

    Attributes:
        workspace: Working directory for the CLI
        target_username: Active org identity, None when not connected
        env: Environment for the CLI (None = inherit)
        cli_executable: CLI program name
        command_prefix: Prefix prepended to every subcommand
    """

    workspace: Path
    target_username: str | None = None
    env: Mapping[str, str] | None = None
    cli_executable: str = "sfdx"
    command_prefix: str = "force:"

    @property
    def is_connected(self) -> bool:
        return bool(self.target_username)

    def with_target_username(self, username: str | None) -> ConnectionContext:
        return ConnectionContext(
            workspace=self.workspace,
            target_username=username,
            env=self.env,
            cli_executable=self.cli_executable,
            command_prefix=self.command_prefix,
        )


@dataclass
class CommandRunner:
    """Runs DX subcommands and turns their output into results or exceptions."""

    connection: ConnectionContext
    process_runner: ProcessRunner = field(default_factory=ProcessRunner)
    log_sink: LogSink = field(default_factory=LoggerLogSink)
    notifier: Notifier = field(default_factory=LoggingNotifier)

    def compose(self, command: str, use_target_username: bool = False) -> str:
        """Build the full command line for a subcommand string."""
        conn = self.connection
        line = f"{conn.cli_executable} {conn.command_prefix}{command.strip()}"
        if use_target_username and conn.target_username:
            line += f" {TARGET_USERNAME_FLAG} {conn.target_username}"
        if IS_WINDOWS:
            line = "cmd /c " + line
        if JSON_FLAG not in line.split():
            line += f" {JSON_FLAG}"
        return line

    def build_invocation(self, command_line: str) -> Invocation:
        """Split a composed command line into an invocation."""
        tokens = split_command_line(command_line)
        if not tokens:
            raise ValueError("command line is empty")
        return Invocation(
            program=tokens[0],
            args=tuple(tokens[1:]),
            cwd=self.connection.workspace,
            env=dict(self.connection.env if self.connection.env is not None else os.environ),
            json_mode=JSON_FLAG in tokens,
            context=InvocationContext(command_line=command_line),
        )

    async def run(
        self,
        command: str,
        use_target_username: bool = False,
        cancel_token: CancellationToken | None = None,
        tolerate_nonzero_exit: bool = False,
    ) -> Any:
        """Run one DX subcommand.

        Args:
            command: Subcommand and flags, e.g. ``"org:display -u me"``.
                Values containing spaces must be encoded with
                ``argument_codec.encode``
            use_target_username: Append the active connection's identity
            cancel_token: Optional token; firing it kills the process tree
            tolerate_nonzero_exit: Return whatever result is available even
                if the command reports failure

        Returns:
            The ``result`` field of the CLI's JSON output (may be None)

        Raises:
            ToolNotFoundError: The CLI is not installed
            InvocationFailure: The CLI reported a failure
        """
        command_line = self.compose(command, use_target_username)
        invocation = self.build_invocation(command_line)
        logger.info(f"Executing: {command_line}")

        result = await self.process_runner.run(
            invocation,
            cancel_token=cancel_token,
            on_stderr=self.log_sink.write,
        )

        if result.spawn_error:
            self.log_sink.write(result.spawn_error)

        envelope: ResultEnvelope | None = None
        if result.exit_code is not None:
            try:
                envelope = parse_envelope(result.stdout)
            except ValueError as e:
                logger.debug(f"Unparsable stdout from {invocation.program}: {e}")
                self.log_sink.write(f'No parsable results from command "{command_line}"')

        outcome = classify(
            exit_code=result.exit_code,
            envelope=envelope,
            stderr=result.stderr,
            tool_missing=result.tool_missing,
            tolerate_nonzero_exit=tolerate_nonzero_exit,
            context=invocation.context,
        )
        logger.debug(
            f"Command finished: exit_code={result.exit_code} "
            f"cancelled={result.cancelled} outcome={type(outcome).__name__}"
        )

        if isinstance(outcome, ToolNotFound):
            self.notifier.show_error(TOOL_NOT_FOUND_MESSAGE)
            raise ToolNotFoundError(self.connection.cli_executable, TOOL_NOT_FOUND_MESSAGE)
        if isinstance(outcome, Failure):
            raise InvocationFailure(
                outcome.message,
                context=invocation.context,
                exit_code=result.exit_code,
            )
        return outcome.result
