"""Runtime module for DX CLI execution and job tracking.

This module provides isolated CLI execution with JSON result
classification, token-based process-tree cancellation, and fixed-interval
polling of server-side jobs.
"""

from __future__ import annotations

from .argument_codec import SPACE_SENTINEL, decode, encode, split_command_line
from .cancellation import CancellationBridge, CancellationToken, Subscription
from .classifier import (
    CommandOutcome,
    Failure,
    ResultEnvelope,
    Success,
    ToolNotFound,
    classify,
    parse_envelope,
)
from .command import CommandRunner, ConnectionContext, TOOL_NOT_FOUND_MESSAGE
from .errors import (
    ArgumentEncodingError,
    DXError,
    InvocationFailure,
    NoActiveConnectionError,
    ToolNotFoundError,
)
from .poller import JobHandle, JobPoller, PollState, poll
from .process_runner import Invocation, InvocationContext, ProcessResult, ProcessRunner
from .sinks import BufferedNotifier, LoggerLogSink, LoggingNotifier, LogSink, Notifier

__all__ = [
    # argument codec
    "SPACE_SENTINEL",
    "encode",
    "decode",
    "split_command_line",
    # cancellation
    "CancellationBridge",
    "CancellationToken",
    "Subscription",
    # classification
    "CommandOutcome",
    "Failure",
    "ResultEnvelope",
    "Success",
    "ToolNotFound",
    "classify",
    "parse_envelope",
    # execution
    "CommandRunner",
    "ConnectionContext",
    "Invocation",
    "InvocationContext",
    "ProcessResult",
    "ProcessRunner",
    "TOOL_NOT_FOUND_MESSAGE",
    # polling
    "JobHandle",
    "JobPoller",
    "PollState",
    "poll",
    # sinks
    "BufferedNotifier",
    "LoggerLogSink",
    "LoggingNotifier",
    "LogSink",
    "Notifier",
    # errors
    "ArgumentEncodingError",
    "DXError",
    "InvocationFailure",
    "NoActiveConnectionError",
    "ToolNotFoundError",
]
