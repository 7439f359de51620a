"""DX 工具处理器。

每个 MCP 工具对应一个 DXToolHandler 子类，子类只负责把参数映射到
DXService 方法；校验、错误转换、响应格式化由基类统一处理。
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import abstractmethod
from dataclasses import dataclass
from typing import Any

import anyio
from mcp.types import TextContent

from ..dx import DXService, SObjectCategory, TestTarget, execute_anonymous
from ..response_formatter import (
    DebugInfo,
    ResponseData,
    format_error_response,
    get_formatter,
    to_text,
)
from ..runtime import BufferedNotifier, DXError, InvocationFailure, encode
from ..tool_schema import (
    REQUIRED_ARGUMENTS,
    TOOL_DESCRIPTIONS,
    TOOL_GROUP_OF,
    create_tool_schema,
)
from .base import ToolContext, ToolHandler

__all__ = [
    "ToolCall",
    "DXToolHandler",
    "RunHandler",
    "ExecuteAnonymousHandler",
    "RunApexTestHandler",
    "GetDebugLogHandler",
    "OrgListHandler",
    "OrgDisplayHandler",
    "DescribeGlobalHandler",
    "DeploySourceHandler",
    "RetrieveSourceHandler",
    "DeleteSourceHandler",
]

logger = logging.getLogger(__name__)


@dataclass
class ToolCall:
    """一次工具调用的状态。

    Attributes:
        arguments: 工具参数
        ctx: 执行上下文
        service: 本次调用专用的 DXService
        notifier: 收集通知，随响应返回
        poll_checks: 作业轮询次数（仅 wait 模式）
    """

    arguments: dict[str, Any]
    ctx: ToolContext
    service: DXService
    notifier: BufferedNotifier
    poll_checks: int | None = None

    @property
    def token(self):
        return self.ctx.token


class DXToolHandler(ToolHandler):
    """DX 工具处理器基类。"""

    tool_name: str = ""

    @property
    def name(self) -> str:
        return self.tool_name

    @property
    def group(self) -> str:
        return TOOL_GROUP_OF[self.tool_name]

    @property
    def description(self) -> str:
        return TOOL_DESCRIPTIONS.get(self.tool_name, "")

    def get_input_schema(self) -> dict[str, Any]:
        return create_tool_schema(self.tool_name)

    def validate(self, arguments: dict[str, Any]) -> str | None:
        for key in REQUIRED_ARGUMENTS.get(self.tool_name, []):
            value = arguments.get(key)
            if value is None or (isinstance(value, str) and not value.strip()):
                return f"Missing required argument: '{key}'"
        return None

    @abstractmethod
    async def execute(self, call: ToolCall) -> Any:
        """执行工具，返回要输出的结果（字符串、dict、list 或 pydantic 模型）。"""
        ...

    async def handle(
        self,
        arguments: dict[str, Any],
        ctx: ToolContext,
    ) -> list[TextContent]:
        """处理工具调用。"""
        error = self.validate(arguments)
        if error:
            return format_error_response(error)

        notifier = BufferedNotifier()
        call = ToolCall(
            arguments=arguments,
            ctx=ctx,
            service=ctx.create_service(arguments, notifier),
            notifier=notifier,
        )
        debug_enabled = ctx.resolve_debug(arguments)
        started = time.monotonic()

        def debug_info(exit_code: int | None = None) -> DebugInfo | None:
            if not debug_enabled:
                return None
            return DebugInfo(
                tool=self.tool_name,
                target_username=call.service.target_username,
                duration_sec=time.monotonic() - started,
                exit_code=exit_code,
                poll_checks=call.poll_checks,
                cancelled=ctx.token.is_cancelled,
                log_file=ctx.config.log_file if ctx.config.log_debug else None,
            )

        try:
            result = await self.execute(call)
            response_data = ResponseData(
                answer=to_text(result),
                notifications=notifier.messages(),
                debug_info=debug_info(),
            )

        except (anyio.get_cancelled_exc_class(), asyncio.CancelledError) as e:
            logger.info(f"Tool '{self.tool_name}' cancelled (type={type(e).__name__})")
            raise

        except (DXError, ValueError) as e:
            exit_code = e.exit_code if isinstance(e, InvocationFailure) else None
            message = str(e)
            if ctx.token.is_cancelled:
                message = f"Cancelled: {message}"
            logger.info(f"Tool '{self.tool_name}' failed: {message}")
            response_data = ResponseData(
                answer="",
                notifications=notifier.messages(),
                debug_info=debug_info(exit_code),
                success=False,
                error=message,
            )

        response = get_formatter().format(response_data, debug=debug_enabled)
        logger.debug(
            "[MCP] call_tool response:\n"
            f"  Tool: {self.tool_name}\n"
            f"  Success: {response_data.success}\n"
            f"  Response length: {len(response)} chars"
        )
        return [TextContent(type="text", text=response)]


# =============================================================================
# run
# =============================================================================


class RunHandler(DXToolHandler):
    tool_name = "dx_run"

    async def execute(self, call: ToolCall) -> Any:
        args = call.arguments
        command = str(args["command"]).strip()
        extra = args.get("arguments") or []
        if extra:
            command += " " + " ".join(encode(str(item)) for item in extra)
        return await call.service.runner.run(
            command,
            use_target_username=bool(args.get("use_target_username", True)),
            cancel_token=call.token,
            tolerate_nonzero_exit=bool(args.get("tolerate_nonzero_exit", False)),
        )


# =============================================================================
# apex
# =============================================================================


class ExecuteAnonymousHandler(DXToolHandler):
    tool_name = "execute_anonymous"

    async def execute(self, call: ToolCall) -> Any:
        run = await execute_anonymous(
            call.service,
            call.arguments["code"],
            cancel_token=call.token,
            notifier=call.notifier,
        )
        result = run.result
        if run.diagnostics:
            raise ValueError(
                "Compilation failed: " + "; ".join(str(d) for d in run.diagnostics)
            )
        if not result.success:
            text = f"Execution failed: {result.exception_message}"
            if result.exception_stack_trace:
                text += f"\n{result.exception_stack_trace}"
            raise ValueError(text)
        return result.logs or "Execute Anonymous Success"


class RunApexTestHandler(DXToolHandler):
    tool_name = "run_apex_test"

    def validate(self, arguments: dict[str, Any]) -> str | None:
        error = super().validate(arguments)
        if error:
            return error
        target = arguments.get("target", TestTarget.CLASS.value)
        if target not in {t.value for t in TestTarget}:
            return f"Invalid target '{target}', expected 'class' or 'method'"
        return None

    async def execute(self, call: ToolCall) -> Any:
        return await call.service.run_test(
            call.arguments["name"],
            TestTarget(call.arguments.get("target", TestTarget.CLASS.value)),
            cancel_token=call.token,
        )


class GetDebugLogHandler(DXToolHandler):
    tool_name = "get_debug_log"

    async def execute(self, call: ToolCall) -> Any:
        return await call.service.get_debug_log(call.arguments.get("log_id") or None)


# =============================================================================
# org
# =============================================================================


class OrgListHandler(DXToolHandler):
    tool_name = "org_list"

    async def execute(self, call: ToolCall) -> Any:
        orgs = await call.service.org_list()
        if not orgs:
            return "No authenticated orgs"
        return [org.summary() for org in orgs]


class OrgDisplayHandler(DXToolHandler):
    tool_name = "org_display"

    async def execute(self, call: ToolCall) -> Any:
        info = await call.service.get_org_info(call.arguments.get("username") or None)
        return info.summary()


class DescribeGlobalHandler(DXToolHandler):
    tool_name = "describe_global"

    def validate(self, arguments: dict[str, Any]) -> str | None:
        category = str(arguments.get("category", "ALL")).upper()
        if category not in {c.value for c in SObjectCategory}:
            return f"Invalid category '{category}', expected ALL, STANDARD or CUSTOM"
        return None

    async def execute(self, call: ToolCall) -> Any:
        category = SObjectCategory(str(call.arguments.get("category", "ALL")).upper())
        return await call.service.describe_global(category)


# =============================================================================
# source
# =============================================================================


class DeploySourceHandler(DXToolHandler):
    tool_name = "deploy_source"

    async def execute(self, call: ToolCall) -> Any:
        return await call.service.deploy_source_format(
            call.arguments["path"],
            cancel_token=call.token,
            package_xml=bool(call.arguments.get("package_xml", False)),
        )


class RetrieveSourceHandler(DXToolHandler):
    tool_name = "retrieve_source"

    async def execute(self, call: ToolCall) -> Any:
        return await call.service.retrieve_source_format(
            call.arguments["manifest"], cancel_token=call.token
        )


class DeleteSourceHandler(DXToolHandler):
    tool_name = "delete_source"

    async def execute(self, call: ToolCall) -> Any:
        return await call.service.delete_source(call.arguments["path"], cancel_token=call.token)
