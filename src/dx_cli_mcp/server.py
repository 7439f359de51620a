"""DX CLI MCP Server。

把 Salesforce DX CLI 的常用操作暴露为 MCP 工具。

环境变量:
    DXM_CLI / DXM_COMMAND_PREFIX: CLI 可执行文件与子命令前缀
    DXM_TARGET_USERNAME: 当前连接的 org
    DXM_ENABLE / DXM_DISABLE: 工具组开关 (apex, org, source, bulk, run)
    DXM_SIGINT_MODE: SIGINT 处理模式 (cancel/exit/cancel_then_exit)

用法:
    uvx dx-cli-mcp
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from mcp.server import Server
from mcp.types import TextContent, Tool

from .config import get_config
from .handlers import HANDLER_CLASSES, ToolContext, create_handler
from .orchestrator import RequestRegistry
from .response_formatter import format_error_response
from .tool_schema import SUPPORTED_TOOLS, TOOL_DESCRIPTIONS, TOOL_GROUP_OF, create_tool_schema

__all__ = ["create_server"]

logger = logging.getLogger(__name__)


def create_server(registry: RequestRegistry | None = None) -> Server:
    """创建 MCP Server 实例。

    Args:
        registry: 请求注册表（可选，用于 SIGINT 取消正在运行的 CLI）
    """
    config = get_config()
    server = Server("dx-cli-mcp")

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        """列出可用工具。"""
        tools = [
            Tool(
                name=name,
                description=TOOL_DESCRIPTIONS[name],
                inputSchema=create_tool_schema(name),
            )
            for name in SUPPORTED_TOOLS
            if config.is_group_enabled(TOOL_GROUP_OF[name])
        ]
        logger.debug(
            f"[MCP] list_tools called, returning {len(tools)} tools: "
            f"{[t.name for t in tools]}"
        )
        return tools

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        """调用工具。"""
        arguments = arguments or {}
        logger.debug(
            f"[MCP] call_tool request:\n"
            f"  Tool: {name}\n"
            f"  Arguments: {json.dumps({k: v[:100] + '...' if isinstance(v, str) and len(v) > 100 else v for k, v in arguments.items()}, ensure_ascii=False, default=str)}"
        )

        if name not in HANDLER_CLASSES:
            return format_error_response(f"Unknown tool '{name}'")

        if not config.is_group_enabled(TOOL_GROUP_OF[name]):
            return format_error_response(f"Tool '{name}' is not enabled")

        # 生成请求 ID 并登记（令牌用于取消该请求的 CLI 进程）
        tool_ctx = ToolContext(config=config, registry=registry, server=server)
        request_id = None
        if registry is not None:
            current_task = asyncio.current_task()
            if current_task:
                request_id = registry.generate_request_id()
                registry.register(request_id, name, current_task, tool_ctx.token)
            else:
                logger.warning("No current_task, cannot register request")

        try:
            handler = create_handler(name)
            return await handler.handle(arguments, tool_ctx)

        except asyncio.CancelledError:
            logger.info(f"Tool '{name}' cancelled")
            raise

        except BaseException as e:
            logger.error(
                f"Tool '{name}' BaseException: type={type(e).__name__}, "
                f"msg={e}"
            )
            if isinstance(e, Exception):
                return format_error_response(str(e))
            raise

        finally:
            if registry and request_id:
                registry.unregister(request_id)
                logger.debug(f"Unregistered request: {request_id[:8]}...")

    return server
