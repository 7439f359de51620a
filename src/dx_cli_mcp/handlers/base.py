"""Tool Handler 基础抽象。

定义工具处理器的协议和上下文。
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from mcp.types import TextContent

from ..dx import DXService
from ..runtime import BufferedNotifier, CancellationToken, CommandRunner

if TYPE_CHECKING:
    from mcp.server import Server

    from ..config import Config
    from ..orchestrator import RequestRegistry

__all__ = [
    "ToolContext",
    "ToolHandler",
]

logger = logging.getLogger(__name__)


@dataclass
class ToolContext:
    """工具执行上下文。

    封装工具执行所需的所有依赖，避免在函数间传递大量参数。

    Attributes:
        config: 全局配置
        registry: 请求注册表（可选）
        token: 本次请求的取消令牌（SIGINT 触发后杀死正在运行的 CLI）
        server: MCP server（可选，用于发送进度通知）
    """

    config: "Config"
    registry: "RequestRegistry | None" = None
    token: CancellationToken = field(default_factory=CancellationToken)
    server: "Server | None" = None

    def resolve_debug(self, arguments: dict[str, Any]) -> bool:
        """统一解析 debug 开关。"""
        if "debug" in arguments:
            return bool(arguments["debug"])
        return self.config.debug

    def create_service(
        self,
        arguments: dict[str, Any],
        notifier: BufferedNotifier,
    ) -> DXService:
        """为本次请求创建 DXService（per-request 隔离，不共享任何状态）。"""
        connection = self.config.connection(arguments.get("target_username") or None)
        return DXService(CommandRunner(connection=connection, notifier=notifier))

    def _progress_token(self) -> str | int | None:
        if self.server is None:
            return None
        try:
            request_ctx = self.server.request_context
        except LookupError:
            return None
        if request_ctx.meta is None:
            return None
        return request_ctx.meta.progressToken

    def has_progress_token(self) -> bool:
        """客户端是否请求了进度通知。"""
        return self._progress_token() is not None

    async def report_progress_safe(
        self,
        progress: float,
        total: float | None = None,
        message: str | None = None,
    ) -> None:
        """发送进度通知（best-effort，失败只记录日志）。"""
        progress_token = self._progress_token()
        if progress_token is None or self.server is None:
            return
        try:
            await self.server.request_context.session.send_progress_notification(
                progress_token=progress_token,
                progress=progress,
                total=total,
                message=message,
            )
        except Exception as e:
            logger.debug(f"Failed to send progress notification: {e}")


class ToolHandler(ABC):
    """工具处理器协议。

    所有工具处理器必须实现此接口。
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """工具名称。"""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        """工具描述。"""
        ...

    @abstractmethod
    def get_input_schema(self) -> dict[str, Any]:
        """获取输入参数 schema。"""
        ...

    @abstractmethod
    async def handle(
        self,
        arguments: dict[str, Any],
        ctx: ToolContext,
    ) -> list[TextContent]:
        """处理工具调用。

        Args:
            arguments: 工具参数
            ctx: 执行上下文

        Returns:
            TextContent 列表
        """
        ...

    def validate(self, arguments: dict[str, Any]) -> str | None:
        """验证参数。

        Args:
            arguments: 工具参数

        Returns:
            错误消息，如果验证通过则返回 None
        """
        return None
