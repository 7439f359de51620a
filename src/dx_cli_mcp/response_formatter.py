"""MCP 响应格式化器。

使用 XML-wrapped 格式，对 LLM 友好。

格式说明:
    - <answer>: 命令结果（JSON 或纯文本）
    - <notifications>: 执行期间的用户通知（例如 CLI 未安装的提示）
    - <error>: 错误信息
    - <debug_info>: 调试信息（debug=True 时输出）
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

if TYPE_CHECKING:
    from mcp.types import TextContent

__all__ = [
    "DebugInfo",
    "ResponseData",
    "ResponseFormatter",
    "get_formatter",
    "format_error_response",
    "to_text",
]


@dataclass
class DebugInfo:
    """调试信息。"""

    tool: str = ""
    target_username: str | None = None
    duration_sec: float = 0.0
    exit_code: int | None = None
    poll_checks: int | None = None
    cancelled: bool = False
    log_file: str | None = None  # DEBUG 日志文件路径

    def to_dict(self) -> dict[str, Any]:
        """转换为字典。"""
        data: dict[str, Any] = {"tool": self.tool}
        if self.target_username:
            data["target_username"] = self.target_username
        data["duration_sec"] = round(self.duration_sec, 3)
        if self.exit_code is not None:
            data["exit_code"] = self.exit_code
        if self.poll_checks is not None:
            data["poll_checks"] = self.poll_checks
        if self.cancelled:
            data["cancelled"] = True
        if self.log_file:
            data["log_file"] = self.log_file
        return data


@dataclass
class ResponseData:
    """响应数据。"""

    # 命令结果（必须）
    answer: str

    # 执行期间收集的通知
    notifications: list[str] = field(default_factory=list)

    # 调试信息（可选，debug 时使用）
    debug_info: DebugInfo | None = None

    # 是否成功
    success: bool = True

    # 错误信息
    error: str | None = None


def to_text(value: Any) -> str:
    """把命令结果转换为文本。

    字符串原样返回，pydantic 模型和其他对象序列化为缩进 JSON。
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, BaseModel):
        value = value.model_dump(exclude_none=True)
    elif isinstance(value, list):
        value = [
            item.model_dump(exclude_none=True) if isinstance(item, BaseModel) else item
            for item in value
        ]
    return json.dumps(value, indent=2, ensure_ascii=False, default=str)


class ResponseFormatter:
    """MCP 响应格式化器。

    Example:
        >>> formatter = ResponseFormatter()
        >>> data = ResponseData(
        ...     answer='{"status": "Succeeded"}',
        ...     debug_info=DebugInfo(tool="deploy_report", duration_sec=1.5)
        ... )
        >>> output = formatter.format(data, debug=True)
    """

    def format(
        self,
        data: ResponseData,
        *,
        debug: bool = False,
    ) -> str:
        """格式化响应数据。

        Args:
            data: 响应数据
            debug: 是否输出调试信息

        Returns:
            XML-wrapped 格式的响应字符串
        """
        if not data.success:
            return self._format_error(
                data.error or "Unknown error",
                debug=debug,
                debug_info=data.debug_info,
                notifications=data.notifications,
                partial_answer=data.answer,
            )

        parts = ["<response>"]
        parts.append(self._format_answer(data.answer))

        if data.notifications:
            parts.append(self._format_notifications(data.notifications))

        if debug and data.debug_info:
            parts.append(self._format_debug_info(data.debug_info))

        parts.append("</response>")
        return "\n".join(parts)

    def _format_answer(self, answer: str) -> str:
        return f"  <answer>\n{answer}\n  </answer>"

    def _format_notifications(self, notifications: list[str]) -> str:
        lines = ["  <notifications>"]
        for message in notifications:
            lines.append(f"    <notification>{message}</notification>")
        lines.append("  </notifications>")
        return "\n".join(lines)

    def _format_debug_info(self, debug_info: DebugInfo) -> str:
        """格式化调试信息（XML 格式）。"""
        lines = ["  <debug_info>"]
        for key, value in debug_info.to_dict().items():
            if isinstance(value, bool):
                value = "true" if value else "false"
            elif isinstance(value, float):
                value = f"{value:.3f}"
            lines.append(f"    <{key}>{value}</{key}>")
        lines.append("  </debug_info>")
        return "\n".join(lines)

    def _format_error(
        self,
        error: str,
        *,
        debug: bool = False,
        debug_info: DebugInfo | None = None,
        notifications: list[str] | None = None,
        partial_answer: str = "",
    ) -> str:
        """格式化错误响应。

        Args:
            error: 错误信息
            debug: 是否输出调试信息
            debug_info: 调试信息（可选）
            notifications: 已收集的通知
            partial_answer: 已收集的部分结果（例如监控中止前的最后状态）

        Returns:
            XML 格式的错误响应
        """
        parts = ["<response>"]
        parts.append(f"  <error>{error}</error>")

        if notifications:
            parts.append(self._format_notifications(notifications))

        if partial_answer and partial_answer.strip():
            parts.append(f"  <partial_answer>{partial_answer}</partial_answer>")

        if debug and debug_info:
            parts.append(self._format_debug_info(debug_info))

        parts.append("</response>")
        return "\n".join(parts)


# 全局实例
_formatter: ResponseFormatter | None = None


def get_formatter() -> ResponseFormatter:
    """获取全局格式化器实例。"""
    global _formatter
    if _formatter is None:
        _formatter = ResponseFormatter()
    return _formatter


def format_error_response(error: str) -> list[TextContent]:
    """统一的错误响应格式化函数。

    确保所有错误都以 <response><error>...</error></response> 格式返回，
    保持 API 契约一致性。
    """
    from mcp.types import TextContent

    response_data = ResponseData(answer="", success=False, error=error)
    return [TextContent(type="text", text=get_formatter().format(response_data))]
