"""Tool Handlers 模块。

提供工具处理器抽象和具体实现。
"""

from .base import ToolContext, ToolHandler
from .dx import (
    DeleteSourceHandler,
    DeploySourceHandler,
    DescribeGlobalHandler,
    DXToolHandler,
    ExecuteAnonymousHandler,
    GetDebugLogHandler,
    OrgDisplayHandler,
    OrgListHandler,
    RetrieveSourceHandler,
    RunApexTestHandler,
    RunHandler,
    ToolCall,
)
from .jobs import (
    BulkDeleteHandler,
    BulkStatusHandler,
    BulkUpsertHandler,
    DeployReportHandler,
    ProgressRelay,
)

# 工具名 → 处理器类
HANDLER_CLASSES: dict[str, type[DXToolHandler]] = {
    cls.tool_name: cls
    for cls in (
        RunHandler,
        ExecuteAnonymousHandler,
        RunApexTestHandler,
        GetDebugLogHandler,
        OrgListHandler,
        OrgDisplayHandler,
        DescribeGlobalHandler,
        DeploySourceHandler,
        RetrieveSourceHandler,
        DeleteSourceHandler,
        DeployReportHandler,
        BulkUpsertHandler,
        BulkDeleteHandler,
        BulkStatusHandler,
    )
}


def create_handler(name: str) -> DXToolHandler:
    """按工具名创建处理器（每次调用一个新实例）。"""
    return HANDLER_CLASSES[name]()


__all__ = [
    "ToolContext",
    "ToolHandler",
    "ToolCall",
    "DXToolHandler",
    "ProgressRelay",
    "HANDLER_CLASSES",
    "create_handler",
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
    "DeployReportHandler",
    "BulkUpsertHandler",
    "BulkDeleteHandler",
    "BulkStatusHandler",
]
