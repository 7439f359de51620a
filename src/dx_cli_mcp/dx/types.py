"""DX 命令结果类型定义。

dx-cli-mcp dx v0.1.0

定义 SObject 分类、匿名执行结果、org 信息、作业状态等类型。
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "SObjectCategory",
    "TestTarget",
    "ExecuteAnonymousResult",
    "OrgInfo",
    "JobStatus",
]


class SObjectCategory(str, Enum):
    """schema:sobject:list 的分类参数。"""

    ALL = "ALL"
    STANDARD = "STANDARD"
    CUSTOM = "CUSTOM"


class TestTarget(str, Enum):
    """apex:test:run 的运行目标。"""

    __test__ = False  # pytest 不要收集

    CLASS = "class"
    METHOD = "method"


@dataclass
class ExecuteAnonymousResult:
    """apex:execute 的结果。

    Attributes:
        compiled: 是否编译成功
        compile_problem: 编译错误信息
        success: 是否执行成功
        line: 出错行号（1 起始）
        column: 出错列号（1 起始）
        exception_message: 运行时异常信息
        exception_stack_trace: 运行时异常堆栈
        logs: 调试日志
    """

    compiled: bool = True
    compile_problem: str = ""
    success: bool = True
    line: int = -1
    column: int = -1
    exception_message: str = ""
    exception_stack_trace: str = ""
    logs: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ExecuteAnonymousResult:
        """从 CLI 的 result 字段构建。"""
        data = data or {}

        def _int(value: Any) -> int:
            try:
                return int(value)
            except (TypeError, ValueError):
                return -1

        return cls(
            compiled=bool(data.get("compiled", True)),
            compile_problem=data.get("compileProblem") or "",
            success=bool(data.get("success", True)),
            line=_int(data.get("line")),
            column=_int(data.get("column")),
            exception_message=data.get("exceptionMessage") or "",
            exception_stack_trace=data.get("exceptionStackTrace") or "",
            logs=data.get("logs") or "",
        )


class OrgInfo(BaseModel):
    """org:display / org:list 返回的 org 信息。"""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    username: str = ""
    id: str = ""
    connected_status: str = Field(default="", alias="connectedStatus")
    access_token: str = Field(default="", alias="accessToken", repr=False)
    instance_url: str = Field(default="", alias="instanceUrl")
    client_id: str = Field(default="", alias="clientId")
    alias: str | None = None
    is_expired: bool | None = Field(default=None, alias="isExpired")
    user_id: str | None = Field(default=None, alias="userId")
    is_dev_hub: bool | None = Field(default=None, alias="isDevHub")

    def summary(self) -> dict[str, Any]:
        """不含 access token 的摘要。"""
        return self.model_dump(exclude={"access_token"}, exclude_none=True)


class JobStatus(BaseModel):
    """服务端异步作业（部署、批量加载）的状态快照。

    Attributes:
        job_id: 作业 ID
        state: 服务端报告的原始状态
        terminal: 是否已结束
        processed: 已处理数量（记录或组件）
        failures: 失败数量
        total: 总数（未知时为 None）
        message: 附加信息（错误详情等）
    """

    model_config = ConfigDict(extra="ignore")

    job_id: str = ""
    state: str = ""
    terminal: bool = False
    processed: int = 0
    failures: int = 0
    total: int | None = None
    message: str = ""

    def describe(self) -> str:
        total = f"/{self.total}" if self.total is not None else ""
        text = f"{self.state}: {self.processed}{total} processed, {self.failures} failed"
        if self.message:
            text += f" ({self.message})"
        return text
