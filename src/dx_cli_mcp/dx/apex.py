"""匿名 Apex 执行流程。

把代码写入临时文件 → apex:execute → 删除临时文件 → 把编译错误转换为诊断信息。
"""

from __future__ import annotations

import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path

from ..runtime import CancellationToken, Notifier
from .service import DXService
from .types import ExecuteAnonymousResult

__all__ = ["ApexDiagnostic", "AnonymousRun", "execute_anonymous"]

logger = logging.getLogger(__name__)

TEMP_FILE_SUFFIX = ".apex"


@dataclass(frozen=True)
class ApexDiagnostic:
    """编译错误位置（1 起始，未知时为 None）。"""

    line: int | None
    column: int | None
    message: str

    def __str__(self) -> str:
        if self.line is None:
            return self.message
        return f"Line {self.line}: {self.message}"


@dataclass(frozen=True)
class AnonymousRun:
    result: ExecuteAnonymousResult
    diagnostics: tuple[ApexDiagnostic, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.diagnostics and self.result.success


def _diagnostics(result: ExecuteAnonymousResult) -> tuple[ApexDiagnostic, ...]:
    if result.compiled:
        return ()
    return (
        ApexDiagnostic(
            line=result.line if result.line > 0 else None,
            column=result.column if result.column > 0 else None,
            message=result.compile_problem or "Compilation failed",
        ),
    )


async def execute_anonymous(
    service: DXService,
    code: str,
    cancel_token: CancellationToken | None = None,
    notifier: Notifier | None = None,
    temp_dir: Path | None = None,
) -> AnonymousRun:
    """执行一段匿名 Apex 代码。

    Args:
        service: DX 服务
        code: Apex 源码
        cancel_token: 可选取消令牌
        notifier: 可选通知接口（编译错误/成功提示）
        temp_dir: 临时文件目录（默认系统临时目录）

    Raises:
        ValueError: code 为空
    """
    if not code or not code.strip():
        raise ValueError("No code to execute")

    with tempfile.NamedTemporaryFile(
        "w",
        suffix=TEMP_FILE_SUFFIX,
        prefix="execAnon ",
        dir=temp_dir,
        delete=False,
        encoding="utf-8",
    ) as f:
        f.write(code)
        temp_path = Path(f.name)

    try:
        result = await service.exec_anon(str(temp_path), cancel_token)
    finally:
        try:
            temp_path.unlink()
        except OSError as e:
            logger.debug(f"Failed to remove {temp_path}: {e}")

    diagnostics = _diagnostics(result)
    if notifier:
        if diagnostics:
            notifier.show_error("Execute Anonymous Errors")
            for diagnostic in diagnostics:
                notifier.show_info(str(diagnostic))
        elif not result.success:
            notifier.show_error(f"Execute Anonymous Exception: {result.exception_message}")
        else:
            notifier.show_status("Execute Anonymous Success")

    return AnonymousRun(result=result, diagnostics=diagnostics)
