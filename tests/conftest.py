"""Pytest 配置和 fixtures。"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# 项目根目录
PROJECT_ROOT = Path(__file__).parent.parent

# 添加 src 目录到 Python 路径
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from dx_cli_mcp.runtime import (  # noqa: E402
    BufferedNotifier,
    CommandRunner,
    ConnectionContext,
    ProcessRunner,
    encode,
)

# 模拟 sfdx 的脚本
FAKE_DX = Path(__file__).parent / "fixtures" / "fake_dx.py"


class ListLogSink:
    """把写入的行保存在列表中的 LogSink。"""

    def __init__(self) -> None:
        self.lines: list[str] = []

    def write(self, line: str) -> None:
        self.lines.append(line)

    @property
    def text(self) -> str:
        return "".join(self.lines)


def fake_connection(
    workspace: Path,
    target_username: str | None = "admin@example.com",
    env: dict[str, str] | None = None,
) -> ConnectionContext:
    """让 CommandRunner 执行 fake_dx.py 的连接上下文。

    解释器路径和脚本路径可能含空格，因此先编码。
    """
    return ConnectionContext(
        workspace=workspace,
        target_username=target_username,
        env=env,
        cli_executable=encode(sys.executable),
        command_prefix=encode(str(FAKE_DX)) + " ",
    )


@pytest.fixture
def project_root() -> Path:
    """项目根目录。"""
    return PROJECT_ROOT


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """临时工作目录。"""
    path = tmp_path / "workspace"
    path.mkdir()
    return path


@pytest.fixture
def log_sink() -> ListLogSink:
    return ListLogSink()


@pytest.fixture
def notifier() -> BufferedNotifier:
    return BufferedNotifier(log=False)


@pytest.fixture
def command_runner(
    workspace: Path, log_sink: ListLogSink, notifier: BufferedNotifier
) -> CommandRunner:
    """执行 fake_dx.py 的 CommandRunner（短超时）。"""
    return CommandRunner(
        connection=fake_connection(workspace),
        process_runner=ProcessRunner(term_timeout=0.5, kill_timeout=0.5),
        log_sink=log_sink,
        notifier=notifier,
    )


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch):
    """清除所有 DXM_ 环境变量，并在测试后重置全局配置。"""
    import os

    from dx_cli_mcp import config as config_module

    for key in list(os.environ):
        if key.startswith("DXM_"):
            monkeypatch.delenv(key, raising=False)
    config_module._config = None
    yield monkeypatch
    config_module._config = None
