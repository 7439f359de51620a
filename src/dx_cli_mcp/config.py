"""DXM 环境变量配置管理。

环境变量:
    DXM_CLI: CLI 可执行文件名（默认 sfdx）

    DXM_COMMAND_PREFIX: 子命令前缀（默认 force:）

    DXM_WORKSPACE: CLI 工作目录（默认当前目录）

    DXM_TARGET_USERNAME: 当前连接的 org 用户名/别名
        - 空/未设置 = 未连接，需要 org 的工具会返回错误

    DXM_POLL_INTERVAL: 作业轮询间隔（秒）
        - 默认 2.0，限制在 0.1-60 秒

    DXM_POLL_TIMEOUT: 单次状态查询超时（秒）
        - 默认 60，限制在 1-600 秒

    DXM_ENABLE: 启用的工具组
        - 空/未设置 = 全部可用 (apex, org, source, bulk, run)
        - 逗号分割，忽略大小写

    DXM_DISABLE: 禁用的工具组（从 enable 中减去）

    DXM_DEBUG: 调试模式
        - true/1/yes = 开启 (响应包含耗时等信息)

    DXM_LOG_DEBUG: 日志调试模式
        - true/1/yes = 开启 (日志输出到临时文件)
        - false/0/no = 关闭 (默认，日志输出到 stderr)

    DXM_SIGINT_MODE: SIGINT (Ctrl+C) 处理模式
        - cancel = 取消活动请求（无活动请求则退出）(默认)
        - exit = 直接退出进程
        - cancel_then_exit = 先取消请求，第二次才退出

    DXM_SIGINT_DOUBLE_TAP_WINDOW: 双击退出窗口时间（秒）
        - 默认 1.0 秒
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

from .runtime import ConnectionContext

__all__ = ["Config", "load_config", "get_config", "reload_config", "SigintMode", "TOOL_GROUPS"]


class SigintMode(Enum):
    """SIGINT 处理模式。

    - CANCEL: 只取消活动请求，不退出（如果没有活动请求则退出）
    - EXIT: 直接退出进程
    - CANCEL_THEN_EXIT: 先取消请求，第二次 SIGINT 才退出
    """

    CANCEL = "cancel"
    EXIT = "exit"
    CANCEL_THEN_EXIT = "cancel_then_exit"

    @classmethod
    def from_string(cls, value: str) -> "SigintMode":
        """从字符串解析模式，无效值返回 CANCEL。"""
        value = value.lower().strip()
        for mode in cls:
            if mode.value == value:
                return mode
        return cls.CANCEL


# 工具分组
TOOL_GROUPS = frozenset({"apex", "org", "source", "bulk", "run"})

DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_POLL_TIMEOUT = 60.0


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """解析布尔值环境变量。"""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_group_list(value: str | None) -> set[str]:
    """解析工具组列表环境变量，忽略未知组。"""
    if not value or not value.strip():
        return set()

    groups = set()
    for item in value.split(","):
        group = item.strip().lower()
        if group and group in TOOL_GROUPS:
            groups.add(group)
    return groups


def _compute_enabled_groups(enable: str | None, disable: str | None) -> set[str]:
    """计算最终启用的工具组。enable 为空时默认全开。"""
    enabled = _parse_group_list(enable)
    disabled = _parse_group_list(disable)
    if not enabled:
        enabled = set(TOOL_GROUPS)
    return enabled - disabled


def _parse_seconds(value: str | None, default: float, low: float, high: float) -> float:
    """解析秒数并限制范围，无效值返回默认值。"""
    if not value:
        return default
    try:
        seconds = float(value)
    except ValueError:
        return default
    return max(low, min(seconds, high))


@dataclass
class Config:
    """DXM 配置。

    Attributes:
        cli_executable: CLI 可执行文件名
        command_prefix: 子命令前缀
        workspace: CLI 工作目录
        target_username: 当前连接的 org
        poll_interval: 作业轮询间隔（秒）
        poll_timeout: 单次状态查询超时（秒）
        groups: 启用的工具组
        debug: 调试模式
        log_debug: 日志调试模式（输出到临时文件）
        log_file: 日志文件路径（当 log_debug=True 时自动设置）
        sigint_mode: SIGINT 处理模式
        sigint_double_tap_window: 双击退出窗口时间（秒）
    """

    cli_executable: str = "sfdx"
    command_prefix: str = "force:"
    workspace: Path = field(default_factory=Path.cwd)
    target_username: str | None = None
    poll_interval: float = DEFAULT_POLL_INTERVAL
    poll_timeout: float = DEFAULT_POLL_TIMEOUT
    groups: set[str] = field(default_factory=lambda: set(TOOL_GROUPS))
    debug: bool = False
    log_debug: bool = False
    log_file: str | None = None
    sigint_mode: SigintMode = SigintMode.CANCEL
    sigint_double_tap_window: float = 1.0

    def is_group_enabled(self, group: str) -> bool:
        """检查工具组是否启用。"""
        return group.lower() in self.groups

    def connection(self, target_username: str | None = None) -> ConnectionContext:
        """构建单次调用使用的连接上下文。

        Args:
            target_username: 覆盖配置中的目标 org（可选）
        """
        return ConnectionContext(
            workspace=self.workspace,
            target_username=target_username or self.target_username,
            cli_executable=self.cli_executable,
            command_prefix=self.command_prefix,
        )

    def __repr__(self) -> str:
        groups_str = ",".join(sorted(self.groups)) or "none"
        return (
            f"Config(cli={self.cli_executable}, "
            f"workspace={self.workspace}, "
            f"target_username={self.target_username or '-'}, "
            f"groups={groups_str}, "
            f"poll_interval={self.poll_interval}, "
            f"poll_timeout={self.poll_timeout}, "
            f"debug={self.debug}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file}, "
            f"sigint_mode={self.sigint_mode.value}, "
            f"sigint_double_tap_window={self.sigint_double_tap_window})"
        )


def _generate_log_file_path() -> str:
    """在系统临时目录下生成带时间戳的日志文件路径。"""
    log_dir = Path(tempfile.gettempdir()) / "dx-cli-mcp"
    log_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return str((log_dir / f"dxm_debug_{timestamp}.log").resolve())


def load_config() -> Config:
    """从环境变量加载配置。"""
    log_debug = _parse_bool(os.environ.get("DXM_LOG_DEBUG"), default=False)
    workspace_raw = os.environ.get("DXM_WORKSPACE", "").strip()
    workspace = Path(workspace_raw).expanduser().resolve() if workspace_raw else Path.cwd()

    return Config(
        cli_executable=os.environ.get("DXM_CLI", "").strip() or "sfdx",
        command_prefix=os.environ.get("DXM_COMMAND_PREFIX", "force:").strip(),
        workspace=workspace,
        target_username=os.environ.get("DXM_TARGET_USERNAME", "").strip() or None,
        poll_interval=_parse_seconds(
            os.environ.get("DXM_POLL_INTERVAL"), DEFAULT_POLL_INTERVAL, 0.1, 60.0
        ),
        poll_timeout=_parse_seconds(
            os.environ.get("DXM_POLL_TIMEOUT"), DEFAULT_POLL_TIMEOUT, 1.0, 600.0
        ),
        groups=_compute_enabled_groups(
            os.environ.get("DXM_ENABLE"),
            os.environ.get("DXM_DISABLE"),
        ),
        debug=_parse_bool(os.environ.get("DXM_DEBUG"), default=False),
        log_debug=log_debug,
        log_file=_generate_log_file_path() if log_debug else None,
        sigint_mode=SigintMode.from_string(os.environ.get("DXM_SIGINT_MODE") or ""),
        sigint_double_tap_window=_parse_seconds(
            os.environ.get("DXM_SIGINT_DOUBLE_TAP_WINDOW"), 1.0, 0.1, 10.0
        ),
    )


# 全局配置实例（延迟加载）
_config: Config | None = None


def get_config() -> Config:
    """获取全局配置实例。"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """重新加载配置（用于测试）。"""
    global _config
    _config = load_config()
    return _config
