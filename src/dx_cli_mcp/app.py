"""DX CLI MCP 应用入口。

包含服务器生命周期管理和主入口点。
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import sys

from mcp.server.stdio import stdio_server

from .config import get_config
from .orchestrator import RequestRegistry
from .server import create_server
from .signal_manager import SignalManager

__all__ = ["run_server", "main"]

logger = logging.getLogger(__name__)


async def run_server() -> None:
    """运行 MCP Server。

    启动 MCP 服务器，并集成信号管理器以支持：
    - SIGINT: 取消活动请求（杀死正在运行的 CLI 进程树），而不是直接退出
    - SIGTERM: 优雅退出

    使用并发任务架构：
    - server_task: 运行 MCP server (stdio)
    - shutdown_watcher: 监听 shutdown 事件并取消 server_task
    """
    config = get_config()
    logger.info(f"Starting DX CLI MCP Server: {config}")

    registry = RequestRegistry()
    server_task: asyncio.Task | None = None
    shutdown_watcher: asyncio.Task | None = None

    def on_shutdown() -> None:
        """信号管理器触发的关闭回调。"""
        logger.info("Shutdown callback triggered")
        # 关闭 stdin 以中断 stdio_server 的阻塞读取
        try:
            sys.stdin.close()
            logger.debug("stdin closed to unblock stdio_server")
        except Exception as e:
            logger.debug(f"Error closing stdin: {e}")

    signal_manager = SignalManager(registry=registry, on_shutdown=on_shutdown)
    server = create_server(registry)

    async def _run_server_impl() -> None:
        logger.debug("Starting MCP server with stdio transport")
        async with stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options(),
            )
        logger.debug("MCP server completed normally")

    async def _watch_shutdown() -> None:
        """监听 shutdown 事件并取消 server task。"""
        await signal_manager.wait_for_shutdown()
        logger.info("Shutdown signal received, cancelling server task...")
        if server_task and not server_task.done():
            server_task.cancel()

    try:
        await signal_manager.start()
        logger.info(
            f"Signal manager started (mode={signal_manager.sigint_mode.value}, "
            f"double_tap_window={signal_manager.double_tap_window}s)"
        )

        server_task = asyncio.create_task(_run_server_impl(), name="mcp-server")
        shutdown_watcher = asyncio.create_task(_watch_shutdown(), name="shutdown-watcher")

        try:
            await server_task
        except asyncio.CancelledError:
            logger.info("Server task cancelled by shutdown signal")

    except BaseException as e:
        logger.error(
            f"run_server: BaseException caught: type={type(e).__name__}, "
            f"msg={e}"
        )
        raise

    finally:
        if shutdown_watcher and not shutdown_watcher.done():
            shutdown_watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await shutdown_watcher

        # 仍在运行的 CLI 进程随请求令牌一起终止
        cancelled = registry.cancel_all()
        if cancelled:
            logger.info(f"Cancelled {cancelled} request(s) on exit")

        await signal_manager.stop()
        logger.info("run_server: cleanup completed")

        if signal_manager.is_force_exit:
            logger.warning("Force exit requested, terminating with exit code 130")
            sys.exit(130)  # 128 + SIGINT(2)


class JsonSerializingFormatter(logging.Formatter):
    """尝试把日志参数中的对象 JSON 序列化（调试日志文件使用）。"""

    def format(self, record: logging.LogRecord) -> str:
        if record.args and isinstance(record.args, tuple):
            new_args = []
            for arg in record.args:
                try:
                    if hasattr(arg, "model_dump"):
                        new_args.append(json.dumps(arg.model_dump(), ensure_ascii=False, default=str))
                    elif isinstance(arg, dict):
                        new_args.append(json.dumps(arg, ensure_ascii=False, default=str))
                    else:
                        new_args.append(arg)
                except (TypeError, ValueError):
                    new_args.append(arg)
            record.args = tuple(new_args)
        return super().format(record)


def configure_logging() -> None:
    """配置日志输出。

    - 默认：stderr，dx_cli_mcp 命名空间 INFO
    - DXM_LOG_DEBUG：临时文件，dx_cli_mcp 命名空间 DEBUG
    - root logger（第三方库）保持 WARNING
    """
    config = get_config()
    log_format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(JsonSerializingFormatter(log_format))
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        # stdout 是 MCP 传输通道，日志只能写 stderr
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(log_format))
        log_handlers.append(stderr_handler)
        log_level = logging.INFO

    logging.basicConfig(level=logging.WARNING, handlers=log_handlers)
    logging.getLogger("dx_cli_mcp").setLevel(log_level)


def main() -> None:
    """主入口点。"""
    configure_logging()
    asyncio.run(run_server())


if __name__ == "__main__":
    main()
