"""请求编排与管理模块。

提供请求级别的隔离和管理：
- RequestRegistry: 活动请求的登记和管理
- 每个请求持有自己的 CancellationToken，取消请求即触发令牌，
  由 CancellationBridge 终止该请求正在运行的 CLI 进程树

取消是协作式的：令牌触发后 CLI 进程被杀死，工具调用照常返回
（通常是失败结果），服务器本身不受影响。
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Optional

from .runtime import CancellationToken

__all__ = ["RequestRegistry", "RequestInfo"]

logger = logging.getLogger(__name__)


@dataclass
class RequestInfo:
    """活动请求的信息。

    Attributes:
        request_id: 唯一请求标识符
        tool: 工具名称
        task: 关联的 asyncio Task
        token: 请求的取消令牌
        created_at: 创建时间
    """

    request_id: str
    tool: str
    task: asyncio.Task
    token: CancellationToken = field(default_factory=CancellationToken)
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def active(self) -> bool:
        return not self.task.done() and not self.token.is_cancelled

    def __repr__(self) -> str:
        elapsed = (datetime.now() - self.created_at).total_seconds()
        if self.task.done():
            status = "done"
        elif self.token.is_cancelled:
            status = "cancelling"
        else:
            status = "running"
        return (
            f"RequestInfo(id={self.request_id[:8]}..., "
            f"tool={self.tool}, "
            f"status={status}, "
            f"pid={self.token.process_id}, "
            f"elapsed={elapsed:.1f}s)"
        )


class RequestRegistry:
    """活动请求的注册表。

    所有操作都是同步的，由调用方保证在同一个事件循环中调用。

    Example:
        ```python
        registry = RequestRegistry()

        request_id = registry.generate_request_id()
        info = registry.register(request_id, "deploy_source", asyncio.current_task())
        await service.deploy_source_format(path, info.token)

        # 另一处（如 SIGINT 处理器）
        registry.cancel_all()

        registry.unregister(request_id)
        ```
    """

    def __init__(self) -> None:
        self._requests: Dict[str, RequestInfo] = {}
        self._on_empty_callbacks: list[Callable[[], None]] = []

    @staticmethod
    def generate_request_id() -> str:
        """生成 UUID4 格式的请求 ID。"""
        return str(uuid.uuid4())

    def register(
        self,
        request_id: str,
        tool: str,
        task: asyncio.Task,
        token: CancellationToken | None = None,
    ) -> RequestInfo:
        """登记新请求。

        Args:
            request_id: 唯一请求标识符
            tool: 工具名称
            task: 关联的 asyncio Task
            token: 取消令牌（默认新建）

        Returns:
            登记的请求信息

        Raises:
            ValueError: 如果 request_id 已存在
        """
        if request_id in self._requests:
            raise ValueError(f"Request {request_id} already registered")

        info = RequestInfo(
            request_id=request_id,
            tool=tool,
            task=task,
            token=token or CancellationToken(),
        )
        self._requests[request_id] = info
        logger.debug(f"Registered request: {info}")
        return info

    def unregister(self, request_id: str) -> bool:
        """注销请求，请求存在则返回 True。"""
        if request_id not in self._requests:
            return False

        info = self._requests.pop(request_id)
        logger.debug(f"Unregistered request: {info}")

        if not self._requests and self._on_empty_callbacks:
            for callback in self._on_empty_callbacks:
                try:
                    callback()
                except Exception as e:
                    logger.warning(f"Error in on_empty callback: {e}")
        return True

    def get(self, request_id: str) -> Optional[RequestInfo]:
        return self._requests.get(request_id)

    def cancel(self, request_id: str) -> bool:
        """取消指定请求。

        Returns:
            是否发起取消（请求存在且仍活动则返回 True）
        """
        info = self._requests.get(request_id)
        if info and info.active:
            info.token.cancel()
            logger.info(f"Cancelled request: {info}")
            return True
        return False

    def cancel_all(self) -> int:
        """取消所有活动请求，返回发起取消的数量。"""
        cancelled = 0
        for info in list(self._requests.values()):
            if info.active:
                info.token.cancel()
                logger.info(f"Cancelled request: {info}")
                cancelled += 1

        if cancelled > 0:
            logger.info(f"Cancelled {cancelled} active request(s)")
        return cancelled

    def abort_all(self) -> int:
        """触发所有令牌并取消所有未完成的 Task（用于强制退出）。"""
        aborted = 0
        for info in list(self._requests.values()):
            info.token.cancel()
            if not info.task.done():
                info.task.cancel()
                aborted += 1
        return aborted

    def has_active_requests(self) -> bool:
        return any(info.active for info in self._requests.values())

    @property
    def active_count(self) -> int:
        return sum(1 for info in self._requests.values() if info.active)

    @property
    def total_count(self) -> int:
        """注册表中的请求总数（包括已完成但未注销的）。"""
        return len(self._requests)

    def list_active(self) -> list[RequestInfo]:
        """列出所有活动请求（按创建时间排序）。"""
        active = [info for info in self._requests.values() if info.active]
        return sorted(active, key=lambda x: x.created_at)

    def add_on_empty_callback(self, callback: Callable[[], None]) -> None:
        """添加注册表变空时的回调。"""
        self._on_empty_callbacks.append(callback)

    def remove_on_empty_callback(self, callback: Callable[[], None]) -> None:
        if callback in self._on_empty_callbacks:
            self._on_empty_callbacks.remove(callback)

    def cleanup_done(self) -> int:
        """清理已完成但未注销的请求，返回清理数量。"""
        done_ids = [
            request_id
            for request_id, info in self._requests.items()
            if info.task.done()
        ]
        for request_id in done_ids:
            self.unregister(request_id)

        if done_ids:
            logger.debug(f"Cleaned up {len(done_ids)} done request(s)")
        return len(done_ids)

    def __len__(self) -> int:
        return len(self._requests)

    def __contains__(self, request_id: str) -> bool:
        return request_id in self._requests
