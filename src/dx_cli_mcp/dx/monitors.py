"""部署与批量加载作业的状态监控。

dx-cli-mcp dx v0.1.0

两个调用点共用 runtime.poller.JobPoller：
- monitor_deploy: 轮询 source:deploy:report，直到部署结束
- monitor_bulk_load: 轮询 data:bulk:status，直到批次结束

监控是尽力而为的进度报告：状态查询失败时轮询停止，不重试也不抛出，
失败原因记录在 poller.error 上并通过 on_abort 回调通知。
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from ..runtime import CancellationToken, JobHandle, JobPoller
from .service import DXService
from .types import JobStatus

__all__ = [
    "DEPLOY_TERMINAL_STATES",
    "BULK_TERMINAL_STATES",
    "deploy_status_from_report",
    "bulk_status_from_batch",
    "is_terminal",
    "monitor_deploy",
    "monitor_bulk_load",
]

logger = logging.getLogger(__name__)

DEPLOY_TERMINAL_STATES = frozenset(
    {"Succeeded", "SucceededPartial", "Failed", "Canceled"}
)
BULK_TERMINAL_STATES = frozenset({"Completed", "Failed", "Not Processed"})


def _int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def deploy_status_from_report(report: Any, deploy_id: str = "") -> JobStatus:
    """把 source:deploy:report 的 result 转换为 JobStatus。"""
    report = report if isinstance(report, dict) else {}
    state = str(report.get("status") or "Unknown")
    done = bool(report.get("done")) or state in DEPLOY_TERMINAL_STATES
    total = report.get("numberComponentsTotal")
    return JobStatus(
        job_id=str(report.get("id") or deploy_id),
        state=state,
        terminal=done,
        processed=_int(report.get("numberComponentsDeployed")),
        failures=_int(report.get("numberComponentErrors")),
        total=_int(total) if total is not None else None,
        message=str(report.get("errorMessage") or ""),
    )


def bulk_status_from_batch(batch: Any, job_id: str = "") -> JobStatus:
    """把 data:bulk:status 的 result 转换为 JobStatus。"""
    if isinstance(batch, list):
        batch = batch[0] if batch else {}
    batch = batch if isinstance(batch, dict) else {}
    state = str(batch.get("state") or "Unknown")
    return JobStatus(
        job_id=str(batch.get("jobId") or job_id),
        state=state,
        terminal=state in BULK_TERMINAL_STATES,
        processed=_int(batch.get("numberRecordsProcessed")),
        failures=_int(batch.get("numberRecordsFailed")),
        message=str(batch.get("stateMessage") or ""),
    )


def is_terminal(status: JobStatus) -> bool:
    return status.terminal


def _start(
    handle: JobHandle[JobStatus],
    on_update: Callable[[JobStatus], None],
    on_abort: Callable[[BaseException], None] | None,
    cancel_token: CancellationToken | None,
) -> JobPoller[JobStatus]:
    poller = JobPoller.from_handle(handle, on_update, is_terminal, on_abort)
    if cancel_token is not None:
        subscription = cancel_token.subscribe(poller.stop)
        task = poller.start()
        task.add_done_callback(lambda _: subscription.dispose())
        # 监控开始前请求已被取消：不做任何查询，直接停止
        if cancel_token.is_cancelled:
            poller.stop()
    else:
        poller.start()
    logger.debug(f"Monitoring job {handle.job_id} every {handle.interval}s")
    return poller


def monitor_deploy(
    service: DXService,
    deploy_id: str,
    on_update: Callable[[JobStatus], None],
    interval: float,
    timeout: float | None = None,
    on_abort: Callable[[BaseException], None] | None = None,
    cancel_token: CancellationToken | None = None,
) -> JobPoller[JobStatus]:
    """开始轮询部署状态，返回已启动的 poller（await poller.wait() 等待结束）。"""

    async def check() -> JobStatus:
        report = await service.get_deploy_errors(deploy_id)
        return deploy_status_from_report(report, deploy_id)

    handle = JobHandle(job_id=deploy_id, interval=interval, timeout=timeout, check_status=check)
    return _start(handle, on_update, on_abort, cancel_token)


def monitor_bulk_load(
    service: DXService,
    job_id: str,
    batch_id: str,
    on_update: Callable[[JobStatus], None],
    interval: float,
    timeout: float | None = None,
    on_abort: Callable[[BaseException], None] | None = None,
    cancel_token: CancellationToken | None = None,
) -> JobPoller[JobStatus]:
    """开始轮询批量加载批次状态，返回已启动的 poller。"""

    async def check() -> JobStatus:
        batch = await service.bulk_status(job_id, batch_id)
        return bulk_status_from_batch(batch, job_id)

    handle = JobHandle(job_id=job_id, interval=interval, timeout=timeout, check_status=check)
    return _start(handle, on_update, on_abort, cancel_token)
