"""作业类工具处理器（部署报告、批量加载）。

wait=true 时通过 dx.monitors 轮询作业直到结束，并把每次状态更新转发为
MCP 进度通知。轮询由请求的取消令牌控制：SIGINT 取消请求时轮询停止，
已收集的最后状态仍然返回。
"""

from __future__ import annotations

import asyncio
import logging
from abc import abstractmethod
from typing import Any, Callable

from ..dx import (
    JobStatus,
    bulk_status_from_batch,
    deploy_status_from_report,
    monitor_bulk_load,
    monitor_deploy,
)
from ..runtime import JobPoller
from .base import ToolContext
from .dx import DXToolHandler, ToolCall

__all__ = [
    "ProgressRelay",
    "DeployReportHandler",
    "BulkUpsertHandler",
    "BulkDeleteHandler",
    "BulkStatusHandler",
]

logger = logging.getLogger(__name__)


class ProgressRelay:
    """把 poller 的同步 on_update 回调转发为异步进度通知。

    MCP 要求 progress 单调递增，因此使用更新次数作为 progress，
    状态描述放在 message 中。
    """

    def __init__(self, ctx: ToolContext) -> None:
        self._ctx = ctx
        self._tasks: set[asyncio.Task] = set()
        self.updates = 0

    def on_update(self, status: JobStatus) -> None:
        self.updates += 1
        logger.debug(f"Job {status.job_id}: {status.describe()}")
        if not self._ctx.has_progress_token():
            return
        task = asyncio.create_task(
            self._ctx.report_progress_safe(
                progress=self.updates,
                message=f"{status.job_id} {status.describe()}",
            )
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """等待已发出的进度通知完成。"""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)


def _interval(call: ToolCall) -> float:
    value = call.arguments.get("interval")
    if value is None:
        return call.ctx.config.poll_interval
    return max(0.1, min(float(value), 60.0))


def _summary(poller: JobPoller[JobStatus], job_id: str) -> dict[str, Any]:
    summary: dict[str, Any] = {
        "job_id": job_id,
        "monitor": poller.state.value,
        "checks": poller.checks,
    }
    if poller.last_status is not None:
        summary["status"] = poller.last_status.model_dump(exclude_none=True)
    if poller.error is not None:
        summary["error"] = str(poller.error) or type(poller.error).__name__
    return summary


async def wait_for_jobs(
    call: ToolCall,
    start: Callable[[ProgressRelay], list[tuple[str, JobPoller[JobStatus]]]],
) -> list[dict[str, Any]]:
    """启动监控并等待全部 poller 结束，返回每个作业的摘要。

    Args:
        call: 工具调用
        start: 以 ProgressRelay 为参数启动 poller 的函数，返回 (job_id, poller) 列表
    """
    relay = ProgressRelay(call.ctx)
    pollers = start(relay)
    try:
        for _, poller in pollers:
            await poller.wait()
    finally:
        # 请求被取消时不留下后台轮询
        for _, poller in pollers:
            poller.stop()
        await relay.drain()

    call.poll_checks = sum(poller.checks for _, poller in pollers)
    summaries = [_summary(poller, job_id) for job_id, poller in pollers]
    for summary in summaries:
        if "error" in summary:
            call.notifier.show_info(
                f"Monitoring of {summary['job_id']} stopped: {summary['error']}"
            )
    return summaries


def _on_abort(job_id: str) -> Callable[[BaseException], None]:
    def callback(error: BaseException) -> None:
        logger.info(f"Status check for {job_id} failed, monitoring stopped: {error}")

    return callback


# =============================================================================
# 部署
# =============================================================================


class DeployReportHandler(DXToolHandler):
    tool_name = "deploy_report"

    async def execute(self, call: ToolCall) -> Any:
        deploy_id = str(call.arguments["deploy_id"]).strip()
        if not call.arguments.get("wait", False):
            report = await call.service.get_deploy_errors(deploy_id, cancel_token=call.token)
            return {
                "status": deploy_status_from_report(report, deploy_id).model_dump(),
                "report": report,
            }

        def start(relay: ProgressRelay) -> list[tuple[str, JobPoller[JobStatus]]]:
            poller = monitor_deploy(
                call.service,
                deploy_id,
                on_update=relay.on_update,
                interval=_interval(call),
                timeout=call.ctx.config.poll_timeout,
                on_abort=_on_abort(deploy_id),
                cancel_token=call.token,
            )
            return [(deploy_id, poller)]

        summaries = await wait_for_jobs(call, start)
        return summaries[0]


# =============================================================================
# 批量加载
# =============================================================================


class _BulkLoadHandler(DXToolHandler):
    """提交批量作业，wait=true 时轮询每个批次。"""

    @abstractmethod
    async def submit(self, call: ToolCall) -> list[dict[str, Any]]:
        """提交作业，返回 CLI 报告的批次列表。"""
        ...

    async def execute(self, call: ToolCall) -> Any:
        batches = await self.submit(call)
        if not call.arguments.get("wait", False) or not batches:
            return batches

        def start(relay: ProgressRelay) -> list[tuple[str, JobPoller[JobStatus]]]:
            pollers = []
            for batch in batches:
                job_id = str(batch.get("jobId") or "")
                batch_id = str(batch.get("id") or "")
                if not job_id or not batch_id:
                    logger.warning(f"Batch without jobId/id, not monitored: {batch}")
                    continue
                poller = monitor_bulk_load(
                    call.service,
                    job_id,
                    batch_id,
                    on_update=relay.on_update,
                    interval=_interval(call),
                    timeout=call.ctx.config.poll_timeout,
                    on_abort=_on_abort(batch_id),
                    cancel_token=call.token,
                )
                pollers.append((batch_id, poller))
            return pollers

        return await wait_for_jobs(call, start)


class BulkUpsertHandler(_BulkLoadHandler):
    tool_name = "bulk_upsert"

    async def submit(self, call: ToolCall) -> list[dict[str, Any]]:
        return await call.service.bulk_upsert(
            call.arguments["sobject"],
            call.arguments["csv_file"],
            external_id=call.arguments.get("external_id") or "Id",
            cancel_token=call.token,
        )


class BulkDeleteHandler(_BulkLoadHandler):
    tool_name = "bulk_delete"

    async def submit(self, call: ToolCall) -> list[dict[str, Any]]:
        return await call.service.bulk_delete(
            call.arguments["sobject"],
            call.arguments["csv_file"],
            cancel_token=call.token,
        )


class BulkStatusHandler(DXToolHandler):
    tool_name = "bulk_status"

    def validate(self, arguments: dict[str, Any]) -> str | None:
        error = super().validate(arguments)
        if error:
            return error
        if arguments.get("wait", False) and not arguments.get("batch_id"):
            return "Argument 'batch_id' is required when wait=true"
        return None

    async def execute(self, call: ToolCall) -> Any:
        job_id = str(call.arguments["job_id"]).strip()
        batch_id = call.arguments.get("batch_id") or None
        if not call.arguments.get("wait", False):
            result = await call.service.bulk_status(job_id, batch_id)
            if batch_id:
                return {
                    "status": bulk_status_from_batch(result, job_id).model_dump(),
                    "batch": result,
                }
            return result

        def start(relay: ProgressRelay) -> list[tuple[str, JobPoller[JobStatus]]]:
            poller = monitor_bulk_load(
                call.service,
                job_id,
                batch_id,
                on_update=relay.on_update,
                interval=_interval(call),
                timeout=call.ctx.config.poll_timeout,
                on_abort=_on_abort(batch_id),
                cancel_token=call.token,
            )
            return [(batch_id, poller)]

        summaries = await wait_for_jobs(call, start)
        return summaries[0]
