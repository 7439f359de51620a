"""DX CLI 服务模块。

dx-cli-mcp dx v0.1.0

在 runtime 之上提供 sfdx 子命令封装、作业监控和匿名 Apex 执行流程。

基础用法:
    from dx_cli_mcp.runtime import CommandRunner
    from dx_cli_mcp.dx import DXService

    service = DXService(CommandRunner(config.connection()))
    orgs = await service.org_list()

监控部署:
    poller = monitor_deploy(service, deploy_id, on_update=print, interval=2.0)
    state = await poller.wait()
"""

from __future__ import annotations

__version__ = "0.1.0"

from .apex import AnonymousRun, ApexDiagnostic, execute_anonymous
from .monitors import (
    BULK_TERMINAL_STATES,
    DEPLOY_TERMINAL_STATES,
    bulk_status_from_batch,
    deploy_status_from_report,
    monitor_bulk_load,
    monitor_deploy,
)
from .service import DXService
from .types import ExecuteAnonymousResult, JobStatus, OrgInfo, SObjectCategory, TestTarget

__all__ = [
    "__version__",
    # 服务
    "DXService",
    # 类型
    "ExecuteAnonymousResult",
    "JobStatus",
    "OrgInfo",
    "SObjectCategory",
    "TestTarget",
    # 匿名执行
    "AnonymousRun",
    "ApexDiagnostic",
    "execute_anonymous",
    # 监控
    "BULK_TERMINAL_STATES",
    "DEPLOY_TERMINAL_STATES",
    "bulk_status_from_batch",
    "deploy_status_from_report",
    "monitor_bulk_load",
    "monitor_deploy",
]
