"""DX CLI 服务。

dx-cli-mcp dx v0.1.0

把常用的 sfdx 子命令封装为方法，所有方法都通过 CommandRunner.run 执行：
- 需要目标 org 的命令传 use_target_username=True
- 可能含空格的路径参数先经 argument_codec.encode
- 部署报告等命令以非零退出码表达正常状态，使用 tolerate_nonzero_exit

用法:
    runner = CommandRunner(config.connection())
    service = DXService(runner)
    orgs = await service.org_list()
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

from ..runtime import (
    CancellationToken,
    CommandRunner,
    DXError,
    NoActiveConnectionError,
    encode,
)
from .types import ExecuteAnonymousResult, OrgInfo, SObjectCategory, TestTarget

__all__ = ["DXService"]

logger = logging.getLogger(__name__)


class DXService:
    """sfdx force:* 子命令封装。"""

    def __init__(self, runner: CommandRunner) -> None:
        self.runner = runner

    @property
    def target_username(self) -> str | None:
        return self.runner.connection.target_username

    def _require_connection(self) -> str:
        username = self.target_username
        if not username:
            raise NoActiveConnectionError()
        return username

    # =========================================================================
    # Apex
    # =========================================================================

    async def exec_anon(
        self, file: str, cancel_token: CancellationToken | None = None
    ) -> ExecuteAnonymousResult:
        """执行匿名 Apex 文件。"""
        self._require_connection()
        result = await self.runner.run(
            f"apex:execute --apexcodefile {encode(file)}",
            use_target_username=True,
            cancel_token=cancel_token,
        )
        return ExecuteAnonymousResult.from_dict(result)

    async def run_test(
        self,
        name: str,
        target: TestTarget | str = TestTarget.CLASS,
        cancel_token: CancellationToken | None = None,
    ) -> Any:
        """运行测试类或测试方法，同步等待最多 3 分钟。"""
        self._require_connection()
        flag = "-n" if TestTarget(target) == TestTarget.CLASS else "-t"
        return await self.runner.run(
            f"apex:test:run {flag} {name} -w 3 -y",
            use_target_username=True,
            cancel_token=cancel_token,
        )

    async def get_debug_log(self, log_id: str | None = None) -> str:
        """获取调试日志内容，未指定 ID 时取最新一条。"""
        command = "apex:log:get"
        if log_id:
            command += f" --logid {log_id}"
        result = await self.runner.run(command, use_target_username=True)
        if isinstance(result, list):
            result = result[0] if result else {}
        if isinstance(result, dict):
            return str(result.get("log", ""))
        return str(result or "")

    # =========================================================================
    # Org / 认证
    # =========================================================================

    async def login(
        self, url: str | None, cancel_token: CancellationToken | None = None
    ) -> Any:
        """Web 登录（打开浏览器完成 OAuth）。"""
        command = "auth:web:login"
        if url:
            command += f" --instanceurl {url}"
        return await self.runner.run(command, cancel_token=cancel_token)

    async def get_org_info(self, username: str | None = None) -> OrgInfo:
        """获取 org 信息。"""
        username = username or self._require_connection()
        result = await self.runner.run(f"org:display --targetusername {username}")
        return OrgInfo.model_validate(result or {})

    async def org_list(self) -> list[OrgInfo] | None:
        """列出已认证的 org。

        CLI 在没有任何连接时以失败退出，此时返回 None。
        """
        try:
            result = await self.runner.run("org:list --clean --noprompt")
        except DXError as e:
            logger.info(f"org:list failed, treating as no connections: {e}")
            return None
        result = result or {}
        orgs = list(result.get("nonScratchOrgs", [])) + list(result.get("scratchOrgs", []))
        return [OrgInfo.model_validate(org) for org in orgs]

    async def open_org(self) -> Any:
        return await self.runner.run("org:open", use_target_username=True)

    async def open_org_page(self, url: str) -> Any:
        return await self.runner.run(
            f"org:open -p {quote(url, safe='')}", use_target_username=True
        )

    async def create_scratch_org(
        self, options: str, cancel_token: CancellationToken | None = None
    ) -> Any:
        """以当前连接为 Dev Hub 创建 scratch org。"""
        devhub = self._require_connection()
        return await self.runner.run(
            f"org:create {options} --targetdevhubusername {devhub}",
            cancel_token=cancel_token,
        )

    async def describe_global(
        self, category: SObjectCategory | str = SObjectCategory.ALL
    ) -> list[str]:
        """列出 SObject 名称。"""
        category = SObjectCategory(category)
        result = await self.runner.run(
            f"schema:sobject:list --sobjecttypecategory {category.value}",
            use_target_username=True,
        )
        return list(result or [])

    # =========================================================================
    # Source
    # =========================================================================

    async def delete_source(
        self, path: str, cancel_token: CancellationToken | None = None
    ) -> Any:
        return await self.runner.run(
            f"source:delete -p {encode(path)} -r",
            use_target_username=True,
            cancel_token=cancel_token,
        )

    async def get_deploy_errors(
        self, deploy_id: str, cancel_token: CancellationToken | None = None
    ) -> Any:
        """部署报告。失败的部署也以非零退出码返回报告，因此容忍非零退出。"""
        return await self.runner.run(
            f"source:deploy:report -i {deploy_id}",
            use_target_username=True,
            cancel_token=cancel_token,
            tolerate_nonzero_exit=True,
        )

    async def deploy_source_format(
        self,
        path: str,
        cancel_token: CancellationToken | None = None,
        package_xml: bool = False,
    ) -> Any:
        """部署 source 格式的路径或 package.xml。"""
        logger.info("Deploying in source format")
        flag = "-x" if package_xml else "-p"
        return await self.runner.run(
            f"source:deploy {flag} {encode(path)}",
            use_target_username=True,
            cancel_token=cancel_token,
        )

    async def retrieve_source_format(
        self, manifest: str, cancel_token: CancellationToken | None = None
    ) -> Any:
        logger.info("Retrieving in source format")
        return await self.runner.run(
            f"source:retrieve -x {encode(manifest)}",
            use_target_username=True,
            cancel_token=cancel_token,
        )

    # =========================================================================
    # Bulk
    # =========================================================================

    async def bulk_upsert(
        self,
        sobject: str,
        csv_file: str,
        external_id: str = "Id",
        cancel_token: CancellationToken | None = None,
    ) -> list[dict[str, Any]]:
        """提交批量 upsert 作业，返回批次信息列表（含 jobId/id）。"""
        result = await self.runner.run(
            f"data:bulk:upsert -s {sobject} -f {encode(csv_file)} -i {external_id}",
            use_target_username=True,
            cancel_token=cancel_token,
        )
        return _as_batch_list(result)

    async def bulk_delete(
        self,
        sobject: str,
        csv_file: str,
        cancel_token: CancellationToken | None = None,
    ) -> list[dict[str, Any]]:
        """提交批量删除作业，返回批次信息列表。"""
        result = await self.runner.run(
            f"data:bulk:delete -s {sobject} -f {encode(csv_file)}",
            use_target_username=True,
            cancel_token=cancel_token,
        )
        return _as_batch_list(result)

    async def bulk_status(self, job_id: str, batch_id: str | None = None) -> Any:
        """查询批量作业或批次状态。"""
        command = f"data:bulk:status -i {job_id}"
        if batch_id:
            command += f" -b {batch_id}"
        return await self.runner.run(command, use_target_username=True)


def _as_batch_list(result: Any) -> list[dict[str, Any]]:
    if result is None:
        return []
    if isinstance(result, dict):
        return [result]
    return [item for item in result if isinstance(item, dict)]
