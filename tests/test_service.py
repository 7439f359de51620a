"""DXService 测试。

使用 AsyncMock 替换 CommandRunner.run，检查每个方法生成的子命令、
连接要求以及结果转换。
"""

from __future__ import annotations

import sys
from pathlib import Path
from unittest import mock

import pytest

from dx_cli_mcp.dx import DXService, OrgInfo, SObjectCategory, TestTarget
from dx_cli_mcp.runtime import (
    CancellationToken,
    CommandRunner,
    ConnectionContext,
    InvocationFailure,
    NoActiveConnectionError,
    encode,
)

from conftest import fake_connection


def make_service(
    result=None, target_username: str | None = "admin@example.com", side_effect=None
) -> DXService:
    runner = CommandRunner(
        ConnectionContext(workspace=Path("."), target_username=target_username)
    )
    runner.run = mock.AsyncMock(return_value=result, side_effect=side_effect)
    return DXService(runner)


def command_of(service: DXService) -> str:
    return service.runner.run.call_args.args[0]


def kwargs_of(service: DXService) -> dict:
    return service.runner.run.call_args.kwargs


class TestApex:
    """测试 Apex 相关命令。"""

    @pytest.mark.asyncio
    async def test_exec_anon_encodes_path(self):
        service = make_service({"compiled": True, "success": True, "logs": "L"})
        token = CancellationToken()

        result = await service.exec_anon("/tmp/exec anon.apex", token)

        assert command_of(service) == f"apex:execute --apexcodefile {encode('/tmp/exec anon.apex')}"
        assert kwargs_of(service)["use_target_username"] is True
        assert kwargs_of(service)["cancel_token"] is token
        assert result.logs == "L"

    @pytest.mark.asyncio
    async def test_exec_anon_requires_connection(self):
        service = make_service(target_username=None)
        with pytest.raises(NoActiveConnectionError):
            await service.exec_anon("/tmp/a.apex")
        service.runner.run.assert_not_called()

    @pytest.mark.asyncio
    async def test_run_test_class(self):
        service = make_service({"summary": {}})
        await service.run_test("MyTest", TestTarget.CLASS)
        assert command_of(service) == "apex:test:run -n MyTest -w 3 -y"

    @pytest.mark.asyncio
    async def test_run_test_method(self):
        service = make_service({"summary": {}})
        await service.run_test("MyTest.testOne", "method")
        assert command_of(service) == "apex:test:run -t MyTest.testOne -w 3 -y"

    @pytest.mark.asyncio
    async def test_run_test_requires_connection(self):
        service = make_service(target_username=None)
        with pytest.raises(NoActiveConnectionError):
            await service.run_test("MyTest")

    @pytest.mark.asyncio
    async def test_get_debug_log_latest(self):
        service = make_service([{"log": "LOG BODY"}])
        assert await service.get_debug_log() == "LOG BODY"
        assert command_of(service) == "apex:log:get"

    @pytest.mark.asyncio
    async def test_get_debug_log_by_id(self):
        service = make_service({"log": "ONE"})
        assert await service.get_debug_log("07L1") == "ONE"
        assert command_of(service) == "apex:log:get --logid 07L1"

    @pytest.mark.asyncio
    async def test_get_debug_log_empty(self):
        service = make_service([])
        assert await service.get_debug_log() == ""


class TestOrg:
    """测试 org / 认证命令。"""

    @pytest.mark.asyncio
    async def test_org_list_merges_lists(self):
        service = make_service({
            "nonScratchOrgs": [{"username": "a@x.com", "accessToken": "T"}],
            "scratchOrgs": [{"username": "b@x.com"}],
        })

        orgs = await service.org_list()

        assert [org.username for org in orgs] == ["a@x.com", "b@x.com"]
        assert command_of(service) == "org:list --clean --noprompt"

    @pytest.mark.asyncio
    async def test_org_list_failure_returns_none(self):
        service = make_service(side_effect=InvocationFailure("No orgs can be found."))
        assert await service.org_list() is None

    @pytest.mark.asyncio
    async def test_get_org_info_default_username(self):
        service = make_service({"username": "admin@example.com", "accessToken": "SECRET"})

        info = await service.get_org_info()

        assert isinstance(info, OrgInfo)
        assert command_of(service) == "org:display --targetusername admin@example.com"
        assert "access_token" not in info.summary()

    @pytest.mark.asyncio
    async def test_get_org_info_requires_connection(self):
        service = make_service(target_username=None)
        with pytest.raises(NoActiveConnectionError):
            await service.get_org_info()

    @pytest.mark.asyncio
    async def test_get_org_info_explicit_username(self):
        service = make_service({"username": "other"}, target_username=None)
        await service.get_org_info("other")
        assert command_of(service) == "org:display --targetusername other"

    @pytest.mark.asyncio
    async def test_open_org_page_url_encoded(self):
        service = make_service({})
        await service.open_org_page("/lightning/setup/ApexClasses/home")
        assert command_of(service) == "org:open -p %2Flightning%2Fsetup%2FApexClasses%2Fhome"

    @pytest.mark.asyncio
    async def test_login_with_instance_url(self):
        service = make_service({})
        await service.login("https://test.salesforce.com")
        assert command_of(service) == "auth:web:login --instanceurl https://test.salesforce.com"

    @pytest.mark.asyncio
    async def test_create_scratch_org_uses_devhub(self):
        service = make_service({"orgId": "00D"})
        await service.create_scratch_org("-f config/project-scratch-def.json")
        assert command_of(service) == (
            "org:create -f config/project-scratch-def.json "
            "--targetdevhubusername admin@example.com"
        )

    @pytest.mark.asyncio
    async def test_describe_global(self):
        service = make_service(["Account", "Contact"])
        names = await service.describe_global(SObjectCategory.CUSTOM)
        assert names == ["Account", "Contact"]
        assert command_of(service) == "schema:sobject:list --sobjecttypecategory CUSTOM"


class TestSource:
    """测试 source 命令。"""

    @pytest.mark.asyncio
    async def test_deploy_path(self):
        service = make_service({"id": "0Af"})
        await service.deploy_source_format("force-app/main/My Class.cls")
        assert command_of(service) == f"source:deploy -p {encode('force-app/main/My Class.cls')}"

    @pytest.mark.asyncio
    async def test_deploy_manifest(self):
        service = make_service({"id": "0Af"})
        await service.deploy_source_format("manifest/package.xml", package_xml=True)
        assert command_of(service) == "source:deploy -x manifest/package.xml"

    @pytest.mark.asyncio
    async def test_deploy_report_tolerates_nonzero_exit(self):
        service = make_service({"status": "Failed"})
        await service.get_deploy_errors("0Af1")
        assert command_of(service) == "source:deploy:report -i 0Af1"
        assert kwargs_of(service)["tolerate_nonzero_exit"] is True

    @pytest.mark.asyncio
    async def test_retrieve(self):
        service = make_service({})
        await service.retrieve_source_format("manifest/package.xml")
        assert command_of(service) == "source:retrieve -x manifest/package.xml"

    @pytest.mark.asyncio
    async def test_delete(self):
        service = make_service({})
        await service.delete_source("force-app/main/default/classes/Old.cls")
        assert command_of(service) == "source:delete -p force-app/main/default/classes/Old.cls -r"


class TestBulk:
    """测试批量命令。"""

    @pytest.mark.asyncio
    async def test_bulk_upsert(self):
        service = make_service([{"jobId": "750", "id": "751"}])

        batches = await service.bulk_upsert("Account", "data/my accounts.csv", "Ext__c")

        assert batches == [{"jobId": "750", "id": "751"}]
        assert command_of(service) == (
            f"data:bulk:upsert -s Account -f {encode('data/my accounts.csv')} -i Ext__c"
        )

    @pytest.mark.asyncio
    async def test_bulk_delete_single_batch_dict(self):
        service = make_service({"jobId": "750", "id": "751"})
        batches = await service.bulk_delete("Account", "ids.csv")
        assert batches == [{"jobId": "750", "id": "751"}]

    @pytest.mark.asyncio
    async def test_bulk_status(self):
        service = make_service([{"state": "Completed"}])
        await service.bulk_status("750", "751")
        assert command_of(service) == "data:bulk:status -i 750 -b 751"


@pytest.mark.skipif(sys.platform == "win32", reason="fake CLI is launched without cmd /c")
class TestAgainstFakeCli:
    """通过 fake_dx.py 端到端执行。"""

    @pytest.mark.asyncio
    async def test_org_list(self, workspace: Path):
        service = DXService(CommandRunner(fake_connection(workspace)))

        orgs = await service.org_list()

        assert [org.alias for org in orgs] == ["prod", "scratch"]
        assert orgs[0].connected_status == "Connected"
