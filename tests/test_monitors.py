"""部署 / 批量加载监控测试。"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path
from unittest import mock

import pytest

from dx_cli_mcp.dx import (
    DXService,
    JobStatus,
    bulk_status_from_batch,
    deploy_status_from_report,
    monitor_bulk_load,
    monitor_deploy,
)
from dx_cli_mcp.runtime import (
    CancellationToken,
    CommandRunner,
    InvocationFailure,
    PollState,
    ProcessRunner,
)

from conftest import ListLogSink, fake_connection


def mock_service(**methods) -> mock.Mock:
    service = mock.Mock(spec=DXService)
    for name, side_effect in methods.items():
        setattr(service, name, mock.AsyncMock(side_effect=side_effect))
    return service


class TestStatusConversion:
    """测试状态转换。"""

    def test_deploy_in_progress(self):
        status = deploy_status_from_report(
            {
                "id": "0Af1",
                "status": "InProgress",
                "done": False,
                "numberComponentsDeployed": 3,
                "numberComponentErrors": 0,
                "numberComponentsTotal": 10,
            }
        )
        assert status == JobStatus(
            job_id="0Af1", state="InProgress", terminal=False, processed=3, failures=0, total=10
        )

    def test_deploy_done_flag(self):
        status = deploy_status_from_report({"status": "Whatever", "done": True}, "0Af1")
        assert status.terminal
        assert status.job_id == "0Af1"

    @pytest.mark.parametrize("state", ["Succeeded", "SucceededPartial", "Failed", "Canceled"])
    def test_deploy_terminal_states(self, state: str):
        assert deploy_status_from_report({"status": state}).terminal

    def test_deploy_error_message(self):
        status = deploy_status_from_report({"status": "Failed", "errorMessage": "boom"})
        assert status.message == "boom"
        assert "boom" in status.describe()

    def test_deploy_non_dict_report(self):
        status = deploy_status_from_report(None, "0Af1")
        assert status.state == "Unknown"
        assert not status.terminal

    def test_bulk_batch_list(self):
        status = bulk_status_from_batch(
            [{"jobId": "750", "state": "Completed", "numberRecordsProcessed": "10",
              "numberRecordsFailed": "1"}]
        )
        assert status.job_id == "750"
        assert status.terminal
        assert (status.processed, status.failures) == (10, 1)

    @pytest.mark.parametrize("state,terminal", [
        ("Queued", False),
        ("InProgress", False),
        ("Completed", True),
        ("Failed", True),
        ("Not Processed", True),
    ])
    def test_bulk_states(self, state: str, terminal: bool):
        assert bulk_status_from_batch({"state": state}).terminal is terminal


class TestMonitorDeploy:
    """测试部署监控。"""

    @pytest.mark.asyncio
    async def test_polls_until_terminal(self):
        reports = [
            {"status": "Pending"},
            {"status": "InProgress", "numberComponentsDeployed": 5},
            {"status": "Succeeded", "done": True, "numberComponentsDeployed": 10},
        ]
        service = mock_service(get_deploy_errors=reports)
        updates: list[JobStatus] = []

        poller = monitor_deploy(service, "0Af1", updates.append, interval=0.01)
        state = await poller.wait()

        assert state == PollState.DONE
        assert [u.state for u in updates] == ["Pending", "InProgress", "Succeeded"]
        assert service.get_deploy_errors.await_count == 3
        assert poller.last_status.processed == 10

    @pytest.mark.asyncio
    async def test_failing_check_aborts_quietly(self):
        error = InvocationFailure("report unavailable")
        service = mock_service(get_deploy_errors=[{"status": "InProgress"}, error])
        updates: list[JobStatus] = []
        on_abort = mock.Mock()

        poller = monitor_deploy(service, "0Af1", updates.append, interval=0.01, on_abort=on_abort)
        state = await poller.wait()

        assert state == PollState.ABORTED
        assert len(updates) == 1
        assert poller.error is error
        on_abort.assert_called_once_with(error)

    @pytest.mark.asyncio
    async def test_cancel_token_stops_monitoring(self):
        service = mock_service(get_deploy_errors=[{"status": "InProgress"}] * 100)
        token = CancellationToken()

        poller = monitor_deploy(service, "0Af1", mock.Mock(), interval=5, cancel_token=token)
        token.cancel()

        assert await poller.wait() == PollState.STOPPED
        service.get_deploy_errors.assert_not_called()


class TestMonitorBulkLoad:
    """测试批量加载监控。"""

    @pytest.mark.asyncio
    async def test_polls_batch_status(self):
        service = mock_service(bulk_status=[
            [{"jobId": "750", "state": "Queued"}],
            [{"jobId": "750", "state": "Completed", "numberRecordsProcessed": 2}],
        ])
        updates: list[JobStatus] = []

        poller = monitor_bulk_load(service, "750", "751", updates.append, interval=0.01)

        assert await poller.wait() == PollState.DONE
        service.bulk_status.assert_awaited_with("750", "751")
        assert [u.state for u in updates] == ["Queued", "Completed"]


@pytest.mark.skipif(sys.platform == "win32", reason="fake CLI is launched without cmd /c")
class TestMonitorAgainstFakeCli:
    """通过 fake_dx.py 的部署报告序列端到端轮询。"""

    @pytest.mark.asyncio
    @pytest.mark.timeout(30)
    async def test_deploy_report_sequence(self, workspace: Path, tmp_path: Path):
        sequence = tmp_path / "reports.json"
        sequence.write_text(json.dumps([
            {"id": "0Af1", "status": "InProgress", "numberComponentsDeployed": 1},
            {"id": "0Af1", "status": "Succeeded", "done": True, "numberComponentsDeployed": 2},
        ]))
        env = dict(os.environ, FAKE_DX_SEQUENCE=str(sequence))
        runner = CommandRunner(
            fake_connection(workspace, env=env),
            process_runner=ProcessRunner(term_timeout=0.5, kill_timeout=0.5),
            log_sink=ListLogSink(),
        )
        updates: list[JobStatus] = []

        poller = monitor_deploy(DXService(runner), "0Af1", updates.append, interval=0.01, timeout=10)

        assert await poller.wait() == PollState.DONE
        assert [u.state for u in updates] == ["InProgress", "Succeeded"]
