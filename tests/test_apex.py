"""匿名 Apex 执行流程测试（通过 fake_dx.py）。"""

from __future__ import annotations

import sys
from pathlib import Path
from unittest import mock

import pytest

from dx_cli_mcp.dx import ApexDiagnostic, DXService, ExecuteAnonymousResult, execute_anonymous
from dx_cli_mcp.runtime import BufferedNotifier, CommandRunner, ProcessRunner

from conftest import ListLogSink, fake_connection

pytestmark = pytest.mark.skipif(
    sys.platform == "win32", reason="fake CLI is launched without cmd /c"
)


@pytest.fixture
def service(workspace: Path) -> DXService:
    return DXService(
        CommandRunner(
            fake_connection(workspace),
            process_runner=ProcessRunner(term_timeout=0.5, kill_timeout=0.5),
            log_sink=ListLogSink(),
        )
    )


class TestExecuteAnonymous:
    """测试 execute_anonymous。"""

    @pytest.mark.asyncio
    async def test_success_returns_logs(self, service: DXService, tmp_path: Path):
        notifier = BufferedNotifier(log=False)

        run = await execute_anonymous(
            service, "System.debug('hi');", notifier=notifier, temp_dir=tmp_path
        )

        assert run.ok
        assert run.result.logs == "USER_DEBUG|System.debug('hi');"
        assert notifier.messages() == ["Execute Anonymous Success"]

    @pytest.mark.asyncio
    async def test_compile_error_becomes_diagnostic(self, service: DXService, tmp_path: Path):
        notifier = BufferedNotifier(log=False)

        run = await execute_anonymous(
            service, "Integer i;\n    COMPILE_ERROR", notifier=notifier, temp_dir=tmp_path
        )

        assert not run.ok
        assert run.diagnostics == (
            ApexDiagnostic(line=2, column=5, message="Unexpected token 'COMPILE_ERROR'."),
        )
        assert notifier.errors == ["Execute Anonymous Errors"]
        assert "Line 2: Unexpected token 'COMPILE_ERROR'." in notifier.messages()

    @pytest.mark.asyncio
    async def test_runtime_exception(self, service: DXService, tmp_path: Path):
        notifier = BufferedNotifier(log=False)

        run = await execute_anonymous(service, "THROW", notifier=notifier, temp_dir=tmp_path)

        assert not run.ok
        assert run.diagnostics == ()
        assert run.result.exception_message == "System.NullPointerException: boom"
        assert notifier.errors == [
            "Execute Anonymous Exception: System.NullPointerException: boom"
        ]

    @pytest.mark.asyncio
    async def test_temp_file_removed(self, service: DXService, tmp_path: Path):
        await execute_anonymous(service, "System.debug(1);", temp_dir=tmp_path)
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code", ["", "   \n"])
    async def test_empty_code_rejected(self, service: DXService, code: str):
        with pytest.raises(ValueError):
            await execute_anonymous(service, code)


class TestTempFileCleanup:
    """命令失败时也删除临时文件。"""

    @pytest.mark.asyncio
    async def test_removed_on_failure(self, tmp_path: Path):
        service = mock.Mock(spec=DXService)
        service.exec_anon = mock.AsyncMock(side_effect=RuntimeError("boom"))

        with pytest.raises(RuntimeError):
            await execute_anonymous(service, "System.debug(1);", temp_dir=tmp_path)

        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_path_contains_space(self, tmp_path: Path):
        service = mock.Mock(spec=DXService)
        service.exec_anon = mock.AsyncMock(return_value=ExecuteAnonymousResult())

        await execute_anonymous(service, "System.debug(1);", temp_dir=tmp_path)

        path = service.exec_anon.call_args.args[0]
        assert " " in Path(path).name
        assert path.endswith(".apex")
