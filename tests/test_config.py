"""Config 模块测试。

测试 DXM_* 环境变量解析和配置管理。
"""

from __future__ import annotations

from pathlib import Path

import pytest

from dx_cli_mcp.config import (
    TOOL_GROUPS,
    Config,
    SigintMode,
    get_config,
    load_config,
    reload_config,
)


class TestParseGroups:
    """测试工具组解析。"""

    def test_unset_means_all(self, clean_env):
        """未设置时全部可用。"""
        assert load_config().groups == set(TOOL_GROUPS)

    def test_empty_means_all(self, clean_env):
        """空列表表示全部可用。"""
        clean_env.setenv("DXM_ENABLE", "")
        assert load_config().groups == set(TOOL_GROUPS)

    def test_multiple_groups(self, clean_env):
        """多个组，逗号分隔。"""
        clean_env.setenv("DXM_ENABLE", "apex,org")
        assert load_config().groups == {"apex", "org"}

    def test_case_and_whitespace(self, clean_env):
        """大小写不敏感并处理空格。"""
        clean_env.setenv("DXM_ENABLE", " APEX , Source ")
        assert load_config().groups == {"apex", "source"}

    def test_invalid_groups_ignored(self, clean_env):
        """无效组被忽略。"""
        clean_env.setenv("DXM_ENABLE", "apex,banana")
        assert load_config().groups == {"apex"}

    def test_all_invalid_means_all(self, clean_env):
        """全部无效时 enable 解析为空，所以全部可用。"""
        clean_env.setenv("DXM_ENABLE", "banana,image")
        assert load_config().groups == set(TOOL_GROUPS)

    def test_disable_subtracts(self, clean_env):
        """disable 从 enable 中减去。"""
        clean_env.setenv("DXM_DISABLE", "bulk,run")
        assert load_config().groups == {"apex", "org", "source"}

    def test_disable_everything(self, clean_env):
        clean_env.setenv("DXM_ENABLE", "apex")
        clean_env.setenv("DXM_DISABLE", "apex")
        assert load_config().groups == set()


class TestParseValues:
    """测试标量值解析。"""

    def test_defaults(self, clean_env):
        config = load_config()
        assert config.cli_executable == "sfdx"
        assert config.command_prefix == "force:"
        assert config.workspace == Path.cwd()
        assert config.target_username is None
        assert config.poll_interval == 2.0
        assert config.poll_timeout == 60.0
        assert config.debug is False
        assert config.log_debug is False
        assert config.log_file is None
        assert config.sigint_mode == SigintMode.CANCEL

    @pytest.mark.parametrize("value", ["true", "True", "1", "yes", "on"])
    def test_truthy_values(self, clean_env, value: str):
        """真值。"""
        clean_env.setenv("DXM_DEBUG", value)
        assert load_config().debug is True

    @pytest.mark.parametrize("value", ["false", "0", "no", "off", ""])
    def test_falsy_values(self, clean_env, value: str):
        """假值。"""
        clean_env.setenv("DXM_DEBUG", value)
        assert load_config().debug is False

    def test_target_username_blank_means_disconnected(self, clean_env):
        clean_env.setenv("DXM_TARGET_USERNAME", "   ")
        assert load_config().target_username is None

    def test_workspace_resolved(self, clean_env, tmp_path: Path):
        clean_env.setenv("DXM_WORKSPACE", str(tmp_path))
        assert load_config().workspace == tmp_path.resolve()

    def test_empty_prefix_allowed(self, clean_env):
        """新版 sf CLI 不需要 force: 前缀。"""
        clean_env.setenv("DXM_CLI", "sf")
        clean_env.setenv("DXM_COMMAND_PREFIX", "")
        config = load_config()
        assert config.cli_executable == "sf"
        assert config.command_prefix == ""

    @pytest.mark.parametrize("raw,expected", [
        ("5", 5.0),
        ("0.01", 0.1),
        ("1000", 60.0),
        ("abc", 2.0),
    ])
    def test_poll_interval_clamped(self, clean_env, raw: str, expected: float):
        clean_env.setenv("DXM_POLL_INTERVAL", raw)
        assert load_config().poll_interval == expected

    @pytest.mark.parametrize("raw,expected", [("0", 1.0), ("9999", 600.0), ("30", 30.0)])
    def test_poll_timeout_clamped(self, clean_env, raw: str, expected: float):
        clean_env.setenv("DXM_POLL_TIMEOUT", raw)
        assert load_config().poll_timeout == expected

    @pytest.mark.parametrize("raw,expected", [
        ("exit", SigintMode.EXIT),
        ("CANCEL_THEN_EXIT", SigintMode.CANCEL_THEN_EXIT),
        ("bogus", SigintMode.CANCEL),
    ])
    def test_sigint_mode(self, clean_env, raw: str, expected: SigintMode):
        clean_env.setenv("DXM_SIGINT_MODE", raw)
        assert load_config().sigint_mode == expected

    def test_log_debug_sets_log_file(self, clean_env):
        clean_env.setenv("DXM_LOG_DEBUG", "1")
        config = load_config()
        assert config.log_debug is True
        assert config.log_file is not None
        assert config.log_file.endswith(".log")


class TestConfigMethods:
    """测试 Config 类方法。"""

    def test_is_group_enabled(self):
        config = Config(groups={"apex"})
        assert config.is_group_enabled("apex") is True
        assert config.is_group_enabled("APEX") is True
        assert config.is_group_enabled("bulk") is False

    def test_connection_uses_config(self, tmp_path: Path):
        config = Config(
            cli_executable="sf",
            command_prefix="",
            workspace=tmp_path,
            target_username="me@org",
        )

        connection = config.connection()

        assert connection.workspace == tmp_path
        assert connection.target_username == "me@org"
        assert connection.cli_executable == "sf"
        assert connection.command_prefix == ""

    def test_connection_override(self):
        config = Config(target_username="me@org")
        assert config.connection("other@org").target_username == "other@org"
        assert config.connection(None).target_username == "me@org"

    def test_repr(self):
        """字符串表示。"""
        config = Config(groups={"apex", "org"}, debug=True)
        repr_str = repr(config)
        assert "groups=apex,org" in repr_str
        assert "debug=True" in repr_str
        assert "target_username=-" in repr_str


class TestGlobalConfig:
    """测试全局配置实例。"""

    def test_get_config_returns_same_instance(self, clean_env):
        assert get_config() is get_config()

    def test_reload_config_creates_new_instance(self, clean_env):
        config1 = get_config()
        config2 = reload_config()
        assert config1 is not config2
        assert get_config() is config2
