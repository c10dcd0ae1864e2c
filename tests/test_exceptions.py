# -*- coding: utf-8 -*-
"""
PyScriptEngine 异常系统测试

专注测试异常层次的实际用途：
1. 宿主可以按插件故障 / 入口文件故障分类处理
2. 入口文件异常同时是 OSError，插件导入异常同时是 ImportError
3. 异常携带定位问题所需的上下文（插件标识、文件路径、备份路径）
"""

from pathlib import Path

import pytest

from pyscriptengine.exceptions import (
    ConfigurationError,
    EntryBackupError,
    EntryFileError,
    EntryMissingError,
    EntryRestoreError,
    PluginError,
    PluginHookError,
    PluginLoadError,
    PluginNotFoundError,
    PluginValidationError,
    RetractionError,
    ScriptEngineError,
)


class TestPluginErrors:
    """测试插件异常"""

    @pytest.mark.parametrize(
        "exc_type, builtin",
        [
            (PluginNotFoundError, KeyError),
            (PluginLoadError, ImportError),
            (PluginValidationError, TypeError),
        ],
    )
    def test_plugin_errors_are_also_builtin_errors(self, exc_type, builtin):
        error = exc_type("problem", "alpha")

        assert isinstance(error, PluginError)
        assert isinstance(error, ScriptEngineError)
        assert isinstance(error, builtin)
        assert error.plugin_id == "alpha"

    def test_not_found_message_is_not_quoted(self):
        assert str(PluginNotFoundError("插件 alpha 未加载", "alpha")) == "插件 alpha 未加载"

    def test_hook_error_records_hook(self):
        try:
            try:
                raise RuntimeError("boom")
            except RuntimeError as e:
                raise PluginHookError("on_enable failed", "alpha", "on_enable") from e
        except PluginHookError as error:
            assert error.hook == "on_enable"
            assert isinstance(error.__cause__, RuntimeError)


class TestEntryFileErrors:
    """测试入口文件异常"""

    @pytest.mark.parametrize(
        "exc_type", [EntryBackupError, EntryRestoreError, EntryMissingError]
    )
    def test_entry_errors_are_os_errors(self, exc_type):
        error = exc_type("disk problem", Path("plugins/alpha/main.py"))

        assert isinstance(error, EntryFileError)
        assert isinstance(error, OSError)
        assert not isinstance(error, PluginError)
        assert error.entry_path == Path("plugins/alpha/main.py")

    def test_restore_error_keeps_backup_path(self):
        error = EntryRestoreError(
            "restore failed",
            Path("plugins/alpha/main.py"),
            Path("plugins/alpha/main.py.bak"),
        )

        assert error.backup_path == Path("plugins/alpha/main.py.bak")
        assert str(error) == "restore failed"

    def test_catch_all_engine_errors(self):
        """宿主可以用基类统一捕获"""
        errors = [
            PluginLoadError("x"),
            EntryBackupError("x"),
            RetractionError("x", "alpha", "events"),
            ConfigurationError("x"),
        ]
        for error in errors:
            with pytest.raises(ScriptEngineError):
                raise error

    def test_retraction_error_context(self):
        error = RetractionError("bus down", "alpha", "events")
        assert (error.plugin_id, error.target) == ("alpha", "events")

    def test_configuration_error_is_value_error(self):
        assert isinstance(ConfigurationError("bad"), ValueError)
