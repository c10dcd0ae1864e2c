# -*- coding: utf-8 -*-
"""
DependencyInstaller 依赖安装测试

不真正调用 pip，subprocess.run 被替换为模拟对象。
"""

import subprocess
import sys
from unittest.mock import MagicMock

import pytest

from pyscriptengine.plugins.dependency.installer import DependencyInstaller

RUN = "pyscriptengine.plugins.dependency.installer.subprocess.run"


@pytest.fixture
def installer(plugin_tree):
    return DependencyInstaller(plugin_tree.root, pip_args=["--quiet"])


@pytest.fixture
def requirements(plugin_tree):
    path = plugin_tree.root / "alpha" / "requirements.txt"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("requests>=2\n", encoding="utf-8")
    return path


class TestDependencyInstaller:
    """测试插件依赖安装"""

    def test_no_manifest_is_success(self, installer, mocker):
        run = mocker.patch(RUN)

        assert installer.requirements_for("alpha") is None
        assert installer.install("alpha") is True
        run.assert_not_called()

    def test_disabled_installer_skips(self, plugin_tree, requirements, mocker):
        run = mocker.patch(RUN)
        installer = DependencyInstaller(plugin_tree.root, enabled=False)

        assert installer.install("alpha") is True
        run.assert_not_called()

    def test_runs_pip_with_current_interpreter(self, installer, requirements, mocker):
        run = mocker.patch(RUN, return_value=MagicMock(returncode=0))

        assert installer.install("alpha") is True

        command = run.call_args[0][0]
        assert command == [
            sys.executable,
            "-m",
            "pip",
            "install",
            "-r",
            str(requirements),
            "--quiet",
        ]

    def test_pip_failure_returns_false(self, installer, requirements, mocker):
        mocker.patch(
            RUN, return_value=MagicMock(returncode=1, stderr="no such package", stdout="")
        )

        assert installer.install("alpha") is False

    def test_process_error_is_not_raised(self, installer, requirements, mocker):
        mocker.patch(RUN, side_effect=subprocess.TimeoutExpired("pip", 1))

        assert installer.install("alpha") is False

    def test_custom_requirements_file(self, plugin_tree, mocker):
        path = plugin_tree.root / "alpha" / "deps.txt"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("", encoding="utf-8")
        installer = DependencyInstaller(plugin_tree.root, requirements_file="deps.txt")

        assert installer.requirements_for("alpha") == path


class TestEngineIntegration:
    """测试引擎加载时调用安装器"""

    def test_install_failure_does_not_block_load(self, engine, plugin_tree, mocker):
        install = mocker.patch.object(engine.installer, "install", return_value=False)
        entry = plugin_tree.write("alpha", "def on_enable():\n    pass\n")

        assert engine.load_plugin("alpha", entry) is True
        install.assert_called_once_with("alpha")
