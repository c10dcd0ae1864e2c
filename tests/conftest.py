# -*- coding: utf-8 -*-
"""
全局测试配置
提供插件目录、引擎实例等共享fixture，并在每个测试后还原解释器状态
"""

import os
import sys
import textwrap
import types
from pathlib import Path

import pytest

from pyscriptengine.core.commands import CommandRegistry
from pyscriptengine.core.config.engine_config import EngineConfig, reset_engine_config
from pyscriptengine.core.event_bus import EventBus
from pyscriptengine.core.scheduling.scheduler import TaskScheduler
from pyscriptengine.engine.execution_gate import ExecutionGate, reset_execution_gate
from pyscriptengine.engine.python_engine import PythonPluginEngine
from pyscriptengine.logger import reset_message_catalog

HOST_MODULE = "script_host"

# 插件源码在测试中频繁改写，默认不写字节码缓存；需要时用 bytecode_cache
sys.dont_write_bytecode = True


class PluginTree:
    """临时插件目录：<base>/plugins/<plugin_id>/<filename>"""

    def __init__(self, base_dir: Path):
        self.base_dir = base_dir
        self.root = base_dir / "plugins"
        self.root.mkdir(parents=True, exist_ok=True)

    def write(self, plugin_id: str, source: str, filename: str = "main.py") -> Path:
        path = self.root / plugin_id / filename
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(source), encoding="utf-8")
        return path

    def path(self, plugin_id: str, filename: str = "main.py") -> Path:
        return self.root / plugin_id / filename


def _is_under(module: types.ModuleType, base: str) -> bool:
    filename = getattr(module, "__file__", None)
    if filename and os.path.realpath(filename).startswith(base):
        return True
    search_path = getattr(module, "__path__", None) or []
    return any(os.path.realpath(str(p)).startswith(base) for p in search_path)


@pytest.fixture(autouse=True)
def isolate_interpreter_state(tmp_path_factory):
    """还原 sys.path、测试期间导入的插件模块和全局单例"""
    saved_path = list(sys.path)
    saved_modules = set(sys.modules)
    yield
    sys.path[:] = saved_path

    base = os.path.realpath(str(tmp_path_factory.getbasetemp()))
    for name in set(sys.modules) - saved_modules:
        module = sys.modules.get(name)
        if module is not None and _is_under(module, base):
            del sys.modules[name]

    reset_engine_config()
    reset_execution_gate()
    reset_message_catalog()


@pytest.fixture
def bytecode_cache(monkeypatch):
    """在单个测试中恢复解释器默认的字节码缓存行为"""
    monkeypatch.setattr(sys, "dont_write_bytecode", False)


@pytest.fixture
def plugin_tree(tmp_path):
    """临时插件目录"""
    return PluginTree(tmp_path)


@pytest.fixture
def engine_config(plugin_tree):
    """指向临时插件目录的引擎配置"""
    return EngineConfig(
        plugins_root=plugin_tree.root,
        base_dir=plugin_tree.base_dir,
        install_dependencies=False,
    )


@pytest.fixture
def event_bus():
    """事件总线fixture"""
    bus = EventBus(max_workers=2, max_history=100)
    yield bus
    bus.shutdown()


@pytest.fixture
def scheduler():
    """任务调度器fixture（不启动后台线程）"""
    task_scheduler = TaskScheduler()
    yield task_scheduler
    task_scheduler.stop()


@pytest.fixture
def command_registry():
    """命令注册表fixture"""
    return CommandRegistry()


@pytest.fixture
def engine(engine_config, event_bus, scheduler, command_registry):
    """使用独立闸门和注册表的脚本引擎"""
    script_engine = PythonPluginEngine(
        config=engine_config,
        event_bus=event_bus,
        scheduler=scheduler,
        command_registry=command_registry,
        gate=ExecutionGate(),
    )
    yield script_engine
    script_engine.shutdown()


@pytest.fixture
def host(engine):
    """
    插件可导入的宿主模块

    插件源码通过 ``import script_host`` 访问引擎和注册表，
    并把调用记录写入 ``script_host.calls``。
    """
    module = types.ModuleType(HOST_MODULE)
    module.engine = engine
    module.event_bus = engine.event_bus
    module.scheduler = engine.scheduler
    module.commands = engine.command_registry
    module.calls = []
    sys.modules[HOST_MODULE] = module
    yield module
    sys.modules.pop(HOST_MODULE, None)
