# -*- coding: utf-8 -*-
"""
PyScriptEngine: Python 脚本插件生命周期管理
"""

__author__ = "PyScriptEngine"
__version__ = "1.0.0"

# 核心组件
from .core.commands import CommandRegistry
from .core.config.engine_config import EngineConfig, get_engine_config
from .core.event_bus import EventBus
from .core.scheduling.scheduler import TaskScheduler

# 引擎
from .engine.execution_gate import ExecutionGate, get_execution_gate
from .engine.module_cache import PluginRecord, PluginState
from .engine.python_engine import PythonPluginEngine

# 异常
from .exceptions import (
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
from .logger import KeyedLogger, MessageCatalog

__all__ = [
    "PythonPluginEngine",
    "PluginRecord",
    "PluginState",
    "ExecutionGate",
    "get_execution_gate",
    "EventBus",
    "TaskScheduler",
    "CommandRegistry",
    "EngineConfig",
    "get_engine_config",
    "KeyedLogger",
    "MessageCatalog",
    "ScriptEngineError",
    "PluginError",
    "PluginNotFoundError",
    "PluginLoadError",
    "PluginValidationError",
    "PluginHookError",
    "EntryFileError",
    "EntryBackupError",
    "EntryRestoreError",
    "EntryMissingError",
    "RetractionError",
    "ConfigurationError",
]
