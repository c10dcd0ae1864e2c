# -*- coding: utf-8 -*-
"""
Python 脚本插件引擎
"""

from .attribution import CallerAttributionResolver, calling_plugin, current_context
from .execution_gate import ExecutionGate, get_execution_gate, reset_execution_gate
from .module_cache import ModuleCache, PluginRecord, PluginState
from .python_engine import PythonPluginEngine
from .reload_controller import ReloadController
from .retraction import ResourceRetractionCoordinator, RetractionReport

__all__ = [
    "PythonPluginEngine",
    "ExecutionGate",
    "get_execution_gate",
    "reset_execution_gate",
    "ModuleCache",
    "PluginRecord",
    "PluginState",
    "ReloadController",
    "ResourceRetractionCoordinator",
    "RetractionReport",
    "CallerAttributionResolver",
    "calling_plugin",
    "current_context",
]
