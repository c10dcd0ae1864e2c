# -*- coding: utf-8 -*-
"""
PyScriptEngine Events Package
提供标准化事件模型和生命周期事件契约
"""

from .cloud_event import CloudEvent
from .contracts import EngineEventContracts, PluginLifecycleEvent, create_plugin_event

__all__ = [
    "CloudEvent",
    "EngineEventContracts",
    "PluginLifecycleEvent",
    "create_plugin_event",
]
