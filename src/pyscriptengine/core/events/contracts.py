# -*- coding: utf-8 -*-
"""
引擎事件契约定义

插件生命周期事件的类型、优先级和负载格式。
"""

from typing import Any, Dict, Optional

from pydantic import Field

from .cloud_event import CloudEvent


class EngineEventContracts:
    """插件生命周期事件类型常量"""

    PLUGIN_LOADED = "com.pyscriptengine.plugin.loaded"
    PLUGIN_UNLOADED = "com.pyscriptengine.plugin.unloaded"
    PLUGIN_RELOADED = "com.pyscriptengine.plugin.reloaded"
    PLUGIN_FAILED = "com.pyscriptengine.plugin.failed"

    SOURCE = "PythonPluginEngine"

    EVENT_PRIORITIES = {
        PLUGIN_LOADED: 3,
        PLUGIN_UNLOADED: 3,
        PLUGIN_RELOADED: 3,
        PLUGIN_FAILED: 2,
    }


class PluginLifecycleEvent(CloudEvent):
    """插件生命周期事件，subject 固定为插件标识"""

    plugin_id: str
    stage: Optional[str] = Field(default=None, description="失败发生的阶段: load / unload")
    error: Optional[str] = None


def create_plugin_event(
    event_type: str,
    plugin_id: str,
    data: Optional[Dict[str, Any]] = None,
    stage: Optional[str] = None,
    error: Optional[str] = None,
) -> PluginLifecycleEvent:
    """
    创建插件生命周期事件

    Args:
        event_type: EngineEventContracts 中的事件类型
        plugin_id: 插件标识
        data: 附加负载，总会带上 plugin_id
        stage: 失败事件的阶段
        error: 失败原因
    """
    payload: Dict[str, Any] = {"plugin_id": plugin_id}
    if data:
        payload.update(data)

    return PluginLifecycleEvent(
        type=event_type,
        source=EngineEventContracts.SOURCE,
        subject=plugin_id,
        data=payload,
        priority=EngineEventContracts.EVENT_PRIORITIES.get(event_type, 5),
        plugin_id=plugin_id,
        stage=stage,
        error=error,
    )
