# -*- coding: utf-8 -*-
"""
PyScriptEngine 核心组件：事件总线、任务调度、命令注册表、配置
"""

from .commands import Command, CommandRegistry
from .event_bus import EventBus
from .scheduling.scheduler import TaskScheduler

__all__ = ["EventBus", "TaskScheduler", "CommandRegistry", "Command"]
