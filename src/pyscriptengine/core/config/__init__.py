# -*- coding: utf-8 -*-
"""
PyScriptEngine 配置管理
"""

from .engine_config import (
    EngineConfig,
    get_engine_config,
    reset_engine_config,
    set_engine_config,
)

__all__ = [
    "EngineConfig",
    "get_engine_config",
    "set_engine_config",
    "reset_engine_config",
]
