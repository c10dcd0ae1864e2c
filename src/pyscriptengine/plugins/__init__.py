# -*- coding: utf-8 -*-
"""
插件支持组件：依赖安装、源码热重载
"""

from .dependency.installer import DependencyInstaller
from .hot_reload import PluginHotReloader, PluginSourceHandler

__all__ = ["DependencyInstaller", "PluginHotReloader", "PluginSourceHandler"]
