# -*- coding: utf-8 -*-
"""
插件依赖安装
"""

from .installer import DependencyInstaller

__all__ = ["DependencyInstaller"]
