# -*- coding: utf-8 -*-
"""
PyScriptEngine 核心异常
"""

from pathlib import Path
from typing import Optional, Sequence


class ScriptEngineError(Exception):
    """所有 PyScriptEngine 自定义异常的基类。"""

    pass


# region 插件异常


class PluginError(ScriptEngineError):
    """与插件相关的错误的基类。"""

    def __init__(self, message: str, plugin_id: Optional[str] = None):
        super().__init__(message)
        self.plugin_id = plugin_id


class PluginNotFoundError(PluginError, KeyError):
    """当找不到指定的插件时引发。"""

    def __str__(self) -> str:
        # KeyError 会给消息加引号
        return str(self.args[0]) if self.args else ""


class PluginLoadError(PluginError, ImportError):
    """当插件入口模块无法导入时引发，例如语法错误、依赖缺失或顶层代码抛出异常。"""

    pass


class PluginValidationError(PluginError, TypeError):
    """当已导入的插件模块缺少 on_enable 钩子，或 on_disable 不可调用时引发。"""

    def __init__(
        self,
        message: str,
        plugin_id: Optional[str] = None,
        hooks: Sequence[str] = (),
    ):
        super().__init__(message, plugin_id)
        self.hooks = tuple(hooks)


class PluginHookError(PluginError):
    """当插件的启用或禁用钩子抛出异常时引发。"""

    def __init__(self, message: str, plugin_id: Optional[str] = None, hook: str = ""):
        super().__init__(message, plugin_id)
        self.hook = hook


# endregion

# region 入口文件异常


class EntryFileError(ScriptEngineError, OSError):
    """入口文件备份/还原过程中文件系统错误的基类。"""

    def __init__(self, message: str, entry_path: Optional[Path] = None):
        super().__init__(message)
        self.entry_path = entry_path


class EntryBackupError(EntryFileError):
    """备份入口文件或写入空内容失败时引发。"""

    pass


class EntryRestoreError(EntryFileError):
    """从备份还原入口文件失败时引发。

    此时插件源码可能在磁盘上处于被清空的状态，备份文件路径保存在
    ``backup_path`` 中以便人工恢复。
    """

    def __init__(
        self,
        message: str,
        entry_path: Optional[Path] = None,
        backup_path: Optional[Path] = None,
    ):
        super().__init__(message, entry_path)
        self.backup_path = backup_path


class EntryMissingError(EntryFileError):
    """卸载时入口文件已不存在，模块无法通过空文件重载被中和。"""

    pass


# endregion

# region 其他异常


class RetractionError(ScriptEngineError):
    """外部注册表撤销某插件的注册项失败时引发。"""

    def __init__(self, message: str, plugin_id: str, target: str):
        super().__init__(message)
        self.plugin_id = plugin_id
        self.target = target


class ConfigurationError(ScriptEngineError, ValueError):
    """当引擎配置无效时引发。"""

    pass


# endregion
