# -*- coding: utf-8 -*-
"""
脚本命令注册表

插件注册的命令按名称解析，每条命令记录所属插件，
插件卸载时可一次性撤销其全部命令。
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ..exceptions import ScriptEngineError

PluginResolver = Callable[[], Optional[str]]
Dispatcher = Callable[..., Any]


class CommandError(ScriptEngineError):
    """命令注册表异常"""

    pass


class CommandNotFoundError(CommandError, KeyError):
    """命令不存在或已被撤销"""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class CommandConflictError(CommandError):
    """命令名已被其他插件占用"""

    pass


@dataclass
class Command:
    """命令注册信息"""

    name: str
    handler: Callable[..., Any]
    plugin: Optional[str] = None
    description: str = ""
    aliases: List[str] = field(default_factory=list)
    active: bool = True
    registered_at: float = field(default_factory=time.time)


class CommandRegistry:
    """命令注册表"""

    def __init__(
        self,
        plugin_resolver: Optional[PluginResolver] = None,
        dispatcher: Optional[Dispatcher] = None,
    ):
        self._commands: Dict[str, Command] = {}
        self._lock = threading.RLock()
        self._logger = logging.getLogger(__name__)
        self._plugin_resolver = plugin_resolver
        self._dispatcher = dispatcher

    def set_plugin_resolver(self, resolver: Optional[PluginResolver]) -> None:
        """设置调用方插件推断函数"""
        self._plugin_resolver = resolver

    def set_dispatcher(self, dispatcher: Optional[Dispatcher]) -> None:
        """设置命令处理函数的执行包装，None 表示直接调用"""
        self._dispatcher = dispatcher

    @staticmethod
    def _normalize(name: str) -> str:
        return name.strip().lower()

    def register(
        self,
        name: str,
        handler: Callable[..., Any],
        plugin: Optional[str] = None,
        description: str = "",
        aliases: Optional[List[str]] = None,
    ) -> Command:
        """
        注册命令

        Args:
            name: 命令名（不区分大小写）
            handler: 命令处理函数
            plugin: 所属插件标识，为None时尝试通过 plugin_resolver 推断
            description: 命令描述
            aliases: 别名列表

        Raises:
            CommandConflictError: 命令名已被其他插件注册
        """
        if not callable(handler):
            raise CommandError("Command handler must be callable")

        key = self._normalize(name)
        if not key:
            raise CommandError("Command name must not be empty")

        if plugin is None and self._plugin_resolver is not None:
            plugin = self._plugin_resolver()

        command = Command(
            name=key,
            handler=handler,
            plugin=plugin,
            description=description,
            aliases=[self._normalize(a) for a in aliases or []],
        )

        with self._lock:
            for label in [key, *command.aliases]:
                existing = self._commands.get(label)
                if existing is not None and existing.plugin != plugin:
                    raise CommandConflictError(
                        f"Command '{label}' is already registered by {existing.plugin}"
                    )

            for label in [key, *command.aliases]:
                existing = self._commands.get(label)
                if existing is not None:
                    existing.active = False
                self._commands[label] = command

        self._logger.debug(f"Registered command {key} (plugin={plugin})")
        return command

    def unregister(self, name: str) -> bool:
        """注销命令及其别名"""
        with self._lock:
            command = self._commands.get(self._normalize(name))
            if command is None:
                return False
            self._drop(command)
        return True

    def _drop(self, command: Command) -> None:
        command.active = False
        for label in [command.name, *command.aliases]:
            if self._commands.get(label) is command:
                del self._commands[label]

    def remove_plugin_commands(self, plugin_id: str) -> int:
        """
        撤销某插件的全部命令

        Returns:
            撤销的命令数量（别名不重复计数）
        """
        with self._lock:
            commands = {
                id(cmd): cmd for cmd in self._commands.values() if cmd.plugin == plugin_id
            }
            for command in commands.values():
                self._drop(command)

        if commands:
            self._logger.debug(f"Removed {len(commands)} commands of plugin {plugin_id}")
        return len(commands)

    def resolve(self, name: str) -> Optional[Command]:
        """按名称或别名解析命令"""
        with self._lock:
            command = self._commands.get(self._normalize(name))
            if command is None or not command.active:
                return None
            return command

    def execute(self, name: str, *args: Any, **kwargs: Any) -> Any:
        """
        执行命令

        Raises:
            CommandNotFoundError: 命令不存在或已被撤销
        """
        if self._dispatcher is None:
            return self._invoke(name, args, kwargs)
        return self._dispatcher(self._invoke, name, args, kwargs)

    def _invoke(self, name: str, args: tuple, kwargs: Dict[str, Any]) -> Any:
        # 在分发器内解析，等待期间被撤销的命令不会再执行
        command = self.resolve(name)
        if command is None:
            raise CommandNotFoundError(f"Unknown command: {name}")
        return command.handler(*args, **kwargs)

    def get_plugin_commands(self, plugin_id: str) -> List[str]:
        """获取某插件注册的命令名"""
        with self._lock:
            return sorted(
                {cmd.name for cmd in self._commands.values() if cmd.plugin == plugin_id}
            )

    def list_commands(self) -> Dict[str, Dict[str, Any]]:
        """列出所有命令"""
        with self._lock:
            return {
                cmd.name: {
                    "plugin": cmd.plugin,
                    "description": cmd.description,
                    "aliases": list(cmd.aliases),
                }
                for cmd in self._commands.values()
            }

    def __len__(self) -> int:
        with self._lock:
            return len({id(cmd) for cmd in self._commands.values()})

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.resolve(name) is not None
