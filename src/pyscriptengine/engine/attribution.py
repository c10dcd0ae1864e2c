# -*- coding: utf-8 -*-
"""
调用方插件推断

宿主API被调用时需要知道是哪个插件在调用，以便把注册项记到该插件名下。
优先使用引擎在调用钩子时设置的显式调用上下文；没有上下文时沿调用栈
由内向外查找第一个位于插件根目录下的栈帧，插件根目录下的第一级目录名
即插件标识。
"""

import contextvars
import inspect
import os
import types
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional, Union

_calling_plugin: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "pyscriptengine_calling_plugin", default=None
)


@contextmanager
def calling_plugin(plugin_id: str) -> Iterator[str]:
    """在作用域内把当前调用方标记为 plugin_id，可嵌套"""
    token = _calling_plugin.set(plugin_id)
    try:
        yield plugin_id
    finally:
        _calling_plugin.reset(token)


def current_context() -> Optional[str]:
    """返回显式调用上下文中的插件标识"""
    return _calling_plugin.get()


def _normalize(path: Union[str, Path]) -> str:
    return os.path.normcase(os.path.realpath(str(path))).replace("\\", "/")


class CallerAttributionResolver:
    """根据源文件路径推断所属插件"""

    def __init__(self, plugins_root: Union[str, Path]):
        self.plugins_root = Path(plugins_root)
        self._root = _normalize(self.plugins_root).rstrip("/") + "/"

    def plugin_for_file(self, filename: Optional[str]) -> Optional[str]:
        """
        由源文件路径得到插件标识

        plugins/alpha/main.py -> alpha；不在插件根目录下的文件和
        "<string>" 之类的伪文件名返回None。
        """
        if not filename or filename.startswith("<"):
            return None

        normalized = _normalize(filename)
        if not normalized.startswith(self._root):
            return None

        first = normalized[len(self._root):].split("/", 1)[0]
        return first or None

    def plugin_for_frame(self, frame: Optional[types.FrameType]) -> Optional[str]:
        """由栈帧得到插件标识"""
        if frame is None:
            return None
        return self.plugin_for_file(frame.f_code.co_filename)

    def get_calling_plugin(self, stack: Optional[Iterable[Any]] = None) -> Optional[str]:
        """
        推断当前调用方插件

        Args:
            stack: 由内向外的栈帧序列（inspect.FrameInfo 或 frame 对象），
                默认使用当前线程的调用栈

        Returns:
            插件标识；宿主内部调用或栈为空时返回None
        """
        explicit = current_context()
        if explicit is not None:
            return explicit

        if stack is None:
            return self._walk_live_stack()

        for item in stack:
            filename = getattr(item, "filename", None)
            if filename is None and hasattr(item, "f_code"):
                filename = item.f_code.co_filename
            plugin_id = self.plugin_for_file(filename)
            if plugin_id is not None:
                return plugin_id
        return None

    def _walk_live_stack(self) -> Optional[str]:
        frame = inspect.currentframe()
        try:
            frame = frame.f_back if frame is not None else None
            while frame is not None:
                plugin_id = self.plugin_for_frame(frame)
                if plugin_id is not None:
                    return plugin_id
                frame = frame.f_back
            return None
        finally:
            # 避免栈帧引用环
            del frame
