# -*- coding: utf-8 -*-
"""
插件源码热重载

监听插件根目录，入口文件内容变化后自动调用引擎重载对应插件。
引擎卸载时自己也会改写入口文件（清空再还原），因此只有当文件的
sha256 与上次导入时记录的摘要不同才会触发重载。
"""

import hashlib
import os
import threading
from pathlib import Path
from typing import Any, Dict, Optional, Union

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..engine.module_cache import PluginState, file_digest
from ..logger import KeyedLogger

# 允许自动重载的插件状态，已手动卸载的插件不会被重新启用
RELOADABLE_STATES = (PluginState.ENABLED, PluginState.ERROR)

EMPTY_DIGEST = hashlib.sha256(b"").hexdigest()


class PluginSourceHandler(FileSystemEventHandler):
    """插件源码变更处理器"""

    def __init__(
        self,
        engine: Any,
        debounce_delay: float = 0.5,
        logger: Optional[KeyedLogger] = None,
    ):
        super().__init__()
        self._engine = engine
        self._debounce_delay = debounce_delay
        self._keyed = logger or KeyedLogger(__name__)
        self._timers: Dict[str, threading.Timer] = {}
        self._lock = threading.Lock()
        self.reload_count = 0

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.handle_change(event.src_path)

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.handle_change(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        # 编辑器常用 "写临时文件再改名" 的方式保存
        if not event.is_directory:
            self.handle_change(event.dest_path)

    def handle_change(self, path: Union[str, bytes]) -> Optional[str]:
        """
        处理文件变更，返回受影响的插件标识

        备份文件和不属于任何插件入口的文件被忽略。
        """
        filename = os.fsdecode(path)
        if filename.endswith(self._engine.reloader.backup_suffix):
            return None

        record = self._engine.modules.find_by_entry(filename)
        if record is None:
            return None

        plugin_id = record.plugin_id
        with self._lock:
            # 防抖：连续写入只触发最后一次
            pending = self._timers.pop(plugin_id, None)
            if pending is not None:
                pending.cancel()
            timer = threading.Timer(
                self._debounce_delay, self.check_and_reload, args=(plugin_id,)
            )
            timer.daemon = True
            self._timers[plugin_id] = timer
            timer.start()
        return plugin_id

    def check_and_reload(self, plugin_id: str) -> bool:
        """
        源码确实变化时重载插件

        Returns:
            是否触发了重载
        """
        with self._lock:
            self._timers.pop(plugin_id, None)

        record = self._engine.get_plugin(plugin_id)
        if record is None or record.state not in RELOADABLE_STATES:
            return False

        digest = file_digest(Path(record.entry_path))
        # 入口被清空说明引擎正在中和该插件
        if digest is None or digest == EMPTY_DIGEST:
            return False
        if digest == record.source_digest:
            return False

        self._keyed.info("engine.python.hotReload.changed", [plugin_id])
        self.reload_count += 1
        try:
            reloaded = self._engine.reload_plugin(plugin_id)
        except Exception as e:
            self._keyed.error(
                "engine.python.hotReload.failed", [plugin_id, e], exc_info=True
            )
            return True

        if not reloaded:
            self._keyed.error(
                "engine.python.hotReload.failed", [plugin_id, record.last_error]
            )
        return True

    def cancel_pending(self) -> int:
        """取消所有等待中的重载"""
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()
        return len(timers)

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._timers)


class PluginHotReloader:
    """插件目录监听器"""

    def __init__(
        self,
        engine: Any,
        plugins_root: Union[str, Path],
        debounce_delay: float = 0.5,
        logger: Optional[KeyedLogger] = None,
    ):
        self.plugins_root = Path(plugins_root)
        self._keyed = logger or KeyedLogger(__name__)
        self.handler = PluginSourceHandler(engine, debounce_delay, self._keyed)
        self._observer: Optional[Any] = None

    @property
    def is_running(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        """启动监听，插件根目录不存在时先创建"""
        if self._observer is not None:
            return

        self.plugins_root.mkdir(parents=True, exist_ok=True)
        observer = Observer()
        observer.schedule(self.handler, str(self.plugins_root), recursive=True)
        observer.start()
        self._observer = observer
        self._keyed.info("engine.python.hotReload.started", [str(self.plugins_root)])

    def stop(self) -> None:
        """停止监听并取消等待中的重载"""
        if self._observer is None:
            return

        self._observer.stop()
        self._observer.join(timeout=5)
        self._observer = None
        self.handler.cancel_pending()
        self._keyed.info("engine.python.hotReload.stopped")

    def get_status(self) -> Dict[str, Any]:
        """获取监听状态"""
        return {
            "running": self.is_running,
            "plugins_root": str(self.plugins_root),
            "pending_reloads": self.handler.pending,
            "reload_count": self.handler.reload_count,
        }
