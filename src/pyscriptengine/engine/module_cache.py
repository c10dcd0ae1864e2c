# -*- coding: utf-8 -*-
"""
插件模块缓存

记录插件标识到已导入模块对象和入口文件路径的映射，是
"某个插件是否曾被导入过" 的唯一依据。模块对象一旦创建就不会被丢弃，
再次加载时在原对象上重新执行（importlib.reload）。
"""

import hashlib
import importlib
import logging
import sys
import threading
import types
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

from ..exceptions import PluginLoadError, PluginNotFoundError, PluginValidationError

REQUIRED_HOOKS = ("on_enable",)
OPTIONAL_HOOKS = ("on_disable",)


class PluginState(str, Enum):
    """插件状态枚举"""

    LOADING = "loading"  # 导入中
    ENABLED = "enabled"  # 已启用
    DISABLED = "disabled"  # 已禁用（模块已被中和）
    ERROR = "error"  # 错误状态


@dataclass
class PluginRecord:
    """已加载插件的记录"""

    plugin_id: str
    entry_path: Path
    module_name: str
    module: types.ModuleType
    state: PluginState = PluginState.LOADING
    loaded_at: datetime = field(default_factory=datetime.now)
    source_digest: Optional[str] = None
    last_error: Optional[str] = None
    error_count: int = 0
    state_history: List[tuple] = field(default_factory=list)

    def set_state(self, new_state: PluginState, error_msg: Optional[str] = None) -> None:
        """设置插件状态"""
        old_state = self.state
        self.state = new_state
        self.state_history.append((datetime.now(), old_state, new_state))

        if error_msg:
            self.last_error = error_msg
            self.error_count += 1


def file_digest(path: Path) -> Optional[str]:
    """计算文件内容的sha256，文件不存在时返回None"""
    try:
        return hashlib.sha256(path.read_bytes()).hexdigest()
    except FileNotFoundError:
        return None


def missing_hooks(module: types.ModuleType) -> List[str]:
    """返回模块缺少或不可调用的生命周期钩子，on_disable 可以不定义"""
    missing = [
        name for name in REQUIRED_HOOKS if not callable(getattr(module, name, None))
    ]
    missing.extend(
        name
        for name in OPTIONAL_HOOKS
        if hasattr(module, name) and not callable(getattr(module, name))
    )
    return missing


class ModuleCache:
    """
    插件模块缓存

    导入期间把入口文件所在目录（以及推导模块名所需的基准目录）临时加入
    sys.path，导入结束后无论成功与否都立即移除，避免不同插件的顶层模块
    互相遮蔽。
    """

    def __init__(self, base_dir: Union[str, Path] = "."):
        self.base_dir = Path(base_dir).resolve()
        self._records: Dict[str, PluginRecord] = {}
        self._lock = threading.RLock()
        self._logger = logging.getLogger(__name__)

    # 模块名与搜索路径
    def module_name_for(self, entry_path: Union[str, Path]) -> str:
        """
        由入口文件相对基准目录的路径推导点分模块名

        plugins/alpha/main.py -> plugins.alpha.main；
        不在基准目录下的入口只使用文件名。
        """
        entry = Path(entry_path).resolve()
        try:
            relative = entry.relative_to(self.base_dir)
        except ValueError:
            return entry.stem

        parts = list(relative.with_suffix("").parts)
        if parts and parts[-1] == "__init__":
            parts.pop()
        if not parts:
            return entry.stem
        return ".".join(parts)

    def _search_roots_for(self, entry: Path) -> List[str]:
        roots = [str(entry.parent)]
        try:
            entry.relative_to(self.base_dir)
        except ValueError:
            return roots
        if str(self.base_dir) not in roots:
            roots.append(str(self.base_dir))
        return roots

    @contextmanager
    def search_roots(self, entry_path: Union[str, Path]) -> Iterator[List[str]]:
        """临时加入模块搜索路径，退出时只移除本次加入的路径"""
        entry = Path(entry_path).resolve()
        added = []
        for root in self._search_roots_for(entry):
            if root not in sys.path:
                sys.path.append(root)
                added.append(root)
        try:
            yield added
        finally:
            for root in added:
                try:
                    sys.path.remove(root)
                except ValueError:
                    self._logger.warning(f"Search root already removed: {root}")

    # 导入与刷新
    def resolve_or_import(
        self, plugin_id: str, entry_path: Union[str, Path]
    ) -> PluginRecord:
        """
        导入插件入口模块，已导入过则在原模块对象上重新执行

        Args:
            plugin_id: 插件标识
            entry_path: 入口文件路径

        Returns:
            插件记录

        Raises:
            PluginLoadError: 导入失败，或同一插件换了入口路径
            PluginValidationError: 首次导入的模块缺少生命周期钩子
        """
        entry = Path(entry_path).resolve()

        with self._lock:
            record = self._records.get(plugin_id)
            if record is not None:
                if record.entry_path != entry:
                    raise PluginLoadError(
                        f"插件 {plugin_id} 的入口已固定为 {record.entry_path}，"
                        f"不能改为 {entry}",
                        plugin_id,
                    )
                self.refresh(plugin_id)
                record.source_digest = file_digest(entry)
                return record

            module_name = self.module_name_for(entry)
            for other in self._records.values():
                if other.module_name == module_name:
                    raise PluginLoadError(
                        f"模块 {module_name} 已由插件 {other.plugin_id} 加载", plugin_id
                    )

            # 同名的残留模块会让 import_module 直接返回旧对象
            sys.modules.pop(module_name, None)

            with self.search_roots(entry):
                importlib.invalidate_caches()
                try:
                    module = importlib.import_module(module_name)
                except Exception as e:
                    sys.modules.pop(module_name, None)
                    raise PluginLoadError(
                        f"导入 {module_name} 失败: {e}", plugin_id
                    ) from e

            missing = missing_hooks(module)
            if missing:
                sys.modules.pop(module_name, None)
                raise PluginValidationError(
                    f"模块 {module_name} 缺少钩子: {', '.join(missing)}",
                    plugin_id,
                    missing,
                )

            record = PluginRecord(
                plugin_id=plugin_id,
                entry_path=entry,
                module_name=module_name,
                module=module,
                source_digest=file_digest(entry),
            )
            self._records[plugin_id] = record
            self._logger.debug(f"Imported {module_name} for plugin {plugin_id}")
            return record

    def refresh(self, plugin_id: str) -> types.ModuleType:
        """
        在原模块对象上重新执行入口文件

        Raises:
            PluginNotFoundError: 插件未导入过
            PluginLoadError: 重新执行失败
        """
        with self._lock:
            record = self.require(plugin_id)
            module = record.module

            with self.search_roots(record.entry_path):
                importlib.invalidate_caches()
                try:
                    # reload 要求模块及其父包都在 sys.modules 中
                    self._ensure_parents(record.module_name)
                    if sys.modules.get(record.module_name) is not module:
                        sys.modules[record.module_name] = module
                    importlib.reload(module)
                except Exception as e:
                    raise PluginLoadError(
                        f"重新导入 {record.module_name} 失败: {e}", plugin_id
                    ) from e

            return module

    @staticmethod
    def _ensure_parents(module_name: str) -> None:
        parts = module_name.split(".")[:-1]
        for i in range(1, len(parts) + 1):
            parent = ".".join(parts[:i])
            if parent not in sys.modules:
                importlib.import_module(parent)

    # 查询
    def get(self, plugin_id: str) -> Optional[PluginRecord]:
        with self._lock:
            return self._records.get(plugin_id)

    def require(self, plugin_id: str) -> PluginRecord:
        """获取插件记录，不存在时抛出 PluginNotFoundError"""
        with self._lock:
            record = self._records.get(plugin_id)
        if record is None:
            raise PluginNotFoundError(f"插件 {plugin_id} 未加载", plugin_id)
        return record

    def contains(self, plugin_id: str) -> bool:
        with self._lock:
            return plugin_id in self._records

    def __contains__(self, plugin_id: object) -> bool:
        return isinstance(plugin_id, str) and self.contains(plugin_id)

    def records(self) -> List[PluginRecord]:
        with self._lock:
            return list(self._records.values())

    def plugin_ids(self) -> List[str]:
        with self._lock:
            return list(self._records.keys())

    def find_by_entry(self, entry_path: Union[str, Path]) -> Optional[PluginRecord]:
        """按入口文件查找插件记录"""
        entry = Path(entry_path).resolve()
        with self._lock:
            for record in self._records.values():
                if record.entry_path == entry:
                    return record
        return None
