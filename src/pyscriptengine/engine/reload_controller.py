# -*- coding: utf-8 -*-
"""
重载控制器

解释器没有卸载模块的原语，重载总会重新执行模块顶层代码。卸载时为了
让缓存中的模块对象回到没有副作用的状态，先把入口文件换成空文件再重载，
随后把原文件还原：

    备份 -> 清空命名空间 -> 重载空文件 -> 还原
"""

import logging
import shutil
import types
from pathlib import Path
from typing import Callable, Optional, Union

from ..exceptions import EntryBackupError, EntryMissingError, EntryRestoreError
from ..logger import KeyedLogger
from .module_cache import PluginRecord

# 重载空文件后仍需保留的导入机制属性
PRESERVED_MODULE_ATTRS = frozenset(
    {
        "__name__",
        "__doc__",
        "__loader__",
        "__spec__",
        "__file__",
        "__cached__",
        "__path__",
        "__package__",
        "__builtins__",
    }
)


class ReloadController:
    """入口文件的备份、清空与还原"""

    def __init__(self, backup_suffix: str = ".bak", logger: Optional[KeyedLogger] = None):
        if not backup_suffix:
            raise ValueError("backup_suffix must not be empty")
        self.backup_suffix = backup_suffix
        self._logger = logging.getLogger(__name__)
        self._keyed = logger or KeyedLogger(__name__)

    def backup_path_for(self, entry_path: Union[str, Path]) -> Path:
        """备份文件路径 = 入口路径 + 后缀"""
        entry = Path(entry_path)
        return entry.with_name(entry.name + self.backup_suffix)

    def backup_entry(self, entry_path: Union[str, Path]) -> bool:
        """
        备份入口文件并把入口清空

        先删除残留的旧备份，备份文件始终最多一个。

        Returns:
            是否完成了备份；入口文件不存在时返回False，不做任何写入

        Raises:
            EntryBackupError: 文件系统操作失败
        """
        entry = Path(entry_path)
        backup = self.backup_path_for(entry)
        try:
            if backup.exists():
                backup.unlink()
            if not entry.exists():
                return False
            shutil.copyfile(entry, backup)
            entry.write_bytes(b"")
        except OSError as e:
            raise EntryBackupError(f"备份入口文件 {entry} 失败: {e}", entry) from e

        self._logger.debug(f"Backed up {entry} to {backup}")
        return True

    def resume_entry(self, entry_path: Union[str, Path]) -> None:
        """
        用备份还原入口文件并删除备份

        Raises:
            EntryRestoreError: 文件系统操作失败，入口可能仍是空文件
        """
        entry = Path(entry_path)
        backup = self.backup_path_for(entry)
        if not entry.exists():
            return
        try:
            entry.unlink()
            shutil.copyfile(backup, entry)
            backup.unlink()
        except OSError as e:
            raise EntryRestoreError(
                f"还原入口文件 {entry} 失败: {e}", entry, backup
            ) from e

        self._logger.debug(f"Restored {entry} from {backup}")

    def recover_stale_backup(self, plugin_id: str, entry_path: Union[str, Path]) -> bool:
        """
        处理上次卸载中断后遗留的备份

        入口缺失或为空时用备份恢复入口，否则删除残留备份。

        Returns:
            是否从备份恢复了入口文件
        """
        entry = Path(entry_path)
        backup = self.backup_path_for(entry)
        if not backup.exists():
            return False

        try:
            if not entry.exists() or entry.stat().st_size == 0:
                shutil.copyfile(backup, entry)
                backup.unlink()
                self._keyed.warning(
                    "engine.python.plugin.backup.recovered", [plugin_id, str(backup)]
                )
                return True

            backup.unlink()
        except OSError as e:
            raise EntryRestoreError(
                f"处理残留备份 {backup} 失败: {e}", entry, backup
            ) from e

        self._keyed.info(
            "engine.python.plugin.backup.staleRemoved", [plugin_id, str(backup)]
        )
        return False

    @staticmethod
    def strip_namespace(module: types.ModuleType) -> int:
        """清空模块中除导入机制属性外的全部全局名，返回清除数量"""
        names = [name for name in vars(module) if name not in PRESERVED_MODULE_ATTRS]
        for name in names:
            delattr(module, name)
        return len(names)

    def neutralize(
        self, record: PluginRecord, refresh: Callable[[str], object]
    ) -> None:
        """
        中和插件模块：模块对象保留在缓存中，但不再含有任何顶层状态

        必须在执行闸门内调用。备份成功后无论重载是否失败都会尝试还原。

        Args:
            record: 插件记录
            refresh: 在原模块对象上重新执行入口文件的函数

        Raises:
            EntryBackupError: 备份失败，模块未被改动
            EntryRestoreError: 还原失败
            EntryMissingError: 入口文件不存在，模块只在内存中被清空
        """
        entry = record.entry_path
        if not self.backup_entry(entry):
            self.strip_namespace(record.module)
            raise EntryMissingError(f"入口文件 {entry} 不存在", entry)

        try:
            self.strip_namespace(record.module)
            refresh(record.plugin_id)
        finally:
            self.resume_entry(entry)
