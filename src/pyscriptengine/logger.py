# -*- coding: utf-8 -*-
"""
日志记录器模块

引擎的日志以消息键 + 位置参数的方式发出，由语言文件解析为可读文本，
再交给标准库 logging 输出。
"""
import logging
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Sequence

import yaml

DEFAULT_LANGUAGE = "zh_CN"
LANG_DIR = Path(__file__).parent / "lang"


class MessageCatalog:
    """多语言消息表，键为不透明标识符，值为带 {0} {1} 占位符的模板"""

    def __init__(self, language: str = DEFAULT_LANGUAGE):
        self._language = language
        self._languages: Dict[str, Dict[str, str]] = {}
        self._lock = threading.RLock()

    @property
    def language(self) -> str:
        return self._language

    def set_language(self, language: str) -> None:
        """切换当前语言"""
        self._language = language

    def append_language(self, language: str, messages: Dict[str, Any]) -> None:
        """合并一个语言的消息，已存在的键会被覆盖"""
        with self._lock:
            table = self._languages.setdefault(language, {})
            table.update(_flatten(messages))

    def load_file(self, path: Path, language: Optional[str] = None) -> None:
        """从YAML语言文件加载消息，语言代码默认取文件名"""
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        self.append_language(language or path.stem, data)

    def load_directory(self, directory: Path) -> int:
        """加载目录下所有 *.yaml 语言文件，返回加载数量"""
        count = 0
        for path in sorted(Path(directory).glob("*.yaml")):
            self.load_file(path)
            count += 1
        return count

    def languages(self) -> Iterable[str]:
        return list(self._languages.keys())

    def translate(self, key: str, args: Sequence[Any] = ()) -> str:
        """解析消息键；找不到时返回键本身并附带参数"""
        with self._lock:
            template = self._languages.get(self._language, {}).get(key)
            if template is None:
                template = self._languages.get(DEFAULT_LANGUAGE, {}).get(key)

        if template is None:
            if args:
                return f"{key} {list(args)}"
            return key

        try:
            return template.format(*args)
        except (IndexError, KeyError, ValueError):
            return f"{template} {list(args)}"


def _flatten(data: Dict[str, Any], prefix: str = "") -> Dict[str, str]:
    """把嵌套的YAML结构展开成点号分隔的键"""
    flat: Dict[str, str] = {}
    for key, value in data.items():
        full_key = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, dict):
            flat.update(_flatten(value, full_key))
        else:
            flat[full_key] = str(value)
    return flat


class KeyedLogger:
    """按消息键记录日志的记录器"""

    def __init__(
        self,
        name: str = "pyscriptengine",
        catalog: Optional[MessageCatalog] = None,
    ):
        self._logger = logging.getLogger(name)
        self.catalog = catalog or get_message_catalog()

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def _log(self, level: int, key: str, args: Sequence[Any], exc_info: bool) -> None:
        if not self._logger.isEnabledFor(level):
            return
        self._logger.log(level, self.catalog.translate(key, args), exc_info=exc_info)

    def debug(self, key: str, args: Sequence[Any] = ()) -> None:
        """记录debug级别日志"""
        self._log(logging.DEBUG, key, args, False)

    def info(self, key: str, args: Sequence[Any] = ()) -> None:
        """记录info级别日志"""
        self._log(logging.INFO, key, args, False)

    def warning(self, key: str, args: Sequence[Any] = ()) -> None:
        """记录warning级别日志"""
        self._log(logging.WARNING, key, args, False)

    def error(self, key: str, args: Sequence[Any] = (), exc_info: bool = False) -> None:
        """记录error级别日志"""
        self._log(logging.ERROR, key, args, exc_info)

    def critical(
        self, key: str, args: Sequence[Any] = (), exc_info: bool = False
    ) -> None:
        """记录critical级别日志"""
        self._log(logging.CRITICAL, key, args, exc_info)


# 全局消息表实例
_global_catalog: Optional[MessageCatalog] = None


def get_message_catalog() -> MessageCatalog:
    """获取全局消息表，首次调用时加载内置语言文件"""
    global _global_catalog
    if _global_catalog is None:
        catalog = MessageCatalog()
        catalog.load_directory(LANG_DIR)
        _global_catalog = catalog
    return _global_catalog


def reset_message_catalog() -> None:
    """重置全局消息表（主要用于测试）"""
    global _global_catalog
    _global_catalog = None
