# -*- coding: utf-8 -*-
"""
解释器执行闸门

所有触碰解释器状态的操作（导入、重载、调用插件钩子、修改 sys.path）
都必须在闸门内执行。闸门默认处于释放状态，只在单次操作的范围内持有。
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional, TypeVar

R = TypeVar("R")


class ExecutionGate:
    """
    进程级解释器互斥闸门

    使用可重入锁：插件代码在闸门内运行时回调宿主API，
    宿主API再次进入闸门不会死锁。
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._owner: Optional[int] = None
        self._depth = 0
        self._logger = logging.getLogger(__name__)

    @contextmanager
    def hold(self) -> Iterator["ExecutionGate"]:
        """
        在作用域内独占解释器

        任何退出路径（包括异常）都会释放闸门，异常原样向上传播。
        """
        self._lock.acquire()
        try:
            self._owner = threading.get_ident()
            self._depth += 1
            yield self
        finally:
            self._depth -= 1
            if self._depth == 0:
                self._owner = None
            self._lock.release()

    def run(self, body: Callable[..., R], *args: Any, **kwargs: Any) -> R:
        """在闸门内执行 body 并返回其结果"""
        with self.hold():
            return body(*args, **kwargs)

    def is_held_by_current_thread(self) -> bool:
        """
        当前线程是否持有闸门

        _owner 只由持有闸门的线程写入，嵌套持有时保持不变，直到最外层
        释放才清空，所以对调用线程自身的判断是准确的。
        """
        return self._owner == threading.get_ident()

    @property
    def is_held(self) -> bool:
        """闸门是否被任意线程持有，仅用于诊断：其他线程随时可能获取或释放"""
        return self._owner is not None


# 全局闸门实例
_global_gate: Optional[ExecutionGate] = None
_global_gate_lock = threading.Lock()


def get_execution_gate() -> ExecutionGate:
    """获取进程级执行闸门"""
    global _global_gate
    with _global_gate_lock:
        if _global_gate is None:
            _global_gate = ExecutionGate()
        return _global_gate


def reset_execution_gate() -> None:
    """重置进程级执行闸门（主要用于测试）"""
    global _global_gate
    with _global_gate_lock:
        _global_gate = None
