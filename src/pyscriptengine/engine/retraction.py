# -*- coding: utf-8 -*-
"""
资源撤销协调器

插件卸载时，在调用 on_disable 之前撤销该插件在事件总线、任务调度器
和命令注册表中的全部注册项。三个目标互相独立，任何一个失败都不影响
其余目标的撤销。
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..exceptions import RetractionError
from ..logger import KeyedLogger

# 撤销顺序固定：事件监听 -> 定时任务 -> 命令
RETRACTION_TARGETS = ("events", "tasks", "commands")


@dataclass
class RetractionReport:
    """一次撤销的结果"""

    plugin_id: str
    removed: Dict[str, int] = field(default_factory=dict)
    errors: Dict[str, RetractionError] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def total_removed(self) -> int:
        return sum(self.removed.values())


class ResourceRetractionCoordinator:
    """撤销某插件在外部注册表中的注册项"""

    def __init__(
        self,
        event_bus: Any = None,
        scheduler: Any = None,
        command_registry: Any = None,
        logger: Optional[KeyedLogger] = None,
    ):
        self.event_bus = event_bus
        self.scheduler = scheduler
        self.command_registry = command_registry
        self._keyed = logger or KeyedLogger(__name__)

    def _targets(self) -> List[Tuple[str, Optional[Callable[[str], Any]]]]:
        return [
            ("events", getattr(self.event_bus, "remove_plugin_listeners", None)),
            ("tasks", getattr(self.scheduler, "remove_plugin_tasks", None)),
            ("commands", getattr(self.command_registry, "remove_plugin_commands", None)),
        ]

    def retract(self, plugin_id: str) -> RetractionReport:
        """
        撤销插件的全部注册项

        Args:
            plugin_id: 插件标识

        Returns:
            撤销结果，失败的目标记录在 errors 中
        """
        report = RetractionReport(plugin_id=plugin_id)

        for target, remove in self._targets():
            if remove is None:
                report.skipped.append(target)
                continue
            try:
                removed = remove(plugin_id)
            except Exception as e:
                report.errors[target] = RetractionError(
                    f"撤销插件 {plugin_id} 的 {target} 失败: {e}", plugin_id, target
                )
                self._keyed.error(
                    "engine.python.plugin.retract.failed",
                    [plugin_id, target, e],
                    exc_info=True,
                )
                continue
            report.removed[target] = removed if isinstance(removed, int) else 0

        self._keyed.debug(
            "engine.python.plugin.retract.done",
            [
                plugin_id,
                report.removed.get("events", 0),
                report.removed.get("tasks", 0),
                report.removed.get("commands", 0),
            ],
        )
        return report
