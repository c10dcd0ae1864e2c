# -*- coding: utf-8 -*-
"""
PyScriptEngine 事件总线

基于CloudEvent的事件发布订阅系统，提供：
- 按插件标记订阅，支持一次性撤销某插件的全部监听器
- 事件优先级 (1-10)
- 通配符事件类型匹配
- 同步/线程池异步发布
- 并发安全操作
"""

import concurrent.futures
import fnmatch
import itertools
import logging
import threading
import time
from collections import defaultdict, deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from ..exceptions import ScriptEngineError
from .events.cloud_event import CloudEvent

PluginResolver = Callable[[], Optional[str]]
Dispatcher = Callable[..., Any]

_subscription_ids = itertools.count(1)


class EventBusError(ScriptEngineError):
    """事件总线相关异常"""

    pass


class EventSubscriptionError(EventBusError):
    """事件订阅异常"""

    pass


class EventPublishError(EventBusError):
    """事件发布异常"""

    pass


@dataclass
class EventSubscription:
    """事件订阅信息"""

    event_type: str
    handler: Callable[[CloudEvent], Any]
    plugin: Optional[str] = None
    filter_func: Optional[Callable[[CloudEvent], bool]] = None
    priority: int = field(default=5)
    once: bool = False
    active: bool = True
    created_at: float = field(default_factory=time.time)
    subscription_id: str = field(
        default_factory=lambda: f"sub_{next(_subscription_ids)}"
    )


class EventBus:
    """
    事件总线

    每个订阅可以带上所属插件的标识。插件卸载时调用
    ``remove_plugin_listeners`` 撤销它的全部订阅；撤销在锁内把订阅标记为
    失效，分发前在同一把锁内检查该标记，所以撤销返回之后不会再有新的
    分发落到该插件的处理函数上。
    """

    def __init__(
        self,
        max_workers: int = 4,
        max_history: int = 1000,
        plugin_resolver: Optional[PluginResolver] = None,
        dispatcher: Optional[Dispatcher] = None,
    ):
        """
        初始化事件总线

        Args:
            max_workers: 异步发布的最大工作线程数
            max_history: 最大事件历史记录数
            plugin_resolver: 订阅未显式指定插件时，用来推断调用方插件的函数
            dispatcher: 调用过滤函数和处理函数时的执行包装，形如 dispatcher(body, *args)
        """
        self._subscriptions: Dict[str, List[EventSubscription]] = defaultdict(list)
        self._event_history: deque[CloudEvent] = deque(maxlen=max_history)
        self._lock = threading.RLock()
        self._executor = ThreadPoolExecutor(max_workers=max_workers)
        self._logger = logging.getLogger(__name__)
        self._plugin_resolver = plugin_resolver
        self._dispatcher = dispatcher
        self._stats = {
            "events_published": 0,
            "events_processed": 0,
            "events_failed": 0,
            "subscriptions_count": 0,
        }
        self._running = True

    def set_plugin_resolver(self, resolver: Optional[PluginResolver]) -> None:
        """设置调用方插件推断函数"""
        self._plugin_resolver = resolver

    def set_dispatcher(self, dispatcher: Optional[Dispatcher]) -> None:
        """设置处理函数的执行包装，None 表示直接调用"""
        self._dispatcher = dispatcher

    def subscribe(
        self,
        event_type: str,
        handler: Callable[[CloudEvent], Any],
        plugin: Optional[str] = None,
        priority: int = 5,
        filter_func: Optional[Callable[[CloudEvent], bool]] = None,
        once: bool = False,
    ) -> str:
        """
        订阅事件

        Args:
            event_type: 事件类型，支持 Unix shell 风格通配符
            handler: 事件处理函数
            plugin: 所属插件标识，为None时尝试通过 plugin_resolver 推断
            priority: 事件优先级 (1-10, 1最高)
            filter_func: 事件过滤函数
            once: 是否只触发一次

        Returns:
            订阅ID

        Raises:
            EventSubscriptionError: 订阅失败时抛出
        """
        if not callable(handler):
            raise EventSubscriptionError("Handler must be callable")

        if priority < 1 or priority > 10:
            raise EventSubscriptionError("Priority must be between 1 and 10")

        if plugin is None and self._plugin_resolver is not None:
            plugin = self._plugin_resolver()

        subscription = EventSubscription(
            event_type=event_type,
            handler=handler,
            plugin=plugin,
            filter_func=filter_func,
            priority=priority,
            once=once,
        )

        with self._lock:
            # 数字越小优先级越高
            subscriptions = self._subscriptions[event_type]
            insert_pos = len(subscriptions)
            for i, sub in enumerate(subscriptions):
                if priority < sub.priority:
                    insert_pos = i
                    break

            subscriptions.insert(insert_pos, subscription)
            self._stats["subscriptions_count"] += 1

        self._logger.debug(
            f"Subscribed to {event_type} with ID {subscription.subscription_id}"
            f" (plugin={plugin})"
        )
        return subscription.subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """
        取消订阅

        Args:
            subscription_id: 订阅ID

        Returns:
            是否成功取消订阅
        """
        with self._lock:
            for event_type, subscriptions in self._subscriptions.items():
                for i, subscription in enumerate(subscriptions):
                    if subscription.subscription_id == subscription_id:
                        subscription.active = False
                        subscriptions.pop(i)
                        self._stats["subscriptions_count"] -= 1
                        self._logger.debug(
                            f"Unsubscribed {subscription_id} from {event_type}"
                        )
                        return True
            return False

    def remove_plugin_listeners(self, plugin_id: str) -> int:
        """
        撤销某插件的全部订阅

        Args:
            plugin_id: 插件标识

        Returns:
            撤销的订阅数量
        """
        removed = 0
        with self._lock:
            for event_type in list(self._subscriptions.keys()):
                kept = []
                for subscription in self._subscriptions[event_type]:
                    if subscription.plugin == plugin_id:
                        subscription.active = False
                        removed += 1
                    else:
                        kept.append(subscription)
                if kept:
                    self._subscriptions[event_type] = kept
                else:
                    del self._subscriptions[event_type]
            self._stats["subscriptions_count"] -= removed

        if removed:
            self._logger.debug(f"Removed {removed} listeners of plugin {plugin_id}")
        return removed

    def publish_cloud_event(
        self,
        cloud_event: CloudEvent,
        async_publish: bool = False,
    ) -> Union[List[Any], "concurrent.futures.Future[List[Any]]"]:
        """
        发布CloudEvent事件

        Args:
            cloud_event: CloudEvent事件实例
            async_publish: 是否在线程池中异步发布

        Returns:
            同步模式返回处理结果列表，异步模式返回Future

        Raises:
            EventPublishError: 发布失败时抛出
        """
        if not self._running:
            raise EventPublishError("EventBus is not running")

        self._event_history.append(cloud_event)
        self._stats["events_published"] += 1

        try:
            if async_publish:
                return self._executor.submit(self._process_cloud_event, cloud_event)
            return self._process_cloud_event(cloud_event)
        except Exception as e:
            self._stats["events_failed"] += 1
            raise EventPublishError(
                f"Failed to publish CloudEvent {cloud_event.type}: {e}"
            ) from e

    def publish(
        self,
        event_type: str,
        data: Any = None,
        source: Optional[str] = None,
        priority: int = 5,
        async_publish: bool = False,
    ) -> Union[List[Any], "concurrent.futures.Future[List[Any]]"]:
        """
        便捷的事件发布方法（自动创建CloudEvent）

        Args:
            event_type: 事件类型
            data: 事件数据
            source: 事件源
            priority: 事件优先级 (1-10)
            async_publish: 是否异步发布
        """
        cloud_event = CloudEvent(
            type=event_type,
            source=source or "unknown",
            data=data,
            priority=priority,
        )
        return self.publish_cloud_event(cloud_event, async_publish=async_publish)

    def _matching_subscriptions(self, event_type: str) -> List[EventSubscription]:
        """按 "精确匹配在前、通配符在后" 收集订阅快照"""
        with self._lock:
            matched = list(self._subscriptions.get(event_type, []))
            for pattern, subs in self._subscriptions.items():
                # 通配符形如 "com.pyscriptengine.plugin.*"
                if pattern != event_type and fnmatch.fnmatch(event_type, pattern):
                    matched.extend(subs)
        return matched

    def _claim(self, subscription: EventSubscription) -> bool:
        """分发前确认订阅仍有效；一次性订阅在此处即被占用"""
        with self._lock:
            if not subscription.active:
                return False
            if subscription.once:
                subscription.active = False
            return True

    def _dispatch(self, body: Callable[..., Any], *args: Any) -> Any:
        if self._dispatcher is None:
            return body(*args)
        return self._dispatcher(body, *args)

    def _deliver(
        self, subscription: EventSubscription, cloud_event: CloudEvent
    ) -> Tuple[bool, Any]:
        """在分发器内执行：过滤、确认订阅有效，再调用处理函数"""
        if subscription.filter_func and not subscription.filter_func(cloud_event):
            return False, None
        # 快照之后订阅可能已被撤销
        if not self._claim(subscription):
            return False, None
        return True, subscription.handler(cloud_event)

    def _process_cloud_event(self, cloud_event: CloudEvent) -> List[Any]:
        """同步分发事件，单个处理函数失败不影响其他处理函数"""
        results: List[Any] = []
        consumed: List[str] = []

        for subscription in self._matching_subscriptions(cloud_event.type):
            try:
                delivered, result = self._dispatch(
                    self._deliver, subscription, cloud_event
                )
            except Exception as e:
                self._stats["events_failed"] += 1
                self._logger.error(
                    f"Handler failed for CloudEvent {cloud_event.type}"
                    f" (plugin={subscription.plugin}): {e}"
                )
                results.append(None)
                continue
            finally:
                if subscription.once and not subscription.active:
                    consumed.append(subscription.subscription_id)

            if delivered:
                results.append(result)
                self._stats["events_processed"] += 1

        for subscription_id in consumed:
            self.unsubscribe(subscription_id)
        return results

    def get_plugin_subscriptions(self, plugin_id: str) -> List[EventSubscription]:
        """获取某插件当前的全部订阅"""
        with self._lock:
            return [
                sub
                for subs in self._subscriptions.values()
                for sub in subs
                if sub.plugin == plugin_id
            ]

    def get_event_history(self, count: Optional[int] = None) -> List[CloudEvent]:
        """获取事件历史"""
        history = list(self._event_history)
        if count is not None:
            return history[-count:]
        return history

    def get_stats(self) -> Dict[str, Any]:
        """获取统计信息"""
        with self._lock:
            return {
                **self._stats,
                "active_subscriptions": sum(
                    len(subs) for subs in self._subscriptions.values()
                ),
                "event_types_count": len(self._subscriptions),
                "history_size": len(self._event_history),
            }

    def clear_all_subscriptions(self) -> int:
        """清空所有订阅，返回清理的数量"""
        with self._lock:
            total_count = 0
            for subs in self._subscriptions.values():
                for sub in subs:
                    sub.active = False
                total_count += len(subs)
            self._subscriptions.clear()
            self._stats["subscriptions_count"] = 0
        self._logger.debug(f"Cleared all {total_count} subscriptions")
        return total_count

    def shutdown(self) -> None:
        """关闭事件总线"""
        self._running = False
        self._executor.shutdown(wait=True)
        self.clear_all_subscriptions()
        self._event_history.clear()
        self._logger.info("EventBus shutdown completed")

    def __enter__(self) -> "EventBus":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.shutdown()
