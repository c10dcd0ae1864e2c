# -*- coding: utf-8 -*-
"""
EventBus事件总线测试

专注测试事件总线在插件系统中的核心保证：
1. 订阅按插件标记，卸载插件时可一次性撤销
2. 撤销返回后不会再有分发落到该插件的处理函数
3. 优先级、通配符、一次性订阅和异常隔离
"""

import threading

import pytest

from pyscriptengine.core.event_bus import (
    EventBus,
    EventPublishError,
    EventSubscriptionError,
)
from pyscriptengine.core.events.cloud_event import CloudEvent


class TestSubscriptionAndPublish:
    """测试基本订阅发布"""

    def test_publish_reaches_subscriber(self, event_bus):
        received = []
        event_bus.subscribe("demo.event", lambda e: received.append(e.data))

        results = event_bus.publish("demo.event", data={"n": 1}, source="test")

        assert received == [{"n": 1}]
        assert results == [None]

    def test_priority_order(self, event_bus):
        """数字越小越先执行"""
        order = []
        event_bus.subscribe("demo.event", lambda e: order.append("low"), priority=9)
        event_bus.subscribe("demo.event", lambda e: order.append("high"), priority=1)
        event_bus.subscribe("demo.event", lambda e: order.append("mid"))

        event_bus.publish("demo.event")

        assert order == ["high", "mid", "low"]

    def test_wildcard_subscription(self, event_bus):
        received = []
        event_bus.subscribe("com.pyscriptengine.plugin.*", lambda e: received.append(e.type))

        event_bus.publish("com.pyscriptengine.plugin.loaded")
        event_bus.publish("com.other.event")

        assert received == ["com.pyscriptengine.plugin.loaded"]

    def test_once_subscription(self, event_bus):
        received = []
        event_bus.subscribe("demo.event", lambda e: received.append(1), once=True)

        event_bus.publish("demo.event")
        event_bus.publish("demo.event")

        assert received == [1]

    def test_filter_func(self, event_bus):
        received = []
        event_bus.subscribe(
            "demo.event",
            lambda e: received.append(e.data["n"]),
            filter_func=lambda e: e.data["n"] > 1,
        )

        event_bus.publish("demo.event", data={"n": 1})
        event_bus.publish("demo.event", data={"n": 2})

        assert received == [2]

    def test_handler_error_is_isolated(self, event_bus):
        """一个处理函数失败不影响其他处理函数"""
        received = []

        def broken(event):
            raise RuntimeError("handler failed")

        event_bus.subscribe("demo.event", broken, priority=1)
        event_bus.subscribe("demo.event", lambda e: received.append("ok"))

        results = event_bus.publish("demo.event")

        assert results == [None, None]
        assert received == ["ok"]
        assert event_bus.get_stats()["events_failed"] == 1

    def test_async_publish(self, event_bus):
        received = []
        event_bus.subscribe("demo.event", lambda e: received.append(e.type))

        future = event_bus.publish("demo.event", async_publish=True)

        future.result(timeout=5)
        assert received == ["demo.event"]

    def test_publish_cloud_event_history(self, event_bus):
        event = CloudEvent(type="demo.event", source="test")
        event_bus.publish_cloud_event(event)

        assert event_bus.get_event_history() == [event]

    def test_invalid_subscriptions(self, event_bus):
        with pytest.raises(EventSubscriptionError):
            event_bus.subscribe("demo.event", "not callable")
        with pytest.raises(EventSubscriptionError):
            event_bus.subscribe("demo.event", lambda e: None, priority=0)

    def test_unsubscribe(self, event_bus):
        received = []
        sub_id = event_bus.subscribe("demo.event", lambda e: received.append(1))

        assert event_bus.unsubscribe(sub_id) is True
        assert event_bus.unsubscribe(sub_id) is False
        event_bus.publish("demo.event")
        assert received == []

    def test_publish_after_shutdown(self):
        bus = EventBus()
        bus.shutdown()
        with pytest.raises(EventPublishError):
            bus.publish("demo.event")


class TestPluginListeners:
    """测试按插件撤销订阅"""

    def test_remove_plugin_listeners(self, event_bus):
        received = []
        event_bus.subscribe("demo.a", lambda e: received.append("alpha"), plugin="alpha")
        event_bus.subscribe("demo.*", lambda e: received.append("alpha*"), plugin="alpha")
        event_bus.subscribe("demo.a", lambda e: received.append("beta"), plugin="beta")

        assert event_bus.remove_plugin_listeners("alpha") == 2
        event_bus.publish("demo.a")

        assert received == ["beta"]
        assert event_bus.get_plugin_subscriptions("alpha") == []
        assert len(event_bus.get_plugin_subscriptions("beta")) == 1
        assert event_bus.get_stats()["subscriptions_count"] == 1

    def test_plugin_resolver_tags_subscription(self, event_bus):
        event_bus.set_plugin_resolver(lambda: "gamma")
        event_bus.subscribe("demo.event", lambda e: None)

        assert len(event_bus.get_plugin_subscriptions("gamma")) == 1

    def test_explicit_plugin_overrides_resolver(self, event_bus):
        event_bus.set_plugin_resolver(lambda: "gamma")
        event_bus.subscribe("demo.event", lambda e: None, plugin="delta")

        assert event_bus.get_plugin_subscriptions("gamma") == []

    def test_dispatcher_wraps_filter_and_handler(self, event_bus):
        """过滤函数和处理函数都在分发器内执行，撤销在放行前生效"""
        trace = []

        def dispatcher(body, *args):
            trace.append("enter")
            return body(*args)

        event_bus.set_dispatcher(dispatcher)
        event_bus.subscribe(
            "demo.event",
            lambda e: trace.append("handler"),
            plugin="alpha",
            filter_func=lambda e: trace.append("filter") is None,
        )

        assert event_bus.publish("demo.event") == [None]
        assert trace == ["enter", "filter", "handler"]

        def retracting_dispatcher(body, *args):
            event_bus.remove_plugin_listeners("alpha")
            return body(*args)

        trace.clear()
        event_bus.set_dispatcher(retracting_dispatcher)
        event_bus.subscribe(
            "demo.event", lambda e: trace.append("late"), plugin="alpha"
        )

        assert event_bus.publish("demo.event") == []
        assert trace == ["filter"]

    def test_retraction_during_dispatch(self, event_bus):
        """分发快照之后被撤销的订阅不会再被调用"""
        received = []

        def first(event):
            received.append("first")
            event_bus.remove_plugin_listeners("alpha")

        event_bus.subscribe("demo.event", first, priority=1)
        event_bus.subscribe(
            "demo.event", lambda e: received.append("alpha"), plugin="alpha"
        )

        event_bus.publish("demo.event")

        assert received == ["first"]

    def test_concurrent_publish_and_retract(self, event_bus):
        """撤销返回后不再有新的分发"""
        calls = []
        after_retract = []
        retracted = threading.Event()

        def handler(event):
            calls.append(1)
            if retracted.is_set():
                after_retract.append(1)

        event_bus.subscribe("demo.event", handler, plugin="alpha")

        def publisher():
            for _ in range(200):
                event_bus.publish("demo.event")

        thread = threading.Thread(target=publisher)
        thread.start()
        event_bus.remove_plugin_listeners("alpha")
        retracted.set()
        thread.join(timeout=10)

        # 撤销之前已经开始的分发可能跨过 set()，之后不会再有新的
        assert len(after_retract) <= 1

    def test_clear_all_subscriptions(self, event_bus):
        event_bus.subscribe("a", lambda e: None)
        event_bus.subscribe("b", lambda e: None)

        assert event_bus.clear_all_subscriptions() == 2
        assert event_bus.get_stats()["active_subscriptions"] == 0
