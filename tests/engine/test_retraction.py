# -*- coding: utf-8 -*-
"""
ResourceRetractionCoordinator 资源撤销测试
"""

from unittest.mock import MagicMock

import pytest

from pyscriptengine.engine.retraction import (
    RETRACTION_TARGETS,
    ResourceRetractionCoordinator,
)
from pyscriptengine.exceptions import RetractionError


@pytest.fixture
def coordinator(event_bus, scheduler, command_registry):
    return ResourceRetractionCoordinator(event_bus, scheduler, command_registry)


class TestRetraction:
    """测试按插件撤销注册项"""

    def test_removes_registrations_of_plugin(
        self, coordinator, event_bus, scheduler, command_registry
    ):
        event_bus.subscribe("demo.event", lambda e: None, plugin="alpha")
        event_bus.subscribe("demo.other", lambda e: None, plugin="alpha")
        scheduler.add_interval_job(lambda: None, 5, plugin="alpha")
        command_registry.register("hello", lambda: None, plugin="alpha")
        command_registry.register("keep", lambda: None, plugin="beta")

        report = coordinator.retract("alpha")

        assert report.ok
        assert report.removed == {"events": 2, "tasks": 1, "commands": 1}
        assert report.total_removed == 4
        assert event_bus.get_plugin_subscriptions("alpha") == []
        assert scheduler.get_plugin_tasks("alpha") == []
        assert command_registry.resolve("keep") is not None

    def test_targets_called_in_order(self):
        """撤销顺序：事件监听 -> 定时任务 -> 命令"""
        manager = MagicMock()
        manager.bus.remove_plugin_listeners.return_value = 0
        manager.scheduler.remove_plugin_tasks.return_value = 0
        manager.commands.remove_plugin_commands.return_value = 0
        coordinator = ResourceRetractionCoordinator(
            manager.bus, manager.scheduler, manager.commands
        )

        coordinator.retract("alpha")

        assert [c[0] for c in manager.mock_calls] == [
            "bus.remove_plugin_listeners",
            "scheduler.remove_plugin_tasks",
            "commands.remove_plugin_commands",
        ]
        assert RETRACTION_TARGETS == ("events", "tasks", "commands")

    def test_failure_does_not_stop_other_targets(self, scheduler, command_registry):
        """某个目标失败时其余目标照常撤销"""
        broken_bus = MagicMock()
        broken_bus.remove_plugin_listeners.side_effect = RuntimeError("bus down")
        command_registry.register("hello", lambda: None, plugin="alpha")
        coordinator = ResourceRetractionCoordinator(
            broken_bus, scheduler, command_registry
        )

        report = coordinator.retract("alpha")

        assert not report.ok
        error = report.errors["events"]
        assert isinstance(error, RetractionError)
        assert error.plugin_id == "alpha"
        assert error.target == "events"
        assert "bus down" in str(error)
        assert report.removed == {"tasks": 0, "commands": 1}

    def test_missing_targets_are_skipped(self, command_registry):
        command_registry.register("hello", lambda: None, plugin="alpha")
        coordinator = ResourceRetractionCoordinator(command_registry=command_registry)

        report = coordinator.retract("alpha")

        assert report.ok
        assert report.skipped == ["events", "tasks"]
        assert report.removed == {"commands": 1}

    def test_unknown_plugin_removes_nothing(self, coordinator):
        report = coordinator.retract("ghost")
        assert report.ok
        assert report.total_removed == 0
