# -*- coding: utf-8 -*-
"""
Python 脚本插件引擎

负责 "script-python" 类型插件的加载、卸载和重载：

- 加载：恢复残留备份 -> 安装依赖 -> 在闸门内导入入口模块并调用 on_enable
- 卸载：撤销外部注册项 -> 在闸门内调用 on_disable 并中和模块
- 重载：卸载后用记录的入口路径重新加载

插件模块对象在进程内永不丢弃，卸载后的再次加载在原模块对象上重新执行入口文件。
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..core.commands import CommandRegistry
from ..core.config.engine_config import EngineConfig, get_engine_config
from ..core.event_bus import EventBus
from ..core.events.contracts import EngineEventContracts, create_plugin_event
from ..core.scheduling.scheduler import TaskScheduler
from ..exceptions import (
    EntryBackupError,
    EntryMissingError,
    EntryRestoreError,
    PluginError,
    PluginHookError,
    PluginLoadError,
    PluginValidationError,
)
from ..logger import KeyedLogger, get_message_catalog
from ..plugins.dependency.installer import DependencyInstaller
from ..plugins.hot_reload import PluginHotReloader
from .attribution import CallerAttributionResolver, calling_plugin
from .execution_gate import ExecutionGate, get_execution_gate
from .module_cache import (
    OPTIONAL_HOOKS,
    ModuleCache,
    PluginRecord,
    PluginState,
    missing_hooks,
)
from .reload_controller import ReloadController
from .retraction import ResourceRetractionCoordinator


class PythonPluginEngine:
    """Python 脚本插件引擎"""

    PLUGIN_TYPE = "script-python"

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        event_bus: Optional[EventBus] = None,
        scheduler: Optional[TaskScheduler] = None,
        command_registry: Optional[CommandRegistry] = None,
        gate: Optional[ExecutionGate] = None,
        installer: Optional[DependencyInstaller] = None,
    ):
        """
        初始化脚本插件引擎

        Args:
            config: 引擎配置，默认使用全局配置
            event_bus: 事件总线，默认新建
            scheduler: 任务调度器，默认新建（不自动启动）
            command_registry: 命令注册表，默认新建
            gate: 执行闸门，默认使用进程级闸门
            installer: 依赖安装器，默认按配置新建
        """
        self.config = config or get_engine_config()
        self._logger = logging.getLogger(__name__)

        catalog = get_message_catalog()
        if self.config.lang_dir is not None:
            catalog.load_directory(self.config.lang_dir)
        catalog.set_language(self.config.language)
        self._keyed = KeyedLogger(__name__, catalog)

        self._owns_event_bus = event_bus is None
        self._owns_scheduler = scheduler is None
        self.event_bus = event_bus or EventBus()
        self.scheduler = scheduler or TaskScheduler()
        self.command_registry = command_registry or CommandRegistry()
        self.gate = gate or get_execution_gate()

        plugins_root = self.config.resolved_plugins_root
        self.modules = ModuleCache(self.config.resolved_base_dir)
        self.reloader = ReloadController(self.config.backup_suffix, logger=self._keyed)
        self.retraction = ResourceRetractionCoordinator(
            self.event_bus, self.scheduler, self.command_registry, logger=self._keyed
        )
        self.attribution = CallerAttributionResolver(plugins_root)
        self.installer = installer or DependencyInstaller(
            plugins_root,
            requirements_file=self.config.requirements_file,
            pip_args=self.config.pip_args,
            enabled=self.config.install_dependencies,
            logger=self._keyed,
        )

        # 注册项未显式指定插件时按调用方推断，回调插件代码时占用闸门
        for registry in (self.event_bus, self.scheduler, self.command_registry):
            registry.set_plugin_resolver(self.get_calling_plugin)
            registry.set_dispatcher(self.gate.run)

        self._hot_reloader: Optional[PluginHotReloader] = None
        if self.config.hot_reload:
            self.start_hot_reload()

    def get_plugin_type(self) -> str:
        """引擎处理的插件类型"""
        return self.PLUGIN_TYPE

    # 加载
    def load_plugin(self, plugin_id: str, entry_path: Union[str, Path]) -> bool:
        """
        加载并启用插件

        已启用的插件会先卸载再加载。状态判断、残留备份处理和导入在同一次
        闸门持有内完成，不会与同一插件的卸载交错。

        Args:
            plugin_id: 插件标识
            entry_path: 入口文件路径

        Returns:
            加载是否成功
        """
        self._keyed.info("engine.python.plugin.loading", [plugin_id])
        entry = Path(entry_path)

        # 入口路径一经记录不再变化，可以在闸门外检查
        existing = self.modules.get(plugin_id)
        if existing is not None and existing.entry_path != entry.resolve():
            self._keyed.error(
                "engine.python.plugin.load.exception",
                [plugin_id, f"entry is fixed to {existing.entry_path}"],
            )
            return False

        # pip 不触碰解释器状态，不占用闸门
        self.installer.install(plugin_id)

        record: Optional[PluginRecord] = None
        try:
            with self.gate.hold():
                existing = self.modules.get(plugin_id)
                if existing is not None and existing.state == PluginState.ENABLED:
                    self._logger.warning(
                        f"Plugin {plugin_id} is enabled, unloading first"
                    )
                    self.unload_plugin(plugin_id)

                self.reloader.recover_stale_backup(plugin_id, entry)

                with calling_plugin(plugin_id):
                    record = self.modules.resolve_or_import(plugin_id, entry)
                record.set_state(PluginState.LOADING)

                missing = missing_hooks(record.module)
                if missing:
                    raise PluginValidationError(
                        f"插件 {plugin_id} 缺少钩子: {', '.join(missing)}",
                        plugin_id,
                        missing,
                    )

                self._invoke_hook(record, "on_enable")
                record.set_state(PluginState.ENABLED)

        except EntryRestoreError as e:
            self._keyed.error("engine.python.plugin.load.exception", [plugin_id, e])
            self._emit(EngineEventContracts.PLUGIN_FAILED, plugin_id, stage="load")
            return False
        except PluginValidationError as e:
            self._keyed.error(
                "engine.python.plugin.load.invalid",
                [plugin_id, ", ".join(e.hooks) or e],
            )
            return self._load_failed(plugin_id, record, e)
        except PluginHookError as e:
            self._keyed.error(
                "engine.python.plugin.load.hookFailed",
                [plugin_id, e.__cause__ or e],
                exc_info=True,
            )
            return self._load_failed(plugin_id, record, e)
        except PluginLoadError as e:
            self._keyed.error(
                "engine.python.plugin.load.exception",
                [plugin_id, e.__cause__ or e],
                exc_info=True,
            )
            return self._load_failed(plugin_id, record, e)
        except Exception as e:
            self._keyed.error(
                "engine.python.plugin.load.unknownException", [plugin_id], exc_info=True
            )
            return self._load_failed(plugin_id, record, e)

        self._keyed.info("engine.python.plugin.loaded", [plugin_id])
        self._emit(
            EngineEventContracts.PLUGIN_LOADED,
            plugin_id,
            {"entry_path": str(record.entry_path), "module": record.module_name},
        )
        return True

    def _load_failed(
        self, plugin_id: str, record: Optional[PluginRecord], error: Exception
    ) -> bool:
        # 顶层代码或 on_enable 在失败前可能已经注册了资源
        self.retraction.retract(plugin_id)

        if record is None:
            record = self.modules.get(plugin_id)
        if record is not None:
            record.set_state(PluginState.ERROR, str(error))
        self._emit(
            EngineEventContracts.PLUGIN_FAILED,
            plugin_id,
            stage="load",
            error=str(error),
        )
        return False

    # 卸载
    def unload_plugin(self, plugin_id: str) -> bool:
        """
        禁用并中和插件

        插件记录和模块对象保留在缓存中，之后可以再次加载。
        重复卸载已禁用的插件不会再次调用 on_disable。

        Returns:
            卸载是否完全成功；钩子失败或入口文件操作失败时返回False
        """
        record = self.modules.get(plugin_id)
        if record is None:
            self._keyed.warning("engine.python.plugin.unload.notFound", [plugin_id])
            return False

        self._keyed.info("engine.python.plugin.unloading", [plugin_id])

        # 先撤销再进入闸门：等待闸门的分发拿到闸门后只会看到失效的注册项
        self.retraction.retract(plugin_id)

        hook_error: Optional[PluginError] = None
        try:
            with self.gate.hold():
                if record.state == PluginState.DISABLED:
                    self._keyed.info(
                        "engine.python.plugin.unload.alreadyDisabled", [plugin_id]
                    )
                else:
                    try:
                        self._invoke_hook(record, "on_disable")
                    except (PluginHookError, PluginValidationError) as e:
                        hook_error = e
                        self._keyed.error(
                            "engine.python.plugin.unload.hookFailed",
                            [plugin_id, e.__cause__ or e],
                            exc_info=True,
                        )

                self.reloader.neutralize(record, self.modules.refresh)

        except EntryMissingError as e:
            self._keyed.error(
                "engine.python.plugin.unload.entryMissing",
                [plugin_id, str(record.entry_path)],
            )
            return self._unload_failed(record, e)
        except EntryBackupError as e:
            self._keyed.error("engine.python.plugin.unload.backupFailed", [plugin_id, e])
            return self._unload_failed(record, e)
        except EntryRestoreError as e:
            self._keyed.critical(
                "engine.python.plugin.unload.restoreFailed",
                [plugin_id, str(e.backup_path), e],
                exc_info=True,
            )
            return self._unload_failed(record, e)
        except PluginLoadError as e:
            self._keyed.error(
                "engine.python.plugin.unload.exception",
                [plugin_id, e.__cause__ or e],
                exc_info=True,
            )
            return self._unload_failed(record, e)
        except Exception as e:
            self._keyed.error(
                "engine.python.plugin.unload.unknownException",
                [plugin_id],
                exc_info=True,
            )
            return self._unload_failed(record, e)

        if hook_error is not None:
            # 模块已被中和，只是钩子本身失败
            record.set_state(PluginState.DISABLED, str(hook_error))
            self._emit(
                EngineEventContracts.PLUGIN_FAILED,
                plugin_id,
                stage="unload",
                error=str(hook_error),
            )
            return False

        record.set_state(PluginState.DISABLED)
        self._keyed.info("engine.python.plugin.unloaded", [plugin_id])
        self._emit(EngineEventContracts.PLUGIN_UNLOADED, plugin_id)
        return True

    def _unload_failed(self, record: PluginRecord, error: Exception) -> bool:
        record.set_state(PluginState.ERROR, str(error))
        self._emit(
            EngineEventContracts.PLUGIN_FAILED,
            record.plugin_id,
            stage="unload",
            error=str(error),
        )
        return False

    # 重载
    def reload_plugin(self, plugin_id: str) -> bool:
        """
        不重启进程重载插件：卸载后用记录的入口路径重新加载

        on_disable 失败不会阻止重载，入口文件操作失败会。
        """
        record = self.modules.get(plugin_id)
        if record is None:
            self._keyed.warning("engine.python.plugin.unload.notFound", [plugin_id])
            return False

        self._keyed.info("engine.python.plugin.reloading", [plugin_id])

        if record.state != PluginState.DISABLED:
            self.unload_plugin(plugin_id)
            if record.state != PluginState.DISABLED:
                self._keyed.error("engine.python.plugin.reload.failed", [plugin_id])
                return False

        if not self.load_plugin(plugin_id, record.entry_path):
            self._keyed.error("engine.python.plugin.reload.failed", [plugin_id])
            return False

        self._keyed.info("engine.python.plugin.reloaded", [plugin_id])
        self._emit(EngineEventContracts.PLUGIN_RELOADED, plugin_id)
        return True

    # 钩子调用
    def _invoke_hook(self, record: PluginRecord, hook: str) -> Any:
        """在显式调用上下文中调用插件钩子，必须在闸门内调用"""
        func = getattr(record.module, hook, None)
        if func is None and hook in OPTIONAL_HOOKS:
            return None
        if not callable(func):
            raise PluginValidationError(
                f"插件 {record.plugin_id} 缺少钩子: {hook}",
                record.plugin_id,
                (hook,),
            )
        try:
            with calling_plugin(record.plugin_id):
                return func()
        except Exception as e:
            raise PluginHookError(
                f"插件 {record.plugin_id} 的 {hook} 执行失败: {e}",
                record.plugin_id,
                hook,
            ) from e

    # 查询
    def get_calling_plugin(self) -> Optional[str]:
        """推断当前调用宿主API的插件，宿主内部调用返回None"""
        return self.attribution.get_calling_plugin()

    def get_plugin(self, plugin_id: str) -> Optional[PluginRecord]:
        """获取插件记录"""
        return self.modules.get(plugin_id)

    def list_plugins(self) -> Dict[str, PluginState]:
        """列出所有导入过的插件及其状态"""
        return {record.plugin_id: record.state for record in self.modules.records()}

    def get_enabled_plugins(self) -> List[str]:
        return [
            record.plugin_id
            for record in self.modules.records()
            if record.state == PluginState.ENABLED
        ]

    def is_enabled(self, plugin_id: str) -> bool:
        record = self.modules.get(plugin_id)
        return record is not None and record.state == PluginState.ENABLED

    # 热重载
    def start_hot_reload(self) -> PluginHotReloader:
        """开始监听插件源码变更"""
        if self._hot_reloader is None:
            self._hot_reloader = PluginHotReloader(
                self,
                self.config.resolved_plugins_root,
                debounce_delay=self.config.hot_reload_delay,
                logger=self._keyed,
            )
        self._hot_reloader.start()
        return self._hot_reloader

    def stop_hot_reload(self) -> None:
        if self._hot_reloader is not None:
            self._hot_reloader.stop()

    @property
    def hot_reloader(self) -> Optional[PluginHotReloader]:
        return self._hot_reloader

    # 事件
    def _emit(
        self,
        event_type: str,
        plugin_id: str,
        data: Optional[Dict[str, Any]] = None,
        stage: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        """发布生命周期事件，失败只记录日志"""
        try:
            event = create_plugin_event(event_type, plugin_id, data, stage, error)
            self.event_bus.publish_cloud_event(event)
        except Exception as e:
            self._logger.warning(f"Failed to emit {event_type} for {plugin_id}: {e}")

    # 清理
    def shutdown(self) -> None:
        """卸载所有已启用的插件并停止后台组件"""
        enabled = self.get_enabled_plugins()
        self._keyed.info("engine.python.shutdown", [len(enabled)])

        self.stop_hot_reload()
        for plugin_id in enabled:
            self.unload_plugin(plugin_id)

        if self._owns_scheduler:
            self.scheduler.stop()
        if self._owns_event_bus:
            self.event_bus.shutdown()

    def __enter__(self) -> "PythonPluginEngine":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.shutdown()
