# -*- coding: utf-8 -*-
"""
脚本任务调度器

负责插件注册的定时任务，每个任务带所属插件标识，
插件卸载时可以一次性撤销其全部任务。
"""

import itertools
import logging
import threading
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Union

PluginResolver = Callable[[], Optional[str]]
# 以 dispatcher(body, *args) 的形式回调插件代码，例如执行闸门的 run
Dispatcher = Callable[..., Any]

_job_ids = itertools.count(1)


class ScheduleJob:
    """调度任务"""

    def __init__(
        self,
        job_id: str,
        func: Callable,
        job_type: str,
        plugin: Optional[str] = None,
        args: tuple = (),
        kwargs: Optional[dict] = None,
        interval: Optional[Union[int, float, str]] = None,
    ):
        self.job_id = job_id
        self.func = func
        self.job_type = job_type  # 'interval', 'delay'
        self.plugin = plugin
        self.args = args
        self.kwargs = kwargs or {}
        self.interval = interval
        self.active = True
        self.run_count = 0
        self.last_run: Optional[datetime] = None
        self.next_run: Optional[datetime] = None
        self._calculate_next_run()

    def _calculate_next_run(self) -> None:
        """计算下次运行时间"""
        now = datetime.now()
        if self.interval is None:
            seconds: float = 60
        elif isinstance(self.interval, str):
            seconds = self._parse_interval_string(self.interval)
        else:
            seconds = float(self.interval)
        self.next_run = now + timedelta(seconds=seconds)

    @staticmethod
    def _parse_interval_string(interval_str: str) -> float:
        """解析间隔字符串，如 "5m", "1h", "30s"，返回秒数"""
        if not interval_str:
            return 60

        interval_str = interval_str.lower().strip()

        if interval_str.endswith("s"):
            return float(interval_str[:-1])
        elif interval_str.endswith("m"):
            return float(interval_str[:-1]) * 60
        elif interval_str.endswith("h"):
            return float(interval_str[:-1]) * 3600
        else:
            return float(interval_str)

    def should_run(self, now: Optional[datetime] = None) -> bool:
        """检查是否应该运行"""
        if not self.active or self.next_run is None:
            return False
        return (now or datetime.now()) >= self.next_run

    def run(self) -> Any:
        """执行任务"""
        self.last_run = datetime.now()
        self.run_count += 1
        try:
            return self.func(*self.args, **self.kwargs)
        finally:
            if self.job_type == "interval":
                self._calculate_next_run()
            else:
                self.next_run = None
                self.active = False


class TaskScheduler:
    """任务调度器"""

    def __init__(
        self,
        tick_interval: float = 0.1,
        plugin_resolver: Optional[PluginResolver] = None,
        dispatcher: Optional[Dispatcher] = None,
    ):
        self._logger = logging.getLogger(self.__class__.__name__)
        self._jobs: Dict[str, ScheduleJob] = {}
        self._lock = threading.RLock()
        self._tick_interval = tick_interval
        self._plugin_resolver = plugin_resolver
        self._dispatcher = dispatcher
        self._running = False
        self._scheduler_thread: Optional[threading.Thread] = None

    def set_plugin_resolver(self, resolver: Optional[PluginResolver]) -> None:
        """设置调用方插件推断函数"""
        self._plugin_resolver = resolver

    def set_dispatcher(self, dispatcher: Optional[Dispatcher]) -> None:
        """设置任务函数的执行包装，None 表示直接调用"""
        self._dispatcher = dispatcher

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """启动调度线程"""
        if self._running:
            return

        self._running = True
        self._scheduler_thread = threading.Thread(
            target=self._scheduler_loop, name="task-scheduler", daemon=True
        )
        self._scheduler_thread.start()
        self._logger.info("Task scheduler started")

    def stop(self) -> None:
        """停止调度线程"""
        self._running = False
        if self._scheduler_thread:
            self._scheduler_thread.join(timeout=5)
            self._scheduler_thread = None
        self._logger.info("Task scheduler stopped")

    def _scheduler_loop(self) -> None:
        """调度循环"""
        while self._running:
            try:
                self.run_pending()
            except Exception as e:
                self._logger.error(f"Error in scheduler loop: {e}")
            time.sleep(self._tick_interval)

    def run_pending(self, now: Optional[datetime] = None) -> int:
        """
        运行所有到期任务

        Returns:
            本次执行的任务数量
        """
        with self._lock:
            due = [job for job in self._jobs.values() if job.should_run(now)]

        executed = 0
        for job in due:
            if self._dispatch(self._run_job, job):
                executed += 1

            if not job.active:
                with self._lock:
                    if self._jobs.get(job.job_id) is job:
                        del self._jobs[job.job_id]

        return executed

    def _dispatch(self, body: Callable[..., Any], *args: Any) -> Any:
        if self._dispatcher is None:
            return body(*args)
        return self._dispatcher(body, *args)

    def _run_job(self, job: ScheduleJob) -> bool:
        """在分发器内执行：确认任务未被撤销后运行"""
        # 快照之后可能已被撤销
        with self._lock:
            if not job.active:
                return False
        try:
            job.run()
            self._logger.debug(f"Executed job: {job.job_id}")
        except Exception as e:
            self._logger.error(
                f"Error executing job {job.job_id} (plugin={job.plugin}): {e}"
            )
        return True

    def _add_job(
        self,
        func: Callable,
        job_type: str,
        interval: Union[int, float, str],
        plugin: Optional[str],
        args: tuple,
        kwargs: Optional[dict],
        job_id: Optional[str],
    ) -> str:
        if not callable(func):
            raise TypeError("Task function must be callable")

        if plugin is None and self._plugin_resolver is not None:
            plugin = self._plugin_resolver()

        job = ScheduleJob(
            job_id=job_id or f"job_{next(_job_ids)}",
            func=func,
            job_type=job_type,
            plugin=plugin,
            args=args,
            kwargs=kwargs,
            interval=interval,
        )

        with self._lock:
            previous = self._jobs.get(job.job_id)
            if previous is not None:
                previous.active = False
            self._jobs[job.job_id] = job

        self._logger.info(
            f"Added {job_type} job: {job.job_id} every {interval} (plugin={plugin})"
        )
        return job.job_id

    def add_interval_job(
        self,
        func: Callable,
        interval: Union[int, float, str],
        plugin: Optional[str] = None,
        args: tuple = (),
        kwargs: Optional[dict] = None,
        job_id: Optional[str] = None,
    ) -> str:
        """添加间隔执行任务"""
        return self._add_job(func, "interval", interval, plugin, args, kwargs, job_id)

    def add_delayed_job(
        self,
        func: Callable,
        delay: Union[int, float, str],
        plugin: Optional[str] = None,
        args: tuple = (),
        kwargs: Optional[dict] = None,
        job_id: Optional[str] = None,
    ) -> str:
        """添加延迟执行一次的任务"""
        return self._add_job(func, "delay", delay, plugin, args, kwargs, job_id)

    def remove_job(self, job_id: str) -> bool:
        """移除任务"""
        with self._lock:
            job = self._jobs.pop(job_id, None)
            if job is None:
                return False
            job.active = False
        self._logger.info(f"Removed job: {job_id}")
        return True

    def remove_plugin_tasks(self, plugin_id: str) -> int:
        """
        撤销某插件的全部任务

        Returns:
            撤销的任务数量
        """
        with self._lock:
            job_ids = [
                job_id for job_id, job in self._jobs.items() if job.plugin == plugin_id
            ]
            for job_id in job_ids:
                self._jobs.pop(job_id).active = False

        if job_ids:
            self._logger.info(f"Removed {len(job_ids)} jobs of plugin {plugin_id}")
        return len(job_ids)

    def get_plugin_tasks(self, plugin_id: str) -> List[str]:
        """获取某插件的任务ID列表"""
        with self._lock:
            return [
                job_id for job_id, job in self._jobs.items() if job.plugin == plugin_id
            ]

    def get_jobs(self) -> Dict[str, Dict[str, Any]]:
        """获取所有任务状态"""
        with self._lock:
            return {
                job_id: {
                    "type": job.job_type,
                    "plugin": job.plugin,
                    "active": job.active,
                    "run_count": job.run_count,
                    "last_run": job.last_run,
                    "next_run": job.next_run,
                    "interval": job.interval,
                }
                for job_id, job in self._jobs.items()
            }
