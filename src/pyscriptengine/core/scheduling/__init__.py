# -*- coding: utf-8 -*-
"""
任务调度
"""

from .scheduler import ScheduleJob, TaskScheduler

__all__ = ["ScheduleJob", "TaskScheduler"]
