"""Recurring export schedules.

This package provides:
- next_run: next trigger computation for daily/weekly/monthly/custom recurrence
- ScheduleManager: owner-scoped CRUD over schedule definitions
"""

from .manager import ScheduleManager
from .next_run import next_run

__all__ = ["ScheduleManager", "next_run"]
