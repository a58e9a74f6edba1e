"""
Workers module for background services and scheduled tasks.

This module contains:
- unified_scheduler: Scheduler for all background jobs (interval and one-shot)
- scheduled_tasks: Task definitions organized by namespace (simulation.*, display.*, weather.*, soil.*)
- simulation_cli: ``dripsim-sim`` command line entry point
"""

__all__ = [
    "UnifiedScheduler",
    "configure_scheduler",
    "register_all_tasks",
    "schedule_default_jobs",
]

from dripsim.workers.unified_scheduler import UnifiedScheduler
from dripsim.workers.scheduled_tasks import configure_scheduler, register_all_tasks, schedule_default_jobs
