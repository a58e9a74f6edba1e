"""
Scheduled Tasks: background task definitions for the UnifiedScheduler.

Tasks by namespace:
- simulation.*: the moisture tick (sole driver of the model)
- display.*: read-only status snapshot for dashboards
- weather.*: provider poll with fallback
- soil.*: one-shot irrigation auto-stop

Usage:
    from dripsim.workers.scheduled_tasks import configure_scheduler

    configure_scheduler(container.scheduler, container)
"""

from __future__ import annotations

import logging
from datetime import timedelta
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable

from dripsim.utils.time import Clock

if TYPE_CHECKING:
    from dripsim.services.container import ServiceContainer
    from dripsim.workers.unified_scheduler import UnifiedScheduler

logger = logging.getLogger(__name__)

AUTO_STOP_TASK = "soil.auto_stop"
AUTO_STOP_JOB_ID = "soil_auto_stop"


# ==================== Simulation Namespace Tasks ====================


def simulation_tick_task(container: "ServiceContainer") -> dict[str, Any]:
    """
    Advance the moisture model by the time since the previous tick.

    Also reconciles schedule copies and fires any due slot.
    """
    return container.simulation_driver.tick().to_dict()


def display_refresh_task(container: "ServiceContainer") -> dict[str, Any]:
    return container.simulation_driver.refresh_display()


# ==================== Weather Namespace Tasks ====================


def weather_poll_task(container: "ServiceContainer") -> dict[str, Any]:
    condition = container.weather_service.poll()
    return {"condition": condition.value, "using_fallback": container.weather_service.using_fallback}


# ==================== Soil Namespace Tasks ====================


def soil_auto_stop_task(container: "ServiceContainer") -> dict[str, Any]:
    """End the running drip cycle once its duration has elapsed."""
    return {"stopped": container.coordinator.stop_irrigation()}


def auto_stop_timer(scheduler: "UnifiedScheduler", clock: Clock) -> Callable[[float], None]:
    """Build the callback the soil engine uses to arrange its own stop.

    The job id is fixed, so re-arming replaces any pending stop.
    """

    def _arm(minutes: float) -> None:
        run_at = clock.now() + timedelta(minutes=minutes)
        scheduler.schedule_once(AUTO_STOP_TASK, run_at, job_id=AUTO_STOP_JOB_ID, namespace="soil")
        logger.debug("Irrigation auto-stop armed for %s", run_at.isoformat(timespec="seconds"))

    return _arm


# ==================== Task Registration ====================


def register_all_tasks(
    scheduler: "UnifiedScheduler",
    container: "ServiceContainer",
) -> None:
    """
    Register all tasks with the unified scheduler.

    This should be called once during application startup.

    Args:
        scheduler: UnifiedScheduler instance
        container: ServiceContainer with all services
    """
    logger.info("Registering scheduled tasks...")

    def bind_noargs(task_fn):
        @wraps(task_fn)
        def bound_task():
            try:
                return task_fn(container)
            # Intentional broad catch: this wrapper executes arbitrary scheduled task callables.
            except Exception as e:
                logger.exception("Scheduled task %s raised: %s", task_fn.__name__, e)
                # Re-raise to let scheduler record failure in history as well
                raise

        return bound_task

    scheduler.register_task("simulation.tick", bind_noargs(simulation_tick_task))
    scheduler.register_task("display.refresh", bind_noargs(display_refresh_task))
    scheduler.register_task("weather.poll", bind_noargs(weather_poll_task))
    scheduler.register_task(AUTO_STOP_TASK, bind_noargs(soil_auto_stop_task))

    logger.info("Registered %s tasks", len(scheduler._tasks))


def schedule_default_jobs(scheduler: "UnifiedScheduler", container: "ServiceContainer") -> None:
    """
    Schedule the periodic jobs from configuration.

    Call this after register_all_tasks().
    """
    config = container.config
    logger.info("Scheduling default jobs...")

    scheduler.schedule_interval(
        "simulation.tick",
        interval_seconds=config.tick_interval_seconds,
        job_id="simulation_tick",
        namespace="simulation",
    )

    scheduler.schedule_interval(
        "display.refresh",
        interval_seconds=config.display_refresh_seconds,
        job_id="display_refresh",
        namespace="display",
    )

    if config.weather_enabled:
        scheduler.schedule_interval(
            "weather.poll",
            interval_seconds=config.weather_poll_seconds,
            job_id="weather_poll",
            namespace="weather",
            start_immediately=True,
        )

    jobs = scheduler.get_jobs(enabled_only=True)
    logger.info("Scheduled %s default jobs", len(jobs))

    for job in jobs:
        logger.debug("  - %s: %s (%s)", job.job_id, job.schedule_type.value, job.namespace)


def configure_scheduler(
    scheduler: "UnifiedScheduler",
    container: "ServiceContainer",
    *,
    reset_jobs: bool = True,
    start: bool = True,
) -> None:
    """Register tasks, apply default schedules, and optionally start the scheduler."""
    if reset_jobs:
        scheduler.clear_jobs()

    register_all_tasks(scheduler, container)
    schedule_default_jobs(scheduler, container)

    if start:
        scheduler.start()
