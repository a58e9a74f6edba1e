"""
Centralized scheduling service for all background tasks.

All periodic work in the simulator (the one-minute simulation tick, the
display refresh, weather polling) and the irrigation auto-stop timer go
through this single service.

Design Principles:
- Single scheduler loop thread
- Bounded worker pool for job execution (prevents unbounded thread creation)
- Namespace-based job organization
- Interval and one-time schedules
- Injected clock so tests can drive time deterministically
"""

from __future__ import annotations

import heapq
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable

from dripsim.utils.time import Clock, SystemClock

logger = logging.getLogger(__name__)


class ScheduleType(Enum):
    """Types of schedules."""

    INTERVAL = "interval"  # Every N seconds
    ONCE = "once"  # One-time execution


@dataclass
class JobResult:
    """Result of a job execution."""

    job_id: str
    success: bool
    started_at: datetime
    completed_at: datetime
    result: Any = None
    error: str | None = None

    @property
    def duration_seconds(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "success": self.success,
            "started_at": self.started_at.isoformat(),
            "duration_seconds": round(self.duration_seconds, 3),
            "error": self.error,
        }


@dataclass
class ScheduledJob:
    """A scheduled job configuration."""

    job_id: str
    task_name: str
    namespace: str  # e.g., "simulation", "display", "weather", "soil"
    schedule_type: ScheduleType
    enabled: bool = True

    # Task execution
    args: tuple = field(default_factory=tuple)
    kwargs: dict[str, Any] = field(default_factory=dict)

    # Schedule configuration
    interval_seconds: int | None = None  # For INTERVAL type
    run_at: datetime | None = None  # For ONCE type

    # Execution tracking
    next_run: datetime | None = None
    last_run: datetime | None = None
    run_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary (for API responses)."""
        return {
            "job_id": self.job_id,
            "task_name": self.task_name,
            "namespace": self.namespace,
            "schedule_type": self.schedule_type.value,
            "enabled": self.enabled,
            "interval_seconds": self.interval_seconds,
            "run_at": self.run_at.isoformat() if self.run_at else None,
            "next_run": self.next_run.isoformat() if self.next_run else None,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "run_count": self.run_count,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "last_error": self.last_error,
        }


class UnifiedScheduler:
    """
    Centralized scheduler for all background tasks.

    - No unbounded thread creation: uses a bounded ThreadPoolExecutor
      (``max_workers=0`` executes due jobs inline on the loop thread).
    - Heap de-duplication: heap stores immutable entries and skips stale items.
    - Interval drift reduction: INTERVAL schedules advance from the *scheduled time*,
      not from "now" (fixed-rate scheduling).

    Implementation note on the heap:
    - We store heap entries as tuples: (run_at_ts, seq, job_id)
    - seq is a monotonic counter to ensure stable ordering when timestamps match
    - We do NOT try to delete heap entries in-place (expensive); instead, we skip stale entries:
        - job removed -> skip
        - job disabled -> skip
        - job.next_run changed -> skip
    """

    def __init__(
        self,
        check_interval_seconds: float = 1.0,
        max_history: int = 1000,
        max_workers: int = 4,
        *,
        clock: Clock | None = None,
    ):
        """
        Initialize the unified scheduler.

        Args:
            check_interval_seconds: How often to check for due jobs (default 1s)
            max_history: Maximum job execution history to keep
            max_workers: Maximum number of concurrent job executions (0 = inline)
            clock: Wall clock used for due-time decisions
        """
        self._check_interval = float(check_interval_seconds)
        self._max_history = int(max_history)
        self._max_workers = max(0, int(max_workers))
        self._clock = clock or SystemClock()

        # Job storage
        self._jobs: dict[str, ScheduledJob] = {}
        self._tasks: dict[str, Callable] = {}  # task_name -> function

        # Heap storage
        # Entries: (run_at_ts, seq, job_id)
        self._job_heap: list[tuple[float, int, str]] = []
        self._heap_seq = 0

        # Execution history
        self._history: list[JobResult] = []

        # Thread management
        self._running = False
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._job_lock = threading.RLock()
        self._executor: ThreadPoolExecutor | None = None

        logger.info("UnifiedScheduler initialized (workers=%s)", self._max_workers or "inline")

    # ==================== Task Registration ====================

    def register_task(self, name: str, func: Callable) -> None:
        """Register a task function programmatically."""
        self._tasks[name] = func
        logger.debug("Registered task: %s", name)

    def clear_jobs(self) -> None:
        """Remove all scheduled jobs and pending heap entries."""
        with self._job_lock:
            self._jobs.clear()
            self._job_heap.clear()
            self._heap_seq = 0

    def _ensure_executor(self) -> None:
        """Ensure an executor is available (supports stop() -> start() restarts)."""
        if self._executor is not None or self._max_workers == 0:
            return
        self._executor = ThreadPoolExecutor(
            max_workers=self._max_workers,
            thread_name_prefix="UnifiedSchedulerJob",
        )

    # ==================== Heap Helpers ====================

    def _push_heap(self, job: ScheduledJob) -> None:
        """
        Push the job's next_run into the heap.

        Existing entries for this job are left in place; _process_due_jobs()
        skips stale entries by validating that the job exists, is enabled and
        that the entry timestamp equals job.next_run.
        """
        if not job.enabled or not job.next_run:
            return
        self._heap_seq += 1
        heapq.heappush(self._job_heap, (job.next_run.timestamp(), self._heap_seq, job.job_id))

    # ==================== Job Scheduling ====================

    def schedule_interval(
        self,
        task_name: str,
        interval_seconds: int,
        *,
        job_id: str | None = None,
        namespace: str | None = None,
        args: tuple = (),
        kwargs: dict[str, Any] | None = None,
        enabled: bool = True,
        start_immediately: bool = False,
    ) -> ScheduledJob:
        """Schedule a task to run at regular intervals."""
        if job_id is None:
            job_id = f"{task_name}_every_{int(interval_seconds)}s"

        if namespace is None:
            namespace = task_name.split(".")[0] if "." in task_name else "default"

        now = self._clock.now()
        next_run = now if start_immediately else (now + timedelta(seconds=int(interval_seconds)))

        job = ScheduledJob(
            job_id=job_id,
            task_name=task_name,
            namespace=namespace,
            schedule_type=ScheduleType.INTERVAL,
            enabled=enabled,
            args=args,
            kwargs=kwargs or {},
            interval_seconds=int(interval_seconds),
            next_run=next_run,
        )

        self._add_job(job)
        logger.info("Scheduled interval job: %s (every %ss)", job_id, interval_seconds)
        return job

    def schedule_once(
        self,
        task_name: str,
        run_at: datetime,
        *,
        job_id: str | None = None,
        namespace: str | None = None,
        args: tuple = (),
        kwargs: dict[str, Any] | None = None,
    ) -> ScheduledJob:
        """Schedule a task to run once at a specific time.

        Re-using a ``job_id`` replaces the pending run.
        """
        if job_id is None:
            job_id = f"{task_name}_once_{int(run_at.timestamp())}"

        if namespace is None:
            namespace = task_name.split(".")[0] if "." in task_name else "default"

        job = ScheduledJob(
            job_id=job_id,
            task_name=task_name,
            namespace=namespace,
            schedule_type=ScheduleType.ONCE,
            enabled=True,
            args=args,
            kwargs=kwargs or {},
            run_at=run_at,
            next_run=run_at,
        )

        self._add_job(job)
        logger.info("Scheduled one-time job: %s (at %s)", job_id, run_at)
        return job

    def run_now(
        self,
        task_name: str,
        *,
        args: tuple = (),
        kwargs: dict[str, Any] | None = None,
    ) -> JobResult | None:
        """Run a task immediately (synchronously)."""
        func = self._tasks.get(task_name)
        if func is None:
            logger.error("Task not found: %s", task_name)
            return None

        started_at = self._clock.now()
        job_id = f"{task_name}_immediate_{int(started_at.timestamp())}"
        try:
            result = func(*args, **(kwargs or {}))
        except Exception as e:
            logger.error("Immediate task %s failed: %s", task_name, e, exc_info=True)
            job_result = JobResult(
                job_id=job_id,
                success=False,
                started_at=started_at,
                completed_at=self._clock.now(),
                error=str(e),
            )
            self._record_history(job_result)
            return job_result

        job_result = JobResult(
            job_id=job_id,
            success=True,
            started_at=started_at,
            completed_at=self._clock.now(),
            result=result,
        )
        self._record_history(job_result)
        return job_result

    # ==================== Job Management ====================

    def _add_job(self, job: ScheduledJob) -> None:
        """Add a job to the scheduler."""
        with self._job_lock:
            self._jobs[job.job_id] = job
            self._push_heap(job)

    def get_job(self, job_id: str) -> ScheduledJob | None:
        """Get a job by ID."""
        return self._jobs.get(job_id)

    def get_jobs(
        self,
        namespace: str | None = None,
        enabled_only: bool = False,
    ) -> list[ScheduledJob]:
        """Get all jobs, optionally filtered."""
        jobs = list(self._jobs.values())

        if namespace:
            jobs = [j for j in jobs if j.namespace == namespace]

        if enabled_only:
            jobs = [j for j in jobs if j.enabled]

        return jobs

    def get_namespaces(self) -> set[str]:
        """Get all job namespaces."""
        return {job.namespace for job in self._jobs.values()}

    # ==================== Scheduler Control ====================

    def start(self) -> None:
        """Start the scheduler background thread."""
        if self._running:
            logger.warning("Scheduler already running")
            return

        self._ensure_executor()

        self._running = True
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            daemon=True,
            name="UnifiedScheduler",
        )
        self._thread.start()
        logger.info("UnifiedScheduler started")

    def stop(self, wait: bool = True, timeout: float = 5.0) -> None:
        """
        Stop the scheduler.

        Args:
            wait: Wait for scheduler thread to finish
            timeout: Maximum wait time in seconds
        """
        if not self._running:
            return

        self._running = False
        self._stop_event.set()

        if wait and self._thread:
            self._thread.join(timeout=timeout)

        if self._executor:
            self._executor.shutdown(wait=wait)
            self._executor = None

        logger.info("UnifiedScheduler stopped")

    def shutdown(self, wait: bool = True, timeout: float = 5.0) -> None:
        """Alias for stop(); matches other services' shutdown() convention."""
        self.stop(wait=wait, timeout=timeout)

    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running

    def _run_loop(self) -> None:
        """Main scheduler loop."""
        logger.debug("Scheduler loop started")

        while self._running:
            try:
                self._process_due_jobs()
            except Exception as e:
                logger.error("Error in scheduler loop: %s", e, exc_info=True)
            self._stop_event.wait(self._check_interval)

        logger.debug("Scheduler loop ended")

    def run_pending(self) -> int:
        """Execute every job that is due now. Returns the number dispatched."""
        return self._process_due_jobs()

    # ==================== Core Scheduling Logic ====================

    def _process_due_jobs(self) -> int:
        """Process all jobs that are due to run."""
        now_ts = self._clock.now().timestamp()
        due: list[tuple[str, datetime]] = []

        with self._job_lock:
            while self._job_heap:
                run_at_ts, _seq, job_id = self._job_heap[0]

                # Not due yet
                if run_at_ts > now_ts:
                    break

                heapq.heappop(self._job_heap)

                job = self._jobs.get(job_id)
                if not job:
                    continue  # removed -> stale heap entry

                if not job.enabled or not job.next_run:
                    continue  # disabled -> skip

                # Stale entry check: job.next_run changed since this entry was pushed
                if abs(job.next_run.timestamp() - run_at_ts) > 1e-6:
                    continue

                scheduled_for = job.next_run

                # Schedule next run *before* execution so long jobs never miss a slot
                self._schedule_next_run(job, reference_time=scheduled_for, scheduled_time=scheduled_for)
                self._push_heap(job)
                due.append((job_id, scheduled_for))

        for job_id, scheduled_for in due:
            if self._executor is None:
                self._execute_job(job_id, scheduled_for)
                continue
            try:
                self._executor.submit(self._execute_job, job_id, scheduled_for)
            except RuntimeError as e:
                logger.error("Failed to submit job %s to executor: %s", job_id, e, exc_info=True)
        return len(due)

    def _execute_job(self, job_id: str, scheduled_for: datetime) -> None:
        """
        Execute a single job.

        Args:
            job_id: Job identifier
            scheduled_for: The time this run was scheduled to occur
        """
        with self._job_lock:
            job = self._jobs.get(job_id)

        # Job may have been removed between scheduling and execution
        if not job:
            return

        started_at = self._clock.now()

        try:
            func = self._tasks.get(job.task_name)
            if func is None:
                raise ValueError(f"Task function not found: {job.task_name}")

            result = func(*job.args, **job.kwargs)

            with self._job_lock:
                job.last_run = started_at
                job.run_count += 1
                job.success_count += 1
                job.last_error = None

            job_result = JobResult(
                job_id=job.job_id,
                success=True,
                started_at=started_at,
                completed_at=self._clock.now(),
                result=result,
            )
            self._record_history(job_result)

            logger.debug(
                "Job %s completed in %.2fs (scheduled_for=%s)",
                job.job_id,
                job_result.duration_seconds,
                scheduled_for.isoformat(),
            )

        except Exception as e:
            with self._job_lock:
                job.last_run = started_at
                job.run_count += 1
                job.failure_count += 1
                job.last_error = str(e)

            self._record_history(
                JobResult(
                    job_id=job.job_id,
                    success=False,
                    started_at=started_at,
                    completed_at=self._clock.now(),
                    error=str(e),
                )
            )
            logger.error("Job %s failed: %s", job.job_id, e, exc_info=True)

    def _schedule_next_run(
        self,
        job: ScheduledJob,
        *,
        reference_time: datetime,
        scheduled_time: datetime | None = None,
    ) -> None:
        """
        Calculate and set the next run time for a job.

        INTERVAL schedules advance from the scheduled time (fixed-rate) and
        skip ahead rather than pile up missed runs after a suspend.
        """
        if job.schedule_type == ScheduleType.INTERVAL:
            interval = int(job.interval_seconds or 60)
            base = scheduled_time or reference_time
            next_run = base + timedelta(seconds=interval)

            now = self._clock.now()
            if next_run <= now:
                delta_seconds = (now - next_run).total_seconds()
                skips = int(delta_seconds // interval) + 1
                next_run = next_run + timedelta(seconds=skips * interval)

            job.next_run = next_run
            return

        if job.schedule_type == ScheduleType.ONCE:
            job.next_run = None
            return

    def _record_history(self, result: JobResult) -> None:
        """Record job execution in history."""
        with self._job_lock:
            self._history.append(result)
            if len(self._history) > self._max_history:
                self._history = self._history[-self._max_history :]

    # ==================== Status & History ====================

    def get_status(self) -> dict[str, Any]:
        """Get scheduler status."""
        with self._job_lock:
            enabled_jobs = [j for j in self._jobs.values() if j.enabled]
            pending = sum(1 for j in enabled_jobs if j.next_run is not None)

            return {
                "running": self._running,
                "total_jobs": len(self._jobs),
                "enabled_jobs": len(enabled_jobs),
                "namespaces": sorted(self.get_namespaces()),
                "pending_jobs": pending,
                "history_size": len(self._history),
                "recent_failures": sum(1 for r in self._history[-20:] if not r.success),
                "max_workers": self._max_workers,
                "jobs": [j.to_dict() for j in self._jobs.values()],
            }

    def health_check(self) -> dict[str, Any]:
        """
        Perform a health check on the scheduler.

        Returns:
            Health report with overall status, statistics and stale interval jobs
        """
        with self._job_lock:
            now = self._clock.now()

            is_running = self._running
            enabled_jobs = [j for j in self._jobs.values() if j.enabled]

            recent_history = self._history[-50:] if self._history else []
            recent_failures = [r for r in recent_history if not r.success]
            failure_rate = len(recent_failures) / len(recent_history) if recent_history else 0.0

            stale_jobs = []
            for job in enabled_jobs:
                if job.last_run and job.schedule_type == ScheduleType.INTERVAL:
                    expected_interval = timedelta(seconds=job.interval_seconds or 60)
                    time_since_last = now - job.last_run
                    if time_since_last > expected_interval * 3:  # 3x overdue
                        stale_jobs.append(
                            {
                                "job_id": job.job_id,
                                "task_name": job.task_name,
                                "last_run": job.last_run.isoformat(),
                                "overdue_seconds": time_since_last.total_seconds() - (job.interval_seconds or 60),
                            }
                        )

            if not is_running:
                health, reason = "unhealthy", "Scheduler is not running"
            elif failure_rate > 0.5:
                health, reason = "unhealthy", f"High failure rate: {failure_rate:.0%}"
            elif stale_jobs:
                health, reason = "degraded", f"{len(stale_jobs)} stale job(s) detected"
            elif failure_rate > 0.2:
                health, reason = "degraded", f"Elevated failure rate: {failure_rate:.0%}"
            else:
                health, reason = "healthy", "All systems operational"

            return {
                "health": health,
                "reason": reason,
                "timestamp": now.isoformat(),
                "scheduler_running": is_running,
                "statistics": {
                    "total_jobs": len(self._jobs),
                    "enabled_jobs": len(enabled_jobs),
                    "recent_executions": len(recent_history),
                    "recent_failures": len(recent_failures),
                    "failure_rate": round(failure_rate, 3),
                },
                "stale_jobs": stale_jobs,
            }

    def get_history(self, job_id: str | None = None, limit: int = 100) -> list[JobResult]:
        """Get job execution history, newest first."""
        results = list(self._history)
        if job_id:
            results = [r for r in results if r.job_id == job_id]
        return sorted(results, key=lambda r: r.started_at, reverse=True)[: int(limit)]
