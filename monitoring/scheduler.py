"""
============================================================================
INTERNET MONITOR - SCHEDULER
============================================================================
An asyncio-native scheduler for the monitor's periodic work.  Every loop is
one ``asyncio.Task`` owned by a ``ScheduledJob``; there is no thread pool
and no external broker.

Loops
-----
1.  liveness      every ``monitor_interval`` seconds (fixed rate, first tick
                  immediately).  The loop waits for each tick, so a slow
                  cycle delays the next one instead of overlapping it.

2.  bandwidth     cron ``*/test_interval`` on the minute field, evaluated
                  against the local wall clock.  Each trigger runs the speed
                  test in its own task; a trigger that finds the previous
                  test still running is skipped.

3.  maintenance   every ``maintenance_interval`` seconds (history pruning).

Restart
-------
``restart()`` cancels the liveness and bandwidth loop tasks and spawns new
ones, so there is never more than one task per loop.  Neither a running
liveness tick nor an in-flight speed test is cancelled: the tick finishes
with the settings it started with and the new loop begins once it is done.

Failures
--------
Any exception raised by a tick is caught at the tick boundary, logged as a
``SchedulerTickFailure`` and the loop carries on with its next tick.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from config.settings import MonitoringSettings, get_settings
from exceptions import SchedulerTickFailure
from monitoring.models import MonitorSettings
from utils.helpers import TimeHelper
from utils.logger import get_logger


logger = get_logger("Scheduler")

Tick = Callable[[], Awaitable[Any]]

LIVENESS = "liveness"
BANDWIDTH = "bandwidth"
MAINTENANCE = "maintenance"


def next_cron_run(now: datetime, every_minutes: int) -> datetime:
    """
    Next wall-clock minute matching the cron minute field ``*/every_minutes``.

    The match is strictly after *now*.  As in cron, values of 60 and above
    only match minute 0.
    """
    candidate = now.replace(second=0, microsecond=0) + timedelta(minutes=1)
    while candidate.minute % every_minutes != 0:
        candidate += timedelta(minutes=1)
    return candidate


# ============================================================================
# JOB DEFINITION
# ============================================================================

@dataclass
class ScheduledJob:
    """
    Bookkeeping for one loop.

    Attributes
    ----------
    name : str
        Loop identifier (used in logs).
    schedule : str
        Human-readable schedule, e.g. ``every 5s`` or ``*/30 * * * *``.
    tick : Callable
        Async callable (no arguments) that performs one run.
    task : asyncio.Task | None
        The loop task; None while stopped.
    current_run : asyncio.Task | None
        The tick the interval loop is waiting on.  It outlives a restart.
    last_run / next_run : datetime | None
        Wall-clock times of the last finished and the next planned run.
    run_count / error_count : int
        Successful and failed runs since startup.
    """
    name: str
    schedule: str
    tick: Tick
    task: Optional[asyncio.Task] = None
    current_run: Optional[asyncio.Task] = None
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    run_count: int = 0
    error_count: int = 0

    @property
    def is_active(self) -> bool:
        return self.task is not None and not self.task.done()


# ============================================================================
# SCHEDULER
# ============================================================================

class Scheduler:
    """
    Owns the liveness, bandwidth and maintenance loops.

    Usage
    -----
        scheduler = Scheduler(engine.run_liveness_cycle,
                              engine.run_scheduled_bandwidth_test,
                              engine.run_maintenance)
        await scheduler.start(settings)
        await scheduler.restart(new_settings)
        await scheduler.stop()
    """

    def __init__(
        self,
        liveness_tick: Tick,
        bandwidth_tick: Tick,
        maintenance_tick: Optional[Tick] = None,
        monitoring_settings: Optional[MonitoringSettings] = None,
        clock: Callable[[], datetime] = TimeHelper.get_local_now,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = monitoring_settings or get_settings().monitoring
        self._clock = clock
        # waits between cron triggers
        self._sleep = sleep

        self._jobs: Dict[str, ScheduledJob] = {
            LIVENESS: ScheduledJob(LIVENESS, "", liveness_tick),
            BANDWIDTH: ScheduledJob(BANDWIDTH, "", bandwidth_tick),
        }
        if maintenance_tick is not None:
            self._jobs[MAINTENANCE] = ScheduledJob(
                MAINTENANCE, f"every {self.config.maintenance_interval}s", maintenance_tick
            )

        self._bandwidth_run: Optional[asyncio.Task] = None
        self._running = False
        self._restarts = 0
        # start / restart / stop never interleave
        self._lifecycle_lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def next_bandwidth_run(self) -> Optional[datetime]:
        return self._jobs[BANDWIDTH].next_run

    @property
    def bandwidth_in_flight(self) -> bool:
        return self._bandwidth_run is not None and not self._bandwidth_run.done()

    def job(self, name: str) -> ScheduledJob:
        return self._jobs[name]

    # ------------------------------------------------------------------
    # LIFECYCLE
    # ------------------------------------------------------------------

    async def start(self, settings: MonitorSettings) -> None:
        """Start every loop with the intervals of *settings*."""
        async with self._lifecycle_lock:
            self._start(settings)

    def _start(self, settings: MonitorSettings) -> None:
        if self._running:
            logger.warning("Scheduler is already running")
            return

        self._running = True
        self._spawn_monitoring_loops(settings)

        maintenance = self._jobs.get(MAINTENANCE)
        if maintenance is not None:
            maintenance.task = asyncio.create_task(
                self._interval_loop(maintenance, self.config.maintenance_interval)
            )

        logger.info(
            f"✓ Scheduler started — liveness every {settings.monitor_interval}s, "
            f"speed test every {settings.test_interval} min"
        )

    async def restart(self, settings: MonitorSettings) -> None:
        """
        Cancel the liveness and bandwidth loops and spawn them again with
        *settings*.  Idempotent: calling it repeatedly still leaves exactly
        one task per loop.
        """
        async with self._lifecycle_lock:
            if not self._running:
                self._start(settings)
                return

            await self._cancel(self._jobs[LIVENESS])
            await self._cancel(self._jobs[BANDWIDTH])
            self._spawn_monitoring_loops(settings)
            self._restarts += 1
        logger.info(
            f"[Scheduler] Restarted — liveness every {settings.monitor_interval}s, "
            f"speed test every {settings.test_interval} min"
        )

    async def stop(self, cancel_in_flight: bool = True) -> None:
        """Stop every loop; optionally also cancel a running speed test."""
        async with self._lifecycle_lock:
            self._running = False
            for job in self._jobs.values():
                await self._cancel(job)
                run, job.current_run = job.current_run, None
                await self._cancel_task(run)

            if cancel_in_flight:
                await self._cancel_task(self._bandwidth_run)
            self._bandwidth_run = None
        logger.info("✓ Scheduler stopped")

    def _spawn_monitoring_loops(self, settings: MonitorSettings) -> None:
        liveness = self._jobs[LIVENESS]
        liveness.schedule = f"every {settings.monitor_interval}s"
        liveness.task = asyncio.create_task(
            self._interval_loop(liveness, settings.monitor_interval)
        )

        bandwidth = self._jobs[BANDWIDTH]
        bandwidth.schedule = f"*/{settings.test_interval} * * * *"
        bandwidth.next_run = next_cron_run(self._clock(), settings.test_interval)
        bandwidth.task = asyncio.create_task(
            self._cron_loop(bandwidth, settings.test_interval)
        )

    @classmethod
    async def _cancel(cls, job: ScheduledJob) -> None:
        task, job.task = job.task, None
        await cls._cancel_task(task)

    @staticmethod
    async def _cancel_task(task: Optional[asyncio.Task]) -> None:
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    # ------------------------------------------------------------------
    # LOOPS
    # ------------------------------------------------------------------

    async def _interval_loop(self, job: ScheduledJob, interval_seconds: float) -> None:
        """
        Fixed-rate loop, first run immediately.

        Each tick runs in its own task behind ``asyncio.shield``, so
        cancelling the loop never interrupts a cycle halfway.  A loop spawned
        by a restart first waits for the tick the previous loop left running.
        """
        loop = asyncio.get_running_loop()
        logger.debug(f"[Scheduler] '{job.name}' loop started ({job.schedule})")

        if job.current_run is not None and not job.current_run.done():
            await asyncio.shield(job.current_run)

        while True:
            started = loop.time()
            job.next_run = None
            job.current_run = asyncio.create_task(self._execute(job))
            await asyncio.shield(job.current_run)

            delay = max(0.0, started + interval_seconds - loop.time())
            job.next_run = self._clock() + timedelta(seconds=delay)
            await asyncio.sleep(delay)

    async def _cron_loop(self, job: ScheduledJob, every_minutes: int) -> None:
        """Cron-style loop; each trigger runs the tick in its own task."""
        logger.debug(f"[Scheduler] '{job.name}' loop started ({job.schedule})")
        fired: Optional[datetime] = None

        while True:
            now = self._clock()
            # An early wake-up must not match the boundary that just fired
            job.next_run = next_cron_run(max(now, fired) if fired else now, every_minutes)
            await self._sleep(max(0.0, (job.next_run - now).total_seconds()))
            fired = job.next_run

            if self.bandwidth_in_flight:
                logger.warning(
                    f"[Scheduler] '{job.name}' trigger skipped, previous run still in progress"
                )
                continue

            self._bandwidth_run = asyncio.create_task(self._execute(job))

    # ------------------------------------------------------------------
    # JOB EXECUTION
    # ------------------------------------------------------------------

    async def _execute(self, job: ScheduledJob) -> None:
        """
        Run a single tick, capture timing and errors.
        """
        start_time = time.perf_counter()
        try:
            logger.debug(f"[Scheduler] Running '{job.name}'…")
            await job.tick()
            job.run_count += 1
            logger.debug(
                f"[Scheduler] '{job.name}' completed in {time.perf_counter() - start_time:.2f}s "
                f"(run #{job.run_count})"
            )

        except asyncio.CancelledError:
            raise

        except Exception as e:
            job.error_count += 1
            failure = SchedulerTickFailure.from_exception(
                e, message=f"'{job.name}' tick failed: {e}", loop=job.name
            )
            logger.opt(exception=e).error(
                f"[Scheduler] {failure.log_format()} "
                f"(after {time.perf_counter() - start_time:.2f}s, loop continues)"
            )

        finally:
            job.last_run = self._clock()

    # ------------------------------------------------------------------
    # DIAGNOSTICS
    # ------------------------------------------------------------------

    def get_job_stats(self) -> List[Dict[str, Any]]:
        """Return status of all loops."""
        stats = []
        for job in self._jobs.values():
            stats.append({
                "name": job.name,
                "schedule": job.schedule,
                "active": job.is_active,
                "run_count": job.run_count,
                "error_count": job.error_count,
                "last_run": job.last_run.isoformat() if job.last_run else None,
                "next_run": job.next_run.isoformat() if job.next_run else None,
            })
        return stats
