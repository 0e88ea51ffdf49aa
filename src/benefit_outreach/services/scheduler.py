"""Outreach Scheduler.

Background job scheduler running in the application process.

Jobs:
- automated_outreach: daily single-shot campaigns (09:00)
- sequences: sequence tick (every 15 minutes)
- benefits_snapshot: nightly benefit recalculation (02:00)
- usage_reset: monthly usage rollover check (03:00)

Tenant-iterating jobs open one session per practice; a failing
practice is counted and the sweep continues.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from benefit_outreach.config import Settings, get_settings
from benefit_outreach.core.clock import Clock, utc_now
from benefit_outreach.core.log_setup import get_logger
from benefit_outreach.db.repositories import PracticeRepository
from benefit_outreach.services.benefits_engine import BenefitsEngine
from benefit_outreach.services.messaging_factory import ClientCache
from benefit_outreach.services.outreach_service import OutreachService
from benefit_outreach.services.sequence_engine import TenantTickGuard
from benefit_outreach.services.usage import UsageGate

log = get_logger(__name__)


class SchedulerState(str, Enum):
    """Scheduler states."""

    STOPPED = "stopped"
    RUNNING = "running"
    STOPPING = "stopping"


# ============================================================================
# Triggers
# ============================================================================


@dataclass(frozen=True)
class DailyAt:
    """Fires once a day at hour:minute (UTC)."""

    hour: int
    minute: int = 0

    def next_after(self, moment: datetime) -> datetime:
        candidate = moment.replace(hour=self.hour, minute=self.minute, second=0, microsecond=0)
        if candidate <= moment:
            candidate += timedelta(days=1)
        return candidate

    def describe(self) -> str:
        return f"daily at {self.hour:02d}:{self.minute:02d}"


@dataclass(frozen=True)
class Every:
    """Fires at a fixed interval."""

    minutes: int

    def next_after(self, moment: datetime) -> datetime:
        return moment + timedelta(minutes=self.minutes)

    def describe(self) -> str:
        return f"every {self.minutes} minutes"


@dataclass
class JobMetrics:
    """Per-job run statistics."""

    runs: int = 0
    failures: int = 0
    last_run_at: datetime | None = None
    last_duration_seconds: float = 0.0
    last_result: dict[str, Any] | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "runs": self.runs,
            "failures": self.failures,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_duration_seconds": round(self.last_duration_seconds, 3),
            "last_result": self.last_result,
            "last_error": self.last_error,
        }


@dataclass
class ScheduledJob:
    name: str
    trigger: DailyAt | Every
    func: Callable[[], Awaitable[dict[str, Any]]]
    next_run_at: datetime | None = None
    metrics: JobMetrics = field(default_factory=JobMetrics)


# ============================================================================
# Scheduler
# ============================================================================


class OutreachScheduler:
    """Runs the outreach jobs on their triggers.

    Usage:
        scheduler = OutreachScheduler(get_session_factory(), cache=app_cache)

        # In application lifespan
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
        cache: ClientCache | None = None,
        guard: TenantTickGuard | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings or get_settings()
        self._cache = cache or ClientCache(
            self._settings.messaging.client_cache_ttl_seconds, clock=clock
        )
        self._guard = guard or TenantTickGuard()
        self._clock = clock

        config = self._settings.scheduler
        self._jobs: dict[str, ScheduledJob] = {
            job.name: job
            for job in (
                ScheduledJob("automated_outreach", DailyAt(config.outreach_hour), self._run_automated_outreach),
                ScheduledJob("sequences", Every(config.sequence_interval_minutes), self._run_sequences),
                ScheduledJob("benefits_snapshot", DailyAt(config.benefits_snapshot_hour), self._run_benefits_snapshot),
                ScheduledJob("usage_reset", DailyAt(config.usage_reset_hour), self._run_usage_reset),
            )
        }

        self._state = SchedulerState.STOPPED
        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()
        self._started_at: datetime | None = None
        self._last_poll_at: datetime | None = None

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == SchedulerState.RUNNING

    @property
    def jobs(self) -> dict[str, ScheduledJob]:
        return self._jobs

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the scheduler background task."""
        if self._state != SchedulerState.STOPPED:
            log.warning("Scheduler already started", state=self._state.value)
            return

        now = self._clock()
        for job in self._jobs.values():
            job.next_run_at = job.trigger.next_after(now)

        self._stop_event.clear()
        self._started_at = now
        self._task = asyncio.create_task(self._run_loop())
        self._state = SchedulerState.RUNNING
        log.info("Outreach scheduler started", jobs=list(self._jobs))

    async def stop(self, timeout: float = 30.0) -> None:
        """Stop the scheduler, letting a running job finish within timeout."""
        if self._state == SchedulerState.STOPPED:
            return

        self._state = SchedulerState.STOPPING
        self._stop_event.set()

        if self._task:
            try:
                await asyncio.wait_for(self._task, timeout=timeout)
            except asyncio.TimeoutError:
                log.warning("Scheduler stop timed out, cancelling task")
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
            self._task = None

        self._state = SchedulerState.STOPPED
        log.info("Outreach scheduler stopped")

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            await self.run_pending()
            self._last_poll_at = self._clock()
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(),
                    timeout=self._settings.scheduler.poll_interval_seconds,
                )
            except asyncio.TimeoutError:
                pass

    async def run_pending(self) -> list[str]:
        """Run every job whose next run time has come.

        Returns:
            Names of the jobs that ran
        """
        ran = []
        for job in self._jobs.values():
            now = self._clock()
            if job.next_run_at is None or job.next_run_at > now:
                continue
            job.next_run_at = job.trigger.next_after(now)
            await self._execute(job)
            ran.append(job.name)
        return ran

    async def run_job(self, name: str) -> dict[str, Any]:
        """Run a job immediately, outside its schedule.

        Raises:
            KeyError: Unknown job name
        """
        return await self._execute(self._jobs[name])

    async def _execute(self, job: ScheduledJob) -> dict[str, Any]:
        started = time.monotonic()
        job.metrics.runs += 1
        job.metrics.last_run_at = self._clock()
        log.info("Running scheduled job", job=job.name)

        try:
            result = await job.func()
        except Exception as e:
            job.metrics.failures += 1
            job.metrics.last_error = str(e)
            log.error("Scheduled job failed", job=job.name, error=str(e))
            result = {"error": str(e)}
        else:
            job.metrics.last_result = result
            job.metrics.last_error = None

        job.metrics.last_duration_seconds = time.monotonic() - started
        return result

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def _for_each_practice(
        self,
        job_name: str,
        work: Callable[[AsyncSession, UUID], Awaitable[Any]],
        billable_only: bool = True,
    ) -> dict[str, Any]:
        async with self._session_factory() as session:
            practices = PracticeRepository(session)
            if billable_only:
                practice_ids = await practices.list_billable_ids(self._clock())
            else:
                practice_ids = await practices.list_ids()

        succeeded = 0
        failed = 0
        for practice_id in practice_ids:
            try:
                async with self._session_factory() as session:
                    await work(session, practice_id)
                succeeded += 1
            except Exception as e:
                failed += 1
                log.error(
                    "Job failed for practice",
                    job=job_name,
                    practice_id=str(practice_id),
                    error=str(e),
                )

        return {"practices": len(practice_ids), "succeeded": succeeded, "failed": failed}

    def _service(self, session: AsyncSession) -> OutreachService:
        return OutreachService(
            session,
            self._settings,
            cache=self._cache,
            guard=self._guard,
            clock=self._clock,
        )

    async def _run_automated_outreach(self) -> dict[str, Any]:
        async def work(session: AsyncSession, practice_id: UUID) -> None:
            await self._service(session).process_automated_outreach(practice_id)

        return await self._for_each_practice("automated_outreach", work)

    async def _run_sequences(self) -> dict[str, Any]:
        async def work(session: AsyncSession, practice_id: UUID) -> None:
            await self._service(session).process_sequences(practice_id)

        return await self._for_each_practice("sequences", work)

    async def _run_benefits_snapshot(self) -> dict[str, Any]:
        async def work(session: AsyncSession, practice_id: UUID) -> None:
            await BenefitsEngine(session, clock=self._clock).batch_update_benefits(practice_id)

        return await self._for_each_practice("benefits_snapshot", work, billable_only=False)

    async def _run_usage_reset(self) -> dict[str, Any]:
        async with self._session_factory() as session:
            reset = await UsageGate(session, self._settings, clock=self._clock).reset_monthly_usage()
        return {"reset": reset}

    def get_status(self) -> dict[str, Any]:
        """Scheduler state plus per-job schedule and metrics."""
        return {
            "state": self._state.value,
            "is_running": self.is_running,
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "last_poll_at": self._last_poll_at.isoformat() if self._last_poll_at else None,
            "poll_interval_seconds": self._settings.scheduler.poll_interval_seconds,
            "jobs": {
                name: {
                    "trigger": job.trigger.describe(),
                    "next_run_at": job.next_run_at.isoformat() if job.next_run_at else None,
                    "metrics": job.metrics.to_dict(),
                }
                for name, job in self._jobs.items()
            },
        }
