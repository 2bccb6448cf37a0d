"""
Scheduler service for identity verification.
Runs member/promoter verification and seller verification as two independent
daily jobs pinned to a fixed time zone. A failing job is logged and never
affects the other job's timer.
"""
from __future__ import annotations

import asyncio
import signal
from datetime import datetime, time, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional
from zoneinfo import ZoneInfo

from shared.config import Settings, get_settings
from shared.utils.database import DatabaseManager
from shared.utils.health_server import start_health_server
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import JOB_FAILURES, start_metrics_server

from verifier.config import get_verifier_settings
from verifier.engine import MEMBER_JOB, SELLER_JOB, VerificationOrchestrator
from verifier.store import SqlVerificationStore

logger = get_logger(__name__)

# Upper bound on a single sleep so wall-clock adjustments are picked up.
MAX_SLEEP_S = 60.0

JobRunner = Callable[[], Awaitable[Any]]


def next_run_after(now: datetime, at: time, tz: ZoneInfo) -> datetime:
    """Next occurrence of wall-clock time `at` in `tz` strictly after `now`."""
    local_now = now.astimezone(tz)
    candidate = datetime.combine(local_now.date(), at, tzinfo=tz)
    if candidate <= local_now:
        candidate = datetime.combine(local_now.date() + timedelta(days=1), at, tzinfo=tz)
    return candidate


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DailyJob:
    """One named recurring job. Runs never overlap; errors are contained."""

    def __init__(
        self,
        name: str,
        at: time,
        tz: ZoneInfo,
        runner: JobRunner,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.name = name
        self.at = at
        self.tz = tz
        self._runner = runner
        self._clock = clock
        self._timer: Optional[asyncio.Task[None]] = None
        self._current: Optional[asyncio.Task[None]] = None
        self.next_run_at: Optional[datetime] = None
        self.last_started_at: Optional[datetime] = None
        self.last_finished_at: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._current is not None and not self._current.done()

    @property
    def started(self) -> bool:
        return self._timer is not None and not self._timer.done()

    async def run_once(self) -> None:
        """Invoke the runner, logging instead of raising on failure."""
        self.last_started_at = self._clock()
        self.runs += 1
        log = logger.bind(job=self.name)
        log.info("job_started", run=self.runs)
        try:
            await self._runner()
            self.last_error = None
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.last_error = str(exc)
            JOB_FAILURES.labels(job=self.name).inc()
            log.exception("job_failed", error=str(exc))
        finally:
            self.last_finished_at = self._clock()
            log.info("job_finished", error=self.last_error)

    def trigger(self) -> asyncio.Task[None]:
        """Start a run now unless one is already in flight."""
        current = self._current
        if current is not None and not current.done():
            return current
        self._current = asyncio.create_task(self.run_once(), name=f"run:{self.name}")
        return self._current

    async def _sleep_until(self, when: datetime) -> None:
        while True:
            remaining = (when - self._clock()).total_seconds()
            if remaining <= 0:
                return
            await asyncio.sleep(min(remaining, MAX_SLEEP_S))

    async def _loop(self) -> None:
        while True:
            self.next_run_at = next_run_after(self._clock(), self.at, self.tz)
            logger.info("job_scheduled", job=self.name, next_run_at=self.next_run_at.isoformat())
            await self._sleep_until(self.next_run_at)
            # Shielded so cancelling the timer lets an in-flight batch finish.
            await asyncio.shield(self.trigger())

    def start(self) -> None:
        if self.started:
            return
        self._timer = asyncio.create_task(self._loop(), name=f"timer:{self.name}")

    async def stop(self) -> None:
        """Cancel the timer; wait for an in-flight run to complete on its own."""
        if self._timer is not None:
            self._timer.cancel()
            try:
                await self._timer
            except asyncio.CancelledError:
                pass
            self._timer = None
        if self._current is not None and not self._current.done():
            logger.info("job_waiting_for_inflight_run", job=self.name)
            await self._current
        self.next_run_at = None

    def status(self) -> dict[str, Any]:
        return {
            "at": self.at.strftime("%H:%M"),
            "running": self.running,
            "next_run_at": self.next_run_at.isoformat() if self.next_run_at else None,
            "last_started_at": self.last_started_at.isoformat() if self.last_started_at else None,
            "last_error": self.last_error,
            "runs": self.runs,
        }


class VerificationScheduler:
    """Owns the member and seller jobs; constructed once at process start."""

    def __init__(
        self,
        orchestrator: VerificationOrchestrator,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        tz = ZoneInfo(self._settings.schedule_timezone)
        self.jobs: dict[str, DailyJob] = {
            MEMBER_JOB: DailyJob(MEMBER_JOB, self._settings.member_job_time, tz, orchestrator.run_member_verification),
            SELLER_JOB: DailyJob(SELLER_JOB, self._settings.seller_job_time, tz, orchestrator.run_seller_verification),
        }
        self._shutdown = asyncio.Event()

    def start(self) -> None:
        for job in self.jobs.values():
            job.start()
        logger.info(
            "scheduler_started",
            timezone=self._settings.schedule_timezone,
            jobs={name: job.at.strftime("%H:%M") for name, job in self.jobs.items()},
        )

    async def stop(self) -> None:
        await asyncio.gather(*(job.stop() for job in self.jobs.values()))
        logger.info("scheduler_stopped")

    async def run_now(self, name: str) -> None:
        await self.jobs[name].trigger()

    def request_shutdown(self) -> None:
        logger.info("scheduler_shutdown_requested")
        self._shutdown.set()

    async def run_forever(self) -> None:
        self.start()
        try:
            await self._shutdown.wait()
        finally:
            await self.stop()

    def status(self) -> dict[str, Any]:
        return {"jobs": {name: job.status() for name, job in self.jobs.items()}}


async def main() -> None:
    """Scheduler worker entrypoint."""
    settings = get_settings()
    setup_logging("scheduler")
    start_metrics_server()

    db = DatabaseManager(settings)
    await db.connect()
    await db.ping()

    orchestrator = VerificationOrchestrator(SqlVerificationStore(db), settings=get_verifier_settings())
    scheduler = VerificationScheduler(orchestrator, settings)
    start_health_server("scheduler", scheduler.status)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, scheduler.request_shutdown)
        except NotImplementedError:
            pass

    try:
        await scheduler.run_forever()
    finally:
        await db.disconnect()
        logger.info("scheduler_service_stopped")


def cli() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    cli()
