"""Background monitoring scheduler using APScheduler.

Drives the tick loop of every live monitoring session and the periodic
retention cleanup.

Architecture:
    ┌──────────────────────────────────────────────────────────────────┐
    │                     MonitoringScheduler                           │
    │                                                                   │
    │  ┌──────────────┐    ┌──────────────────────────────────────────┐ │
    │  │ APScheduler  │ -> │ monitoring_tick:<session_id> (per session)│ │
    │  │ (interval)   │    │  - MonitoringService.tick()              │ │
    │  │              │    │  - persist drained samples (MetricStore) │ │
    │  │              │    └──────────────────────────────────────────┘ │
    │  │              │    ┌──────────────────────────────────────────┐ │
    │  │              │ -> │ retention_cleanup                        │ │
    │  └──────────────┘    │  - stored metrics, alerts, sessions      │ │
    │                      └──────────────────────────────────────────┘ │
    └──────────────────────────────────────────────────────────────────┘

Tick jobs are added when a session starts and removed when it completes
or fails. An error in one session's tick is logged and counted against
that session only; after MAX_CONSECUTIVE_FAILURES the session is failed.

Usage:
    scheduler = MonitoringScheduler(session_factory, monitoring, settings)
    await scheduler.start()
    ...
    await scheduler.stop()
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import structlog
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from health_analytics_server.core.config import Settings
from health_analytics_server.core.exceptions import AnalyticsError
from health_analytics_server.models.metric import MetricSource
from health_analytics_server.monitoring.service import MonitoringService
from health_analytics_server.monitoring.session import MonitoringSession
from health_analytics_server.services.metric_store import MetricStore, NewMetric

if TYPE_CHECKING:
    from apscheduler.job import Job

logger = structlog.get_logger()

MAX_CONSECUTIVE_FAILURES = 5
CLEANUP_JOB_ID = "retention_cleanup"


def tick_job_id(session_id: str) -> str:
    """APScheduler job id for a session's tick loop."""
    return f"monitoring_tick:{session_id}"


class MonitoringScheduler:
    """Runs monitoring ticks and retention cleanup in the background.

    Attributes:
        session_factory: Async session factory for database access
        monitoring: Monitoring service whose sessions are ticked
        scheduler: APScheduler instance
        is_running: Whether scheduler is currently running
        last_cleanup_at: Timestamp of last cleanup run
        last_cleanup_stats: Stats from last cleanup run
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        monitoring: MonitoringService,
        settings: Settings,
    ) -> None:
        """Initialize monitoring scheduler.

        Args:
            session_factory: SQLAlchemy async session factory
            monitoring: Monitoring service
            settings: Application settings
        """
        self.session_factory = session_factory
        self.monitoring = monitoring
        self.settings = settings
        self.scheduler = AsyncIOScheduler()
        self.is_running = False
        self.last_cleanup_at: datetime | None = None
        self.last_cleanup_stats: dict[str, object] | None = None
        self._failures: dict[str, int] = {}
        self._cleanup_job: Job | None = None
        self.logger = logger.bind(component="monitoring_scheduler")

        monitoring.subscribe(on_started=self._on_session_started, on_ended=self._on_session_ended)

    async def start(self) -> None:
        """Start the scheduler with the cleanup job and any live session ticks."""
        if not self.settings.scheduler_enabled:
            self.logger.info("Monitoring scheduler disabled by configuration")
            return

        if self.is_running:
            self.logger.warning("Scheduler already running")
            return

        self._cleanup_job = self.scheduler.add_job(
            self.run_cleanup,
            trigger=IntervalTrigger(minutes=self.settings.cleanup_interval_minutes),
            id=CLEANUP_JOB_ID,
            name="Retention cleanup",
            replace_existing=True,
            max_instances=1,
        )
        self.scheduler.start()
        self.is_running = True

        for session in self.monitoring.registry.live():
            self._add_tick_job(session)

        self.logger.info(
            "Monitoring scheduler started",
            cleanup_interval_minutes=self.settings.cleanup_interval_minutes,
            live_sessions=len(self.monitoring.registry.live()),
        )

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self.is_running:
            return

        self.logger.info("Stopping monitoring scheduler")
        self.scheduler.shutdown(wait=True)
        self.is_running = False
        self.logger.info("Monitoring scheduler stopped")

    # -------------------------------------------------------------------------
    # Session hooks
    # -------------------------------------------------------------------------

    async def _on_session_started(self, session: MonitoringSession) -> None:
        if self.is_running:
            self._add_tick_job(session)

    async def _on_session_ended(self, session: MonitoringSession) -> None:
        self._failures.pop(session.id, None)
        if not self.is_running:
            return
        try:
            self.scheduler.remove_job(tick_job_id(session.id))
        except JobLookupError:
            pass

    def _add_tick_job(self, session: MonitoringSession) -> None:
        self.scheduler.add_job(
            self.run_tick,
            trigger=IntervalTrigger(seconds=session.sampling_rate_ms / 1000),
            args=[session.id],
            id=tick_job_id(session.id),
            name=f"Monitoring tick for {session.device_id}",
            replace_existing=True,
            max_instances=1,
        )

    # -------------------------------------------------------------------------
    # Jobs
    # -------------------------------------------------------------------------

    async def run_tick(self, session_id: str) -> int:
        """Tick one session and persist what it ingested.

        Errors are logged and isolated to this session.

        Returns:
            Number of samples persisted
        """
        try:
            await self.monitoring.tick(session_id)
            persisted = await self._persist(session_id)
        except Exception as e:
            failures = self._failures.get(session_id, 0) + 1
            self._failures[session_id] = failures
            self.logger.exception(
                "Monitoring tick failed",
                session_id=session_id,
                consecutive_failures=failures,
                error=str(e),
            )
            if failures >= MAX_CONSECUTIVE_FAILURES:
                await self._fail(session_id, str(e))
            return 0

        self._failures.pop(session_id, None)
        return persisted

    async def _persist(self, session_id: str) -> int:
        drained = await self.monitoring.drain_ingested(session_id)
        if not drained:
            return 0

        session = self.monitoring.get_session(session_id)
        samples = [
            NewMetric(
                metric_type=m.metric_type,
                value=m.value,
                unit=m.unit,
                timestamp=m.timestamp,
                source=MetricSource.AUTOMATIC.value,
                confidence=m.confidence,
                device_id=m.device_id,
                metadata={"session_id": session_id, "quality": m.quality},
            )
            for m in drained
        ]
        try:
            async with self.session_factory() as db:
                await MetricStore(db).append_many(session.user_id, samples)
        except Exception:
            await self.monitoring.requeue_ingested(session_id, drained)
            raise
        return len(samples)

    async def flush_unpersisted(self) -> int:
        """Persist leftovers of every session, including finished ones.

        A session whose batch fails again keeps its samples for the next run.
        """
        flushed = 0
        for session in self.monitoring.sessions_with_unpersisted():
            try:
                flushed += await self._persist(session.id)
            except Exception as e:
                self.logger.warning(
                    "Could not flush unpersisted samples",
                    session_id=session.id,
                    error=str(e),
                )
        return flushed

    async def _fail(self, session_id: str, reason: str) -> None:
        try:
            await self.monitoring.fail_session(session_id, reason)
        except AnalyticsError as e:
            self.logger.warning("Could not fail session", session_id=session_id, error=e.message)
            return
        self.logger.error("Monitoring session failed", session_id=session_id, reason=reason)

    async def run_cleanup(self) -> dict[str, object]:
        """Apply retention to stored metrics and in-memory monitoring state."""
        start_time = datetime.now(UTC)
        try:
            flushed = await self.flush_unpersisted()
            cutoff = start_time - timedelta(days=self.settings.metric_retention_days)
            async with self.session_factory() as db:
                stored = await MetricStore(db).cleanup_retention(cutoff)
            in_memory = await self.monitoring.cleanup(start_time)

            self.last_cleanup_stats = {**stored, **in_memory, "flushed": flushed}
            self.logger.info("Retention cleanup complete", **self.last_cleanup_stats)
        except Exception as e:
            self.logger.exception("Retention cleanup failed", error=str(e))
            self.last_cleanup_stats = {
                "error": str(e),
                "timestamp": datetime.now(UTC).isoformat(),
            }
        self.last_cleanup_at = datetime.now(UTC)
        return self.last_cleanup_stats

    def get_status(self) -> dict[str, object]:
        """Get scheduler status for monitoring.

        Returns:
            Dict with scheduler state and stats
        """
        next_cleanup = None
        if self._cleanup_job and self.is_running:
            next_run_time = self._cleanup_job.next_run_time
            if next_run_time:
                next_cleanup = next_run_time.isoformat()

        tick_jobs = (
            [job.id for job in self.scheduler.get_jobs() if job.id != CLEANUP_JOB_ID]
            if self.is_running
            else []
        )
        return {
            "enabled": self.settings.scheduler_enabled,
            "is_running": self.is_running,
            "tick_jobs": len(tick_jobs),
            "cleanup_interval_minutes": self.settings.cleanup_interval_minutes,
            "next_cleanup_at": next_cleanup,
            "last_cleanup_at": self.last_cleanup_at.isoformat() if self.last_cleanup_at else None,
            "last_cleanup_stats": self.last_cleanup_stats,
        }
