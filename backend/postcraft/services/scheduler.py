"""
Scheduler Service

Periodic background jobs:
- Publish sweep: executes pending publish jobs whose scheduled time has come
- Media recovery: resumes polling for video jobs left in `processing`

Single-leader election via Postgres advisory locks:
- Only the instance that acquires the lock executes the tick
- Other instances silently skip
- Non-Postgres databases (tests, local sqlite) run every tick unguarded
- Controlled by SCHEDULER_ENABLED env (default: true)
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from postcraft.settings import get_settings

logger = logging.getLogger("scheduler")

# Advisory lock keys (arbitrary int64, unique per job type)
LOCK_PUBLISH_SWEEP = 910_001
LOCK_MEDIA_RECOVERY = 910_002

MEDIA_RECOVERY_INTERVAL_MIN = 5


class SchedulerService:
    """Owns the AsyncIOScheduler and its leader-guarded ticks."""

    _instance: "SchedulerService | None" = None

    def __init__(self, session_factory: async_sessionmaker | None = None):
        self.scheduler = AsyncIOScheduler()
        self._session_factory = session_factory
        self._running = False

    @classmethod
    def get_instance(cls) -> "SchedulerService":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def _factory(self) -> async_sessionmaker:
        if self._session_factory is not None:
            return self._session_factory
        from postcraft.db import AsyncSessionLocal
        return AsyncSessionLocal

    async def _try_advisory_lock(self, session: AsyncSession, lock_key: int) -> bool:
        """Non-blocking session-level advisory lock; True means this instance leads the tick."""
        if not get_settings().is_postgres:
            return True
        result = await session.execute(text(f"SELECT pg_try_advisory_lock({lock_key})"))
        return bool(result.scalar())

    async def _release_advisory_lock(self, session: AsyncSession, lock_key: int):
        if get_settings().is_postgres:
            await session.execute(text(f"SELECT pg_advisory_unlock({lock_key})"))

    def start(self):
        """Start the scheduler (respects SCHEDULER_ENABLED env)."""
        settings = get_settings()
        if not settings.scheduler_enabled:
            logger.info("Scheduler DISABLED by SCHEDULER_ENABLED=false, skipping start")
            return
        if self._running:
            return

        self.scheduler.add_job(
            self._run_publish_sweep,
            IntervalTrigger(seconds=settings.publish_sweep_interval_sec),
            id="publish_sweep",
            name="Execute due publish jobs",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.add_job(
            self._run_media_recovery,
            IntervalTrigger(minutes=MEDIA_RECOVERY_INTERVAL_MIN),
            id="media_recovery",
            name="Resume processing video jobs",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            # first run right after startup
            next_run_time=datetime.now(timezone.utc) + timedelta(seconds=5),
        )

        self.scheduler.start()
        self._running = True
        logger.info("Scheduler started (single-leader mode via advisory locks)")

    def stop(self):
        if not self._running:
            return
        self.scheduler.shutdown(wait=False)
        self._running = False
        logger.info("Scheduler stopped")

    def is_running(self) -> bool:
        return self._running

    def get_jobs(self) -> list[dict]:
        return [
            {
                "id": job.id,
                "name": job.name,
                "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
            }
            for job in self.scheduler.get_jobs()
        ]

    async def run_now(self, job_id: str) -> dict:
        """Run one tick immediately, outside its interval."""
        ticks = {"publish_sweep": self._run_publish_sweep, "media_recovery": self._run_media_recovery}
        tick = ticks.get(job_id)
        if tick is None:
            return {"error": f"Job {job_id} not found"}
        return {"ok": True, "result": await tick()}

    async def _run_publish_sweep(self) -> int | None:
        """Run pending publish jobs that are due. Protected by advisory lock."""
        factory = self._factory()
        async with factory() as session:
            if not await self._try_advisory_lock(session, LOCK_PUBLISH_SWEEP):
                logger.debug("[publish_sweep] Advisory lock not acquired, skipping tick")
                return None
            try:
                from postcraft.services.publish_service import run_due_jobs

                executed = await run_due_jobs(session_factory=factory)
                if executed:
                    logger.info(f"[publish_sweep] Completed: {executed} job(s) executed")
                return executed
            finally:
                await self._release_advisory_lock(session, LOCK_PUBLISH_SWEEP)

    async def _run_media_recovery(self) -> int | None:
        """Resume polling of processing video jobs. Protected by advisory lock."""
        factory = self._factory()
        async with factory() as session:
            if not await self._try_advisory_lock(session, LOCK_MEDIA_RECOVERY):
                logger.debug("[media_recovery] Advisory lock not acquired, skipping tick")
                return None
            try:
                from postcraft.services.media_service import MediaExecutor, resume_processing

                return await resume_processing(MediaExecutor(session_factory=factory))
            finally:
                await self._release_advisory_lock(session, LOCK_MEDIA_RECOVERY)


scheduler_service = SchedulerService.get_instance()
