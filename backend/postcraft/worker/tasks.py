"""
Celery tasks for publishing.

Main task: publish.execute_job, which runs the same executor as the
in-process path inside asyncio.run(). The pending -> running claim makes a
redelivered message a no-op.
"""
from __future__ import annotations

import asyncio
import logging

from postcraft.worker.celery_app import celery_app

logger = logging.getLogger(__name__)


async def _execute_async(job_id: int) -> dict:
    """Run execute_job with an engine owned by this event loop."""
    from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

    from postcraft.db import engine_options
    from postcraft.services.publish_service import execute_job
    from postcraft.settings import get_settings

    settings = get_settings()
    engine = create_async_engine(settings.async_database_url, **engine_options(settings))
    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    try:
        job = await execute_job(job_id, session_factory)
        if job is None:
            return {"job_id": job_id, "skipped": True}
        logger.info(f"[worker] publish job {job_id} finished: {job.status}")
        return {"job_id": job_id, "status": job.status, "remote_url": job.remote_url}
    finally:
        await engine.dispose()


@celery_app.task(bind=True, name="publish.execute_job", queue="publish")
def execute_publish_job(self, job_id: int) -> dict:
    """Celery task: execute one PublishJob."""
    logger.info(f"[worker] Starting publish job {job_id} (celery_id={self.request.id})")
    return asyncio.run(_execute_async(job_id))
