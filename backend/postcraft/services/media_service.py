"""
Media Generation Job Executor

VideoJob lifecycle:  pending → running → completed | failed
                                       → processing → completed | failed

Async providers are polled every MEDIA_POLL_INTERVAL_SEC for at most
MEDIA_POLL_MAX_ATTEMPTS attempts. A poll that raises still counts as an
attempt; running out of attempts fails the job with "Polling timeout".
`resume_processing` picks up jobs left in processing by a restart.
"""
from __future__ import annotations

import asyncio
import logging
import traceback
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from postcraft.errors import AuthorizationError, NotFoundError, ValidationError
from postcraft.models import ContentSession, ContentVersion, Integration, VideoJob, VideoJobStatus
from postcraft.services import notifier
from postcraft.services.content_workflow import error_text
from postcraft.services.credential_store import CredentialStore
from postcraft.services.media_adapter import get_media_adapter, list_media_adapters
from postcraft.services.platform_content import render
from postcraft.services.publisher_adapter import sanitize
from postcraft.services.task_supervisor import TaskSupervisor, get_supervisor
from postcraft.settings import get_settings

logger = logging.getLogger(__name__)

V = VideoJobStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_video_job(job: VideoJob) -> dict[str, Any]:
    return {
        "id": job.id,
        "content_version_id": job.content_version_id,
        "provider": job.provider,
        "status": job.status,
        "params": job.params or {},
        "remote_id": job.remote_id,
        "remote_asset_url": job.remote_asset_url,
        "poll_attempts": job.poll_attempts,
        "log": job.log,
        "started_at": job.started_at,
        "completed_at": job.completed_at,
        "created_at": job.created_at,
    }


def _default_factory():
    from postcraft.db import AsyncSessionLocal
    return AsyncSessionLocal


class MediaExecutor:
    """Runs one job end to end on its own DB session."""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] | None = None,
        poll_interval: float | None = None,
        max_attempts: int | None = None,
    ):
        settings = get_settings()
        self.session_factory = session_factory or _default_factory()
        self.poll_interval = settings.media_poll_interval_sec if poll_interval is None else poll_interval
        self.max_attempts = settings.media_poll_max_attempts if max_attempts is None else max_attempts

    async def _reload(self, db: AsyncSession, job_id: int) -> VideoJob | None:
        job = await db.get(VideoJob, job_id, populate_existing=True)
        if job is None:
            logger.warning(f"[media][job={job_id}] removed during execution, dropping outcome")
        return job

    async def _finish(
        self, db: AsyncSession, job_id: int, status: V, *, asset_url: str | None = None, log: dict | None = None
    ) -> VideoJob | None:
        job = await self._reload(db, job_id)
        if job is None:
            return None
        job.status = status.value
        job.completed_at = utcnow()
        if asset_url:
            job.remote_asset_url = asset_url
        if log is not None:
            job.log = log
        await db.commit()
        await db.refresh(job)
        if status == V.completed:
            logger.info(f"[media][job={job.id}] completed asset={job.remote_asset_url}")
        else:
            logger.error(f"[media][job={job.id}] failed: {(job.log or {}).get('error')}")
        await notifier.notify(job.owner_id, notifier.VIDEO_UPDATE, format_video_job(job))
        return job

    async def _credentials(self, db: AsyncSession, job: VideoJob) -> dict[str, Any]:
        integration = await db.get(Integration, job.integration_id) if job.integration_id else None
        credentials = CredentialStore.get_credentials_for(integration) if integration else None
        if not credentials:
            raise ValidationError(f"Missing credentials for {job.provider}", code="MISSING_CREDENTIALS")
        return credentials

    async def execute(self, job_id: int) -> VideoJob | None:
        async with self.session_factory() as db:
            claimed = await db.execute(
                update(VideoJob)
                .where(VideoJob.id == job_id, VideoJob.status == V.pending.value)
                .values({VideoJob.status: V.running.value, VideoJob.started_at: utcnow()})
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            if claimed.rowcount != 1:
                logger.info(f"[media][job={job_id}] not pending, execute skipped")
                return None

            job = await db.get(VideoJob, job_id, populate_existing=True)
            await notifier.notify(job.owner_id, notifier.VIDEO_UPDATE, format_video_job(job))

            try:
                version = await db.get(ContentVersion, job.content_version_id)
                if version is None:
                    raise NotFoundError("Content version no longer exists")
                adapter = get_media_adapter(job.provider)
                if adapter is None:
                    raise ValidationError(f"Unsupported media provider: {job.provider}")
                credentials = await self._credentials(db, job)
                submission = await adapter.submit(render(version.platform, version.body).text, job.params or {}, credentials)
            except Exception as exc:
                await db.rollback()
                return await self._finish(db, job_id, V.failed, log={
                    "error": error_text(exc),
                    "stack": (sanitize(traceback.format_exc()) or "")[-4000:],
                    "timestamp": utcnow().isoformat(),
                })

            if submission.status == V.completed.value:
                return await self._finish(db, job_id, V.completed, asset_url=submission.asset_url)

            job = await self._reload(db, job_id)
            if job is None:
                return None
            job.status = V.processing.value
            job.remote_id = submission.remote_id
            await db.commit()
            await db.refresh(job)
            logger.info(f"[media][job={job_id}] processing remote_id={job.remote_id}")
            await notifier.notify(job.owner_id, notifier.VIDEO_UPDATE, format_video_job(job))
            return await self._poll(db, job, credentials)

    async def resume(self, job_id: int) -> VideoJob | None:
        async with self.session_factory() as db:
            job = await db.get(VideoJob, job_id, populate_existing=True)
            if job is None or job.status != V.processing.value or not job.remote_id:
                return None
            try:
                credentials = await self._credentials(db, job)
            except ValidationError as exc:
                return await self._finish(db, job_id, V.failed, log={"error": exc.message, "timestamp": utcnow().isoformat()})
            logger.info(f"[media][job={job_id}] resuming polling at attempt {job.poll_attempts}")
            return await self._poll(db, job, credentials)

    async def _poll(self, db: AsyncSession, job: VideoJob, credentials: dict[str, Any]) -> VideoJob | None:
        job_id, remote_id = job.id, job.remote_id
        adapter = get_media_adapter(job.provider)
        while job.poll_attempts < self.max_attempts:
            await asyncio.sleep(self.poll_interval)
            try:
                status = await adapter.poll(remote_id, credentials)
            except Exception as exc:
                logger.warning(f"[media][job={job_id}] poll {job.poll_attempts + 1}/{self.max_attempts} error: {sanitize(str(exc))}")
                status = None

            # the row can be deleted while the provider is rendering
            job = await self._reload(db, job_id)
            if job is None:
                return None
            job.poll_attempts += 1
            await db.commit()
            if status is None:
                continue

            if status.status == V.completed.value:
                return await self._finish(db, job_id, V.completed, asset_url=status.asset_url)
            if status.status == V.failed.value:
                return await self._finish(db, job_id, V.failed, log={
                    "error": sanitize(status.error) or "Provider reported failure",
                    "timestamp": utcnow().isoformat(),
                })

        return await self._finish(db, job_id, V.failed, log={
            "error": "Polling timeout",
            "attempts": job.poll_attempts,
            "timestamp": utcnow().isoformat(),
        })


class MediaService:

    def __init__(
        self,
        session: AsyncSession,
        *,
        executor: MediaExecutor | None = None,
        supervisor: TaskSupervisor | None = None,
    ):
        self.session = session
        self.executor = executor or MediaExecutor()
        self.supervisor = supervisor or get_supervisor()
        self.credentials = CredentialStore(session)

    async def create_job(
        self,
        user_id: str,
        version_id: int,
        provider: str,
        params: dict[str, Any] | None = None,
    ) -> VideoJob:
        provider = (provider or "").strip().lower()
        if get_media_adapter(provider) is None:
            raise ValidationError(
                f"Unsupported media provider: {provider}",
                code="UNSUPPORTED_MEDIA_PROVIDER",
                field="provider",
                user_message=f"Supported media providers: {', '.join(list_media_adapters())}",
            )

        res = await self.session.execute(
            select(ContentVersion, ContentSession.owner_id)
            .join(ContentSession, ContentVersion.session_id == ContentSession.id)
            .where(ContentVersion.id == version_id)
        )
        found = res.first()
        if found is None:
            raise NotFoundError("Content version not found", code="VERSION_NOT_FOUND", field="versionId")
        version, owner_id = found
        if owner_id != user_id:
            raise AuthorizationError("Unauthorized access to content version", code="VERSION_ACCESS_DENIED", field="versionId")

        integration = await self.credentials.find_active(user_id, provider)
        if integration is None or not CredentialStore.get_credentials_for(integration):
            raise ValidationError(
                f"No active {provider} integration found",
                code="NO_MEDIA_INTEGRATION",
                field="provider",
            )

        job = VideoJob(
            owner_id=user_id,
            content_version_id=version.id,
            integration_id=integration.id,
            provider=provider,
            status=V.pending.value,
            params=dict(params or {}),
        )
        self.session.add(job)
        await self.session.commit()
        await self.session.refresh(job)

        self.supervisor.spawn(f"media:{job.id}", self.executor.execute(job.id))
        logger.info(f"[media][job={job.id}] created ({provider}) for version {version_id}")
        return job

    async def get_job(self, user_id: str, job_id: int) -> VideoJob:
        job = await self.session.get(VideoJob, job_id, populate_existing=True)
        if job is None:
            raise NotFoundError("Video job not found", code="JOB_NOT_FOUND", field="jobId")
        if job.owner_id != user_id:
            raise AuthorizationError("Unauthorized access to video job", code="JOB_ACCESS_DENIED", field="jobId")
        return job

    async def list_jobs(self, user_id: str, status: str | None = None) -> list[VideoJob]:
        stmt = select(VideoJob).where(VideoJob.owner_id == user_id)
        if status:
            try:
                stmt = stmt.where(VideoJob.status == V(status).value)
            except ValueError as exc:
                raise ValidationError(f"Invalid job status: {status}", field="status") from exc
        res = await self.session.execute(stmt.order_by(VideoJob.created_at.desc(), VideoJob.id.desc()))
        return list(res.scalars().all())


async def resume_processing(
    executor: MediaExecutor | None = None,
    supervisor: TaskSupervisor | None = None,
) -> int:
    """Restart polling for every job left in processing. Returns how many were resumed."""
    executor = executor or MediaExecutor()
    supervisor = supervisor or get_supervisor()
    running = {h.name for h in supervisor.active}
    async with executor.session_factory() as db:
        res = await db.execute(
            select(VideoJob.id).where(VideoJob.status == V.processing.value, VideoJob.remote_id.is_not(None))
        )
        job_ids = list(res.scalars().all())

    resumed = 0
    for job_id in job_ids:
        if f"media:{job_id}" in running or f"media-resume:{job_id}" in running:
            continue
        supervisor.spawn(f"media-resume:{job_id}", executor.resume(job_id))
        resumed += 1
    if resumed:
        logger.info(f"[media] resumed polling for {resumed} job(s)")
    return resumed
