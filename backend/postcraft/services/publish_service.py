"""
Publish Job Scheduler / Executor

One PublishJob per (content version, integration) per request.

Lifecycle:  pending → running → success | failed
- Cancel:      pending → failed (log.cancelled = True)
- Reschedule:  pending only, new time strictly in the future
- Retry:       anything but running → pending, then executed again

`execute_job` claims a job with a compare-and-set from pending to running,
so a job id is never executed twice concurrently; a failed claim is a no-op.
Immediate jobs are dispatched to the TaskSupervisor, or to Celery when
CELERY_ENABLED=true. Scheduled jobs are picked up by `run_due_jobs`, which
the scheduler calls on every sweep tick.
"""
from __future__ import annotations

import logging
import traceback
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from postcraft.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    RateLimitError,
    ValidationError,
)
from postcraft.models import (
    ContentSession,
    ContentVersion,
    Integration,
    PublishJob,
    PublishJobStatus,
    VersionStatus,
)
from postcraft.services import notifier
from postcraft.services.content_workflow import advance_to_published, error_text
from postcraft.services.credential_store import CredentialStore
from postcraft.services.platform_content import render
from postcraft.services.publisher_adapter import PublishResult, get_publisher, is_retryable_error, sanitize
from postcraft.services.task_supervisor import TaskSupervisor, get_supervisor
from postcraft.settings import get_settings

logger = logging.getLogger(__name__)

J = PublishJobStatus
ACTIVE_STATUSES = [J.pending.value, J.running.value]
# Unscheduled pending jobs older than this were lost in dispatch (e.g. restart)
STALE_DISPATCH_SEC = 300
MAX_STACK_LEN = 4000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_job(job: PublishJob) -> dict[str, Any]:
    return {
        "id": job.id,
        "content_version_id": job.content_version_id,
        "integration_id": job.integration_id,
        "status": job.status,
        "scheduled_for": job.scheduled_for,
        "remote_id": job.remote_id,
        "remote_url": job.remote_url,
        "log": job.log,
        "metadata": job.meta or {},
        "started_at": job.started_at,
        "completed_at": job.completed_at,
        "created_at": job.created_at,
    }


def _default_factory():
    from postcraft.db import AsyncSessionLocal
    return AsyncSessionLocal


def _log_entry(error: str, *, retryable: bool, stack: str | None = None, **extra) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "error": error,
        "stack": stack,
        "timestamp": utcnow().isoformat(),
        "retryable": retryable,
    }
    entry.update(extra)
    return entry


async def execute_job(job_id: int, session_factory: Callable[[], AsyncSession] | None = None) -> PublishJob | None:
    """Run one pending job end to end. Returns None when the job could not be claimed."""
    session_factory = session_factory or _default_factory()
    async with session_factory() as db:
        claimed = await db.execute(
            update(PublishJob)
            .where(PublishJob.id == job_id, PublishJob.status == J.pending.value)
            .values({
                PublishJob.status: J.running.value,
                PublishJob.started_at: utcnow(),
                PublishJob.completed_at: None,
                PublishJob.log: None,
            })
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        if claimed.rowcount != 1:
            logger.info(f"[publish][job={job_id}] not pending, execute skipped")
            return None

        job = await db.get(PublishJob, job_id, populate_existing=True)
        await notifier.notify(job.owner_id, notifier.PUBLISH_UPDATE, format_job(job))

        version: ContentVersion | None = None
        version_id: int | None = None
        session_id: int | None = None
        stack: str | None = None
        try:
            version = await db.get(ContentVersion, job.content_version_id)
            integration = await db.get(Integration, job.integration_id)
            if version is None or integration is None:
                raise NotFoundError("Content version or integration no longer exists")
            version_id, session_id = version.id, version.session_id

            adapter = get_publisher(integration.provider)
            if adapter is None:
                result = PublishResult(
                    success=False,
                    platform=integration.provider,
                    error=f"Unsupported publish provider: {integration.provider}",
                )
            else:
                credentials = CredentialStore.get_credentials_for(integration)
                if not credentials:
                    result = PublishResult(
                        success=False,
                        platform=integration.provider,
                        error=f"Missing credentials for {integration.provider} integration {integration.id}",
                    )
                else:
                    rendered = render(version.platform, version.body)
                    metadata = {**(job.meta or {}), "job_id": job.id}
                    if rendered.title:
                        metadata.setdefault("title", rendered.title)
                    logger.info(f"[publish][job={job_id}] publishing version {version.id} to {integration.provider}")
                    result = await adapter.publish(rendered.text, credentials, metadata)
        except Exception as exc:
            await db.rollback()
            message = error_text(exc)
            stack = (sanitize(traceback.format_exc()) or "")[-MAX_STACK_LEN:]
            result = PublishResult(success=False, error=message, retryable=is_retryable_error(message))

        job = await db.get(PublishJob, job_id, populate_existing=True)
        if job is None:
            logger.warning(
                f"[publish][job={job_id}] removed during execution, dropping outcome "
                f"success={result.success} remote_id={result.remote_id}"
            )
            return None

        job.completed_at = utcnow()
        if result.success:
            job.status = J.success.value
            job.remote_id = result.remote_id
            job.remote_url = result.remote_url
            job.log = None
            if version_id is not None:
                version = await db.get(ContentVersion, version_id, populate_existing=True)
                if version is not None:
                    version.status = VersionStatus.published.value
            await db.commit()
            logger.info(f"[publish][job={job_id}] success remote_id={result.remote_id}")
            if version is not None:
                await advance_to_published(db, session_id)
        else:
            partial = {k: result.raw_response[k] for k in ("posted_ids", "failed_index") if k in result.raw_response}
            job.status = J.failed.value
            job.log = _log_entry(result.error or "Publish failed", retryable=result.retryable, stack=stack, **partial)
            await db.commit()
            logger.error(f"[publish][job={job_id}] failed: {result.error}")

        await db.refresh(job)
        await notifier.notify(job.owner_id, notifier.PUBLISH_UPDATE, format_job(job))
        return job


async def run_due_jobs(
    now: datetime | None = None,
    session_factory: Callable[[], AsyncSession] | None = None,
    limit: int = 100,
) -> int:
    """Execute pending jobs whose time has come. Returns how many were run."""
    session_factory = session_factory or _default_factory()
    now = as_utc(now or utcnow())
    async with session_factory() as db:
        res = await db.execute(
            select(PublishJob.id)
            .where(
                PublishJob.status == J.pending.value,
                or_(
                    PublishJob.scheduled_for <= now,
                    and_(
                        PublishJob.scheduled_for.is_(None),
                        PublishJob.created_at <= now - timedelta(seconds=STALE_DISPATCH_SEC),
                    ),
                ),
            )
            .order_by(PublishJob.scheduled_for, PublishJob.id)
            .limit(limit)
        )
        job_ids = list(res.scalars().all())

    executed = 0
    for job_id in job_ids:
        if await execute_job(job_id, session_factory) is not None:
            executed += 1
    if job_ids:
        logger.info(f"[publish] sweep ran {executed}/{len(job_ids)} due jobs")
    return executed


class PublishService:

    def __init__(
        self,
        session: AsyncSession,
        *,
        session_factory: Callable[[], AsyncSession] | None = None,
        supervisor: TaskSupervisor | None = None,
    ):
        self.session = session
        self.session_factory = session_factory or _default_factory()
        self.supervisor = supervisor or get_supervisor()
        self.credentials = CredentialStore(session)

    def dispatch(self, job_id: int) -> None:
        if get_settings().celery_enabled:
            from postcraft.worker.tasks import execute_publish_job

            execute_publish_job.delay(job_id)
            logger.info(f"[publish][job={job_id}] sent to celery")
            return
        self.supervisor.spawn(f"publish:{job_id}", execute_job(job_id, self.session_factory))

    async def execute(self, job_id: int) -> PublishJob | None:
        return await execute_job(job_id, self.session_factory)

    async def _get_owned_job(self, user_id: str, job_id: int) -> PublishJob:
        job = await self.session.get(PublishJob, job_id, populate_existing=True)
        if job is None:
            raise NotFoundError("Publish job not found", code="JOB_NOT_FOUND", field="jobId")
        if job.owner_id != user_id:
            raise AuthorizationError("Unauthorized access to publish job", code="JOB_ACCESS_DENIED", field="jobId")
        return job

    async def active_job_count(self, user_id: str) -> int:
        count = await self.session.scalar(
            select(func.count(PublishJob.id)).where(
                PublishJob.owner_id == user_id,
                PublishJob.status.in_(ACTIVE_STATUSES),
            )
        )
        return int(count or 0)

    async def schedule(
        self,
        user_id: str,
        version_id: int,
        integration_ids: list[int],
        scheduled_for: datetime | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> list[PublishJob]:
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

        integration_ids = list(dict.fromkeys(integration_ids or []))
        if not integration_ids:
            raise ValidationError("At least one integration is required", code="NO_INTEGRATIONS", field="integrationIds")

        if not (version.body or "").strip():
            raise ValidationError("Content body is empty", code="EMPTY_CONTENT", field="body")

        if scheduled_for is not None:
            scheduled_for = as_utc(scheduled_for)
            if scheduled_for <= utcnow():
                raise ValidationError(
                    "Scheduled time must be in the future",
                    code="SCHEDULE_IN_PAST",
                    field="scheduledFor",
                    user_message="Pick a publish time in the future.",
                )

        rendered = render(version.platform, version.body)
        for integration_id in integration_ids:
            integration = await self.credentials.get_owned(user_id, integration_id)
            adapter = get_publisher(integration.provider)
            if adapter is None:
                raise ValidationError(
                    f"Integration {integration_id} ({integration.provider}) cannot publish content",
                    code="UNSUPPORTED_PUBLISH_PROVIDER",
                    field="integrationIds",
                )
            too_long = adapter.length_error(rendered.text)
            if too_long:
                raise ValidationError(
                    too_long,
                    code="CONTENT_TOO_LONG",
                    field="body",
                    details={"provider": integration.provider, "length": len(rendered.text)},
                )

        limit = get_settings().max_active_publish_jobs_per_user
        current = await self.active_job_count(user_id)
        if current + len(integration_ids) > limit:
            raise RateLimitError(
                f"Too many active publish jobs: {current} active, {len(integration_ids)} requested, limit {limit}",
                current=current,
                limit=limit,
                user_message=f"You already have {current} publish jobs in progress (limit {limit}).",
            )

        jobs = [
            PublishJob(
                owner_id=user_id,
                content_version_id=version.id,
                integration_id=integration_id,
                status=J.pending.value,
                scheduled_for=scheduled_for,
                meta=dict(metadata or {}),
            )
            for integration_id in integration_ids
        ]
        self.session.add_all(jobs)
        await self.session.commit()
        for job in jobs:
            await self.session.refresh(job)

        logger.info(
            f"[publish] user {user_id} created {len(jobs)} job(s) for version {version_id}"
            f"{f' scheduled for {scheduled_for.isoformat()}' if scheduled_for else ''}"
        )
        if scheduled_for is None:
            for job in jobs:
                self.dispatch(job.id)
        return jobs

    async def retry(self, user_id: str, job_id: int) -> PublishJob:
        await self._get_owned_job(user_id, job_id)
        res = await self.session.execute(
            update(PublishJob)
            .where(PublishJob.id == job_id, PublishJob.status != J.running.value)
            .values({
                PublishJob.status: J.pending.value,
                PublishJob.started_at: None,
                PublishJob.completed_at: None,
                PublishJob.log: None,
                PublishJob.scheduled_for: None,
            })
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        if res.rowcount != 1:
            raise ConflictError("Cannot retry a running job", code="JOB_RUNNING", field="jobId")

        logger.info(f"[publish][job={job_id}] retry requested by user {user_id}")
        self.dispatch(job_id)
        return await self._get_owned_job(user_id, job_id)

    async def cancel(self, user_id: str, job_id: int, reason: str | None = None) -> PublishJob:
        await self._get_owned_job(user_id, job_id)
        res = await self.session.execute(
            update(PublishJob)
            .where(PublishJob.id == job_id, PublishJob.status == J.pending.value)
            .values({
                PublishJob.status: J.failed.value,
                PublishJob.completed_at: utcnow(),
                PublishJob.log: _log_entry("Cancelled by user", retryable=False, cancelled=True, reason=reason),
            })
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        if res.rowcount != 1:
            raise ConflictError(
                "Only pending jobs can be cancelled",
                code="JOB_NOT_CANCELLABLE",
                field="jobId",
                user_message="This job has already started or finished and cannot be cancelled.",
            )

        job = await self._get_owned_job(user_id, job_id)
        logger.info(f"[publish][job={job_id}] cancelled by user {user_id}")
        await notifier.notify(user_id, notifier.PUBLISH_UPDATE, format_job(job))
        return job

    async def reschedule(self, user_id: str, job_id: int, new_time: datetime) -> PublishJob:
        new_time = as_utc(new_time)
        if new_time <= utcnow():
            raise ValidationError("Scheduled time must be in the future", code="SCHEDULE_IN_PAST", field="scheduledFor")
        await self._get_owned_job(user_id, job_id)
        res = await self.session.execute(
            update(PublishJob)
            .where(PublishJob.id == job_id, PublishJob.status == J.pending.value)
            .values({PublishJob.scheduled_for: new_time})
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        if res.rowcount != 1:
            raise ConflictError("Only pending jobs can be rescheduled", code="JOB_NOT_RESCHEDULABLE", field="jobId")
        return await self._get_owned_job(user_id, job_id)

    async def list_jobs(self, user_id: str, status: str | None = None) -> list[PublishJob]:
        stmt = select(PublishJob).where(PublishJob.owner_id == user_id)
        if status:
            try:
                stmt = stmt.where(PublishJob.status == J(status).value)
            except ValueError as exc:
                raise ValidationError(f"Invalid job status: {status}", field="status") from exc
        res = await self.session.execute(stmt.order_by(PublishJob.created_at.desc(), PublishJob.id.desc()))
        return list(res.scalars().all())

    async def get_job(self, user_id: str, job_id: int) -> PublishJob:
        return await self._get_owned_job(user_id, job_id)

    async def delete_job(self, user_id: str, job_id: int) -> None:
        job = await self._get_owned_job(user_id, job_id)
        if job.status in ACTIVE_STATUSES:
            raise ConflictError(
                f"Cannot delete a {job.status} job, cancel it first",
                code="JOB_ACTIVE",
                field="jobId",
            )
        await self.session.delete(job)
        await self.session.commit()
