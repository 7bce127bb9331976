from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from postcraft.auth import get_user_id
from postcraft.db import get_session
from postcraft.schemas import PublishCancel, PublishJobRead, PublishRequest, PublishReschedule
from postcraft.services.publish_service import PublishService

router = APIRouter(prefix="/api/publish", tags=["publish"])
SessionDep = Depends(get_session)
UserDep = Depends(get_user_id)


@router.post("/jobs", response_model=list[PublishJobRead], status_code=status.HTTP_201_CREATED)
async def schedule_publish(data: PublishRequest, user_id: str = UserDep, session: AsyncSession = SessionDep):
    """Create one job per integration; unscheduled jobs start immediately."""
    return await PublishService(session).schedule(
        user_id,
        data.version_id,
        data.integration_ids,
        scheduled_for=data.scheduled_for,
        metadata=data.metadata,
    )


@router.get("/jobs", response_model=list[PublishJobRead])
async def list_publish_jobs(
    status_filter: str | None = Query(default=None, alias="status"),
    user_id: str = UserDep,
    session: AsyncSession = SessionDep,
):
    return await PublishService(session).list_jobs(user_id, status_filter)


@router.get("/jobs/{job_id}", response_model=PublishJobRead)
async def get_publish_job(job_id: int, user_id: str = UserDep, session: AsyncSession = SessionDep):
    return await PublishService(session).get_job(user_id, job_id)


@router.post("/jobs/{job_id}/retry", response_model=PublishJobRead)
async def retry_publish_job(job_id: int, user_id: str = UserDep, session: AsyncSession = SessionDep):
    return await PublishService(session).retry(user_id, job_id)


@router.post("/jobs/{job_id}/cancel", response_model=PublishJobRead)
async def cancel_publish_job(
    job_id: int,
    data: PublishCancel | None = None,
    user_id: str = UserDep,
    session: AsyncSession = SessionDep,
):
    return await PublishService(session).cancel(user_id, job_id, data.reason if data else None)


@router.patch("/jobs/{job_id}/schedule", response_model=PublishJobRead)
async def reschedule_publish_job(
    job_id: int,
    data: PublishReschedule,
    user_id: str = UserDep,
    session: AsyncSession = SessionDep,
):
    return await PublishService(session).reschedule(user_id, job_id, data.scheduled_for)


@router.delete("/jobs/{job_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_publish_job(job_id: int, user_id: str = UserDep, session: AsyncSession = SessionDep):
    await PublishService(session).delete_job(user_id, job_id)
