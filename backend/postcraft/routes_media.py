from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from postcraft.auth import get_user_id
from postcraft.db import get_session
from postcraft.schemas import VideoJobCreate, VideoJobRead
from postcraft.services.media_service import MediaService

router = APIRouter(prefix="/api/media", tags=["media"])
SessionDep = Depends(get_session)
UserDep = Depends(get_user_id)


@router.post("/jobs", response_model=VideoJobRead, status_code=status.HTTP_202_ACCEPTED)
async def create_media_job(data: VideoJobCreate, user_id: str = UserDep, session: AsyncSession = SessionDep):
    """Queue voice/video generation for a content version."""
    return await MediaService(session).create_job(user_id, data.version_id, data.provider, data.params)


@router.get("/jobs", response_model=list[VideoJobRead])
async def list_media_jobs(
    status_filter: str | None = Query(default=None, alias="status"),
    user_id: str = UserDep,
    session: AsyncSession = SessionDep,
):
    return await MediaService(session).list_jobs(user_id, status_filter)


@router.get("/jobs/{job_id}", response_model=VideoJobRead)
async def get_media_job(job_id: int, user_id: str = UserDep, session: AsyncSession = SessionDep):
    return await MediaService(session).get_job(user_id, job_id)
