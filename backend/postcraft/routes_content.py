from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from postcraft.auth import get_user_id
from postcraft.db import get_session
from postcraft.schemas import (
    AnswersSubmit,
    AutoFixRequest,
    ContentVersionRead,
    ContentVersionUpdate,
    DraftsGenerate,
    IdeaSessionCreate,
    PlatformRegenerate,
    SessionCreate,
    SessionCreated,
    SessionRead,
    SessionStatusRead,
    SessionStatusUpdate,
    VersionRegenerate,
)
from postcraft.services.content_workflow import ContentWorkflow

router = APIRouter(prefix="/api/content", tags=["content"])
SessionDep = Depends(get_session)
UserDep = Depends(get_user_id)


@router.post("/sessions", response_model=SessionCreated, status_code=status.HTTP_202_ACCEPTED)
async def create_session(data: SessionCreate, user_id: str = UserDep, session: AsyncSession = SessionDep):
    """Start a brief-workflow session; analysis runs in the background."""
    return await ContentWorkflow(session).create_session(user_id, data.topic, data.input_type, data.niche)


@router.get("/sessions")
async def list_sessions(
    status_filter: str | None = Query(default=None, alias="status"),
    platform: str | None = None,
    search: str | None = None,
    user_id: str = UserDep,
    session: AsyncSession = SessionDep,
):
    return await ContentWorkflow(session).list_sessions(user_id, status_filter, platform, search)


@router.get("/sessions/{session_id}")
async def get_content_session(session_id: int, user_id: str = UserDep, session: AsyncSession = SessionDep):
    return await ContentWorkflow(session).get_session(user_id, session_id)


@router.get("/sessions/{session_id}/status", response_model=SessionStatusRead)
async def get_session_status(session_id: int, user_id: str = UserDep, session: AsyncSession = SessionDep):
    return await ContentWorkflow(session).get_status(user_id, session_id)


@router.patch("/sessions/{session_id}/status", response_model=SessionRead)
async def update_session_status(
    session_id: int,
    data: SessionStatusUpdate,
    user_id: str = UserDep,
    session: AsyncSession = SessionDep,
):
    return await ContentWorkflow(session).update_status(user_id, session_id, data.status)


@router.post("/sessions/{session_id}/answers", status_code=status.HTTP_202_ACCEPTED)
async def submit_answers(
    session_id: int,
    data: AnswersSubmit,
    user_id: str = UserDep,
    session: AsyncSession = SessionDep,
):
    answers = [a.model_dump() for a in data.answers]
    return await ContentWorkflow(session).submit_answers(user_id, session_id, answers)


@router.get("/sessions/{session_id}/generated")
async def get_generated_content(session_id: int, user_id: str = UserDep, session: AsyncSession = SessionDep):
    return await ContentWorkflow(session).get_generated_content(user_id, session_id)


@router.post("/sessions/{session_id}/regenerate", response_model=ContentVersionRead, status_code=status.HTTP_201_CREATED)
async def regenerate_platform(
    session_id: int,
    data: PlatformRegenerate,
    user_id: str = UserDep,
    session: AsyncSession = SessionDep,
):
    return await ContentWorkflow(session).regenerate_platform(user_id, session_id, data.platform, data.modifications)


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_content_session(session_id: int, user_id: str = UserDep, session: AsyncSession = SessionDep):
    await ContentWorkflow(session).delete_session(user_id, session_id)


# Idea workflow
@router.post("/ideas/sessions", status_code=status.HTTP_201_CREATED)
async def start_idea_session(data: IdeaSessionCreate, user_id: str = UserDep, session: AsyncSession = SessionDep):
    return await ContentWorkflow(session).start_idea_session(user_id, data.input_type, data.input, data.niche)


@router.post("/ideas/{idea_id}/select")
async def select_idea(idea_id: int, user_id: str = UserDep, session: AsyncSession = SessionDep):
    return await ContentWorkflow(session).select_idea(user_id, idea_id)


@router.post("/sessions/{session_id}/drafts", status_code=status.HTTP_201_CREATED)
async def generate_drafts(
    session_id: int,
    data: DraftsGenerate,
    user_id: str = UserDep,
    session: AsyncSession = SessionDep,
):
    answers = [a.model_dump() for a in data.answers]
    return await ContentWorkflow(session).generate_drafts(user_id, session_id, answers, data.platforms)


# Draft editing
@router.patch("/versions/{version_id}", response_model=ContentVersionRead)
async def update_version(
    version_id: int,
    data: ContentVersionUpdate,
    user_id: str = UserDep,
    session: AsyncSession = SessionDep,
):
    return await ContentWorkflow(session).update_version(user_id, version_id, data.body, data.metadata)


@router.post("/versions/{version_id}/regenerate", response_model=ContentVersionRead)
async def regenerate_version(
    version_id: int,
    data: VersionRegenerate,
    user_id: str = UserDep,
    session: AsyncSession = SessionDep,
):
    return await ContentWorkflow(session).regenerate_version(user_id, version_id, data.action, data.tone, data.length)


@router.post("/versions/{version_id}/auto-fix", response_model=ContentVersionRead)
async def auto_fix_version(
    version_id: int,
    data: AutoFixRequest,
    user_id: str = UserDep,
    session: AsyncSession = SessionDep,
):
    return await ContentWorkflow(session).auto_fix(user_id, version_id, data.violation_type)
