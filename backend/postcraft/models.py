from __future__ import annotations

from datetime import datetime
from enum import Enum

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base, relationship


class InputType(str, Enum):
    topic = "topic"
    url = "url"
    keywords = "keywords"
    feed = "feed"
    text = "text"


class SessionWorkflow(str, Enum):
    brief = "brief"
    idea = "idea"


class SessionStatus(str, Enum):
    idea = "IDEA"
    analyzing = "ANALYZING"
    brief_ready = "BRIEF_READY"
    qna = "QNA"
    generating = "GENERATING"
    draft = "DRAFT"
    ready = "READY"
    published = "PUBLISHED"
    failed = "FAILED"


class ContentPlatform(str, Enum):
    article = "article"
    twitter = "twitter"
    linkedin = "linkedin"
    reel_script = "reel_script"
    yt_script = "yt_script"
    podcast_script = "podcast_script"
    other = "other"


class VersionStatus(str, Enum):
    draft = "draft"
    published = "published"
    failed = "failed"


class IntegrationProvider(str, Enum):
    gemini = "gemini"
    openai = "openai"
    elevenlabs = "elevenlabs"
    heygen = "heygen"
    wordpress = "wordpress"
    twitter = "twitter"
    linkedin = "linkedin"


class PublishJobStatus(str, Enum):
    pending = "pending"
    running = "running"
    success = "success"
    failed = "failed"


class VideoJobStatus(str, Enum):
    pending = "pending"
    running = "running"
    processing = "processing"
    completed = "completed"
    failed = "failed"


class ContentSession(Base):
    __tablename__ = "content_sessions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(sa.String(64), nullable=False, index=True)
    workflow: Mapped[str] = mapped_column(sa.String(16), nullable=False, default=SessionWorkflow.brief.value)
    input_type: Mapped[str] = mapped_column(sa.String(16), nullable=False)
    input_payload: Mapped[dict] = mapped_column(sa.JSON(), nullable=False, default=dict)
    title: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    niche: Mapped[str | None] = mapped_column(sa.String(128), nullable=True)
    status: Mapped[str] = mapped_column(sa.String(32), nullable=False, index=True)
    meta: Mapped[dict] = mapped_column("metadata", sa.JSON(), nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False
    )

    ideas: Mapped[list["Idea"]] = relationship(back_populates="session", order_by="Idea.id")
    questions: Mapped[list["Question"]] = relationship(back_populates="session", order_by="Question.position")
    answers: Mapped[list["Answer"]] = relationship(back_populates="session", order_by="Answer.id")
    versions: Mapped[list["ContentVersion"]] = relationship(back_populates="session", order_by="ContentVersion.id")


class Idea(Base):
    __tablename__ = "ideas"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    session_id: Mapped[int] = mapped_column(
        sa.ForeignKey("content_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    description: Mapped[str] = mapped_column(sa.Text(), nullable=False, default="")
    is_selected: Mapped[bool] = mapped_column(sa.Boolean(), nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)

    session: Mapped[ContentSession] = relationship(back_populates="ideas")


class Question(Base):
    __tablename__ = "questions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    session_id: Mapped[int] = mapped_column(
        sa.ForeignKey("content_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    text: Mapped[str] = mapped_column(sa.Text(), nullable=False)
    category: Mapped[str | None] = mapped_column(sa.String(64), nullable=True)
    # Why the question was asked, shown next to it in the UI
    purpose: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    position: Mapped[int] = mapped_column(sa.Integer(), nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)

    session: Mapped[ContentSession] = relationship(back_populates="questions")
    answers: Mapped[list["Answer"]] = relationship(back_populates="question")


class Answer(Base):
    __tablename__ = "answers"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    session_id: Mapped[int] = mapped_column(
        sa.ForeignKey("content_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    question_id: Mapped[int] = mapped_column(
        sa.ForeignKey("questions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    text: Mapped[str] = mapped_column(sa.Text(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)

    session: Mapped[ContentSession] = relationship(back_populates="answers")
    question: Mapped[Question] = relationship(back_populates="answers")


class ContentVersion(Base):
    __tablename__ = "content_versions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    session_id: Mapped[int] = mapped_column(
        sa.ForeignKey("content_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    platform: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    # Structured platforms store serialized JSON, legacy drafts store plain text
    body: Mapped[str] = mapped_column(sa.Text(), nullable=False)
    status: Mapped[str] = mapped_column(sa.String(16), nullable=False, default=VersionStatus.draft.value)
    meta: Mapped[dict] = mapped_column("metadata", sa.JSON(), nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False
    )

    session: Mapped[ContentSession] = relationship(back_populates="versions")
    publish_jobs: Mapped[list["PublishJob"]] = relationship(back_populates="version")
    video_jobs: Mapped[list["VideoJob"]] = relationship(back_populates="version")


class Integration(Base):
    __tablename__ = "integrations"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(sa.String(64), nullable=False, index=True)
    provider: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    credentials_encrypted: Mapped[str] = mapped_column(sa.Text(), nullable=False)
    # account_name, account_type, picture, master_integration_id
    meta: Mapped[dict] = mapped_column("metadata", sa.JSON(), nullable=False, default=dict)
    is_active: Mapped[bool] = mapped_column(sa.Boolean(), nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False
    )

    publish_jobs: Mapped[list["PublishJob"]] = relationship(back_populates="integration")


class PublishJob(Base):
    __tablename__ = "publish_jobs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(sa.String(64), nullable=False, index=True)
    content_version_id: Mapped[int] = mapped_column(
        sa.ForeignKey("content_versions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    integration_id: Mapped[int] = mapped_column(
        sa.ForeignKey("integrations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(sa.String(16), nullable=False, default=PublishJobStatus.pending.value, index=True)
    scheduled_for: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True, index=True)
    remote_id: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    remote_url: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    log: Mapped[dict | None] = mapped_column(sa.JSON(), nullable=True)
    meta: Mapped[dict] = mapped_column("metadata", sa.JSON(), nullable=False, default=dict)
    started_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False
    )

    version: Mapped[ContentVersion] = relationship(back_populates="publish_jobs")
    integration: Mapped[Integration] = relationship(back_populates="publish_jobs")


class VideoJob(Base):
    __tablename__ = "video_jobs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(sa.String(64), nullable=False, index=True)
    content_version_id: Mapped[int] = mapped_column(
        sa.ForeignKey("content_versions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    integration_id: Mapped[int | None] = mapped_column(
        sa.ForeignKey("integrations.id", ondelete="SET NULL"), nullable=True
    )
    provider: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    status: Mapped[str] = mapped_column(sa.String(16), nullable=False, default=VideoJobStatus.pending.value, index=True)
    params: Mapped[dict] = mapped_column(sa.JSON(), nullable=False, default=dict)
    remote_id: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    remote_asset_url: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    poll_attempts: Mapped[int] = mapped_column(sa.Integer(), nullable=False, default=0)
    log: Mapped[dict | None] = mapped_column(sa.JSON(), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False
    )

    version: Mapped[ContentVersion] = relationship(back_populates="video_jobs")
