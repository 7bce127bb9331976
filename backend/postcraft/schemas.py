from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, field_validator


def _meta_field():
    # ORM rows keep the JSON column under `meta`; `metadata` is taken by DeclarativeBase
    return Field(default_factory=dict, validation_alias=AliasChoices("meta", "metadata"))


# Sessions
class SessionCreate(BaseModel):
    topic: str | list[str]
    input_type: str = "topic"
    niche: str | None = None

    @field_validator("topic")
    @classmethod
    def strip_topic(cls, value):
        return value.strip() if isinstance(value, str) else value


class SessionCreated(BaseModel):
    sessionId: int
    status: str


class SessionStatusRead(BaseModel):
    status: str
    hasError: bool
    error: str | None = None
    updatedAt: datetime | None = None


class SessionStatusUpdate(BaseModel):
    status: str


class SessionRead(BaseModel):
    id: int
    title: str
    workflow: str
    input_type: str
    niche: str | None = None
    status: str
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


class AnswerIn(BaseModel):
    question_id: int
    answer: str


class AnswersSubmit(BaseModel):
    answers: list[AnswerIn]


class IdeaSessionCreate(BaseModel):
    input_type: str = "topic"
    input: Any
    niche: str | None = None


class DraftsGenerate(BaseModel):
    answers: list[AnswerIn] = Field(default_factory=list)
    platforms: list[str]


# Content versions
class ContentVersionRead(BaseModel):
    id: int
    session_id: int
    platform: str
    body: str
    status: str
    metadata: dict = _meta_field()
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


class ContentVersionUpdate(BaseModel):
    body: str | None = None
    metadata: dict | None = None


class VersionRegenerate(BaseModel):
    action: str
    tone: str | None = None
    length: str | None = None


class PlatformRegenerate(BaseModel):
    platform: str
    modifications: str | None = None


class AutoFixRequest(BaseModel):
    violation_type: str


# Integrations
class IntegrationCreate(BaseModel):
    provider: str
    credentials: dict[str, Any]
    metadata: dict[str, Any] | None = None


class IntegrationUpdate(BaseModel):
    credentials: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None
    is_active: bool | None = None


class IntegrationRead(BaseModel):
    id: int
    provider: str
    credentials: dict[str, str]
    metadata: dict = Field(default_factory=dict)
    is_active: bool
    created_at: datetime | None = None


class ConnectionTest(BaseModel):
    provider: str
    credentials: dict[str, Any]


# Publish jobs
class PublishRequest(BaseModel):
    version_id: int
    integration_ids: list[int]
    scheduled_for: datetime | None = None
    metadata: dict[str, Any] | None = None


class PublishJobRead(BaseModel):
    id: int
    content_version_id: int
    integration_id: int
    status: str
    scheduled_for: datetime | None = None
    remote_id: str | None = None
    remote_url: str | None = None
    log: dict | None = None
    metadata: dict = _meta_field()
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class PublishReschedule(BaseModel):
    scheduled_for: datetime


class PublishCancel(BaseModel):
    reason: str | None = None


# Media jobs
class VideoJobCreate(BaseModel):
    version_id: int
    provider: str
    params: dict[str, Any] = Field(default_factory=dict)


class VideoJobRead(BaseModel):
    id: int
    content_version_id: int
    provider: str
    status: str
    params: dict = Field(default_factory=dict)
    remote_id: str | None = None
    remote_asset_url: str | None = None
    poll_attempts: int = 0
    log: dict | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True
