"""
Typed session metadata.

`ContentSession.meta` is stored as JSON but always read back through
`parse_meta`, which returns one variant of the `SessionMeta` union selected by
its `kind` field. Rows written before a kind existed are classified by the
keys they carry.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from postcraft.services.brief_builder import Brief


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PendingMeta(BaseModel):
    kind: Literal["pending"] = "pending"


class AnalyzedMeta(BaseModel):
    kind: Literal["analyzed"] = "analyzed"
    brief: Brief
    raw_analysis: dict[str, Any] = Field(default_factory=dict)
    analyzed_at: datetime = Field(default_factory=utcnow)
    generation_errors: dict[str, str] = Field(default_factory=dict)


class EnrichedMeta(BaseModel):
    kind: Literal["enriched"] = "enriched"
    brief: Brief
    raw_analysis: dict[str, Any] = Field(default_factory=dict)
    analyzed_at: datetime = Field(default_factory=utcnow)
    enrichment_complete: Literal[True] = True


class EnrichmentFailedMeta(BaseModel):
    kind: Literal["enrichment_failed"] = "enrichment_failed"
    analysis_error: str
    analysis_failed_at: datetime = Field(default_factory=utcnow)


class FailedMeta(BaseModel):
    kind: Literal["failed"] = "failed"
    error: str
    failed_at: datetime = Field(default_factory=utcnow)
    stage: str = "unknown"
    brief: Brief | None = None
    raw_analysis: dict[str, Any] | None = None
    generation_errors: dict[str, str] = Field(default_factory=dict)


SessionMeta = Annotated[
    Union[PendingMeta, AnalyzedMeta, EnrichedMeta, EnrichmentFailedMeta, FailedMeta],
    Field(discriminator="kind"),
]

_adapter: TypeAdapter[SessionMeta] = TypeAdapter(SessionMeta)


def _guess_kind(data: dict) -> str:
    if data.get("error"):
        return "failed"
    if data.get("analysis_error") or data.get("analysisError"):
        return "enrichment_failed"
    if data.get("enrichment_complete") or data.get("enrichmentComplete"):
        return "enriched"
    if data.get("brief"):
        return "analyzed"
    return "pending"


def parse_meta(data: dict | None) -> SessionMeta:
    data = dict(data or {})
    data.setdefault("kind", _guess_kind(data))
    return _adapter.validate_python(data)


def dump_meta(meta: SessionMeta) -> dict:
    return meta.model_dump(mode="json", by_alias=True)


def brief_of(meta: SessionMeta) -> Brief | None:
    return getattr(meta, "brief", None)


def failed_from(previous: SessionMeta, error: str, stage: str) -> FailedMeta:
    """Failure metadata that keeps whatever brief and analysis were already stored."""
    return FailedMeta(
        error=error,
        stage=stage,
        brief=brief_of(previous),
        raw_analysis=getattr(previous, "raw_analysis", None),
        generation_errors=getattr(previous, "generation_errors", None) or {},
    )


def error_of(meta: SessionMeta) -> str | None:
    if isinstance(meta, FailedMeta):
        return meta.error
    if isinstance(meta, EnrichmentFailedMeta):
        return meta.analysis_error
    return None
