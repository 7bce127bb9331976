"""
Content Workflow Service

Owns the ContentSession state machine and the background chains behind it.

Brief workflow:   ANALYZING → BRIEF_READY → QNA → GENERATING → READY → PUBLISHED
Idea workflow:    IDEA → QNA → DRAFT → READY → PUBLISHED

Rules:
- Status only moves forward within its workflow's rank table
- FAILED is reachable from any other status and is terminal
- Every chain status write is a compare-and-set on the expected current
  status, so at most one chain advances a session at a time
- Chains run on the TaskSupervisor with their own DB session; any exception
  ends in a persisted FAILED status with the cause in metadata
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from postcraft.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ServiceError,
    UpstreamProviderError,
    ValidationError,
)
from postcraft.models import (
    Answer,
    ContentPlatform,
    ContentSession,
    ContentVersion,
    Idea,
    InputType,
    PublishJob,
    PublishJobStatus,
    Question,
    SessionStatus,
    SessionWorkflow,
    VersionStatus,
    VideoJob,
    VideoJobStatus,
)
from postcraft.services import notifier
from postcraft.services.brief_builder import BriefBuilder
from postcraft.services.input_processor import parse_input_type, process_input, session_title
from postcraft.services.llm_provider import AIClient
from postcraft.services.platform_content import (
    QA,
    PlatformContentGenerator,
    PlatformError,
    get_spec,
    parse_body,
    serialize,
    spec_for_content_platform,
    to_content_platform,
)
from postcraft.services.publisher_adapter import sanitize
from postcraft.services.question_generator import QuestionGenerator
from postcraft.services.research_aggregator import ResearchAggregator, ResearchBundle, get_research_cache
from postcraft.services.session_meta import (
    AnalyzedMeta,
    EnrichedMeta,
    EnrichmentFailedMeta,
    PendingMeta,
    SessionMeta,
    brief_of,
    dump_meta,
    error_of,
    failed_from,
    parse_meta,
)
from postcraft.services.task_supervisor import TaskSupervisor, get_supervisor

logger = logging.getLogger(__name__)

S = SessionStatus

BRIEF_FLOW_RANK: dict[SessionStatus, int] = {
    S.analyzing: 0,
    S.brief_ready: 1,
    S.qna: 2,
    S.generating: 3,
    S.ready: 4,
    S.published: 5,
}

IDEA_FLOW_RANK: dict[SessionStatus, int] = {
    S.idea: 0,
    S.qna: 1,
    S.draft: 2,
    S.ready: 3,
    S.published: 4,
}

MAX_ERROR_LEN = 1000


def rank_table(workflow: str) -> dict[SessionStatus, int]:
    return IDEA_FLOW_RANK if workflow == SessionWorkflow.idea.value else BRIEF_FLOW_RANK


def can_transition(current: str, target: str, workflow: str = SessionWorkflow.brief.value) -> bool:
    """Forward-only rule; FAILED is reachable from anything but itself."""
    current, target = S(current), S(target)
    if current == S.failed:
        return False
    if target == S.failed:
        return True
    ranks = rank_table(workflow)
    if current not in ranks or target not in ranks:
        return False
    return ranks[target] >= ranks[current]


def parse_status(value: str) -> SessionStatus:
    try:
        return S((value or "").strip().upper())
    except ValueError as exc:
        raise ValidationError(
            f"Invalid status: {value}",
            code="INVALID_STATUS",
            field="status",
            user_message=f"Invalid status. Supported: {', '.join(s.value for s in S)}",
        ) from exc


def error_text(exc: BaseException) -> str:
    message = exc.message if isinstance(exc, ServiceError) else str(exc)
    return (sanitize(message or type(exc).__name__) or "Unknown error")[:MAX_ERROR_LEN]


def current_versions(versions: list[ContentVersion]) -> dict[str, ContentVersion]:
    """Most recent draft per platform."""
    current: dict[str, ContentVersion] = {}
    for version in sorted(versions, key=lambda v: v.id):
        if version.status == VersionStatus.draft.value:
            current[version.platform] = version
    return current


def format_version(version: ContentVersion) -> dict[str, Any]:
    return {
        "id": version.id,
        "session_id": version.session_id,
        "platform": version.platform,
        "body": version.body,
        "status": version.status,
        "metadata": version.meta or {},
        "created_at": version.created_at,
        "updated_at": version.updated_at,
    }


def format_question(question: Question) -> dict[str, Any]:
    return {
        "id": question.id,
        "question": question.text,
        "category": question.category,
        "purpose": question.purpose,
        "position": question.position,
    }


def format_session_summary(row: ContentSession) -> dict[str, Any]:
    meta = parse_meta(row.meta)
    return {
        "id": row.id,
        "title": row.title,
        "workflow": row.workflow,
        "input_type": row.input_type,
        "niche": row.niche,
        "status": row.status,
        "has_error": error_of(meta) is not None,
        "created_at": row.created_at,
        "updated_at": row.updated_at,
    }


async def set_status(
    db: AsyncSession,
    session_id: int,
    status: SessionStatus,
    *,
    expected: SessionStatus | list[SessionStatus] | None = None,
    meta: SessionMeta | None = None,
    commit: bool = True,
) -> bool:
    """Compare-and-set status write. Returns False when the row was not in `expected`."""
    stmt = update(ContentSession).where(ContentSession.id == session_id)
    if expected is not None:
        allowed = expected if isinstance(expected, list) else [expected]
        stmt = stmt.where(ContentSession.status.in_([s.value for s in allowed]))
    values: dict[Any, Any] = {ContentSession.status: status.value, ContentSession.updated_at: datetime.now(timezone.utc)}
    if meta is not None:
        values[ContentSession.meta] = dump_meta(meta)
    res = await db.execute(stmt.values(values).execution_options(synchronize_session=False))
    if commit:
        await db.commit()
    return res.rowcount == 1


async def advance_to_published(db: AsyncSession, session_id: int) -> bool:
    """Move a session to PUBLISHED after a successful publish, when that is a legal move."""
    row = await db.get(ContentSession, session_id, populate_existing=True)
    if row is None or not can_transition(row.status, S.published.value, row.workflow):
        return False
    moved = await set_status(db, session_id, S.published, expected=S(row.status))
    if moved:
        logger.info(f"[workflow][session={session_id}] {row.status} -> PUBLISHED")
    return moved


async def latest_answers(db: AsyncSession, session_id: int) -> list[QA]:
    """One answer per question, latest submission wins, in question order."""
    res = await db.execute(
        select(Question, Answer)
        .join(Answer, Answer.question_id == Question.id)
        .where(Question.session_id == session_id, Answer.session_id == session_id)
        .order_by(Question.position, Question.id, Answer.id)
    )
    latest: dict[int, QA] = {}
    for question, answer in res.all():
        latest[question.id] = QA(question=question.text, answer=answer.text)
    return list(latest.values())


def _raw_analysis(bundle: ResearchBundle) -> dict[str, Any]:
    return bundle.model_dump(mode="json", exclude={"discussion": {"discussions"}})


class ContentWorkflow:

    def __init__(
        self,
        session: AsyncSession,
        *,
        session_factory: async_sessionmaker | Callable[[], AsyncSession] | None = None,
        supervisor: TaskSupervisor | None = None,
        research: ResearchAggregator | None = None,
    ):
        if session_factory is None:
            from postcraft.db import AsyncSessionLocal
            session_factory = AsyncSessionLocal
        self.session = session
        self.session_factory = session_factory
        self.supervisor = supervisor or get_supervisor()
        self.research = research or ResearchAggregator(cache=get_research_cache())

    # ── Lookups ──────────────────────────────────────────────

    async def _get_owned_session(self, user_id: str, session_id: int, *relations) -> ContentSession:
        stmt = (
            select(ContentSession)
            .where(ContentSession.id == session_id)
            .options(*(selectinload(getattr(ContentSession, r)) for r in relations))
            .execution_options(populate_existing=True)
        )
        row = (await self.session.execute(stmt)).scalars().first()
        if row is None:
            raise NotFoundError("Session not found", code="SESSION_NOT_FOUND", field="sessionId")
        if row.owner_id != user_id:
            raise AuthorizationError("Unauthorized access to session", code="SESSION_ACCESS_DENIED", field="sessionId")
        return row

    async def _get_owned_version(self, user_id: str, version_id: int) -> tuple[ContentVersion, ContentSession]:
        res = await self.session.execute(
            select(ContentVersion, ContentSession)
            .join(ContentSession, ContentVersion.session_id == ContentSession.id)
            .where(ContentVersion.id == version_id)
            .execution_options(populate_existing=True)
        )
        found = res.first()
        if found is None:
            raise NotFoundError("Content version not found", code="VERSION_NOT_FOUND", field="versionId")
        version, row = found
        if row.owner_id != user_id:
            raise AuthorizationError("Unauthorized access to content version", code="VERSION_ACCESS_DENIED", field="versionId")
        return version, row

    async def _notify(self, user_id: str, session_id: int, **data):
        await notifier.notify(user_id, notifier.CONTENT_UPDATE, {"session_id": session_id, **data})

    # ── Brief workflow ───────────────────────────────────────

    async def create_session(
        self,
        user_id: str,
        topic: Any,
        input_type: str = InputType.topic.value,
        niche: str | None = None,
    ) -> dict[str, Any]:
        kind = parse_input_type(input_type)
        if topic is None or (isinstance(topic, str) and not topic.strip()) or (isinstance(topic, list) and not topic):
            raise ValidationError("Topic is required", code="EMPTY_INPUT", field="topic")

        row = ContentSession(
            owner_id=user_id,
            workflow=SessionWorkflow.brief.value,
            input_type=kind.value,
            input_payload={"value": topic},
            title=session_title(kind, topic),
            niche=(niche or "").strip() or None,
            status=S.analyzing.value,
            meta=dump_meta(PendingMeta()),
        )
        self.session.add(row)
        await self.session.commit()
        await self.session.refresh(row)

        self.supervisor.spawn(f"analyze:{row.id}", self._run_analysis(user_id, row.id))
        logger.info(f"[workflow][session={row.id}] created ({kind.value}) for user {user_id}, analysis started")
        return {"sessionId": row.id, "status": row.status}

    async def _topic_text(self, row: ContentSession) -> str:
        payload = (row.input_payload or {}).get("value")
        if row.input_type == InputType.topic.value:
            return str(payload).strip()
        processed = await process_input(InputType(row.input_type), payload)
        return processed.title or row.title

    async def _analyze(self, db: AsyncSession, user_id: str, topic: str, niche: str, stage: list[str]):
        builder = BriefBuilder(AIClient(db))
        stage[0] = "normalize"
        normalized = await builder.normalize_topic(user_id, topic, niche)
        stage[0] = "research"
        bundle = await self.research.aggregate(normalized.main_topic, niche, normalized.keywords)
        stage[0] = "brief"
        brief = await builder.build_brief(user_id, bundle, topic, niche)
        return brief, bundle

    async def _run_analysis(self, user_id: str, session_id: int) -> None:
        stage = ["input"]
        async with self.session_factory() as db:
            try:
                row = await db.get(ContentSession, session_id, populate_existing=True)
                if row is None:
                    logger.warning(f"[workflow][session={session_id}] vanished before analysis")
                    return
                niche = row.niche or "General"
                topic = await self._topic_text(row)
                brief, bundle = await self._analyze(db, user_id, topic, niche, stage)

                stage[0] = "persist_brief"
                meta = AnalyzedMeta(brief=brief, raw_analysis=_raw_analysis(bundle))
                if not await set_status(db, session_id, S.brief_ready, expected=S.analyzing, meta=meta):
                    logger.warning(f"[workflow][session={session_id}] left ANALYZING during analysis, chain stopped")
                    return
                await self._notify(user_id, session_id, status=S.brief_ready.value)

                stage[0] = "questions"
                drafts = await QuestionGenerator(AIClient(db)).from_brief(user_id, brief)
                db.add_all(
                    Question(session_id=session_id, text=q.text, category=q.category, purpose=q.purpose, position=i)
                    for i, q in enumerate(drafts)
                )
                if not await set_status(db, session_id, S.qna, expected=S.brief_ready):
                    await db.rollback()
                    logger.warning(f"[workflow][session={session_id}] left BRIEF_READY, questions discarded")
                    return
                logger.info(f"[workflow][session={session_id}] QNA with {len(drafts)} questions")
                await self._notify(user_id, session_id, status=S.qna.value, question_count=len(drafts))
            except Exception as exc:
                await db.rollback()
                await self._fail(db, user_id, session_id, exc, stage[0])

    async def _fail(
        self,
        db: AsyncSession,
        user_id: str,
        session_id: int,
        exc: BaseException | str,
        stage: str,
        generation_errors: dict[str, str] | None = None,
    ) -> None:
        message = exc if isinstance(exc, str) else error_text(exc)
        logger.error(f"[workflow][session={session_id}] failed at {stage}: {message}")
        row = await db.get(ContentSession, session_id, populate_existing=True)
        if row is None:
            return
        meta = failed_from(parse_meta(row.meta), message, stage)
        if generation_errors:
            meta.generation_errors = generation_errors
        others = [s for s in S if s != S.failed]
        if await set_status(db, session_id, S.failed, expected=others, meta=meta):
            await self._notify(user_id, session_id, status=S.failed.value, error=message)

    async def submit_answers(self, user_id: str, session_id: int, answers: list[dict[str, Any]]) -> dict[str, Any]:
        row = await self._get_owned_session(user_id, session_id, "questions")
        if row.status != S.qna.value:
            raise ConflictError(
                f"Session is {row.status}, answers are accepted only in QNA",
                code="INVALID_SESSION_STATUS",
                field="status",
                user_message="This session is not waiting for answers.",
            )
        if not answers:
            raise ValidationError("At least one answer is required", code="EMPTY_ANSWERS", field="answers")

        known = {q.id for q in row.questions}
        saved = 0
        for item in answers:
            question_id = item.get("question_id", item.get("questionId"))
            text = str(item.get("answer") or item.get("text") or "").strip()
            if question_id not in known or not text:
                continue
            self.session.add(Answer(session_id=session_id, question_id=question_id, text=text))
            saved += 1

        if not await set_status(self.session, session_id, S.generating, expected=S.qna, commit=False):
            await self.session.rollback()
            raise ConflictError(
                "Session is already generating",
                code="GENERATION_IN_PROGRESS",
                user_message="Content generation is already running for this session.",
            )
        await self.session.commit()

        self.supervisor.spawn(f"generate:{session_id}", self._run_generation(user_id, session_id))
        logger.info(f"[workflow][session={session_id}] {saved} answers saved, generation started")
        return {"success": True, "sessionId": session_id, "status": S.generating.value, "answersSaved": saved}

    async def _run_generation(self, user_id: str, session_id: int) -> None:
        async with self.session_factory() as db:
            try:
                row = await db.get(ContentSession, session_id, populate_existing=True)
                if row is None:
                    return
                meta = parse_meta(row.meta)
                brief = brief_of(meta)
                if brief is None:
                    raise ValidationError("Session has no brief to generate from", code="NO_BRIEF")

                answers = await latest_answers(db, session_id)
                niche = row.niche or brief.user_niche
                generator = PlatformContentGenerator(AIClient(db))
                results = await generator.generate_all(user_id, brief, answers, niche)
            except Exception as exc:
                await db.rollback()
                await self._fail(db, user_id, session_id, exc, "generation")
                return

            errors = {p: r.error for p, r in results.items() if isinstance(r, PlatformError)}
            successes = {p: r for p, r in results.items() if not isinstance(r, PlatformError)}
            if not successes:
                await self._fail(db, user_id, session_id, "Content generation failed for every platform", "generation", errors)
                return

            try:
                versions = [
                    ContentVersion(
                        session_id=session_id,
                        platform=get_spec(platform).content_platform.value,
                        body=serialize(content),
                        status=VersionStatus.draft.value,
                        meta=generator.metadata(platform, content),
                    )
                    for platform, content in successes.items()
                ]
                db.add_all(versions)
                new_meta = (
                    meta.model_copy(update={"generation_errors": errors})
                    if isinstance(meta, AnalyzedMeta)
                    else AnalyzedMeta(brief=brief, generation_errors=errors)
                )
                if not await set_status(db, session_id, S.ready, expected=S.generating, meta=new_meta):
                    await db.rollback()
                    logger.warning(f"[workflow][session={session_id}] left GENERATING, drafts discarded")
                    return
            except Exception as exc:
                await db.rollback()
                await self._fail(db, user_id, session_id, exc, "persist_drafts")
                return

            logger.info(
                f"[workflow][session={session_id}] READY with {len(versions)} drafts, "
                f"failed platforms={list(errors) or 'none'}"
            )
            await self._notify(
                user_id,
                session_id,
                status=S.ready.value,
                versions=[v.id for v in versions],
                errors=errors,
            )

    # ── Status and reads ─────────────────────────────────────

    async def update_status(self, user_id: str, session_id: int, status: str) -> ContentSession:
        target = parse_status(status)
        row = await self._get_owned_session(user_id, session_id)
        if not can_transition(row.status, target.value, row.workflow):
            raise ValidationError(
                f"Invalid status transition {row.status} -> {target.value}",
                code="INVALID_STATUS_TRANSITION",
                field="status",
                details={"current": row.status, "requested": target.value},
                user_message=f"Cannot move a {row.status} session back to {target.value}.",
            )
        meta = None
        if target == S.failed:
            meta = failed_from(parse_meta(row.meta), "Marked as failed by user", "manual")
        if not await set_status(self.session, session_id, target, expected=S(row.status), meta=meta):
            raise ConflictError("Session status changed concurrently, retry", code="STATUS_CONFLICT")
        logger.info(f"[workflow][session={session_id}] manual status {row.status} -> {target.value}")
        return await self._get_owned_session(user_id, session_id)

    async def get_status(self, user_id: str, session_id: int) -> dict[str, Any]:
        row = await self._get_owned_session(user_id, session_id)
        error = error_of(parse_meta(row.meta))
        return {"status": row.status, "hasError": error is not None, "error": error, "updatedAt": row.updated_at}

    async def get_session(self, user_id: str, session_id: int) -> dict[str, Any]:
        row = await self._get_owned_session(user_id, session_id, "ideas", "questions", "answers", "versions")
        meta = parse_meta(row.meta)
        brief = brief_of(meta)
        return {
            **format_session_summary(row),
            "input": (row.input_payload or {}).get("value"),
            "brief": brief.model_dump(mode="json", by_alias=True) if brief else None,
            "error": error_of(meta),
            "generation_errors": getattr(meta, "generation_errors", None) or {},
            "enrichment_complete": isinstance(meta, EnrichedMeta),
            "ideas": [
                {"id": i.id, "title": i.title, "description": i.description, "is_selected": i.is_selected}
                for i in row.ideas
            ],
            "questions": [format_question(q) for q in row.questions],
            "answers": [
                {"id": a.id, "question_id": a.question_id, "answer": a.text, "created_at": a.created_at}
                for a in row.answers
            ],
            "drafts": {p: format_version(v) for p, v in current_versions(row.versions).items()},
        }

    async def list_sessions(
        self,
        user_id: str,
        status: str | None = None,
        platform: str | None = None,
        search: str | None = None,
    ) -> list[dict[str, Any]]:
        stmt = (
            select(ContentSession)
            .where(ContentSession.owner_id == user_id)
            .options(selectinload(ContentSession.versions))
            .order_by(ContentSession.updated_at.desc(), ContentSession.id.desc())
        )
        if status:
            stmt = stmt.where(ContentSession.status == parse_status(status).value)
        if platform:
            content_platform = to_content_platform(platform).value
            stmt = stmt.where(
                ContentSession.versions.any(ContentVersion.platform == content_platform)
            )
        if search:
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(or_(ContentSession.title.ilike(pattern), ContentSession.niche.ilike(pattern)))

        rows = (await self.session.execute(stmt)).scalars().all()
        return [
            {**format_session_summary(r), "platforms": sorted({v.platform for v in r.versions}), "version_count": len(r.versions)}
            for r in rows
        ]

    async def get_generated_content(self, user_id: str, session_id: int) -> dict[str, Any]:
        row = await self._get_owned_session(user_id, session_id, "versions")
        meta = parse_meta(row.meta)
        return {
            "session_id": row.id,
            "status": row.status,
            "content": {p: format_version(v) for p, v in current_versions(row.versions).items()},
            "generation_errors": getattr(meta, "generation_errors", None) or {},
        }

    async def delete_session(self, user_id: str, session_id: int) -> None:
        await self._get_owned_session(user_id, session_id)
        version_ids = select(ContentVersion.id).where(ContentVersion.session_id == session_id)

        active_publish = await self.session.scalar(
            select(func.count(PublishJob.id)).where(
                PublishJob.content_version_id.in_(version_ids),
                PublishJob.status.in_([PublishJobStatus.pending.value, PublishJobStatus.running.value]),
            )
        )
        active_video = await self.session.scalar(
            select(func.count(VideoJob.id)).where(
                VideoJob.content_version_id.in_(version_ids),
                VideoJob.status.in_([
                    VideoJobStatus.pending.value,
                    VideoJobStatus.running.value,
                    VideoJobStatus.processing.value,
                ]),
            )
        )
        if active_publish or active_video:
            raise ConflictError(
                "Cannot delete session with active jobs",
                code="SESSION_HAS_ACTIVE_JOBS",
                field="sessionId",
                details={"active_publish_jobs": active_publish, "active_video_jobs": active_video},
                user_message="Cancel or wait for pending publish and video jobs before deleting this session.",
            )

        try:
            await self.session.execute(delete(PublishJob).where(PublishJob.content_version_id.in_(version_ids)))
            await self.session.execute(delete(VideoJob).where(VideoJob.content_version_id.in_(version_ids)))
            await self.session.execute(delete(Answer).where(Answer.session_id == session_id))
            await self.session.execute(delete(Question).where(Question.session_id == session_id))
            await self.session.execute(delete(ContentVersion).where(ContentVersion.session_id == session_id))
            await self.session.execute(delete(Idea).where(Idea.session_id == session_id))
            await self.session.execute(delete(ContentSession).where(ContentSession.id == session_id))
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        logger.info(f"[workflow][session={session_id}] deleted by user {user_id}")

    # ── Idea workflow ────────────────────────────────────────

    async def start_idea_session(
        self,
        user_id: str,
        input_type: str,
        payload: Any,
        niche: str | None = None,
    ) -> dict[str, Any]:
        kind = parse_input_type(input_type)
        processed = await process_input(kind, payload)
        ideas = await QuestionGenerator(AIClient(self.session)).generate_ideas(
            user_id, processed.title, processed.content
        )

        row = ContentSession(
            owner_id=user_id,
            workflow=SessionWorkflow.idea.value,
            input_type=kind.value,
            input_payload={"value": payload},
            title=session_title(kind, payload),
            niche=(niche or "").strip() or None,
            status=S.idea.value,
            meta=dump_meta(PendingMeta()),
        )
        self.session.add(row)
        await self.session.flush()
        idea_rows = [Idea(session_id=row.id, title=i.title, description=i.description) for i in ideas]
        self.session.add_all(idea_rows)
        await self.session.commit()

        if kind == InputType.topic:
            self.supervisor.spawn(f"enrich:{row.id}", self._run_enrichment(user_id, row.id))
        logger.info(f"[workflow][session={row.id}] idea session with {len(idea_rows)} ideas for user {user_id}")
        return {
            "session_id": row.id,
            "status": row.status,
            "title": row.title,
            "ideas": [{"id": i.id, "title": i.title, "description": i.description} for i in idea_rows],
        }

    async def _run_enrichment(self, user_id: str, session_id: int) -> None:
        """Background brief for an idea session; never changes its status."""
        stage = ["input"]
        async with self.session_factory() as db:
            try:
                row = await db.get(ContentSession, session_id, populate_existing=True)
                if row is None:
                    return
                niche = row.niche or "General"
                brief, bundle = await self._analyze(db, user_id, await self._topic_text(row), niche, stage)
                meta: SessionMeta = EnrichedMeta(brief=brief, raw_analysis=_raw_analysis(bundle))
            except Exception as exc:
                await db.rollback()
                logger.warning(f"[workflow][session={session_id}] enrichment failed at {stage[0]}: {exc}")
                meta = EnrichmentFailedMeta(analysis_error=error_text(exc))

            await db.execute(
                update(ContentSession)
                .where(ContentSession.id == session_id, ContentSession.status != S.failed.value)
                .values({ContentSession.meta: dump_meta(meta)})
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            await self._notify(user_id, session_id, enrichment_complete=isinstance(meta, EnrichedMeta))

    async def select_idea(self, user_id: str, idea_id: int) -> dict[str, Any]:
        idea = await self.session.get(Idea, idea_id)
        if idea is None:
            raise NotFoundError("Idea not found", code="IDEA_NOT_FOUND", field="ideaId")
        row = await self._get_owned_session(user_id, idea.session_id)
        if row.status != S.idea.value:
            raise ConflictError(
                f"Session is {row.status}, an idea can only be selected in IDEA",
                code="INVALID_SESSION_STATUS",
                field="status",
            )

        drafts = await QuestionGenerator(AIClient(self.session)).from_idea(user_id, idea.title, idea.description)

        await self.session.execute(
            update(Idea)
            .where(Idea.session_id == row.id)
            .values({Idea.is_selected: Idea.id == idea_id})
            .execution_options(synchronize_session=False)
        )
        questions = [
            Question(session_id=row.id, text=q.text, category=q.category, purpose=q.purpose, position=i)
            for i, q in enumerate(drafts)
        ]
        self.session.add_all(questions)
        if not await set_status(self.session, row.id, S.qna, expected=S.idea, commit=False):
            await self.session.rollback()
            raise ConflictError("Idea already selected for this session", code="IDEA_ALREADY_SELECTED")
        await self.session.commit()
        return {
            "session_id": row.id,
            "status": S.qna.value,
            "idea": {"id": idea.id, "title": idea.title, "description": idea.description, "is_selected": True},
            "questions": [format_question(q) for q in questions],
        }

    async def generate_drafts(
        self,
        user_id: str,
        session_id: int,
        answers: list[dict[str, Any]],
        platforms: list[str],
    ) -> dict[str, Any]:
        row = await self._get_owned_session(user_id, session_id, "ideas", "questions")
        if row.workflow != SessionWorkflow.idea.value or row.status != S.qna.value:
            raise ConflictError(
                f"Session is {row.status}, drafts are generated from an idea session in QNA",
                code="INVALID_SESSION_STATUS",
                field="status",
            )
        targets = list(dict.fromkeys(to_content_platform(p) for p in platforms))
        if not targets:
            raise ValidationError("At least one platform is required", code="EMPTY_PLATFORMS", field="platforms")
        idea = next((i for i in row.ideas if i.is_selected), None)
        if idea is None:
            raise ValidationError("No idea selected for this session", code="NO_SELECTED_IDEA", field="ideaId")

        generator = PlatformContentGenerator(AIClient(self.session))
        await generator.ai.resolve(user_id)

        known = {q.id for q in row.questions}
        for item in answers or []:
            question_id = item.get("question_id", item.get("questionId"))
            text = str(item.get("answer") or item.get("text") or "").strip()
            if question_id in known and text:
                self.session.add(Answer(session_id=session_id, question_id=question_id, text=text))
        if not await set_status(self.session, session_id, S.draft, expected=S.qna, commit=False):
            await self.session.rollback()
            raise ConflictError("Drafts are already being generated", code="GENERATION_IN_PROGRESS")
        await self.session.commit()

        meta = parse_meta(row.meta)
        brief = brief_of(meta) if isinstance(meta, EnrichedMeta) else None
        qa = await latest_answers(self.session, session_id)

        async def _one(platform: ContentPlatform) -> ContentVersion:
            spec = spec_for_content_platform(platform.value)
            if brief is not None and spec is not None:
                content = await generator.generate(user_id, spec.key, brief, qa, row.niche or brief.user_niche)
                return ContentVersion(
                    session_id=session_id,
                    platform=platform.value,
                    body=serialize(content),
                    meta=generator.metadata(spec.key, content, idea_id=idea.id),
                )
            body = await generator.generate_plain(user_id, platform.value, idea.title, idea.description, qa)
            return ContentVersion(
                session_id=session_id,
                platform=platform.value,
                body=body,
                meta={"generation_method": "idea", "idea_id": idea.id, "character_count": len(body)},
            )

        results = await asyncio.gather(*(_one(p) for p in targets), return_exceptions=True)
        versions = [r for r in results if isinstance(r, ContentVersion)]
        errors = {p.value: error_text(r) for p, r in zip(targets, results) if isinstance(r, BaseException)}

        if not versions:
            await self._fail(self.session, user_id, session_id, "Content generation failed for every platform", "generation", errors)
            raise UpstreamProviderError(
                "Content generation failed for every platform",
                code="GENERATION_FAILED",
                details={"errors": errors},
            )

        self.session.add_all(versions)
        await self.session.commit()
        for version in versions:
            await self.session.refresh(version)
        logger.info(f"[workflow][session={session_id}] {len(versions)} idea drafts, failed={list(errors) or 'none'}")
        return {
            "session_id": session_id,
            "status": S.draft.value,
            "versions": [format_version(v) for v in versions],
            "errors": errors,
        }

    # ── Draft editing ────────────────────────────────────────

    def _remeasure(self, version: ContentVersion, **extra) -> dict[str, Any]:
        meta = dict(version.meta or {})
        spec = spec_for_content_platform(version.platform)
        structured = parse_body(version.platform, version.body)
        if spec is not None and structured is not None:
            meta.update(spec.measure(structured))
        else:
            meta["character_count"] = len(version.body)
        meta.update(extra)
        return meta

    async def update_version(
        self,
        user_id: str,
        version_id: int,
        body: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ContentVersion:
        version, _ = await self._get_owned_version(user_id, version_id)
        if body is not None:
            if not body.strip():
                raise ValidationError("Content body cannot be empty", code="EMPTY_BODY", field="body")
            version.body = body
            version.meta = self._remeasure(version, edited_at=datetime.now(timezone.utc).isoformat())
        if metadata:
            version.meta = {**(version.meta or {}), **metadata}
        self.session.add(version)
        await self.session.commit()
        await self.session.refresh(version)
        return version

    async def regenerate_version(
        self,
        user_id: str,
        version_id: int,
        action: str,
        tone: str | None = None,
        length: str | None = None,
    ) -> ContentVersion:
        version, _ = await self._get_owned_version(user_id, version_id)
        generator = PlatformContentGenerator(AIClient(self.session))
        version.body = await generator.rewrite(user_id, version.platform, version.body, action, tone=tone, length=length)
        version.meta = self._remeasure(
            version,
            last_action=action,
            regenerated_at=datetime.now(timezone.utc).isoformat(),
        )
        self.session.add(version)
        await self.session.commit()
        await self.session.refresh(version)
        logger.info(f"[workflow][version={version_id}] rewritten with {action}")
        return version

    async def regenerate_platform(
        self,
        user_id: str,
        session_id: int,
        platform: str,
        modifications: str | None = None,
    ) -> ContentVersion:
        row = await self._get_owned_session(user_id, session_id)
        spec = get_spec(platform) or spec_for_content_platform(to_content_platform(platform).value)
        if spec is None:
            raise ValidationError(f"Platform {platform} cannot be regenerated from a brief", field="platform")
        brief = brief_of(parse_meta(row.meta))
        if brief is None:
            raise ValidationError("Session has no brief yet", code="NO_BRIEF", field="sessionId")

        generator = PlatformContentGenerator(AIClient(self.session))
        answers = await latest_answers(self.session, session_id)
        content = await generator.generate(
            user_id, spec.key, brief, answers, row.niche or brief.user_niche, modifications=modifications
        )
        version = ContentVersion(
            session_id=session_id,
            platform=spec.content_platform.value,
            body=serialize(content),
            meta=generator.metadata(spec.key, content, regenerated=True, modifications=modifications),
        )
        self.session.add(version)
        await self.session.commit()
        await self.session.refresh(version)
        return version

    async def auto_fix(self, user_id: str, version_id: int, violation_type: str) -> ContentVersion:
        version, _ = await self._get_owned_version(user_id, version_id)
        generator = PlatformContentGenerator(AIClient(self.session))
        version.body = await generator.auto_fix(user_id, version.platform, version.body, violation_type)
        version.meta = self._remeasure(
            version,
            auto_fixed=violation_type,
            fixed_at=datetime.now(timezone.utc).isoformat(),
        )
        self.session.add(version)
        await self.session.commit()
        await self.session.refresh(version)
        logger.info(f"[workflow][version={version_id}] auto-fixed {violation_type}")
        return version
