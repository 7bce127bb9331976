"""
Tests for the idea workflow: IDEA -> QNA -> DRAFT, with background enrichment.
"""

import json

import pytest

from conftest import USER_ID
from postcraft.errors import ConflictError, NoAIIntegrationError, UpstreamProviderError, ValidationError
from postcraft.models import ContentSession
from postcraft.services.content_workflow import ContentWorkflow
from postcraft.services.session_meta import EnrichedMeta, EnrichmentFailedMeta, PendingMeta, parse_meta


@pytest.fixture
def workflow(db, session_factory, deferred_supervisor, research):
    return ContentWorkflow(db, session_factory=session_factory, supervisor=deferred_supervisor, research=research)


async def status_of(db, session_id):
    row = await db.get(ContentSession, session_id, populate_existing=True)
    return row.status, parse_meta(row.meta)


class TestStartIdeaSession:

    async def test_text_input_creates_ideas_without_enrichment(self, workflow, deferred_supervisor, ai_integration, llm):
        started = await workflow.start_idea_session(USER_ID, "text", "Our triage pilot\nNinety days of notes.")

        assert started["status"] == "IDEA"
        assert started["title"] == "Our triage pilot"
        assert [i["title"] for i in started["ideas"]] == ["Triage myths", "Pilot diary", "Cost math"]
        assert deferred_supervisor.spawned == []

    async def test_topic_input_enriches_in_background(self, workflow, deferred_supervisor, db, ai_integration, llm):
        started = await workflow.start_idea_session(USER_ID, "topic", "AI triage", niche="Healthcare")
        session_id = started["session_id"]
        assert deferred_supervisor.spawned == [f"enrich:{session_id}"]

        status, meta = await status_of(db, session_id)
        assert isinstance(meta, PendingMeta)

        await deferred_supervisor.run_pending()

        status, meta = await status_of(db, session_id)
        assert status == "IDEA"
        assert isinstance(meta, EnrichedMeta)
        assert meta.brief.topic_overview.title == "AI Triage in Rural Clinics"

    async def test_enrichment_failure_keeps_status(self, workflow, deferred_supervisor, db, ai_integration, llm):
        started = await workflow.start_idea_session(USER_ID, "topic", "AI triage")
        llm.respond("expert content strategist", "no json here")

        await deferred_supervisor.run_pending()

        status, meta = await status_of(db, started["session_id"])
        assert status == "IDEA"
        assert isinstance(meta, EnrichmentFailedMeta)
        assert "No JSON object found" in meta.analysis_error

    async def test_requires_ai_integration(self, workflow, llm):
        with pytest.raises(NoAIIntegrationError):
            await workflow.start_idea_session(USER_ID, "text", "Anything")

    async def test_empty_text_rejected(self, workflow, ai_integration, llm):
        with pytest.raises(ValidationError) as exc:
            await workflow.start_idea_session(USER_ID, "text", "   ")
        assert exc.value.code == "EMPTY_INPUT"


class TestSelectIdea:

    async def test_select_moves_to_qna(self, workflow, db, ai_integration, llm):
        started = await workflow.start_idea_session(USER_ID, "text", "Our triage pilot")
        idea_id = started["ideas"][1]["id"]

        selected = await workflow.select_idea(USER_ID, idea_id)

        assert selected["status"] == "QNA"
        assert selected["idea"]["title"] == "Pilot diary"
        assert [q["question"] for q in selected["questions"]] == ["Who is your reader?", "What result surprised you?"]

        detail = await workflow.get_session(USER_ID, started["session_id"])
        assert [i["is_selected"] for i in detail["ideas"]] == [False, True, False]

    async def test_second_selection_rejected(self, workflow, ai_integration, llm):
        started = await workflow.start_idea_session(USER_ID, "text", "Our triage pilot")
        await workflow.select_idea(USER_ID, started["ideas"][0]["id"])

        with pytest.raises(ConflictError) as exc:
            await workflow.select_idea(USER_ID, started["ideas"][2]["id"])
        assert exc.value.code == "INVALID_SESSION_STATUS"


class TestGenerateDrafts:

    async def _qna_session(self, workflow):
        started = await workflow.start_idea_session(USER_ID, "text", "Our triage pilot")
        selected = await workflow.select_idea(USER_ID, started["ideas"][0]["id"])
        answers = [{"question_id": q["id"], "answer": "Clinic managers"} for q in selected["questions"]]
        return started["session_id"], answers

    async def test_plain_drafts_without_brief(self, workflow, db, ai_integration, llm):
        session_id, answers = await self._qna_session(workflow)

        result = await workflow.generate_drafts(USER_ID, session_id, answers, ["linkedin", "twitter"])

        assert result["status"] == "DRAFT"
        assert result["errors"] == {}
        assert {v["platform"] for v in result["versions"]} == {"linkedin", "twitter"}
        assert all(v["body"] == "Plain idea draft." for v in result["versions"])
        assert all(v["metadata"]["generation_method"] == "idea" for v in result["versions"])
        assert "Clinic managers" in llm.prompts[-1]

        status, _ = await status_of(db, session_id)
        assert status == "DRAFT"

    async def test_structured_drafts_after_enrichment(self, workflow, deferred_supervisor, db, ai_integration, llm):
        started = await workflow.start_idea_session(USER_ID, "topic", "AI triage")
        await deferred_supervisor.run_pending()
        selected = await workflow.select_idea(USER_ID, started["ideas"][0]["id"])
        answers = [{"question_id": q["id"], "answer": "Clinic managers"} for q in selected["questions"]]

        result = await workflow.generate_drafts(USER_ID, started["session_id"], answers, ["blog", "yt_script"])

        by_platform = {v["platform"]: v for v in result["versions"]}
        assert json.loads(by_platform["article"]["body"])["article"]["title"] == "How AI Triage Cuts Clinic Waits"
        assert by_platform["article"]["metadata"]["generation_method"] == "brief_analysis"
        assert by_platform["yt_script"]["body"] == "Plain idea draft."

    async def test_partial_failure_keeps_draft(self, workflow, db, ai_integration, llm):
        session_id, answers = await self._qna_session(workflow)
        llm.respond("Write a Twitter thread", RuntimeError("rate limited"))

        result = await workflow.generate_drafts(USER_ID, session_id, answers, ["linkedin", "twitter"])

        assert [v["platform"] for v in result["versions"]] == ["linkedin"]
        assert list(result["errors"]) == ["twitter"]
        assert "rate limited" in result["errors"]["twitter"]

    async def test_all_platforms_failing_fails_session(self, workflow, db, ai_integration, llm):
        session_id, answers = await self._qna_session(workflow)
        llm.respond("Refinement Questions & Answers", RuntimeError("provider down"))

        with pytest.raises(UpstreamProviderError) as exc:
            await workflow.generate_drafts(USER_ID, session_id, answers, ["linkedin", "article"])
        assert exc.value.status_code == 502

        status, meta = await status_of(db, session_id)
        assert status == "FAILED"
        assert set(meta.generation_errors) == {"linkedin", "article"}

    async def test_invalid_platform_rejected(self, workflow, ai_integration, llm):
        session_id, answers = await self._qna_session(workflow)
        with pytest.raises(ValidationError) as exc:
            await workflow.generate_drafts(USER_ID, session_id, answers, ["myspace"])
        assert exc.value.code == "INVALID_PLATFORM"

    async def test_requires_qna_status(self, workflow, ai_integration, llm):
        started = await workflow.start_idea_session(USER_ID, "text", "Our triage pilot")
        with pytest.raises(ConflictError):
            await workflow.generate_drafts(USER_ID, started["session_id"], [], ["linkedin"])
