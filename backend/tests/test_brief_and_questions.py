"""
Tests for topic normalization, brief building and question/idea generation.
"""

import pytest

from conftest import BRIEF_RESPONSE, USER_ID, FakeSources
from postcraft.errors import NoAIIntegrationError, ParseError
from postcraft.services.brief_builder import Brief, BriefBuilder
from postcraft.services.llm_provider import AIClient
from postcraft.services.question_generator import QuestionGenerator, parse_questions
from postcraft.services.research_aggregator import ResearchAggregator


@pytest.fixture
def ai(db):
    return AIClient(db)


class TestNormalizeTopic:

    async def test_uses_ai_result(self, ai, ai_integration, llm):
        normalized = await BriefBuilder(ai).normalize_topic(USER_ID, "ai triage", "Healthcare")
        assert normalized.main_topic == "AI triage"
        assert normalized.keywords == ["ai triage", "clinic wait times"]

    async def test_falls_back_on_bad_reply(self, ai, ai_integration, llm):
        llm.respond("Analyze this topic", "Sorry, I can't do that.")
        normalized = await BriefBuilder(ai).normalize_topic(USER_ID, "ai triage", "Healthcare")

        assert normalized.main_topic == "ai triage"
        assert normalized.keywords == ["ai triage"]
        assert normalized.category == "Healthcare"
        assert normalized.target_audience == "Professionals in Healthcare"

    async def test_empty_keywords_replaced_by_topic(self, ai, ai_integration, llm):
        llm.respond("Analyze this topic", {"mainTopic": "AI triage", "keywords": []})
        normalized = await BriefBuilder(ai).normalize_topic(USER_ID, "ai triage", "Healthcare")
        assert normalized.keywords == ["ai triage"]

    async def test_missing_integration_propagates(self, ai, llm):
        with pytest.raises(NoAIIntegrationError):
            await BriefBuilder(ai).normalize_topic(USER_ID, "ai triage", "Healthcare")


class TestBuildBrief:

    async def test_brief_from_research(self, ai, ai_integration, llm):
        bundle = await ResearchAggregator(FakeSources()).aggregate("AI triage", "Healthcare", ["ai triage"])

        brief = await BriefBuilder(ai).build_brief(USER_ID, bundle, "AI triage", "Healthcare")

        assert brief.topic_overview.title == "AI Triage in Rural Clinics"
        assert brief.user_niche == "Healthcare"
        assert brief.generated_at is not None
        prompt = llm.prompts[-1]
        assert "Total discussions analyzed: 1" in prompt
        assert "Top pain points: Triage is a struggle at our clinic" in prompt
        assert "Trending status: stable" in prompt

    async def test_brief_with_missing_sections(self, ai, ai_integration, llm):
        llm.respond("expert content strategist", {"topicOverview": {"title": "x"}})
        bundle = await ResearchAggregator(FakeSources()).aggregate("AI triage", "Healthcare")
        with pytest.raises(ParseError):
            await BriefBuilder(ai).build_brief(USER_ID, bundle, "AI triage", "Healthcare")

    def test_brief_round_trips_camel_case(self):
        brief = Brief.model_validate(BRIEF_RESPONSE)
        dumped = brief.model_dump(by_alias=True)
        assert dumped["topicOverview"]["title"] == "AI Triage in Rural Clinics"
        assert dumped["platformRecommendations"]["reelScript"]["hook"] == "Waiting 4 hours?"


class TestQuestions:

    def test_parse_mixed_items(self):
        questions = parse_questions([
            "  Plain question?  ",
            {"question": "Structured?", "category": "Audience", "purpose": "know the reader"},
            {"text": "Alternate key?"},
            {"question": ""},
            42,
        ])
        assert [q.text for q in questions] == ["Plain question?", "Structured?", "Alternate key?"]
        assert questions[1].category == "audience"
        assert questions[1].purpose == "know the reader"
        assert questions[0].category == "general"

    def test_parse_caps_count(self):
        assert len(parse_questions([f"Q{i}?" for i in range(12)])) == 7

    def test_parse_nothing_usable(self):
        with pytest.raises(ParseError):
            parse_questions([{}, "   "])

    async def test_from_brief(self, ai, ai_integration, llm):
        questions = await QuestionGenerator(ai).from_brief(USER_ID, Brief.model_validate(BRIEF_RESPONSE), count=20)

        assert len(questions) == 5
        assert questions[0].category == "experience"
        assert "generate 7 targeted questions" in llm.prompts[-1]
        assert "PAIN POINTS: long queues, staff shortages" in llm.prompts[-1]

    async def test_from_brief_rejects_object_reply(self, ai, ai_integration, llm):
        llm.respond("targeted questions", {"questions": []})
        with pytest.raises(ParseError):
            await QuestionGenerator(ai).from_brief(USER_ID, Brief.model_validate(BRIEF_RESPONSE))

    async def test_generate_ideas_skips_untitled(self, ai, ai_integration, llm):
        llm.respond("unique content ideas", [{"title": "Keep"}, {"description": "no title"}, "junk"])
        ideas = await QuestionGenerator(ai).generate_ideas(USER_ID, "Pilot", "notes")
        assert [(i.title, i.description) for i in ideas] == [("Keep", "")]

    async def test_generate_ideas_none_usable(self, ai, ai_integration, llm):
        llm.respond("unique content ideas", [])
        with pytest.raises(ParseError):
            await QuestionGenerator(ai).generate_ideas(USER_ID, "Pilot", "notes")
