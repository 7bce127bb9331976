"""
Content Brief Builder.

Turns a ResearchBundle into a fixed-shape Brief with exactly one AI call.
A response that does not parse or does not match the Brief shape is a hard
ParseError. Topic normalization is the one step allowed to fall back to a
local default, since it only seeds research keywords.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from postcraft.errors import NoAIIntegrationError, ParseError
from postcraft.services.llm_provider import AIClient
from postcraft.services.research_aggregator import ResearchBundle

logger = logging.getLogger(__name__)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class NormalizedTopic(CamelModel):
    main_topic: str
    keywords: list[str] = Field(default_factory=list)
    category: str = ""
    target_audience: str = ""
    related_terms: list[str] = Field(default_factory=list)


class TopicOverview(CamelModel):
    title: str
    description: str = ""
    relevance_score: int = 0
    trending_status: str = "unknown"


class AudienceInsights(CamelModel):
    primary_audience: str = ""
    pain_points: list[str] = Field(default_factory=list)
    goals: list[str] = Field(default_factory=list)
    knowledge_level: str = "intermediate"
    common_questions: list[str] = Field(default_factory=list)


class ContentAngle(CamelModel):
    angle: str
    rationale: str = ""
    platforms: list[str] = Field(default_factory=list)
    estimated_engagement: str = "medium"


class CompetitiveInsights(CamelModel):
    gap_opportunities: list[str] = Field(default_factory=list)
    popular_formats: list[str] = Field(default_factory=list)
    tone_trends: str = ""


class PlatformRecommendation(CamelModel):
    format: str | None = None
    tone: str | None = None
    key_points: list[str] = Field(default_factory=list)
    hooks: list[str] = Field(default_factory=list)
    structure: list[str] = Field(default_factory=list)
    seo_keywords: list[str] = Field(default_factory=list)
    hook: str | None = None
    key_moments: list[str] = Field(default_factory=list)
    cta: str | None = None
    duration: str | None = None


class PlatformRecommendations(CamelModel):
    linkedin: PlatformRecommendation
    twitter: PlatformRecommendation
    blog: PlatformRecommendation
    reel_script: PlatformRecommendation


class SupportingData(CamelModel):
    statistics: list[str] = Field(default_factory=list)
    examples: list[str] = Field(default_factory=list)
    quotes: list[str] = Field(default_factory=list)


class Brief(CamelModel):
    topic_overview: TopicOverview
    audience_insights: AudienceInsights
    content_angles: list[ContentAngle] = Field(default_factory=list)
    key_messages: list[str]
    competitive_insights: CompetitiveInsights = Field(default_factory=CompetitiveInsights)
    platform_recommendations: PlatformRecommendations
    supporting_data: SupportingData = Field(default_factory=SupportingData)
    user_niche: str = "General"
    generated_at: datetime | None = None


NORMALIZE_PROMPT = """Analyze this topic and extract key information.

Topic: "{topic}"
User's Industry/Niche: {niche}

Return ONLY a JSON object with this exact structure (no markdown, no explanation):
{{
  "mainTopic": "concise, focused topic name",
  "keywords": ["keyword1", "keyword2", "keyword3", "keyword4", "keyword5"],
  "category": "industry category",
  "targetAudience": "specific audience description for {niche} industry",
  "relatedTerms": ["term1", "term2", "term3"]
}}"""

BRIEF_PROMPT = """You are an expert content strategist specializing in the {niche} industry.

Analyze this research data and create a comprehensive content brief:

TOPIC: {topic}
USER'S NICHE/INDUSTRY: {niche}
KEYWORDS: {keywords}

DISCUSSION INSIGHTS:
- Total discussions analyzed: {total_posts}
- Top pain points: {pain_points}
- Overall sentiment: {sentiment}
- Average engagement: {avg_comments} comments per post

SEARCH TRENDS:
- Trending status: {trending_status}
- Related queries: {related_queries}
- Rising topics: {rising_topics}

SEARCH INSIGHTS:
- Top ranking content analyzed: {top_results} results
- People also ask: {people_also_ask}
- Content gaps identified: {content_gaps}

Return ONLY a JSON object with this EXACT structure (no markdown, no explanation):
{shape}"""

BRIEF_SHAPE = {
    "topicOverview": {
        "title": "compelling, niche-focused title",
        "description": "2-3 sentence overview relevant to the niche",
        "relevanceScore": 85,
        "trendingStatus": "rising|stable|declining",
    },
    "audienceInsights": {
        "primaryAudience": "detailed persona",
        "painPoints": ["pain point 1", "pain point 2", "pain point 3"],
        "goals": ["goal 1", "goal 2"],
        "knowledgeLevel": "beginner|intermediate|expert",
        "commonQuestions": ["question 1", "question 2", "question 3"],
    },
    "contentAngles": [
        {
            "angle": "unique perspective or hook",
            "rationale": "why this works for the niche",
            "platforms": ["linkedin", "twitter", "blog"],
            "estimatedEngagement": "high|medium|low",
        }
    ],
    "keyMessages": ["message 1", "message 2", "message 3"],
    "competitiveInsights": {
        "gapOpportunities": ["gap 1", "gap 2"],
        "popularFormats": ["format 1", "format 2"],
        "toneTrends": "professional|casual|educational",
    },
    "platformRecommendations": {
        "linkedin": {"format": "article|post|carousel", "tone": "description", "keyPoints": ["point"], "hooks": ["hook"]},
        "twitter": {"format": "thread|single|quote", "tone": "description", "keyPoints": ["point"], "hooks": ["hook"]},
        "blog": {"format": "listicle|howto|analysis", "tone": "description", "structure": ["section"], "seoKeywords": ["keyword"]},
        "reelScript": {"hook": "opening", "keyMoments": ["moment"], "cta": "call to action", "duration": "30-60 seconds"},
    },
    "supportingData": {"statistics": ["stat"], "examples": ["example"], "quotes": ["quote"]},
}


def fallback_topic(topic: str, niche: str) -> NormalizedTopic:
    return NormalizedTopic(
        main_topic=topic,
        keywords=[topic],
        category=niche,
        target_audience=f"Professionals in {niche}",
        related_terms=[],
    )


class BriefBuilder:

    def __init__(self, ai: AIClient):
        self.ai = ai

    async def normalize_topic(self, user_id: str, topic: str, niche: str) -> NormalizedTopic:
        try:
            data = await self.ai.call_ai_json(user_id, NORMALIZE_PROMPT.format(topic=topic, niche=niche), expect=dict)
            normalized = NormalizedTopic.model_validate(data)
        except NoAIIntegrationError:
            raise
        except Exception as exc:
            logger.warning(f"[brief] topic normalization fell back to local keywords: {exc}")
            return fallback_topic(topic, niche)
        if not normalized.keywords:
            normalized.keywords = [topic]
        return normalized

    async def build_brief(self, user_id: str, bundle: ResearchBundle, topic: str, niche: str) -> Brief:
        prompt = BRIEF_PROMPT.format(
            niche=niche,
            topic=topic,
            keywords=", ".join(bundle.keywords),
            total_posts=bundle.discussion.engagement.total_posts,
            pain_points="; ".join(p.text for p in bundle.discussion.pain_points[:3]) or "none found",
            sentiment=bundle.discussion.sentiment,
            avg_comments=bundle.discussion.engagement.avg_comments,
            trending_status=bundle.trends.trending_status,
            related_queries=", ".join(bundle.trends.related_queries[:5]) or "none",
            rising_topics=", ".join(bundle.trends.rising_topics[:3]) or "none",
            top_results=len(bundle.search.top_results),
            people_also_ask="; ".join(bundle.search.people_also_ask[:3]) or "none",
            content_gaps=", ".join(bundle.search.content_gaps) or "none",
            shape=json.dumps(BRIEF_SHAPE, indent=2),
        )
        data = await self.ai.call_ai_json(user_id, prompt, expect=dict)
        try:
            brief = Brief.model_validate(data)
        except PydanticValidationError as exc:
            raise ParseError(
                "AI brief does not match the expected structure",
                details={"errors": exc.errors(include_url=False, include_context=False, include_input=False)[:5]},
            ) from exc

        brief.user_niche = niche
        brief.generated_at = datetime.now(timezone.utc)
        logger.info(f"[brief] built brief '{brief.topic_overview.title}' for user {user_id}")
        return brief
