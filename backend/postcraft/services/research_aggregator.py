"""
Research Aggregator: one topic in, one normalized ResearchBundle out.

The three sources run concurrently and each degrades on its own: a source
that raises contributes its empty-but-typed value and is listed in
`degraded_sources`. There are no retries here; the workflow decides what a
degraded bundle means.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

from postcraft.services.research_sources import ForumPost, ResearchSources, SearchData, TrendsData
from postcraft.services.ttl_cache import TTLCache
from postcraft.settings import get_settings

logger = logging.getLogger(__name__)

PAIN_POINT_KEYWORDS = ("problem", "issue", "struggle", "difficulty", "challenge", "frustrating", "hard to")
CONTENT_FORMATS = ("tutorial", "guide", "how to", "comparison", "review", "best")
TREND_WINDOW = 10
RISING_FACTOR = 1.2
DECLINING_FACTOR = 0.8

Sentiment = Literal["positive", "neutral", "negative", "unknown"]
TrendStatus = Literal["rising", "stable", "declining", "unknown"]


class PainPoint(BaseModel):
    text: str
    score: int = 0
    source: Literal["post", "comment"] = "post"


class EngagementStats(BaseModel):
    total_posts: int = 0
    avg_score: int = 0
    avg_comments: int = 0


class DiscussionInsights(BaseModel):
    discussions: list[ForumPost] = Field(default_factory=list)
    pain_points: list[PainPoint] = Field(default_factory=list)
    sentiment: Sentiment = "unknown"
    engagement: EngagementStats = Field(default_factory=EngagementStats)


class TrendInsights(BaseModel):
    interest_over_time: list[int] = Field(default_factory=list)
    related_queries: list[str] = Field(default_factory=list)
    rising_topics: list[str] = Field(default_factory=list)
    trending_status: TrendStatus = "unknown"


class SearchInsights(BaseModel):
    top_results: list[dict] = Field(default_factory=list)
    people_also_ask: list[str] = Field(default_factory=list)
    related_searches: list[str] = Field(default_factory=list)
    content_gaps: list[str] = Field(default_factory=list)


class ResearchBundle(BaseModel):
    topic: str
    niche: str
    keywords: list[str] = Field(default_factory=list)
    discussion: DiscussionInsights = Field(default_factory=DiscussionInsights)
    trends: TrendInsights = Field(default_factory=TrendInsights)
    search: SearchInsights = Field(default_factory=SearchInsights)
    degraded_sources: list[str] = Field(default_factory=list)
    collected_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


def analyze_discussions(posts: list[ForumPost]) -> DiscussionInsights:
    pain_points: list[PainPoint] = []
    for post in posts:
        text = f"{post.title} {post.content}".lower()
        if any(k in text for k in PAIN_POINT_KEYWORDS):
            pain_points.append(PainPoint(text=post.title, score=post.score, source="post"))
        for comment in post.comments:
            if any(k in comment.body.lower() for k in PAIN_POINT_KEYWORDS):
                pain_points.append(PainPoint(text=comment.body[:200], score=comment.score, source="comment"))

    count = len(posts)
    avg_score = sum(p.score for p in posts) / count if count else 0
    avg_comments = sum(p.num_comments for p in posts) / count if count else 0
    if avg_score > 10:
        sentiment = "positive"
    elif avg_score > 0:
        sentiment = "neutral"
    else:
        sentiment = "negative"

    return DiscussionInsights(
        discussions=posts,
        pain_points=sorted(pain_points, key=lambda p: p.score, reverse=True)[:5],
        sentiment=sentiment,
        engagement=EngagementStats(total_posts=count, avg_score=round(avg_score), avg_comments=round(avg_comments)),
    )


def classify_trend(values: list[int]) -> TrendStatus:
    """Compare the newest window with the oldest; short series count as stable."""
    if len(values) <= TREND_WINDOW:
        return "stable"
    older = sum(values[:TREND_WINDOW]) / TREND_WINDOW
    recent = sum(values[-TREND_WINDOW:]) / TREND_WINDOW
    if recent > older * RISING_FACTOR:
        return "rising"
    if recent < older * DECLINING_FACTOR:
        return "declining"
    return "stable"


def analyze_trends(data: TrendsData) -> TrendInsights:
    return TrendInsights(
        interest_over_time=data.interest_over_time,
        related_queries=data.related_queries[:10],
        rising_topics=data.rising_topics[:5],
        trending_status=classify_trend(data.interest_over_time),
    )


def analyze_search(data: SearchData) -> SearchInsights:
    titles = [r.title.lower() for r in data.organic]
    gaps = [f"{fmt} content" for fmt in CONTENT_FORMATS if not any(fmt in t for t in titles)]
    return SearchInsights(
        top_results=[{"title": r.title, "snippet": r.snippet} for r in data.organic[:5]],
        people_also_ask=data.people_also_ask,
        related_searches=data.related_searches,
        content_gaps=gaps[:3],
    )


class ResearchAggregator:

    def __init__(self, sources: ResearchSources | None = None, cache: TTLCache | None = None):
        self.sources = sources or ResearchSources()
        self.cache = cache

    async def aggregate(self, topic: str, niche: str, keywords: list[str] | None = None) -> ResearchBundle:
        keywords = [k for k in (keywords or [topic]) if k] or [topic]
        terms = ",".join(sorted({k.strip().lower() for k in keywords}))
        cache_key = f"{topic.strip().lower()}::{niche.strip().lower()}::{terms}"
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.info(f"[research] cache hit for '{topic}'")
                return cached

        discussions, trends, search = await asyncio.gather(
            self.sources.search_discussions(keywords),
            self.sources.fetch_trends(keywords),
            self.sources.search_web(keywords),
            return_exceptions=True,
        )

        bundle = ResearchBundle(topic=topic, niche=niche, keywords=keywords)
        if isinstance(discussions, BaseException):
            logger.warning(f"[research] discussions degraded for '{topic}': {discussions}")
            bundle.degraded_sources.append("discussions")
        else:
            bundle.discussion = analyze_discussions(discussions)

        if isinstance(trends, BaseException):
            logger.warning(f"[research] trends degraded for '{topic}': {trends}")
            bundle.degraded_sources.append("trends")
        else:
            bundle.trends = analyze_trends(trends)

        if isinstance(search, BaseException):
            logger.warning(f"[research] search degraded for '{topic}': {search}")
            bundle.degraded_sources.append("search")
        else:
            bundle.search = analyze_search(search)

        logger.info(
            f"[research] '{topic}': {bundle.discussion.engagement.total_posts} posts, "
            f"trend={bundle.trends.trending_status}, {len(bundle.search.top_results)} results, "
            f"degraded={bundle.degraded_sources or 'none'}"
        )
        if self.cache is not None and not bundle.degraded_sources:
            self.cache.set(cache_key, bundle)
        return bundle


_research_cache: TTLCache | None = None


def get_research_cache() -> TTLCache:
    global _research_cache
    if _research_cache is None:
        settings = get_settings()
        _research_cache = TTLCache(
            max_size=settings.research_cache_max_size,
            default_ttl=settings.research_cache_ttl_sec,
        )
    return _research_cache
