"""
Tests for research collection: source parsing, signal analysis,
per-source degradation and the TTL cache in front of the aggregator.
"""

import httpx
import pytest

from conftest import FakeSources
from postcraft.services.research_aggregator import (
    ResearchAggregator,
    analyze_discussions,
    analyze_search,
    classify_trend,
)
from postcraft.services.research_sources import (
    ForumComment,
    ForumPost,
    ResearchSources,
    SearchData,
    SearchResult,
    SourceError,
)
from postcraft.services.ttl_cache import TTLCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


# =============================================================================
# Signal analysis
# =============================================================================


class TestClassifyTrend:

    def test_short_series_is_stable(self):
        assert classify_trend([]) == "stable"
        assert classify_trend([1, 100, 1, 100, 1, 100, 1, 100, 1, 100]) == "stable"

    def test_rising(self):
        assert classify_trend([10] * 10 + [20] * 10) == "rising"

    def test_declining(self):
        assert classify_trend([20] * 10 + [10] * 10) == "declining"

    def test_within_band_is_stable(self):
        # 11 / 10 = 1.1, inside the 0.8..1.2 band
        assert classify_trend([10] * 10 + [11] * 10) == "stable"


class TestAnalyzeDiscussions:

    def test_pain_points_and_sentiment(self):
        posts = [
            ForumPost(id="1", title="Huge problem with intake", score=30, num_comments=10),
            ForumPost(
                id="2",
                title="Weekly thread",
                score=2,
                num_comments=2,
                comments=[ForumComment(body="It is frustrating to wait", score=7)],
            ),
        ]

        insights = analyze_discussions(posts)

        assert [p.text for p in insights.pain_points] == ["Huge problem with intake", "It is frustrating to wait"]
        assert insights.pain_points[1].source == "comment"
        assert insights.sentiment == "positive"
        assert insights.engagement.total_posts == 2
        assert insights.engagement.avg_score == 16
        assert insights.engagement.avg_comments == 6

    def test_no_posts(self):
        insights = analyze_discussions([])
        assert insights.sentiment == "negative"
        assert insights.engagement.total_posts == 0

    def test_pain_points_capped_at_five(self):
        posts = [ForumPost(id=str(i), title=f"Issue {i}", score=i) for i in range(8)]
        insights = analyze_discussions(posts)
        assert [p.score for p in insights.pain_points] == [7, 6, 5, 4, 3]


def test_content_gaps_skip_covered_formats():
    data = SearchData(organic=[SearchResult(title="The complete guide to triage"), SearchResult(title="A tutorial")])
    insights = analyze_search(data)
    assert insights.content_gaps == ["how to content", "comparison content", "review content"]


# =============================================================================
# Aggregation
# =============================================================================


class TestAggregator:

    async def test_full_bundle(self):
        bundle = await ResearchAggregator(FakeSources()).aggregate("AI triage", "Healthcare", ["ai triage"])

        assert bundle.degraded_sources == []
        assert bundle.keywords == ["ai triage"]
        assert bundle.discussion.engagement.total_posts == 1
        assert bundle.trends.trending_status == "stable"
        assert bundle.search.people_also_ask == ["Is AI triage safe?"]

    async def test_failed_sources_degrade_independently(self):
        bundle = await ResearchAggregator(FakeSources(fail=("trends", "search"))).aggregate("AI triage", "Healthcare")

        assert bundle.degraded_sources == ["trends", "search"]
        assert bundle.keywords == ["AI triage"]
        assert bundle.discussion.engagement.total_posts == 1
        assert bundle.trends.trending_status == "unknown"
        assert bundle.search.top_results == []

    async def test_cache_hit_skips_sources(self):
        class CountingSources(FakeSources):
            calls = 0

            async def search_web(self, keywords):
                CountingSources.calls += 1
                return await super().search_web(keywords)

        aggregator = ResearchAggregator(CountingSources(), cache=TTLCache(max_size=10, default_ttl=60))
        first = await aggregator.aggregate("AI triage", "Healthcare")
        second = await aggregator.aggregate("  ai TRIAGE ", "healthcare")

        assert second is first
        assert CountingSources.calls == 1

    async def test_keywords_are_part_of_cache_key(self):
        cache = TTLCache(max_size=10, default_ttl=60)
        aggregator = ResearchAggregator(FakeSources(), cache=cache)

        rural = await aggregator.aggregate("AI triage", "Healthcare", ["rural", "clinics"])
        reordered = await aggregator.aggregate("AI triage", "Healthcare", ["Clinics", "rural"])
        urban = await aggregator.aggregate("AI triage", "Healthcare", ["urban"])
        bare = await aggregator.aggregate("AI triage", "Healthcare")

        assert reordered is rural
        assert urban is not rural
        assert bare is not rural and bare is not urban
        assert len(cache) == 3

    async def test_degraded_bundle_not_cached(self):
        cache = TTLCache(max_size=10, default_ttl=60)
        await ResearchAggregator(FakeSources(fail=("discussions",)), cache=cache).aggregate("AI triage", "Healthcare")
        assert len(cache) == 0


# =============================================================================
# HTTP sources
# =============================================================================


class TestResearchSources:

    async def test_reddit_posts_and_comments(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/search.json":
                assert request.url.params["q"] == "ai triage OR nurse ai"
                return httpx.Response(200, json={"data": {"children": [
                    {"data": {"id": "a1", "title": "Triage woes", "score": 12, "num_comments": 3, "permalink": "/r/x/a1"}},
                    {"data": {"id": "", "title": "dropped"}},
                ]}})
            if request.url.path == "/comments/a1.json":
                return httpx.Response(200, json=[{}, {"data": {"children": [
                    {"data": {"body": "Same here", "score": 4}},
                    {"data": {}},
                ]}}])
            return httpx.Response(404)

        sources = ResearchSources(transport=httpx.MockTransport(handler))
        posts = await sources.search_discussions(["ai triage", "nurse ai"])

        assert [p.id for p in posts] == ["a1"]
        assert posts[0].url.endswith("/r/x/a1")
        assert [c.body for c in posts[0].comments] == ["Same here"]

    async def test_comment_failure_keeps_posts(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/search.json":
                return httpx.Response(200, json={"data": {"children": [{"data": {"id": "a1", "title": "Post"}}]}})
            return httpx.Response(503)

        posts = await ResearchSources(transport=httpx.MockTransport(handler)).search_discussions(["ai"])
        assert posts[0].comments == []

    async def test_search_failure_raises(self):
        sources = ResearchSources(transport=httpx.MockTransport(lambda r: httpx.Response(429)))
        with pytest.raises(SourceError, match="429"):
            await sources.search_discussions(["ai"])

    async def test_serpapi_sources_empty_without_key(self):
        sources = ResearchSources(transport=httpx.MockTransport(lambda r: httpx.Response(500)))
        assert (await sources.fetch_trends(["ai"])).interest_over_time == []
        assert (await sources.search_web(["ai"])).organic == []


# =============================================================================
# TTL cache
# =============================================================================


class TestTTLCache:

    def test_expiry(self):
        clock = FakeClock()
        cache = TTLCache(max_size=10, default_ttl=5, clock=clock)
        cache.set("a", 1)
        assert cache.get("a") == 1
        clock.now += 5
        assert cache.get("a") is None
        assert cache.stats()["hits"] == 1
        assert cache.stats()["misses"] == 1

    def test_zero_ttl_never_expires(self):
        clock = FakeClock()
        cache = TTLCache(max_size=10, default_ttl=5, clock=clock)
        cache.set("a", 1, ttl=0)
        clock.now += 10_000
        assert cache.get("a") == 1

    def test_eviction_prefers_expired_then_oldest(self):
        clock = FakeClock()
        cache = TTLCache(max_size=3, default_ttl=100, clock=clock)
        cache.set("short", 1, ttl=1)
        clock.now += 1
        cache.set("b", 2)
        clock.now += 1
        cache.set("c", 3)
        clock.now += 1

        cache.set("d", 4)
        assert cache.get("short") is None
        assert cache.get("b") == 2

        cache.set("e", 5)
        assert cache.get("b") is None
        assert [cache.get(k) for k in ("c", "d", "e")] == [3, 4, 5]

    def test_overwrite_does_not_evict(self):
        cache = TTLCache(max_size=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 3)
        assert len(cache) == 2
        assert cache.get("a") == 3

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            TTLCache(max_size=0)
