"""
External research sources: discussion forums, search trends, search results.

Each source returns a best-effort, possibly empty result. "Nothing found" and
"not configured" are empty results; only a real transport failure raises.
The aggregator turns those failures into typed empty values.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx
from pydantic import BaseModel, Field

from postcraft.settings import get_settings

logger = logging.getLogger(__name__)

REDDIT_BASE = "https://www.reddit.com"
SERPAPI_URL = "https://serpapi.com/search.json"
COMMENT_POSTS = 5


class SourceError(Exception):
    """Transport-level failure of a research source."""


class ForumComment(BaseModel):
    body: str
    score: int = 0


class ForumPost(BaseModel):
    id: str
    title: str
    content: str = ""
    score: int = 0
    num_comments: int = 0
    url: str | None = None
    subreddit: str | None = None
    comments: list[ForumComment] = Field(default_factory=list)


class TrendsData(BaseModel):
    interest_over_time: list[int] = Field(default_factory=list)
    related_queries: list[str] = Field(default_factory=list)
    rising_topics: list[str] = Field(default_factory=list)


class SearchResult(BaseModel):
    title: str
    snippet: str = ""
    link: str | None = None


class SearchData(BaseModel):
    organic: list[SearchResult] = Field(default_factory=list)
    people_also_ask: list[str] = Field(default_factory=list)
    related_searches: list[str] = Field(default_factory=list)


class ResearchSources:
    """HTTP-backed research sources. Override methods to plug in other providers."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        settings = get_settings()
        return httpx.AsyncClient(
            timeout=settings.research_timeout_sec,
            headers={"User-Agent": settings.reddit_user_agent},
            transport=self._transport,
        )

    async def _get_json(self, client: httpx.AsyncClient, url: str, params: dict | None = None) -> Any:
        try:
            resp = await client.get(url, params=params)
        except httpx.HTTPError as exc:
            raise SourceError(f"GET {url} failed: {exc}") from exc
        if resp.status_code >= 400:
            raise SourceError(f"GET {url} returned {resp.status_code}")
        return resp.json()

    # ── Discussions ──────────────────────────────────────────

    async def search_discussions(self, keywords: list[str], limit: int = 50) -> list[ForumPost]:
        query = " OR ".join(k for k in keywords if k)
        if not query:
            return []

        async with self._client() as client:
            data = await self._get_json(
                client,
                f"{REDDIT_BASE}/search.json",
                {"q": query, "t": "month", "limit": limit, "sort": "relevance"},
            )
            posts = [self._parse_post(child.get("data", {})) for child in data.get("data", {}).get("children", [])]
            posts = [p for p in posts if p is not None]

            top = sorted(posts, key=lambda p: p.score, reverse=True)[:COMMENT_POSTS]
            results = await asyncio.gather(
                *(self._fetch_comments(client, post) for post in top),
                return_exceptions=True,
            )
            for post, result in zip(top, results):
                if isinstance(result, Exception):
                    logger.warning(f"[research][reddit] comments for {post.id} unavailable: {result}")
                else:
                    post.comments = result

        logger.info(f"[research][reddit] {len(posts)} posts for '{query[:80]}'")
        return posts

    @staticmethod
    def _parse_post(raw: dict) -> ForumPost | None:
        if not raw.get("id") or not raw.get("title"):
            return None
        return ForumPost(
            id=str(raw["id"]),
            title=raw["title"],
            content=raw.get("selftext") or "",
            score=int(raw.get("score") or 0),
            num_comments=int(raw.get("num_comments") or 0),
            url=f"{REDDIT_BASE}{raw['permalink']}" if raw.get("permalink") else raw.get("url"),
            subreddit=raw.get("subreddit"),
        )

    async def _fetch_comments(self, client: httpx.AsyncClient, post: ForumPost) -> list[ForumComment]:
        data = await self._get_json(client, f"{REDDIT_BASE}/comments/{post.id}.json", {"limit": 10, "depth": 1})
        if not isinstance(data, list) or len(data) < 2:
            return []
        comments = []
        for child in data[1].get("data", {}).get("children", []):
            body = child.get("data", {}).get("body")
            if body:
                comments.append(ForumComment(body=body, score=int(child["data"].get("score") or 0)))
        return comments

    # ── Trends ───────────────────────────────────────────────

    async def fetch_trends(self, keywords: list[str]) -> TrendsData:
        api_key = get_settings().serpapi_key
        query = ",".join(k for k in keywords[:5] if k)
        if not api_key or not query:
            return TrendsData()

        async with self._client() as client:
            timeseries = await self._get_json(
                client, SERPAPI_URL,
                {"engine": "google_trends", "q": query, "data_type": "TIMESERIES", "api_key": api_key},
            )
            related = await self._get_json(
                client, SERPAPI_URL,
                {"engine": "google_trends", "q": keywords[0], "data_type": "RELATED_QUERIES", "api_key": api_key},
            )

        values = []
        for point in timeseries.get("interest_over_time", {}).get("timeline_data", []):
            point_values = point.get("values") or [{}]
            values.append(int(point_values[0].get("extracted_value") or 0))

        related_queries = related.get("related_queries", {})
        return TrendsData(
            interest_over_time=values,
            related_queries=[q["query"] for q in related_queries.get("top", []) if q.get("query")],
            rising_topics=[q["query"] for q in related_queries.get("rising", []) if q.get("query")],
        )

    # ── Search results ───────────────────────────────────────

    async def search_web(self, keywords: list[str]) -> SearchData:
        api_key = get_settings().serpapi_key
        query = " ".join(k for k in keywords[:3] if k)
        if not api_key or not query:
            return SearchData()

        async with self._client() as client:
            data = await self._get_json(client, SERPAPI_URL, {"engine": "google", "q": query, "api_key": api_key})

        return SearchData(
            organic=[
                SearchResult(title=r["title"], snippet=r.get("snippet") or "", link=r.get("link"))
                for r in data.get("organic_results", [])
                if r.get("title")
            ],
            people_also_ask=[q["question"] for q in data.get("related_questions", []) if q.get("question")],
            related_searches=[q["query"] for q in data.get("related_searches", []) if q.get("query")],
        )
