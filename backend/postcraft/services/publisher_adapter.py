"""
Unified publishing layer for destination platforms.

Each destination adapter implements the `PublisherAdapter` interface:
    publish(content, credentials, metadata) -> PublishResult

Adapters are registered by integration provider in `_ADAPTERS`. The publish
executor only ever talks to the registry, so adding a destination means adding
one adapter class and one registry entry.

Results (including errors) are always returned explicitly, never raised for
provider rejections.
"""
from __future__ import annotations

import abc
import base64
import logging
import re
from dataclasses import dataclass, field
from typing import Any

import httpx

from postcraft.settings import get_settings

logger = logging.getLogger(__name__)


# ── Retry classification ─────────────────────────────────────

# Network, rate-limit and other transient failures
RETRYABLE_INDICATORS = (
    "timeout", "timed out", "429", "too many requests",
    "502", "503", "504", "connection", "reset by peer",
    "temporary", "service unavailable", "rate limit",
    "network", "ssl", "eof", "broken pipe",
)


def is_retryable_error(error: str | None) -> bool:
    """Determine if an error message indicates a retryable failure."""
    if not error:
        return False
    lower = error.lower()
    return any(ind in lower for ind in RETRYABLE_INDICATORS)


# ── Credential sanitization ──────────────────────────────────

_SENSITIVE_PATTERNS = [
    (re.compile(r"Bearer\s+[A-Za-z0-9\-_\.]+", re.IGNORECASE), "Bearer ***"),
    (re.compile(r"Basic\s+[A-Za-z0-9\+/=]+", re.IGNORECASE), "Basic ***"),
    (re.compile(r"access_token=[A-Za-z0-9\-_\.%]+", re.IGNORECASE), "access_token=***"),
    (re.compile(r"refresh_token=[A-Za-z0-9\-_\.%]+", re.IGNORECASE), "refresh_token=***"),
    (re.compile(r"client_secret=[A-Za-z0-9\-_\.%]+", re.IGNORECASE), "client_secret=***"),
    (re.compile(r"([?&])key=[A-Za-z0-9\-_\.%]+", re.IGNORECASE), r"\1key=***"),
    (re.compile(r"sk-[A-Za-z0-9\-_]{8,}"), "sk-***"),
    # Generic long hex/base64 tokens (40+ chars)
    (re.compile(r"[A-Za-z0-9\-_]{40,}"), "***TOKEN***"),
]

SENSITIVE_KEYS = {
    "access_token", "accesstoken", "refresh_token", "client_secret",
    "apikey", "api_key", "apppassword", "app_password", "password",
    "authorization", "cookie", "cookies", "secret",
}


def sanitize(text: str | None) -> str | None:
    """Strip credentials and tokens from error messages / response text."""
    if not text:
        return text
    for pattern, replacement in _SENSITIVE_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def sanitize_dict(d: dict | None) -> dict | None:
    """Remove sensitive keys from a response dict before persisting."""
    if not d:
        return d
    cleaned = {}
    for k, v in d.items():
        if k.lower() in SENSITIVE_KEYS:
            cleaned[k] = "***"
        elif isinstance(v, dict):
            cleaned[k] = sanitize_dict(v)
        elif isinstance(v, str) and len(v) > 60:
            cleaned[k] = v[:8] + "***"
        else:
            cleaned[k] = v
    return cleaned


# ── Thread splitting ─────────────────────────────────────────

_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")


def _atoms(text: str, limit: int) -> list[tuple[str, str]]:
    """Break text into (separator, piece) pairs where every piece fits `limit`.

    Lines are kept whole when they fit; otherwise they fall back to sentences,
    then words, then a hard cut. The separator is what goes in front of the
    piece when it is packed onto the previous one.
    """
    atoms: list[tuple[str, str]] = []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        if len(line) <= limit:
            atoms.append(("\n", line))
            continue
        sep = "\n"
        for sentence in _SENTENCE_RE.split(line):
            sentence = sentence.strip()
            if not sentence:
                continue
            if len(sentence) <= limit:
                atoms.append((sep, sentence))
                sep = " "
                continue
            for word in sentence.split():
                if len(word) <= limit:
                    atoms.append((sep, word))
                else:
                    atoms.append((sep, word[:limit]))
                    atoms.extend(("", word[i:i + limit]) for i in range(limit, len(word), limit))
                sep = " "
            sep = " "
    return atoms


def split_into_thread(text: str, limit: int = 280) -> list[str]:
    """Split text into units of at most `limit` characters.

    Packing is greedy and order-preserving; only whitespace at unit
    boundaries is dropped.
    """
    text = (text or "").strip()
    if not text:
        return []
    if len(text) <= limit:
        return [text]

    units: list[str] = []
    current = ""
    for sep, piece in _atoms(text, limit):
        if not current:
            current = piece
        elif len(current) + len(sep) + len(piece) <= limit:
            current = f"{current}{sep}{piece}"
        else:
            units.append(current)
            current = piece
    if current:
        units.append(current)
    return units


# ── Result dataclass ─────────────────────────────────────────

@dataclass
class PublishResult:
    """Unified result of a publish attempt."""
    success: bool
    remote_id: str | None = None
    remote_url: str | None = None
    platform: str | None = None
    error: str | None = None
    retryable: bool = False
    raw_response: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "remote_id": self.remote_id,
            "remote_url": self.remote_url,
            "platform": self.platform,
            "error": self.error,
            "retryable": self.retryable,
        }


# ── Abstract adapter ─────────────────────────────────────────

class PublisherAdapter(abc.ABC):
    """Base class for destination-specific publishers."""

    platform: str = "unknown"
    # Hard ceiling on the rendered text; None means unlimited
    max_length: int | None = None

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self._transport = transport

    @abc.abstractmethod
    async def publish(
        self,
        content: str,
        credentials: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> PublishResult:
        """Push content and return result with remote_id + remote_url."""
        ...

    def length_error(self, content: str) -> str | None:
        if self.max_length is not None and len(content) > self.max_length:
            return f"{self.platform} content is {len(content)} characters, limit is {self.max_length}"
        return None

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=get_settings().publish_timeout_sec, transport=self._transport)

    def _fail(
        self, job_id: Any, msg: str, retryable: bool | None = None, raw_response: dict | None = None
    ) -> PublishResult:
        msg = sanitize(msg)
        self._error(job_id, msg)
        return PublishResult(
            success=False,
            platform=self.platform,
            error=msg,
            retryable=is_retryable_error(msg) if retryable is None else retryable,
            raw_response=raw_response or {},
        )

    def _log(self, job_id: Any, msg: str):
        logger.info(f"[{self.platform}][job={job_id}] {msg}")

    def _error(self, job_id: Any, msg: str):
        logger.error(f"[{self.platform}][job={job_id}] {msg}")


# ── WordPress ────────────────────────────────────────────────

class WordPressPublisher(PublisherAdapter):
    """Create a post through the WordPress REST API.

    Requires credentials: siteUrl, username, appPassword (application password).
    """

    platform = "wordpress"

    async def publish(self, content, credentials, metadata=None) -> PublishResult:
        metadata = metadata or {}
        job_id = metadata.get("job_id")
        site_url = (credentials.get("siteUrl") or "").rstrip("/")
        username = credentials.get("username")
        app_password = credentials.get("appPassword")
        if not site_url or not username or not app_password:
            return self._fail(job_id, "WordPress credentials incomplete", retryable=False)

        auth = base64.b64encode(f"{username}:{app_password}".encode("utf-8")).decode("ascii")
        body: dict[str, Any] = {
            "title": metadata.get("title") or "Untitled",
            "content": content,
            "status": metadata.get("status") or "publish",
        }
        if metadata.get("categories"):
            body["categories"] = metadata["categories"]
        if metadata.get("tags"):
            body["tags"] = metadata["tags"]

        try:
            async with self._client() as client:
                resp = await client.post(
                    f"{site_url}/wp-json/wp/v2/posts",
                    headers={"Authorization": f"Basic {auth}"},
                    json=body,
                )
        except httpx.HTTPError as exc:
            return self._fail(job_id, f"WordPress request failed: {exc}")

        if resp.status_code not in (200, 201):
            return self._fail(job_id, f"WordPress API Error: {resp.status_code} {resp.text[:500]}")

        data = resp.json()
        self._log(job_id, f"Post created id={data.get('id')}")
        return PublishResult(
            success=True,
            remote_id=str(data.get("id")),
            remote_url=data.get("link"),
            platform=self.platform,
            raw_response=sanitize_dict(data) or {},
        )


# ── Twitter / X ──────────────────────────────────────────────

class TwitterPublisher(PublisherAdapter):
    """Post a tweet, or a reply-chained thread when content exceeds one unit.

    Requires credentials: accessToken (OAuth 2.0 user token).
    """

    platform = "twitter"
    TWEETS_URL = "https://api.twitter.com/2/tweets"
    unit_limit = 280
    max_units = 25
    max_length = unit_limit * max_units

    def length_error(self, content: str) -> str | None:
        units = split_into_thread(content, self.unit_limit)
        if len(units) > self.max_units:
            return f"twitter thread needs {len(units)} tweets, limit is {self.max_units}"
        return None

    async def publish(self, content, credentials, metadata=None) -> PublishResult:
        metadata = metadata or {}
        job_id = metadata.get("job_id")
        access_token = credentials.get("accessToken")
        if not access_token:
            return self._fail(job_id, "Twitter credentials incomplete", retryable=False)

        tweets = split_into_thread(content, self.unit_limit)
        if not tweets:
            return self._fail(job_id, "Nothing to tweet", retryable=False)

        tweet_ids: list[str] = []
        previous_id: str | None = None
        async with self._client() as client:
            for index, text in enumerate(tweets, start=1):
                body: dict[str, Any] = {"text": text}
                if previous_id:
                    body["reply"] = {"in_reply_to_tweet_id": previous_id}
                try:
                    resp = await client.post(
                        self.TWEETS_URL,
                        headers={"Authorization": f"Bearer {access_token}"},
                        json=body,
                    )
                except httpx.HTTPError as exc:
                    return self._fail(
                        job_id,
                        f"Twitter request failed on tweet {index}/{len(tweets)}: {exc}",
                        raw_response={"posted_ids": tweet_ids, "failed_index": index},
                    )
                if resp.status_code not in (200, 201):
                    return self._fail(
                        job_id,
                        f"Twitter API Error on tweet {index}/{len(tweets)}: {resp.status_code} {resp.text[:500]}",
                        raw_response={"posted_ids": tweet_ids, "failed_index": index},
                    )
                previous_id = str(resp.json()["data"]["id"])
                tweet_ids.append(previous_id)

        self._log(job_id, f"Posted {len(tweet_ids)} tweet(s), head={tweet_ids[0]}")
        return PublishResult(
            success=True,
            remote_id=tweet_ids[0],
            remote_url=f"https://twitter.com/i/web/status/{tweet_ids[0]}",
            platform=self.platform,
            raw_response={"tweet_ids": tweet_ids},
        )


# ── LinkedIn ─────────────────────────────────────────────────

class LinkedInPublisher(PublisherAdapter):
    """Share a text post through the UGC Posts API.

    Requires credentials: accessToken, personUrn (or organization URN for pages).
    """

    platform = "linkedin"
    UGC_URL = "https://api.linkedin.com/v2/ugcPosts"
    max_length = 3000

    async def publish(self, content, credentials, metadata=None) -> PublishResult:
        metadata = metadata or {}
        job_id = metadata.get("job_id")
        access_token = credentials.get("accessToken")
        author = credentials.get("personUrn")
        if not access_token or not author:
            return self._fail(job_id, "LinkedIn credentials incomplete", retryable=False)

        body = {
            "author": author,
            "lifecycleState": "PUBLISHED",
            "specificContent": {
                "com.linkedin.ugc.ShareContent": {
                    "shareCommentary": {"text": content},
                    "shareMediaCategory": "NONE",
                }
            },
            "visibility": {"com.linkedin.ugc.MemberNetworkVisibility": "PUBLIC"},
        }
        try:
            async with self._client() as client:
                resp = await client.post(
                    self.UGC_URL,
                    headers={
                        "Authorization": f"Bearer {access_token}",
                        "X-Restli-Protocol-Version": "2.0.0",
                    },
                    json=body,
                )
        except httpx.HTTPError as exc:
            return self._fail(job_id, f"LinkedIn request failed: {exc}")

        if resp.status_code not in (200, 201):
            return self._fail(job_id, f"LinkedIn API Error: {resp.status_code} {resp.text[:500]}")

        post_id = resp.json().get("id") or resp.headers.get("x-restli-id")
        self._log(job_id, f"Post created id={post_id}")
        return PublishResult(
            success=True,
            remote_id=post_id,
            remote_url=f"https://www.linkedin.com/feed/update/{post_id}",
            platform=self.platform,
        )


# ── Registry ─────────────────────────────────────────────────

_ADAPTERS: dict[str, PublisherAdapter] = {
    "wordpress": WordPressPublisher(),
    "twitter": TwitterPublisher(),
    "linkedin": LinkedInPublisher(),
}


def get_publisher(provider: str) -> PublisherAdapter | None:
    """Get publisher adapter for a given provider (case-insensitive)."""
    return _ADAPTERS.get(provider.lower())


def register_publisher(provider: str, adapter: PublisherAdapter) -> None:
    _ADAPTERS[provider.lower()] = adapter


def list_publishers() -> list[str]:
    """List all registered destination adapters."""
    return list(_ADAPTERS.keys())
