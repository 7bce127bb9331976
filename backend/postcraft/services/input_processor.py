"""
Session input handling: titles for new sessions and the legacy
"process the raw input into something promptable" step.

URL inputs are reduced to page title and visible body text with
BeautifulSoup; feed inputs (RSS or Atom) are read with feedparser.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

import feedparser
import httpx
from bs4 import BeautifulSoup

from postcraft.errors import UpstreamProviderError, ValidationError
from postcraft.models import InputType

logger = logging.getLogger(__name__)

MAX_TITLE = 100
MAX_CONTENT = 8000
FEED_ITEMS = 5

_NON_CONTENT_TAGS = ["script", "style", "noscript", "template"]


@dataclass
class ProcessedInput:
    title: str
    content: str
    description: str = ""


def parse_input_type(value: str) -> InputType:
    try:
        return InputType((value or "").strip().lower())
    except ValueError as exc:
        supported = ", ".join(t.value for t in InputType)
        raise ValidationError(
            f"Invalid input type: {value}",
            code="INVALID_INPUT_TYPE",
            field="inputType",
            user_message=f"Invalid input type. Supported: {supported}",
        ) from exc


def _hostname(value: Any) -> str | None:
    url = value[0] if isinstance(value, list) and value else value
    if not isinstance(url, str):
        return None
    host = urlparse(url.strip()).hostname
    return host or None


def session_title(input_type: InputType, payload: Any) -> str:
    if input_type == InputType.topic:
        title = payload.strip() if isinstance(payload, str) else "New Topic Session"
    elif input_type == InputType.url:
        host = _hostname(payload)
        title = f"Content from {host}" if host else "URL Content Session"
    elif input_type == InputType.keywords:
        if isinstance(payload, list) and payload:
            title = "Keywords: " + ", ".join(str(k) for k in payload[:3])
        elif isinstance(payload, str) and payload.strip():
            title = f"Keywords: {payload.strip()}"
        else:
            title = "Keyword Content Session"
    elif input_type == InputType.feed:
        host = _hostname(payload)
        title = f"RSS: {host}" if host else "RSS Feed Content"
    else:
        title = payload.strip().split("\n")[0] if isinstance(payload, str) else "Text Content"
    return (title or "New Content Session")[:MAX_TITLE]


def _text(markup: str) -> str:
    soup = BeautifulSoup(markup or "", "html.parser")
    for tag in soup(_NON_CONTENT_TAGS):
        tag.decompose()
    return re.sub(r"\s+", " ", soup.get_text(" ", strip=True)).strip()


async def _fetch(url: str, transport: httpx.AsyncBaseTransport | None) -> str:
    try:
        async with httpx.AsyncClient(timeout=20, follow_redirects=True, transport=transport) as client:
            resp = await client.get(url)
    except httpx.HTTPError as exc:
        raise UpstreamProviderError(f"Failed to fetch {url}: {exc}", code="INPUT_FETCH_FAILED") from exc
    if resp.status_code >= 400:
        raise UpstreamProviderError(f"Failed to fetch {url}: HTTP {resp.status_code}", code="INPUT_FETCH_FAILED")
    return resp.text


def _page(url: str, page: str) -> ProcessedInput:
    soup = BeautifulSoup(page, "html.parser")
    for tag in soup(_NON_CONTENT_TAGS):
        tag.decompose()
    title = soup.title.get_text(strip=True) if soup.title else ""
    root = soup.body or soup
    body = re.sub(r"\s+", " ", root.get_text(" ", strip=True)).strip()[:MAX_CONTENT]
    return ProcessedInput(title=title or url, content=body, description=body[:500])


def _entry_text(entry) -> str:
    # Atom <content> carries the full body, <summary>/<description> the teaser
    content = entry.get("content") or []
    if content and content[0].get("value"):
        return _text(content[0]["value"])
    return _text(entry.get("summary", ""))


def _feed(url: str, document: str) -> ProcessedInput:
    feed = feedparser.parse(document)
    if feed.bozo and feed.bozo_exception:
        logger.warning(f"[input] feed {url} parsed with errors: {feed.bozo_exception}")
    items = [
        f"{_text(entry.get('title', '')) or 'Untitled'}: {_entry_text(entry)}"
        for entry in feed.entries[:FEED_ITEMS]
    ]
    if not items:
        raise ValidationError("Feed has no items", code="EMPTY_FEED", field="input")
    return ProcessedInput(title="RSS Feed Summary", content="\n\n".join(items)[:MAX_CONTENT])


async def process_input(
    input_type: InputType,
    payload: Any,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ProcessedInput:
    if input_type == InputType.url:
        return _page(str(payload), await _fetch(str(payload), transport))

    if input_type == InputType.feed:
        return _feed(str(payload), await _fetch(str(payload), transport))

    if input_type == InputType.keywords and isinstance(payload, list):
        text = ", ".join(str(k) for k in payload)
    else:
        text = str(payload or "").strip()
    if not text:
        raise ValidationError("Input cannot be empty", code="EMPTY_INPUT", field="input")
    return ProcessedInput(title=text.split("\n")[0][:MAX_TITLE], content=text[:MAX_CONTENT], description=text[:500])
