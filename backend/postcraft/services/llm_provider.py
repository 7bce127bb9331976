"""
LLM Provider interface used by every AI-dependent generator.

Each concrete provider implements `complete(prompt, credentials) -> str`.
Providers live in a registry keyed by integration provider name; swap one out
with `set_llm_provider` (tests register a scripted provider this way).

`AIClient.call_ai` picks the user's primary AI integration, falls back to the
secondary one, and fails fast with NoAIIntegrationError when neither exists,
before any network call is made.
"""
from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from postcraft.errors import NoAIIntegrationError, ParseError, UpstreamProviderError
from postcraft.services.credential_store import CredentialStore
from postcraft.services.publisher_adapter import sanitize
from postcraft.settings import get_settings

logger = logging.getLogger(__name__)


class LLMProvider(ABC):
    """Abstract LLM provider. Implement `complete` to plug in a real model."""

    name: str = "unknown"

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=get_settings().ai_timeout_sec, transport=self._transport)

    @abstractmethod
    async def complete(self, prompt: str, credentials: dict[str, Any]) -> str:
        ...


class GeminiProvider(LLMProvider):
    name = "gemini"

    BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"

    async def complete(self, prompt: str, credentials: dict[str, Any]) -> str:
        settings = get_settings()
        url = f"{self.BASE_URL}/{settings.gemini_model}:generateContent"
        async with self._client() as client:
            resp = await client.post(
                url,
                params={"key": credentials.get("apiKey", "")},
                json={"contents": [{"parts": [{"text": prompt}]}]},
            )
        if resp.status_code != 200:
            raise UpstreamProviderError(
                sanitize(f"Gemini API error: {resp.status_code} {resp.text[:300]}"),
                details={"provider": self.name, "statusCode": resp.status_code},
            )
        data = resp.json()
        try:
            return data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as exc:
            raise UpstreamProviderError("Gemini returned no candidates", details={"provider": self.name}) from exc


class OpenAIProvider(LLMProvider):
    name = "openai"

    URL = "https://api.openai.com/v1/chat/completions"

    async def complete(self, prompt: str, credentials: dict[str, Any]) -> str:
        settings = get_settings()
        async with self._client() as client:
            resp = await client.post(
                self.URL,
                headers={"Authorization": f"Bearer {credentials.get('apiKey', '')}"},
                json={
                    "model": settings.openai_model,
                    "messages": [{"role": "user", "content": prompt}],
                    "temperature": 0.7,
                },
            )
        if resp.status_code != 200:
            raise UpstreamProviderError(
                sanitize(f"OpenAI API error: {resp.status_code} {resp.text[:300]}"),
                details={"provider": self.name, "statusCode": resp.status_code},
            )
        data = resp.json()
        try:
            return data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise UpstreamProviderError("OpenAI returned no choices", details={"provider": self.name}) from exc


_PROVIDERS: dict[str, LLMProvider] = {
    "gemini": GeminiProvider(),
    "openai": OpenAIProvider(),
}


def get_llm_provider(name: str) -> LLMProvider | None:
    return _PROVIDERS.get(name.lower())


def set_llm_provider(name: str, provider: LLMProvider) -> None:
    _PROVIDERS[name.lower()] = provider


def list_llm_providers() -> list[str]:
    return list(_PROVIDERS.keys())


class AIClient:
    """Resolve the caller's AI integration and run prompts through it."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.credentials = CredentialStore(session)
        self._resolved: dict[str, tuple[LLMProvider, dict[str, Any]]] = {}

    async def resolve(self, user_id: str) -> tuple[LLMProvider, dict[str, Any]]:
        """Primary provider if configured, else the secondary; cached per client."""
        if user_id in self._resolved:
            return self._resolved[user_id]
        settings = get_settings()
        for name in (settings.primary_ai_provider, settings.secondary_ai_provider):
            provider = get_llm_provider(name)
            if provider is None:
                continue
            creds = await self.credentials.get_credentials(user_id, name)
            if creds:
                self._resolved[user_id] = (provider, creds)
                return provider, creds
        raise NoAIIntegrationError()

    async def call_ai(self, user_id: str, prompt: str) -> str:
        provider, creds = await self.resolve(user_id)
        try:
            text = await provider.complete(prompt, creds)
        except UpstreamProviderError:
            raise
        except Exception as exc:
            raise UpstreamProviderError(
                sanitize(f"{provider.name} call failed: {exc}") or "AI call failed",
                details={"provider": provider.name},
            ) from exc
        logger.debug(f"[ai][{provider.name}] user={user_id} prompt={len(prompt)} chars -> {len(text or '')} chars")
        return text or ""

    async def call_ai_json(self, user_id: str, prompt: str, expect: type | None = None) -> Any:
        return extract_json(await self.call_ai(user_id, prompt), expect=expect)


_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*([\s\S]*?)\s*```")
_CLOSERS = {"{": "}", "[": "]"}


def extract_json(text: str | None, expect: type | None = None) -> Any:
    """Parse structured data out of a free-text AI response.

    Strips a BOM and markdown fences, then slices from the first `{` or `[`
    to its last matching closer. Raises ParseError instead of guessing.
    """
    if not text or not text.strip():
        raise ParseError("AI response was empty")

    cleaned = text.lstrip("\ufeff").strip()
    fenced = _FENCE_RE.search(cleaned)
    if fenced:
        cleaned = fenced.group(1).strip()

    starts = [i for i in (cleaned.find("{"), cleaned.find("[")) if i != -1]
    if not starts:
        raise ParseError("No JSON object found in AI response", details={"preview": cleaned[:200]})

    start = min(starts)
    end = cleaned.rfind(_CLOSERS[cleaned[start]])
    if end <= start:
        raise ParseError("Unterminated JSON in AI response", details={"preview": cleaned[:200]})

    try:
        parsed = json.loads(cleaned[start:end + 1])
    except json.JSONDecodeError as exc:
        raise ParseError(f"Failed to parse AI response: {exc.msg}", details={"preview": cleaned[:200]}) from exc

    if expect is not None and not isinstance(parsed, expect):
        raise ParseError(
            f"AI response has wrong shape: expected {expect.__name__}, got {type(parsed).__name__}",
        )
    return parsed
