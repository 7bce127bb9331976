"""
Tests for AI provider resolution, error wrapping and JSON extraction.
"""

import httpx
import pytest

from conftest import USER_ID, ScriptedLLM
from postcraft.errors import NoAIIntegrationError, ParseError, UpstreamProviderError
from postcraft.services.credential_store import CredentialStore
from postcraft.services.llm_provider import AIClient, GeminiProvider, OpenAIProvider, extract_json, set_llm_provider


class TestExtractJson:

    def test_plain_object(self):
        assert extract_json('{"a": 1}') == {"a": 1}

    def test_fenced_with_prose(self):
        text = 'Sure! Here you go:\n```json\n{"title": "x", "tags": ["a"]}\n```\nAnything else?'
        assert extract_json(text) == {"title": "x", "tags": ["a"]}

    def test_bom_and_surrounding_text(self):
        assert extract_json('\ufeffResult: [1, 2, 3] done') == [1, 2, 3]

    def test_first_opener_wins(self):
        assert extract_json('[{"a": 1}, {"b": 2}]') == [{"a": 1}, {"b": 2}]

    def test_expected_shape(self):
        with pytest.raises(ParseError, match="expected list"):
            extract_json('{"a": 1}', expect=list)

    @pytest.mark.parametrize("text", ["", "   ", "no json at all", '{"a": 1', "{not json}"])
    def test_unparseable(self, text):
        with pytest.raises(ParseError) as exc:
            extract_json(text)
        assert exc.value.status_code == 502


class TestAIClient:

    async def test_no_integration_fails_before_any_call(self, db, llm):
        with pytest.raises(NoAIIntegrationError) as exc:
            await AIClient(db).call_ai(USER_ID, "Hello")
        assert exc.value.status_code == 400
        assert llm.prompts == []

    async def test_primary_provider_used(self, db, ai_integration, llm):
        llm.respond("Hello", "Hi!")
        assert await AIClient(db).call_ai(USER_ID, "Hello") == "Hi!"

    async def test_secondary_provider_when_primary_missing(self, db, llm):
        secondary = ScriptedLLM()
        secondary.name = "openai"
        secondary.respond("Hello", "from openai")
        set_llm_provider("openai", secondary)
        await CredentialStore(db).create_integration(USER_ID, "openai", {"apiKey": "sk-test-0123456789"})

        assert await AIClient(db).call_ai(USER_ID, "Hello") == "from openai"
        assert llm.prompts == []

    async def test_inactive_integration_ignored(self, db, ai_integration, llm):
        await CredentialStore(db).update_integration(USER_ID, ai_integration.id, is_active=False)
        with pytest.raises(NoAIIntegrationError):
            await AIClient(db).call_ai(USER_ID, "Hello")

    async def test_resolution_cached_per_client(self, db, ai_integration, llm):
        client = AIClient(db)
        first = await client.resolve(USER_ID)
        await CredentialStore(db).update_integration(USER_ID, ai_integration.id, is_active=False)
        assert await client.resolve(USER_ID) is first

    async def test_provider_exception_wrapped_and_sanitized(self, db, ai_integration, llm):
        llm.respond("Hello", RuntimeError("request to ?key=AIzaSECRET123 failed"))

        with pytest.raises(UpstreamProviderError) as exc:
            await AIClient(db).call_ai(USER_ID, "Hello")

        assert "AIzaSECRET123" not in exc.value.message
        assert exc.value.details == {"provider": "gemini"}

    async def test_call_ai_json(self, db, ai_integration, llm):
        llm.respond("Give JSON", '```json\n{"ok": true}\n```')
        assert await AIClient(db).call_ai_json(USER_ID, "Give JSON", expect=dict) == {"ok": True}


class TestHttpProviders:

    async def test_gemini_request(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["key"] = request.url.params["key"]
            return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "generated"}]}}]})

        provider = GeminiProvider(transport=httpx.MockTransport(handler))
        assert await provider.complete("Hi", {"apiKey": "AIza-key"}) == "generated"
        assert seen["key"] == "AIza-key"

    async def test_openai_error_status(self):
        provider = OpenAIProvider(transport=httpx.MockTransport(lambda r: httpx.Response(429, json={"error": "slow down"})))
        with pytest.raises(UpstreamProviderError, match="429"):
            await provider.complete("Hi", {"apiKey": "sk-test-0123456789"})
