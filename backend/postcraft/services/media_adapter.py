"""
Media Adapters: AI voice / video generation backends.

Two provider shapes behind one interface:
- sync:  submit() returns a finished asset (status=completed)
- async: submit() returns a remote handle (status=processing), then poll()

Registry (like the publisher registry):
    get_media_adapter("elevenlabs") -> ElevenLabsAdapter
"""
from __future__ import annotations

import abc
import asyncio
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx

from postcraft.errors import ValidationError
from postcraft.services.publisher_adapter import sanitize
from postcraft.settings import get_settings

logger = logging.getLogger(__name__)

MEDIA_TIMEOUT_SEC = 120


@dataclass
class MediaSubmission:
    status: str  # completed | processing
    asset_url: str | None = None
    remote_id: str | None = None


@dataclass
class MediaStatus:
    status: str  # pending | processing | completed | failed
    asset_url: str | None = None
    error: str | None = None

    @property
    def finished(self) -> bool:
        return self.status in ("completed", "failed")


class MediaAdapter(abc.ABC):
    provider: str = "unknown"

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=MEDIA_TIMEOUT_SEC, transport=self._transport)

    @abc.abstractmethod
    async def submit(self, script: str, params: dict[str, Any], credentials: dict[str, Any]) -> MediaSubmission:
        ...

    async def poll(self, remote_id: str, credentials: dict[str, Any]) -> MediaStatus:
        raise NotImplementedError(f"{self.provider} does not support polling")


# ── ElevenLabs (sync) ────────────────────────────────────────

class ElevenLabsAdapter(MediaAdapter):
    """Text-to-speech; the mp3 is written under MEDIA_DIR and served as /generated-audio/<file>."""

    provider = "elevenlabs"
    TTS_URL = "https://api.elevenlabs.io/v1/text-to-speech/{voice_id}"
    MODEL_ID = "eleven_monolingual_v1"

    async def submit(self, script, params, credentials) -> MediaSubmission:
        voice_id = params.get("voiceId") or params.get("voice_id") or credentials.get("defaultVoiceId")
        api_key = credentials.get("apiKey")
        if not voice_id or not api_key:
            raise ValidationError("ElevenLabs credentials incomplete", code="MEDIA_CREDENTIALS_INCOMPLETE")

        async with self._client() as client:
            resp = await client.post(
                self.TTS_URL.format(voice_id=voice_id),
                headers={"Accept": "audio/mpeg", "xi-api-key": api_key},
                json={
                    "text": script,
                    "model_id": params.get("modelId") or self.MODEL_ID,
                    "voice_settings": {"stability": 0.5, "similarity_boost": 0.5},
                },
            )
        if resp.status_code != 200:
            raise RuntimeError(sanitize(f"ElevenLabs API Error: {resp.status_code} {resp.text[:300]}"))

        media_dir = Path(get_settings().media_dir)
        filename = f"elevenlabs_{uuid.uuid4().hex}.mp3"
        await asyncio.to_thread(media_dir.mkdir, parents=True, exist_ok=True)
        await asyncio.to_thread((media_dir / filename).write_bytes, resp.content)
        logger.info(f"[media][elevenlabs] wrote {filename} ({len(resp.content)} bytes)")
        return MediaSubmission(status="completed", asset_url=f"/generated-audio/{filename}")


# ── HeyGen (async) ───────────────────────────────────────────

class HeyGenAdapter(MediaAdapter):
    """Avatar video; returns a video_id that is polled until completed or failed."""

    provider = "heygen"
    GENERATE_URL = "https://api.heygen.com/v1/video.generate"
    STATUS_URL = "https://api.heygen.com/v1/video_status.get"

    async def submit(self, script, params, credentials) -> MediaSubmission:
        avatar_id = params.get("avatarId") or params.get("avatar_id")
        api_key = credentials.get("apiKey")
        if not avatar_id or not api_key:
            raise ValidationError("HeyGen credentials incomplete", code="MEDIA_CREDENTIALS_INCOMPLETE")

        voice: dict[str, Any] = {"type": "text", "input_text": script}
        if params.get("voiceId"):
            voice["voice_id"] = params["voiceId"]

        async with self._client() as client:
            resp = await client.post(
                self.GENERATE_URL,
                headers={"X-Api-Key": api_key},
                json={
                    "video_inputs": [{"character": {"type": "avatar", "avatar_id": avatar_id}, "voice": voice}],
                    "dimension": {"width": 1920, "height": 1080},
                },
            )
        if resp.status_code not in (200, 201):
            raise RuntimeError(sanitize(f"HeyGen API Error: {resp.status_code} {resp.text[:300]}"))

        video_id = ((resp.json() or {}).get("data") or {}).get("video_id")
        if not video_id:
            raise RuntimeError("HeyGen response has no video_id")
        return MediaSubmission(status="processing", remote_id=str(video_id))

    async def poll(self, remote_id, credentials) -> MediaStatus:
        async with self._client() as client:
            resp = await client.get(
                self.STATUS_URL,
                params={"video_id": remote_id},
                headers={"X-Api-Key": credentials.get("apiKey", "")},
            )
        if resp.status_code != 200:
            raise RuntimeError(sanitize(f"HeyGen Status API Error: {resp.status_code} {resp.text[:300]}"))

        data = (resp.json() or {}).get("data") or {}
        error = data.get("error")
        if isinstance(error, dict):
            error = error.get("message") or str(error)
        return MediaStatus(status=str(data.get("status") or "processing"), asset_url=data.get("video_url"), error=error)


# ── Registry ─────────────────────────────────────────────────

_ADAPTERS: dict[str, MediaAdapter] = {
    "elevenlabs": ElevenLabsAdapter(),
    "heygen": HeyGenAdapter(),
}


def get_media_adapter(provider: str) -> MediaAdapter | None:
    return _ADAPTERS.get((provider or "").lower())


def register_media_adapter(provider: str, adapter: MediaAdapter) -> None:
    _ADAPTERS[provider.lower()] = adapter


def list_media_adapters() -> list[str]:
    return list(_ADAPTERS.keys())
