"""
Credential Store: per-user, per-provider credential bundles.

Credentials are encrypted with Fernet before they touch the database and are
only decrypted inside this module. Anything returned to callers outside the
core goes through `format_integration`, which masks every value.
"""
from __future__ import annotations

import logging
from typing import Any

import httpx
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from postcraft.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    UpstreamProviderError,
    ValidationError,
)
from postcraft.models import Integration, IntegrationProvider, PublishJob, PublishJobStatus
from postcraft.services.crypto import decrypt_json, encrypt_json

logger = logging.getLogger(__name__)

MASK = "****"
CONNECTION_TEST_TIMEOUT_SEC = 15


def mask_value(value: Any) -> str:
    """Mask a secret, revealing at most 4 leading and 4 trailing characters."""
    text = "" if value is None else str(value)
    if len(text) <= 8:
        return MASK
    return f"{text[:4]}...{text[-4:]}"


def normalize_provider(provider: str) -> str:
    key = (provider or "").strip().lower()
    try:
        return IntegrationProvider(key).value
    except ValueError as exc:
        supported = ", ".join(p.value for p in IntegrationProvider)
        raise ValidationError(
            f"Unsupported provider: {provider}",
            code="UNSUPPORTED_PROVIDER",
            field="provider",
            user_message=f"Unsupported provider. Supported: {supported}",
        ) from exc


def validate_credentials(provider: str, credentials: dict[str, Any] | None) -> None:
    if not credentials or not any(str(v).strip() for v in credentials.values() if v is not None):
        raise ValidationError(
            "API key cannot be empty",
            code="EMPTY_API_KEY",
            field="apiKey",
            user_message="API key cannot be empty. Please enter a valid key.",
        )

    api_key = credentials.get("apiKey")
    if provider == IntegrationProvider.openai.value and api_key and not str(api_key).startswith("sk-"):
        raise ValidationError(
            "Invalid API key format for OpenAI",
            code="INVALID_API_KEY_FORMAT",
            field="apiKey",
            details={"provider": provider},
            user_message="Invalid API key format for OpenAI. Please check and try again.",
        )
    if provider == IntegrationProvider.gemini.value and api_key and len(str(api_key)) < 20:
        raise ValidationError(
            "Invalid API key format for Gemini",
            code="INVALID_API_KEY_FORMAT",
            field="apiKey",
            details={"provider": provider},
            user_message="Invalid API key format for Gemini. Please check and try again.",
        )


def format_integration(integration: Integration) -> dict[str, Any]:
    try:
        credentials = decrypt_json(integration.credentials_encrypted)
    except ValueError:
        logger.error(f"[credentials] Failed to decrypt credentials for integration {integration.id}")
        credentials = {}

    return {
        "id": integration.id,
        "provider": integration.provider,
        "credentials": {key: mask_value(val) for key, val in credentials.items()},
        "metadata": integration.meta or {},
        "is_active": integration.is_active,
        "created_at": integration.created_at,
    }


class CredentialStore:
    """CRUD and decryption for a user's integrations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_integration(
        self,
        user_id: str,
        provider: str,
        credentials: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> Integration:
        provider = normalize_provider(provider)
        validate_credentials(provider, credentials)

        integration = Integration(
            owner_id=user_id,
            provider=provider,
            credentials_encrypted=encrypt_json(credentials),
            meta=metadata or {},
            is_active=True,
        )
        self.session.add(integration)
        await self.session.commit()
        await self.session.refresh(integration)
        logger.info(f"[credentials] Created {provider} integration {integration.id} for user {user_id}")
        return integration

    async def list_integrations(self, user_id: str) -> list[Integration]:
        res = await self.session.execute(
            select(Integration).where(Integration.owner_id == user_id).order_by(Integration.id)
        )
        return list(res.scalars().all())

    async def get_owned(self, user_id: str, integration_id: int) -> Integration:
        integration = await self.session.get(Integration, integration_id)
        if not integration:
            raise NotFoundError(
                "Integration not found",
                code="INTEGRATION_NOT_FOUND",
                field="integrationId",
                user_message="The requested integration was not found.",
            )
        if integration.owner_id != user_id:
            raise AuthorizationError(
                "Unauthorized access to integration",
                code="INTEGRATION_ACCESS_DENIED",
                field="integrationId",
                user_message="You do not have permission to access this integration.",
            )
        return integration

    async def update_integration(
        self,
        user_id: str,
        integration_id: int,
        *,
        credentials: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
        is_active: bool | None = None,
    ) -> Integration:
        integration = await self.get_owned(user_id, integration_id)

        if credentials is not None:
            validate_credentials(integration.provider, credentials)
            # Replaced wholesale, never merged
            integration.credentials_encrypted = encrypt_json(credentials)
        if metadata is not None:
            integration.meta = metadata
        if is_active is not None:
            integration.is_active = is_active

        self.session.add(integration)
        await self.session.commit()
        await self.session.refresh(integration)
        return integration

    async def delete_integration(self, user_id: str, integration_id: int) -> None:
        integration = await self.get_owned(user_id, integration_id)

        active_jobs = await self.session.scalar(
            select(func.count(PublishJob.id)).where(
                PublishJob.integration_id == integration_id,
                PublishJob.status.in_([PublishJobStatus.pending.value, PublishJobStatus.running.value]),
            )
        )
        if active_jobs:
            raise ConflictError(
                "Cannot delete integration with pending jobs",
                code="INTEGRATION_DELETE_FAILED",
                field="integrationId",
                details={"active_jobs": active_jobs},
                user_message="Cannot delete this integration while publish jobs are pending.",
            )

        await self.session.delete(integration)
        await self.session.commit()
        logger.info(f"[credentials] Deleted integration {integration_id} for user {user_id}")

    async def find_active(self, user_id: str, provider: str) -> Integration | None:
        res = await self.session.execute(
            select(Integration)
            .where(
                Integration.owner_id == user_id,
                Integration.provider == provider,
                Integration.is_active.is_(True),
            )
            .order_by(Integration.id.desc())
            .limit(1)
        )
        return res.scalars().first()

    async def get_credentials(self, user_id: str, provider: str) -> dict[str, Any] | None:
        """Decrypted credentials of the user's active integration for `provider`, or None."""
        integration = await self.find_active(user_id, provider)
        if not integration:
            return None
        return self.get_credentials_for(integration)

    @staticmethod
    def get_credentials_for(integration: Integration) -> dict[str, Any] | None:
        try:
            return decrypt_json(integration.credentials_encrypted)
        except ValueError:
            logger.error(f"[credentials] Integration {integration.id} holds an undecryptable blob")
            return None


def _connection_failed(provider: str, response: httpx.Response) -> ValidationError:
    try:
        error_body = response.json()
    except ValueError:
        error_body = {}
    label = provider.capitalize()
    return ValidationError(
        f"{label} API connection failed",
        code="API_CONNECTION_FAILED",
        field="apiKey",
        details={"provider": provider, "statusCode": response.status_code, "error": error_body},
        user_message=f"Connection test failed: {label} returned an error. Verify your credentials.",
    )


async def test_connection(
    provider: str,
    credentials: dict[str, Any],
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, Any]:
    """Check the provider accepts the given credentials.

    API-key providers get a real request; OAuth-linked providers pass through.
    """
    provider = normalize_provider(provider)
    endpoints = {
        IntegrationProvider.gemini.value: lambda key: (
            "https://generativelanguage.googleapis.com/v1beta/models", {"key": key}, {}
        ),
        IntegrationProvider.openai.value: lambda key: (
            "https://api.openai.com/v1/models", None, {"Authorization": f"Bearer {key}"}
        ),
        IntegrationProvider.elevenlabs.value: lambda key: (
            "https://api.elevenlabs.io/v1/voices", None, {"xi-api-key": key}
        ),
    }

    endpoint = endpoints.get(provider)
    if endpoint is None:
        return {"success": True, "message": f"{provider} connection valid!"}

    api_key = (credentials or {}).get("apiKey")
    if not api_key:
        raise ValidationError(
            "API key missing",
            code="MISSING_API_KEY",
            field="apiKey",
            details={"provider": provider},
            user_message=f"API key is required for {provider} connection.",
        )

    url, params, headers = endpoint(api_key)
    try:
        async with httpx.AsyncClient(timeout=CONNECTION_TEST_TIMEOUT_SEC, transport=transport) as client:
            response = await client.get(url, params=params, headers=headers)
    except httpx.HTTPError as exc:
        raise UpstreamProviderError(
            "Connection test failed",
            code="CONNECTION_TEST_FAILED",
            details={"provider": provider},
            user_message=f"{provider} API is unreachable. Please check your internet connection.",
        ) from exc

    if response.status_code >= 400:
        raise _connection_failed(provider, response)
    return {"success": True, "message": f"Connected to {provider} successfully!"}
