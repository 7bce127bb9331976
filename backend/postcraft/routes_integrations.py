from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from postcraft.auth import get_user_id
from postcraft.db import get_session
from postcraft.schemas import ConnectionTest, IntegrationCreate, IntegrationRead, IntegrationUpdate
from postcraft.services.credential_store import (
    CredentialStore,
    format_integration,
    test_connection,
)

router = APIRouter(prefix="/api/integrations", tags=["integrations"])
SessionDep = Depends(get_session)
UserDep = Depends(get_user_id)


@router.get("", response_model=list[IntegrationRead])
async def list_integrations(user_id: str = UserDep, session: AsyncSession = SessionDep):
    """Masked credentials only; secrets never leave the credential store."""
    integrations = await CredentialStore(session).list_integrations(user_id)
    return [format_integration(i) for i in integrations]


@router.post("", response_model=IntegrationRead, status_code=status.HTTP_201_CREATED)
async def create_integration(data: IntegrationCreate, user_id: str = UserDep, session: AsyncSession = SessionDep):
    integration = await CredentialStore(session).create_integration(
        user_id, data.provider, data.credentials, data.metadata
    )
    return format_integration(integration)


@router.patch("/{integration_id}", response_model=IntegrationRead)
async def update_integration(
    integration_id: int,
    data: IntegrationUpdate,
    user_id: str = UserDep,
    session: AsyncSession = SessionDep,
):
    integration = await CredentialStore(session).update_integration(
        user_id,
        integration_id,
        credentials=data.credentials,
        metadata=data.metadata,
        is_active=data.is_active,
    )
    return format_integration(integration)


@router.delete("/{integration_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_integration(integration_id: int, user_id: str = UserDep, session: AsyncSession = SessionDep):
    await CredentialStore(session).delete_integration(user_id, integration_id)


@router.post("/test")
async def test_integration(data: ConnectionTest, user_id: str = UserDep):
    return await test_connection(data.provider, data.credentials)
