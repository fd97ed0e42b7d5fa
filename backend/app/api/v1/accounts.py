"""Cloud accounts API endpoints."""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_owner_id, get_db
from app.crud import cloud_account as cloud_account_crud
from app.schemas.cloud_account import CloudAccount, CloudAccountCreate

router = APIRouter()


@router.post("/", response_model=CloudAccount, status_code=status.HTTP_201_CREATED)
async def create_cloud_account(
    account_in: CloudAccountCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    owner_id: Annotated[uuid.UUID, Depends(get_current_owner_id)],
) -> CloudAccount:
    """
    Store AWS credentials for lifecycle actions.

    The keys are encrypted before storage and never returned.

    Args:
        account_in: Cloud account creation data
        db: Database session
        owner_id: Authenticated owner

    Returns:
        Created cloud account (without credentials)
    """
    return await cloud_account_crud.create_cloud_account(db, owner_id, account_in)


@router.get("/", response_model=list[CloudAccount])
async def list_cloud_accounts(
    db: Annotated[AsyncSession, Depends(get_db)],
    owner_id: Annotated[uuid.UUID, Depends(get_current_owner_id)],
) -> list[CloudAccount]:
    """List the owner's active AWS accounts, oldest (default) first."""
    return await cloud_account_crud.get_active_aws_accounts(db, owner_id)
