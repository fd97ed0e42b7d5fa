"""CRUD operations for CloudAccount model."""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.security import credential_encryption
from app.models.cloud_account import CloudAccount
from app.schemas.cloud_account import CloudAccountCreate


async def get_cloud_account_by_id(
    db: AsyncSession,
    account_id: uuid.UUID,
    owner_id: uuid.UUID,
) -> CloudAccount | None:
    """
    Get cloud account by ID for a specific owner.

    Args:
        db: Database session
        account_id: Cloud account UUID
        owner_id: Owner UUID (for security check)

    Returns:
        CloudAccount object or None if not found
    """
    result = await db.execute(
        select(CloudAccount).where(
            CloudAccount.id == account_id,
            CloudAccount.owner_id == owner_id,
        )
    )
    return result.scalar_one_or_none()


async def get_active_aws_accounts(
    db: AsyncSession,
    owner_id: uuid.UUID,
) -> list[CloudAccount]:
    """
    Get an owner's active AWS accounts, oldest first.

    Args:
        db: Database session
        owner_id: Owner UUID

    Returns:
        List of CloudAccount objects
    """
    result = await db.execute(
        select(CloudAccount)
        .where(
            CloudAccount.owner_id == owner_id,
            CloudAccount.provider == "aws",
            CloudAccount.is_active == True,  # noqa: E712
        )
        .order_by(CloudAccount.created_at.asc())
    )
    return list(result.scalars().all())


async def get_all_active_aws_accounts(db: AsyncSession) -> list[CloudAccount]:
    """Every owner's active AWS accounts, grouped by owner, oldest first."""
    result = await db.execute(
        select(CloudAccount)
        .where(
            CloudAccount.provider == "aws",
            CloudAccount.is_active == True,  # noqa: E712
        )
        .order_by(CloudAccount.owner_id, CloudAccount.created_at.asc())
    )
    return list(result.scalars().all())


async def create_cloud_account(
    db: AsyncSession,
    owner_id: uuid.UUID,
    account_in: CloudAccountCreate,
) -> CloudAccount:
    """
    Create new cloud account with encrypted credentials.

    Args:
        db: Database session
        owner_id: Owner UUID
        account_in: Cloud account creation schema

    Returns:
        Created CloudAccount object
    """
    credentials_encrypted = credential_encryption.encrypt_json(
        {
            "access_key_id": account_in.aws_access_key_id,
            "secret_access_key": account_in.aws_secret_access_key,
        }
    )

    db_account = CloudAccount(
        owner_id=owner_id,
        provider="aws",
        account_name=account_in.account_name,
        account_identifier=account_in.account_identifier,
        credentials_encrypted=credentials_encrypted,
        regions=account_in.regions,
        is_active=account_in.is_active,
    )

    db.add(db_account)
    await db.commit()
    await db.refresh(db_account)
    return db_account


def get_decrypted_credentials(account: CloudAccount) -> dict[str, str] | None:
    """
    Decrypt stored credentials.

    Args:
        account: CloudAccount with encrypted credentials

    Returns:
        Credentials mapping, or None when they cannot be decrypted
    """
    return credential_encryption.decrypt_json(account.credentials_encrypted)
