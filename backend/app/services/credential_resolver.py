"""Resolve an owner's stored provider credentials."""

import uuid
from typing import Callable

import structlog
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.crud import cloud_account as cloud_account_crud
from app.schemas.cloud_account import AWSCredentials
from app.services.lifecycle_errors import CredentialsMissing

logger = structlog.get_logger()


class CredentialResolver:
    """Looks up and decrypts AWS credentials for an owner."""

    def __init__(self, session_factory: Callable[[], AsyncSession]) -> None:
        self._session_factory = session_factory

    async def resolve(
        self,
        owner_id: uuid.UUID,
        account_scope: uuid.UUID | None = None,
    ) -> AWSCredentials:
        """
        Resolve usable credentials.

        Args:
            owner_id: Owner UUID
            account_scope: Specific cloud account; the owner's oldest active
                AWS account when None

        Returns:
            Decrypted credentials with the account's regions

        Raises:
            CredentialsMissing: If nothing usable resolves
        """
        async with self._session_factory() as db:
            if account_scope is not None:
                account = await cloud_account_crud.get_cloud_account_by_id(db, account_scope, owner_id)
                accounts = [account] if account and account.is_active and account.provider == "aws" else []
            else:
                accounts = await cloud_account_crud.get_active_aws_accounts(db, owner_id)

        for account in accounts:
            secrets = cloud_account_crud.get_decrypted_credentials(account)
            if not secrets:
                logger.warning("credentials.undecryptable", owner_id=str(owner_id), account_id=str(account.id))
                continue

            regions = list(account.regions or []) or [settings.AWS_DEFAULT_REGION]
            try:
                return AWSCredentials(
                    access_key_id=secrets.get("access_key_id", ""),
                    secret_access_key=secrets.get("secret_access_key", ""),
                    region=regions[0],
                    regions=regions,
                    account_id=account.id,
                )
            except ValidationError:
                logger.warning("credentials.invalid", owner_id=str(owner_id), account_id=str(account.id))

        raise CredentialsMissing()

    async def has_credentials(
        self,
        owner_id: uuid.UUID,
        account_scope: uuid.UUID | None = None,
    ) -> bool:
        try:
            await self.resolve(owner_id, account_scope)
        except CredentialsMissing:
            return False
        return True
