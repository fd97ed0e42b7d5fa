"""Orphan detection, review and cleanup for one owner account at a time."""

import uuid
from datetime import datetime, timezone
from typing import Callable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.crud import cloud_account as cloud_account_crud
from app.crud import lifecycle_action_log as action_log_crud
from app.crud import orphan_resource as orphan_crud
from app.models.orphan_resource import OPEN_STATUSES, CleanupStatus, OrphanResource, RiskLevel
from app.models.scheduled_action import ResourceKind
from app.schemas.action_params import ActionParams, DeleteParams, ReleaseParams, TerminateParams
from app.schemas.orphan_resource import CleanupResult, OrphanDetectionResult
from app.services.action_executor import ActionExecutor
from app.services.credential_resolver import CredentialResolver
from app.services.lifecycle_errors import HighRiskRequiresForce, InvalidState, NotFoundOrUnauthorized
from app.services.orphan_reconciler import OrphanReconciler
from app.services.orphan_scanner import (
    EBS_VOLUME,
    ELASTIC_IP,
    NETWORK_INTERFACE,
    STOPPED_INSTANCE,
    OrphanScanner,
)

logger = structlog.get_logger()

# Orphan resource_type -> how it is cleaned up
CLEANUP_ACTIONS: dict[str, tuple[ResourceKind, Callable[[str], ActionParams]]] = {
    EBS_VOLUME: (ResourceKind.VOLUME, lambda region: DeleteParams(region=region)),
    ELASTIC_IP: (ResourceKind.ELASTIC_IP, lambda region: ReleaseParams(region=region)),
    NETWORK_INTERFACE: (ResourceKind.NETWORK_INTERFACE, lambda region: DeleteParams(region=region)),
    STOPPED_INSTANCE: (
        ResourceKind.COMPUTE_INSTANCE,
        lambda region: TerminateParams(region=region, force=True),
    ),
}


class OrphanService:
    """
    Keeps the stored orphan set of each cloud account in line with its scans.

    Rows carry the account they were detected in; cleanup acts with that
    account's credentials.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        credential_resolver: CredentialResolver,
        scanner: OrphanScanner,
        reconciler: OrphanReconciler,
        executor: ActionExecutor,
    ) -> None:
        self._session_factory = session_factory
        self._resolver = credential_resolver
        self.scanner = scanner
        self.reconciler = reconciler
        self._executor = executor

    async def detect(
        self,
        db: AsyncSession,
        owner_id: uuid.UUID,
        account_scope: uuid.UUID | None = None,
        service: str | None = None,
    ) -> OrphanDetectionResult:
        """
        Scan one account and reconcile its stored orphans.

        Raises:
            CredentialsMissing: If the owner has no usable credentials
            LifecycleError: Provider failures from the scan
        """
        credentials = await self._resolver.resolve(owner_id, account_scope)
        candidates = await self.scanner.scan_with_credentials(credentials, service, owner_id)
        result = await self.reconciler.reconcile(
            db,
            owner_id,
            candidates,
            resource_types=set(self.scanner.categories_for(service)),
            cloud_account_id=credentials.account_id,
        )
        return OrphanDetectionResult(
            cloud_account_id=credentials.account_id,
            detected=len(candidates),
            upserted=result.upserted,
            inserted=result.inserted,
            removed=result.removed,
            candidates=candidates,
        )

    async def list_orphans(
        self,
        db: AsyncSession,
        owner_id: uuid.UUID,
        service: str | None = None,
        orphan_type: str | None = None,
        min_savings: float | None = None,
        include_cleaned: bool = False,
        skip: int = 0,
        limit: int = 100,
    ) -> list[OrphanResource]:
        return await orphan_crud.list_orphan_resources(
            db, owner_id, service, orphan_type, min_savings, include_cleaned, skip, limit
        )

    async def mark_for_cleanup(
        self,
        db: AsyncSession,
        owner_id: uuid.UUID,
        resource_id: str,
    ) -> OrphanResource:
        """Move a detected orphan to ``scheduled``."""
        orphan = await orphan_crud.get_orphan_resource_for_owner(db, owner_id, resource_id)
        if orphan is None:
            raise NotFoundOrUnauthorized(f"Orphaned resource {resource_id} not found")
        if orphan.cleanup_status == CleanupStatus.CLEANED.value:
            raise InvalidState(f"Orphaned resource {resource_id} was already cleaned up")

        await orphan_crud.transition_orphan_status(
            db,
            owner_id,
            resource_id,
            (CleanupStatus.DETECTED.value,),
            CleanupStatus.SCHEDULED,
            cloud_account_id=orphan.cloud_account_id,
        )
        return await orphan_crud.get_orphan_resource_for_owner(db, owner_id, resource_id)

    async def cleanup(
        self,
        db: AsyncSession,
        owner_id: uuid.UUID,
        resource_id: str,
        force: bool = False,
    ) -> CleanupResult:
        """
        Delete or release an orphaned resource.

        High-risk orphans are rejected without touching the provider unless
        ``force`` is set.

        Raises:
            NotFoundOrUnauthorized: If the owner has no such orphan
            InvalidState: If the resource type has no cleanup action
        """
        orphan = await orphan_crud.get_orphan_resource_for_owner(db, owner_id, resource_id)
        if orphan is None:
            raise NotFoundOrUnauthorized(f"Orphaned resource {resource_id} not found")

        risk_level = orphan.risk_level
        savings = orphan.estimated_monthly_cost
        account_id = orphan.cloud_account_id

        if orphan.cleanup_status == CleanupStatus.CLEANED.value:
            return CleanupResult(
                resource_id=resource_id,
                success=True,
                skipped=True,
                message=f"{resource_id} was already cleaned up",
                risk_level=risk_level,
            )

        if risk_level == RiskLevel.HIGH.value and not force:
            rejection = HighRiskRequiresForce(resource_id)
            logger.info("orphans.cleanup_rejected", resource_id=resource_id, owner_id=str(owner_id))
            return CleanupResult(
                resource_id=resource_id,
                success=False,
                message=rejection.message,
                risk_level=risk_level,
                error_code=rejection.code,
            )

        if orphan.resource_type not in CLEANUP_ACTIONS:
            raise InvalidState(f"Unsupported resource type for cleanup: {orphan.resource_type}")
        resource_kind, build_params = CLEANUP_ACTIONS[orphan.resource_type]
        params = build_params(orphan.region)

        outcome = await self._executor.execute(
            resource_id,
            params,
            owner_id=owner_id,
            resource_kind=resource_kind,
            account_scope=account_id,
        )
        await action_log_crud.log_action_outcome(
            db,
            owner_id,
            resource_id=resource_id,
            action_kind=params.kind,
            trigger="orphan_cleanup",
            outcome=outcome,
        )

        if outcome.success:
            await orphan_crud.transition_orphan_status(
                db,
                owner_id,
                resource_id,
                OPEN_STATUSES,
                CleanupStatus.CLEANED,
                cleaned_at=datetime.now(timezone.utc),
                cloud_account_id=account_id,
            )
            logger.info("orphans.cleaned", resource_id=resource_id, owner_id=str(owner_id), savings=savings)

        return CleanupResult(
            resource_id=resource_id,
            success=outcome.success,
            skipped=outcome.skipped,
            message=outcome.message,
            risk_level=risk_level,
            error_code=outcome.error_code,
            savings=savings if outcome.success else 0.0,
        )

    async def run_sweep(self) -> dict[str, int]:
        """Detect orphans in every active account; one account failing does not stop the rest."""
        async with self._session_factory() as db:
            accounts = await cloud_account_crud.get_all_active_aws_accounts(db)

        stats = {
            "owners": len({account.owner_id for account in accounts}),
            "accounts": len(accounts),
            "failed": 0,
            "detected": 0,
            "removed": 0,
        }
        for account in accounts:
            try:
                async with self._session_factory() as db:
                    result = await self.detect(db, account.owner_id, account.id)
                stats["detected"] += result.detected
                stats["removed"] += result.removed
            except Exception:
                stats["failed"] += 1
                logger.exception(
                    "sweep.orphan_detection_failed",
                    owner_id=str(account.owner_id),
                    cloud_account_id=str(account.id),
                )

        logger.info("sweep.orphan_detection_completed", **stats)
        return stats
