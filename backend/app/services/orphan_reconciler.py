"""Reconcile a fresh orphan scan against the stored set."""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.crud.orphan_resource import delete_vanished_orphan_resources, get_open_orphan_resources
from app.models.orphan_resource import CleanupStatus, OrphanResource
from app.schemas.orphan_resource import OrphanCandidate

logger = structlog.get_logger()

# Candidate attribute -> column, compared to decide whether a row changed
_TRACKED_FIELDS = {
    "resource_type": "resource_type",
    "resource_name": "resource_name",
    "service_name": "service_name",
    "region": "region",
    "orphan_type": "orphan_type",
    "last_activity": "last_activity",
    "estimated_monthly_cost": "estimated_monthly_cost",
    "risk_level": "risk_level",
    "resource_metadata": "detection_metadata",
}


@dataclass
class ReconcileResult:
    """Counts for one reconcile pass."""

    inserted: int = 0
    updated: int = 0
    removed: int = 0

    @property
    def upserted(self) -> int:
        return self.inserted + self.updated


def _normalize(value):
    if isinstance(value, datetime):
        return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value.astimezone(timezone.utc)
    return value


class OrphanReconciler:
    """
    Bring the stored orphans of one owner account in line with a scan.

    Candidates are upserted by ``(owner_id, cloud_account_id, resource_id)``
    against the open rows of the scanned account; a re-detected row is reset to ``detected``. Open rows missing from
    the scan are deleted in a single statement. ``cleaned`` rows are never
    touched, so a cleaned resource that shows up again gets a new row.
    """

    async def reconcile(
        self,
        db: AsyncSession,
        owner_id: uuid.UUID,
        candidates: list[OrphanCandidate],
        resource_types: set[str] | None = None,
        cloud_account_id: uuid.UUID | None = None,
    ) -> ReconcileResult:
        """
        Args:
            db: Database session
            owner_id: Owner UUID
            candidates: Fresh scan results
            resource_types: Resource types the scan covered; open rows of other
                types are left alone. All types when None.
            cloud_account_id: Account the scan covered; rows of other accounts
                are left alone
        """
        result = ReconcileResult()

        existing = {
            row.resource_id: row
            for row in await get_open_orphan_resources(db, owner_id, cloud_account_id)
            if resource_types is None or row.resource_type in resource_types
        }

        # Later duplicates in one scan win
        by_id: dict[str, OrphanCandidate] = {}
        for candidate in candidates:
            by_id[candidate.resource_id] = candidate

        for resource_id, candidate in by_id.items():
            row = existing.get(resource_id)
            if row is None:
                db.add(
                    OrphanResource(
                        owner_id=owner_id,
                        cloud_account_id=cloud_account_id,
                        resource_id=resource_id,
                        resource_type=candidate.resource_type,
                        resource_name=candidate.resource_name,
                        service_name=candidate.service_name,
                        region=candidate.region,
                        orphan_type=candidate.orphan_type,
                        last_activity=candidate.last_activity,
                        estimated_monthly_cost=candidate.estimated_monthly_cost,
                        risk_level=candidate.risk_level,
                        detection_metadata=candidate.resource_metadata,
                        cleanup_status=CleanupStatus.DETECTED.value,
                    )
                )
                result.inserted += 1
                continue

            changed = False
            for attribute, column in _TRACKED_FIELDS.items():
                new_value = getattr(candidate, attribute)
                if _normalize(getattr(row, column)) != _normalize(new_value):
                    setattr(row, column, new_value)
                    changed = True
            if row.cleanup_status != CleanupStatus.DETECTED.value:
                row.cleanup_status = CleanupStatus.DETECTED.value
                changed = True
            if changed:
                result.updated += 1

        vanished = set(existing) - set(by_id)
        if vanished:
            # Flush pending ORM changes before the bulk delete runs
            await db.flush()
            result.removed = await delete_vanished_orphan_resources(
                db, owner_id, vanished, cloud_account_id
            )

        await db.commit()

        logger.info(
            "orphans.reconciled",
            owner_id=str(owner_id),
            cloud_account_id=str(cloud_account_id) if cloud_account_id else None,
            inserted=result.inserted,
            updated=result.updated,
            removed=result.removed,
        )
        return result
