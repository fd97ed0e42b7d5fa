"""CRUD operations for orphaned resources."""

import uuid
from datetime import datetime

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.orphan_resource import OPEN_STATUSES, CleanupStatus, OrphanResource


def _account_clause(cloud_account_id: uuid.UUID | None):
    # NULL account rows come from scans that resolved no stored account
    if cloud_account_id is None:
        return OrphanResource.cloud_account_id.is_(None)
    return OrphanResource.cloud_account_id == cloud_account_id


async def get_open_orphan_resources(
    db: AsyncSession,
    owner_id: uuid.UUID,
    cloud_account_id: uuid.UUID | None = None,
) -> list[OrphanResource]:
    """
    Get the orphans of one owner account still in ``detected`` or ``scheduled``.

    Args:
        db: Database session
        owner_id: Owner UUID
        cloud_account_id: Account the rows were detected in

    Returns:
        List of orphan resource objects
    """
    result = await db.execute(
        select(OrphanResource).where(
            OrphanResource.owner_id == owner_id,
            _account_clause(cloud_account_id),
            OrphanResource.cleanup_status.in_(OPEN_STATUSES),
        )
    )
    return list(result.scalars().all())


async def delete_vanished_orphan_resources(
    db: AsyncSession,
    owner_id: uuid.UUID,
    resource_ids: set[str],
    cloud_account_id: uuid.UUID | None = None,
) -> int:
    """
    Delete open orphans that a fresh scan no longer reports.

    Single statement scoped by owner and account; ``cleaned`` rows never
    match. The caller commits.

    Args:
        db: Database session
        owner_id: Owner UUID
        resource_ids: External identifiers to drop
        cloud_account_id: Account the scan covered

    Returns:
        Number of deleted rows
    """
    if not resource_ids:
        return 0

    result = await db.execute(
        delete(OrphanResource)
        .where(
            OrphanResource.owner_id == owner_id,
            _account_clause(cloud_account_id),
            OrphanResource.resource_id.in_(resource_ids),
            OrphanResource.cleanup_status.in_(OPEN_STATUSES),
        )
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount or 0


async def get_orphan_resource_for_owner(
    db: AsyncSession,
    owner_id: uuid.UUID,
    resource_id: str,
) -> OrphanResource | None:
    """
    Get an owner's orphan by external identifier.

    The open row wins; otherwise the most recently cleaned one is returned.

    Args:
        db: Database session
        owner_id: Owner UUID
        resource_id: External resource identifier

    Returns:
        OrphanResource object or None if the owner has no such orphan
    """
    result = await db.execute(
        select(OrphanResource)
        .where(
            OrphanResource.owner_id == owner_id,
            OrphanResource.resource_id == resource_id,
        )
        .order_by(
            (OrphanResource.cleanup_status == CleanupStatus.CLEANED.value).asc(),
            OrphanResource.cleaned_at.desc(),
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_orphan_resources(
    db: AsyncSession,
    owner_id: uuid.UUID,
    service: str | None = None,
    orphan_type: str | None = None,
    min_savings: float | None = None,
    include_cleaned: bool = False,
    skip: int = 0,
    limit: int = 100,
) -> list[OrphanResource]:
    """
    List an owner's orphans, most expensive first.

    Args:
        db: Database session
        owner_id: Owner UUID
        service: Optional service name filter (case-insensitive)
        orphan_type: Optional orphan classification filter
        min_savings: Optional minimum monthly cost
        include_cleaned: Also return cleaned (historical) rows
        skip: Number of records to skip
        limit: Maximum number of records to return

    Returns:
        List of orphan resource objects
    """
    query = select(OrphanResource).where(OrphanResource.owner_id == owner_id)

    if not include_cleaned:
        query = query.where(OrphanResource.cleanup_status.in_(OPEN_STATUSES))
    if service:
        query = query.where(func.lower(OrphanResource.service_name) == service.lower())
    if orphan_type:
        query = query.where(OrphanResource.orphan_type == orphan_type)
    if min_savings is not None:
        query = query.where(OrphanResource.estimated_monthly_cost >= min_savings)

    result = await db.execute(
        query.order_by(
            OrphanResource.estimated_monthly_cost.desc(),
            OrphanResource.detected_at.desc(),
        )
        .offset(skip)
        .limit(limit)
    )
    return list(result.scalars().all())


async def transition_orphan_status(
    db: AsyncSession,
    owner_id: uuid.UUID,
    resource_id: str,
    from_statuses: tuple[str, ...],
    to_status: CleanupStatus,
    cleaned_at: datetime | None = None,
    cloud_account_id: uuid.UUID | None = None,
) -> int:
    """
    Move an owner's orphan between statuses in one conditional update.

    Args:
        db: Database session
        owner_id: Owner UUID
        resource_id: External resource identifier
        from_statuses: Statuses the row must currently be in
        to_status: Target status
        cleaned_at: Cleanup timestamp, for ``cleaned``
        cloud_account_id: Account the row was detected in

    Returns:
        Number of updated rows (0 if the owner has no matching open row)
    """
    values: dict = {"cleanup_status": to_status.value}
    if cleaned_at is not None:
        values["cleaned_at"] = cleaned_at

    result = await db.execute(
        update(OrphanResource)
        .where(
            OrphanResource.owner_id == owner_id,
            _account_clause(cloud_account_id),
            OrphanResource.resource_id == resource_id,
            OrphanResource.cleanup_status.in_(from_statuses),
        )
        .values(**values)
        .execution_options(synchronize_session="fetch")
    )
    await db.commit()
    return result.rowcount or 0


async def get_orphan_statistics(
    db: AsyncSession, owner_id: uuid.UUID
) -> tuple[dict[str, int], float]:
    """
    Count an owner's orphans by status and total the open monthly cost.

    Returns:
        (counts by status, monthly cost of detected/scheduled orphans)
    """
    result = await db.execute(
        select(
            OrphanResource.cleanup_status,
            func.count(OrphanResource.id),
            func.coalesce(func.sum(OrphanResource.estimated_monthly_cost), 0.0),
        )
        .where(OrphanResource.owner_id == owner_id)
        .group_by(OrphanResource.cleanup_status)
    )

    counts: dict[str, int] = {status.value: 0 for status in CleanupStatus}
    open_cost = 0.0
    for status, count, cost in result.all():
        counts[status] = count
        if status in OPEN_STATUSES:
            open_cost += float(cost)
    return counts, round(open_cost, 2)
