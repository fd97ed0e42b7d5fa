"""CRUD operations for the lifecycle action audit log."""

import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.lifecycle_action_log import LifecycleActionLog
from app.schemas.action_params import ActionOutcome


async def create_action_log(
    db: AsyncSession,
    owner_id: uuid.UUID,
    *,
    resource_id: str,
    action_kind: str,
    trigger: str,
    status: str,
    message: str | None = None,
    error_code: str | None = None,
    schedule_id: uuid.UUID | None = None,
    details: dict[str, Any] | None = None,
) -> LifecycleActionLog:
    """Append one audit row and commit."""
    entry = LifecycleActionLog(
        owner_id=owner_id,
        schedule_id=schedule_id,
        resource_id=resource_id,
        action_kind=action_kind,
        trigger=trigger,
        status=status,
        message=message,
        error_code=error_code,
        details=details,
    )
    db.add(entry)
    await db.commit()
    return entry


async def list_action_logs(
    db: AsyncSession,
    owner_id: uuid.UUID,
    resource_id: str | None = None,
    schedule_id: uuid.UUID | None = None,
    limit: int = 50,
) -> list[LifecycleActionLog]:
    """
    Get an owner's most recent action log entries.

    Args:
        db: Database session
        owner_id: Owner UUID
        resource_id: Optional resource filter
        schedule_id: Optional schedule filter
        limit: Maximum number of records to return

    Returns:
        List of LifecycleActionLog objects, newest first
    """
    query = select(LifecycleActionLog).where(LifecycleActionLog.owner_id == owner_id)
    if resource_id:
        query = query.where(LifecycleActionLog.resource_id == resource_id)
    if schedule_id:
        query = query.where(LifecycleActionLog.schedule_id == schedule_id)

    result = await db.execute(query.order_by(LifecycleActionLog.created_at.desc()).limit(limit))
    return list(result.scalars().all())


async def log_action_outcome(
    db: AsyncSession,
    owner_id: uuid.UUID,
    *,
    resource_id: str,
    action_kind: str,
    trigger: str,
    outcome: ActionOutcome,
    schedule_id: uuid.UUID | None = None,
) -> LifecycleActionLog:
    """
    Append the audit row for one executor outcome.

    Provider codes and captured capacity are folded into ``details``.
    """
    serialized = outcome.model_dump(mode="json")
    details = serialized["details"] or {}
    if outcome.provider_code:
        details["provider_code"] = outcome.provider_code
    if serialized["prior_capacity"]:
        details["prior_capacity"] = serialized["prior_capacity"]

    return await create_action_log(
        db,
        owner_id,
        resource_id=resource_id,
        action_kind=action_kind,
        trigger=trigger,
        status=outcome.run_status.value,
        message=outcome.message,
        error_code=outcome.error_code,
        schedule_id=schedule_id,
        details=details or None,
    )
