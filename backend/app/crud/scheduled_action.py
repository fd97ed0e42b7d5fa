"""CRUD operations for scheduled actions."""

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.scheduled_action import ActionKind, ScheduledAction


async def create_scheduled_action(
    db: AsyncSession,
    owner_id: uuid.UUID,
    *,
    resource_id: str,
    resource_kind: str,
    action_kind: ActionKind,
    name: str,
    cron_expression: str,
    timezone_name: str,
    action_params: dict[str, Any],
    cloud_account_id: uuid.UUID | None = None,
) -> ScheduledAction:
    """
    Persist a new active schedule.

    Args:
        db: Database session
        owner_id: Owner UUID
        resource_id: External resource identifier
        resource_kind: Explicit ResourceKind value
        action_kind: Action to perform on each tick
        name: Display name
        cron_expression: Five-field crontab expression
        timezone_name: IANA timezone for the expression
        action_params: Serialized ActionParams variant
        cloud_account_id: Credential set, None for the owner's default

    Returns:
        Created ScheduledAction object
    """
    schedule = ScheduledAction(
        owner_id=owner_id,
        cloud_account_id=cloud_account_id,
        resource_id=resource_id,
        resource_kind=resource_kind,
        name=name,
        action_kind=ActionKind(action_kind).value,
        cron_expression=cron_expression,
        timezone=timezone_name,
        action_params=action_params,
        is_active=True,
    )
    db.add(schedule)
    await db.commit()
    await db.refresh(schedule)
    return schedule


async def get_scheduled_action(
    db: AsyncSession,
    schedule_id: uuid.UUID,
    owner_id: uuid.UUID | None = None,
) -> ScheduledAction | None:
    """
    Get a schedule by ID, optionally scoped to an owner.

    Always reloads from the database so callers act on persisted state.

    Args:
        db: Database session
        schedule_id: Schedule UUID
        owner_id: Owner UUID (for security check); None for internal callers

    Returns:
        ScheduledAction object or None if not found
    """
    query = select(ScheduledAction).where(ScheduledAction.id == schedule_id)
    if owner_id is not None:
        query = query.where(ScheduledAction.owner_id == owner_id)

    result = await db.execute(query.execution_options(populate_existing=True))
    return result.scalar_one_or_none()


async def list_scheduled_actions(
    db: AsyncSession,
    owner_id: uuid.UUID,
    resource_id: str | None = None,
    action_kind: ActionKind | None = None,
    include_inactive: bool = False,
) -> list[ScheduledAction]:
    """
    List an owner's schedules, newest first.

    Args:
        db: Database session
        owner_id: Owner UUID
        resource_id: Optional resource filter
        action_kind: Optional action kind filter
        include_inactive: Also return cancelled/paused schedules

    Returns:
        List of ScheduledAction objects
    """
    query = select(ScheduledAction).where(ScheduledAction.owner_id == owner_id)

    if not include_inactive:
        query = query.where(ScheduledAction.is_active == True)  # noqa: E712
    if resource_id:
        query = query.where(ScheduledAction.resource_id == resource_id)
    if action_kind:
        query = query.where(ScheduledAction.action_kind == ActionKind(action_kind).value)

    result = await db.execute(query.order_by(ScheduledAction.created_at.desc()))
    return list(result.scalars().all())


async def get_active_scheduled_actions(db: AsyncSession) -> list[ScheduledAction]:
    """All active schedules across owners (registry rebuild)."""
    result = await db.execute(
        select(ScheduledAction).where(ScheduledAction.is_active == True)  # noqa: E712
    )
    return list(result.scalars().all())


async def update_scheduled_action(
    db: AsyncSession,
    schedule_id: uuid.UUID,
    owner_id: uuid.UUID,
    values: dict[str, Any],
) -> ScheduledAction | None:
    """
    Apply changes to a schedule scoped to ``id AND owner``.

    Args:
        db: Database session
        schedule_id: Schedule UUID
        owner_id: Owner UUID
        values: Column values to set

    Returns:
        The reloaded ScheduledAction, or None when no row matched
    """
    result = await db.execute(
        update(ScheduledAction)
        .where(
            ScheduledAction.id == schedule_id,
            ScheduledAction.owner_id == owner_id,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        # Nothing was written; loaded objects in the session stay usable
        return None

    await db.commit()
    return await get_scheduled_action(db, schedule_id, owner_id)


async def set_scheduled_action_active(
    db: AsyncSession,
    schedule_id: uuid.UUID,
    owner_id: uuid.UUID,
    is_active: bool,
) -> ScheduledAction | None:
    """Set the active flag; None when the owner has no such schedule."""
    return await update_scheduled_action(db, schedule_id, owner_id, {"is_active": is_active})


async def record_schedule_run(
    db: AsyncSession,
    schedule_id: uuid.UUID,
    owner_id: uuid.UUID,
    status: str,
    message: str,
    action_params: dict[str, Any] | None = None,
) -> int:
    """
    Store the latest run outcome on a schedule that is still active.

    Args:
        db: Database session
        schedule_id: Schedule UUID
        owner_id: Owner UUID
        status: RunStatus value
        message: Outcome message
        action_params: Updated params (e.g. captured prior capacity)

    Returns:
        Number of updated rows (0 if the schedule was deactivated meanwhile)
    """
    values: dict[str, Any] = {
        "last_run_at": datetime.now(timezone.utc),
        "last_run_status": status,
        "last_run_message": message,
    }
    if action_params is not None:
        values["action_params"] = action_params

    result = await db.execute(
        update(ScheduledAction)
        .where(
            ScheduledAction.id == schedule_id,
            ScheduledAction.owner_id == owner_id,
            ScheduledAction.is_active == True,  # noqa: E712
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount or 0


async def find_prior_capacity(
    db: AsyncSession,
    owner_id: uuid.UUID,
    resource_id: str,
) -> dict[str, Any] | None:
    """
    Latest capacity captured by a scale-down/shutdown of the same resource.

    Args:
        db: Database session
        owner_id: Owner UUID
        resource_id: External resource identifier

    Returns:
        Serialized CapacitySnapshot or None if none was ever recorded
    """
    result = await db.execute(
        select(ScheduledAction)
        .where(
            ScheduledAction.owner_id == owner_id,
            ScheduledAction.resource_id == resource_id,
            ScheduledAction.action_kind.in_(
                [ActionKind.SCALE_DOWN.value, ActionKind.SHUTDOWN.value]
            ),
            ScheduledAction.last_run_at.is_not(None),
        )
        .order_by(ScheduledAction.last_run_at.desc())
        .execution_options(populate_existing=True)
    )
    for schedule in result.scalars():
        snapshot = (schedule.action_params or {}).get("prior_capacity")
        if snapshot:
            return snapshot
    return None


async def count_active_scheduled_actions(db: AsyncSession, owner_id: uuid.UUID) -> int:
    result = await db.execute(
        select(func.count(ScheduledAction.id)).where(
            ScheduledAction.owner_id == owner_id,
            ScheduledAction.is_active == True,  # noqa: E712
        )
    )
    return result.scalar_one()
