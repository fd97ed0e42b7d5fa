"""Bulk shutdown/startup schedules for tagged non-production instances."""

import uuid
from typing import Awaitable, Callable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.crud import scheduled_action as scheduled_action_crud
from app.models.scheduled_action import ActionKind, ResourceKind, ScheduledAction
from app.providers.aws import AWSResourceControl
from app.schemas import scheduled_action as schedule_schemas
from app.schemas.scheduled_action import (
    EnvironmentPreset,
    EnvironmentScheduleRequest,
    EnvironmentScheduleResult,
    ScheduledActionCreate,
)
from app.services.credential_resolver import CredentialResolver
from app.services.tag_discovery import ProviderFactory, TagDiscovery

logger = structlog.get_logger()

ScheduleAction = Callable[[AsyncSession, uuid.UUID, ScheduledActionCreate], Awaitable[ScheduledAction]]

WEEKDAY_SHUTDOWN_CRON = "0 18 * * 1-5"
WEEKDAY_STARTUP_CRON = "0 8 * * 1-5"
WEEKEND_SHUTDOWN_CRON = "0 18 * * 5"
WEEKEND_STARTUP_CRON = "0 8 * * 1"

# preset -> (instance states to discover, [(action, default cron)])
PRESETS: dict[EnvironmentPreset, tuple[list[str], list[tuple[ActionKind, str]]]] = {
    EnvironmentPreset.SHUTDOWN: (["running"], [(ActionKind.SHUTDOWN, WEEKDAY_SHUTDOWN_CRON)]),
    EnvironmentPreset.STARTUP: (["stopped"], [(ActionKind.STARTUP, WEEKDAY_STARTUP_CRON)]),
    EnvironmentPreset.WEEKEND: (
        ["running", "stopped"],
        [(ActionKind.SHUTDOWN, WEEKEND_SHUTDOWN_CRON), (ActionKind.STARTUP, WEEKEND_STARTUP_CRON)],
    ),
}


class EnvironmentScheduler:
    """
    Turns an environment tag into one schedule per matching instance.

    Schedules go through the regular ``schedule_action`` path, so they get
    timers, are owner-scoped and can be paused or cancelled individually.
    Re-running a request does not duplicate schedules that already exist.
    """

    def __init__(
        self,
        credential_resolver: CredentialResolver,
        schedule_action: ScheduleAction,
        provider_factory: ProviderFactory = AWSResourceControl.from_credentials,
    ) -> None:
        self._resolver = credential_resolver
        self._schedule_action = schedule_action
        self._provider_factory = provider_factory

    async def schedule(
        self,
        db: AsyncSession,
        owner_id: uuid.UUID,
        request: EnvironmentScheduleRequest,
    ) -> EnvironmentScheduleResult:
        """
        Raises:
            CredentialsMissing: If the owner has no usable credentials
            LifecycleError: Provider failures from discovery
        """
        credentials = await self._resolver.resolve(owner_id, request.cloud_account_id)
        states, plan = PRESETS[request.preset]
        overrides = {ActionKind.SHUTDOWN: request.shutdown_cron, ActionKind.STARTUP: request.startup_cron}

        discovery = TagDiscovery(request.tag_key, request.environments, self._provider_factory)
        instances = await discovery.discover(credentials, states)

        existing = {
            (schedule.resource_id, schedule.action_kind, schedule.cron_expression)
            for schedule in await scheduled_action_crud.list_scheduled_actions(db, owner_id)
        }
        label = "Weekend" if request.preset == EnvironmentPreset.WEEKEND else "Dev/Test"

        created: list[ScheduledAction] = []
        skipped: list[str] = []
        for instance in instances:
            for action_kind, default_cron in plan:
                cron_expression = overrides[action_kind] or default_cron
                if (instance.instance_id, action_kind.value, cron_expression) in existing:
                    skipped.append(f"{instance.instance_id}:{action_kind.value}")
                    continue

                params: dict = {"region": instance.region}
                if action_kind == ActionKind.SHUTDOWN:
                    params["add_tags"] = True

                schedule = await self._schedule_action(
                    db,
                    owner_id,
                    ScheduledActionCreate(
                        resource_id=instance.instance_id,
                        resource_kind=ResourceKind.COMPUTE_INSTANCE,
                        action_kind=action_kind,
                        name=f"{label} {action_kind.value} - {instance.name or instance.instance_id}",
                        cron_expression=cron_expression,
                        timezone=request.timezone,
                        params=params,
                        cloud_account_id=credentials.account_id,
                    ),
                )
                created.append(schedule)

        logger.info(
            "schedule.environment_applied",
            owner_id=str(owner_id),
            preset=request.preset.value,
            discovered=len(instances),
            created=len(created),
            skipped=len(skipped),
        )
        return EnvironmentScheduleResult(
            preset=request.preset,
            discovered=len(instances),
            created=[schedule_schemas.ScheduledAction.model_validate(schedule) for schedule in created],
            skipped=skipped,
        )
