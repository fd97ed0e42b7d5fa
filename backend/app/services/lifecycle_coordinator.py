"""Lifecycle coordinator: schedules, orphan cleanup, rightsizing and sweeps.

The coordinator owns the APScheduler instance and the schedule registry and
runs scheduled actions. Orphan, rightsizing and environment operations live in
their own services; the coordinator wires them together and exposes one
surface to the HTTP handlers and workers. Handlers pass their own session;
timers and sweeps open sessions from ``session_factory``.
"""

import asyncio
import uuid
from datetime import timezone
from typing import Any, Callable

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import AsyncSessionLocal
from app.crud import lifecycle_action_log as action_log_crud
from app.crud import orphan_resource as orphan_crud
from app.crud import rightsizing as rightsizing_crud
from app.crud import scheduled_action as scheduled_action_crud
from app.models.lifecycle_action_log import LifecycleActionLog
from app.models.orphan_resource import OrphanResource
from app.models.rightsizing_recommendation import RightsizingRecommendation
from app.models.scheduled_action import ActionKind, ResourceKind, ScheduledAction
from app.providers.aws import AWSResourceControl
from app.schemas.action_params import (
    ActionOutcome,
    ActionParams,
    CapacitySnapshot,
    ResizeParams,
    ScaleUpParams,
    StartupParams,
    parse_action_params,
)
from app.schemas.lifecycle import CredentialsCheck, LifecycleSummary
from app.schemas.orphan_resource import CleanupResult, OrphanDetectionResult
from app.schemas.rightsizing import RightsizingApplyResult
from app.schemas.scheduled_action import (
    EnvironmentScheduleRequest,
    EnvironmentScheduleResult,
    ScheduledActionCreate,
    ScheduledActionUpdate,
    ScheduleToggleResponse,
)
from app.services.action_executor import ActionExecutor, ensure_supported, infer_resource_kind
from app.services.credential_resolver import CredentialResolver
from app.services.environment_scheduler import EnvironmentScheduler
from app.services.lifecycle_errors import (
    CredentialsMissing,
    InvalidState,
    NoCredentials,
    NotFoundOrUnauthorized,
)
from app.services.orphan_reconciler import OrphanReconciler
from app.services.orphan_scanner import OrphanScanner, ProviderFactory
from app.services.orphan_service import OrphanService
from app.services.rightsizing_service import RightsizingAnalyzer, RightsizingService
from app.services.schedule_registry import ScheduleRegistry, build_cron_trigger

logger = structlog.get_logger()

# Resource kinds whose startup/scale-up restores a captured capacity
_CAPACITY_KINDS = (ResourceKind.AUTOSCALING_GROUP.value, ResourceKind.CONTAINER_SERVICE.value)

ORPHAN_SWEEP_JOB_ID = "sweep:orphan_detection"
RIGHTSIZING_SWEEP_JOB_ID = "sweep:rightsizing"
RECONCILE_JOB_ID = "sweep:registry_reconcile"


class LifecycleCoordinator:
    """Owns the schedule registry and exposes lifecycle operations."""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        *,
        scheduler: AsyncIOScheduler | None = None,
        credential_resolver: CredentialResolver | None = None,
        provider_factory: ProviderFactory = AWSResourceControl.from_credentials,
        executor: ActionExecutor | None = None,
        scanner: OrphanScanner | None = None,
        reconciler: OrphanReconciler | None = None,
        analyzer: RightsizingAnalyzer | None = None,
        max_attempts: int = settings.ACTION_MAX_ATTEMPTS,
        retry_base_delay: float = settings.ACTION_RETRY_BASE_DELAY_SECONDS,
    ) -> None:
        self.session_factory = session_factory
        self.provider_factory = provider_factory
        self.credential_resolver = credential_resolver or CredentialResolver(session_factory)
        self.executor = executor or ActionExecutor(self.credential_resolver, provider_factory)
        self.orphans = OrphanService(
            session_factory,
            self.credential_resolver,
            scanner or OrphanScanner(self.credential_resolver, provider_factory),
            reconciler or OrphanReconciler(),
            self.executor,
        )
        self.rightsizing = RightsizingService(
            session_factory,
            self.credential_resolver,
            analyzer or RightsizingAnalyzer(self.credential_resolver, provider_factory),
            self.executor,
            provider_factory,
        )
        self.environments = EnvironmentScheduler(self.credential_resolver, self.schedule_action, provider_factory)
        self.scheduler = scheduler or AsyncIOScheduler(timezone=timezone.utc)
        self.registry = ScheduleRegistry(
            self.scheduler,
            self.execute_scheduled_action,
            misfire_grace_time=settings.SCHEDULER_MISFIRE_GRACE_SECONDS,
        )
        self.max_attempts = max(1, max_attempts)
        self.retry_base_delay = retry_base_delay

    @property
    def scanner(self) -> OrphanScanner:
        return self.orphans.scanner

    @property
    def reconciler(self) -> OrphanReconciler:
        return self.orphans.reconciler

    @property
    def analyzer(self) -> RightsizingAnalyzer:
        return self.rightsizing.analyzer

    # Process lifecycle

    async def start(self) -> None:
        """Start timers: rebuild every active schedule and install the sweeps."""
        if not self.scheduler.running:
            self.scheduler.start()

        await self.rebuild_registry()

        sweep_options: dict[str, Any] = {
            "replace_existing": True,
            "max_instances": 1,
            "coalesce": True,
            "misfire_grace_time": settings.SCHEDULER_MISFIRE_GRACE_SECONDS,
        }
        self.scheduler.add_job(
            self.run_orphan_detection_sweep,
            trigger=build_cron_trigger(settings.ORPHAN_DETECTION_CRON),
            id=ORPHAN_SWEEP_JOB_ID,
            name="Orphan detection sweep",
            **sweep_options,
        )
        self.scheduler.add_job(
            self.run_rightsizing_sweep,
            trigger=build_cron_trigger(settings.RIGHTSIZING_ANALYSIS_CRON),
            id=RIGHTSIZING_SWEEP_JOB_ID,
            name="Rightsizing sweep",
            **sweep_options,
        )
        self.scheduler.add_job(
            self.reconcile_registry,
            trigger="interval",
            seconds=settings.SCHEDULE_RECONCILE_INTERVAL_SECONDS,
            id=RECONCILE_JOB_ID,
            name="Schedule registry reconcile",
            **sweep_options,
        )
        logger.info("lifecycle.started", schedules=len(self.registry.registered_ids()))

    async def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("lifecycle.stopped")

    async def rebuild_registry(self) -> int:
        """Install a timer for every active persisted schedule."""
        async with self.session_factory() as db:
            schedules = await scheduled_action_crud.get_active_scheduled_actions(db)

        registered = 0
        for schedule in schedules:
            try:
                self.registry.register(schedule.id, schedule)
                registered += 1
            except ValueError as e:
                logger.error("schedule.invalid_timer", schedule_id=str(schedule.id), error=str(e))
        return registered

    async def reconcile_registry(self) -> dict[str, int]:
        """
        Repair drift between the store and the live timers.

        Active schedules without a timer get one; timers whose schedule is gone
        or inactive are removed.
        """
        async with self.session_factory() as db:
            schedules = await scheduled_action_crud.get_active_scheduled_actions(db)

        active = {schedule.id: schedule for schedule in schedules}
        live = self.registry.registered_ids()

        installed = 0
        for schedule_id in active.keys() - live:
            try:
                self.registry.register(schedule_id, active[schedule_id])
                installed += 1
            except ValueError as e:
                logger.error("schedule.invalid_timer", schedule_id=str(schedule_id), error=str(e))

        dropped = 0
        for schedule_id in live - active.keys():
            self.registry.cancel(schedule_id)
            dropped += 1

        if installed or dropped:
            logger.warning("schedule.registry_drift", installed=installed, dropped=dropped)
        return {"installed": installed, "dropped": dropped}

    # Scheduled actions

    async def schedule_action(
        self,
        db: AsyncSession,
        owner_id: uuid.UUID,
        schedule_in: ScheduledActionCreate,
    ) -> ScheduledAction:
        """
        Persist a recurring action and start its timer.

        Raises:
            NoCredentials: If the owner has no usable credentials (nothing is persisted)
            InvalidState: If the resource kind does not support the action
        """
        if not await self.credential_resolver.has_credentials(owner_id, schedule_in.cloud_account_id):
            raise NoCredentials()

        resource_kind = schedule_in.resource_kind or infer_resource_kind(schedule_in.resource_id)
        ensure_supported(resource_kind, schedule_in.action_kind)
        params = schedule_in.parsed_params()

        schedule = await scheduled_action_crud.create_scheduled_action(
            db,
            owner_id,
            resource_id=schedule_in.resource_id,
            resource_kind=resource_kind.value,
            action_kind=schedule_in.action_kind,
            name=schedule_in.name or f"{schedule_in.action_kind.value} {schedule_in.resource_id}",
            cron_expression=schedule_in.cron_expression,
            timezone_name=schedule_in.timezone,
            action_params=params.model_dump(mode="json", exclude_none=True),
            cloud_account_id=schedule_in.cloud_account_id,
        )
        self.registry.register(schedule.id, schedule)

        logger.info(
            "schedule.created",
            schedule_id=str(schedule.id),
            owner_id=str(owner_id),
            resource_id=schedule.resource_id,
            action=schedule.action_kind,
        )
        return schedule

    async def list_scheduled_actions(
        self,
        db: AsyncSession,
        owner_id: uuid.UUID,
        resource_id: str | None = None,
        action_kind: ActionKind | None = None,
        include_inactive: bool = False,
    ) -> list[ScheduledAction]:
        return await scheduled_action_crud.list_scheduled_actions(
            db, owner_id, resource_id, action_kind, include_inactive
        )

    async def update_scheduled_action(
        self,
        db: AsyncSession,
        owner_id: uuid.UUID,
        schedule_id: uuid.UUID,
        schedule_update: ScheduledActionUpdate,
    ) -> ScheduledAction:
        """
        Apply an update and swap the timer when the cron or timezone changed.

        Raises:
            NotFoundOrUnauthorized: If the owner has no such schedule
            InvalidState: If the new action or parameters do not fit the resource
        """
        current = await scheduled_action_crud.get_scheduled_action(db, schedule_id, owner_id)
        if current is None:
            raise NotFoundOrUnauthorized("Scheduled action not found")

        values: dict[str, Any] = {}
        if schedule_update.name:
            values["name"] = schedule_update.name
        if schedule_update.cron_expression and schedule_update.cron_expression != current.cron_expression:
            values["cron_expression"] = schedule_update.cron_expression
        if schedule_update.timezone and schedule_update.timezone != current.timezone:
            values["timezone"] = schedule_update.timezone

        if schedule_update.action_kind is not None or schedule_update.params is not None:
            action_kind = schedule_update.action_kind or ActionKind(current.action_kind)
            ensure_supported(current.resource_kind, action_kind)
            if schedule_update.params is not None:
                raw_params = schedule_update.params
            elif action_kind.value == current.action_kind:
                raw_params = current.action_params
            else:
                raw_params = {}
            try:
                params = parse_action_params(action_kind, raw_params)
            except ValidationError as e:
                raise InvalidState(
                    f"Invalid parameters for '{action_kind.value}': {e.errors()[0]['msg']}"
                ) from None
            values["action_kind"] = action_kind.value
            values["action_params"] = params.model_dump(mode="json", exclude_none=True)

        if not values:
            return current

        updated = await scheduled_action_crud.update_scheduled_action(db, schedule_id, owner_id, values)
        if updated is None:
            raise NotFoundOrUnauthorized("Scheduled action not found")

        if updated.is_active and ("cron_expression" in values or "timezone" in values):
            self.registry.replace(updated.id, updated)

        logger.info("schedule.updated", schedule_id=str(schedule_id), fields=sorted(values))
        return updated

    async def toggle_scheduled_action(
        self,
        db: AsyncSession,
        owner_id: uuid.UUID,
        schedule_id: uuid.UUID,
    ) -> ScheduleToggleResponse:
        """Pause an active schedule or resume a paused one."""
        current = await scheduled_action_crud.get_scheduled_action(db, schedule_id, owner_id)
        if current is None:
            raise NotFoundOrUnauthorized("Scheduled action not found")

        updated = await scheduled_action_crud.set_scheduled_action_active(
            db, schedule_id, owner_id, not current.is_active
        )
        if updated is None:
            raise NotFoundOrUnauthorized("Scheduled action not found")

        if updated.is_active:
            self.registry.resume(updated.id, updated)
            message = "Scheduled action resumed"
        else:
            self.registry.pause(updated.id)
            message = "Scheduled action paused"

        return ScheduleToggleResponse(id=updated.id, is_active=updated.is_active, message=message)

    async def cancel_scheduled_action(
        self,
        db: AsyncSession,
        owner_id: uuid.UUID,
        schedule_id: uuid.UUID,
    ) -> None:
        updated = await scheduled_action_crud.set_scheduled_action_active(db, schedule_id, owner_id, False)
        if updated is None:
            raise NotFoundOrUnauthorized("Scheduled action not found")
        self.registry.cancel(schedule_id)
        logger.info("schedule.cancelled", schedule_id=str(schedule_id), owner_id=str(owner_id))

    async def execute_scheduled_action(self, schedule_id: uuid.UUID) -> ActionOutcome | None:
        """
        Timer callback: run one tick of a schedule.

        The persisted record is re-read first; a schedule that is gone or
        inactive loses its timer and nothing runs.
        """
        async with self.session_factory() as db:
            schedule = await scheduled_action_crud.get_scheduled_action(db, schedule_id)
            if schedule is None or not schedule.is_active:
                self.registry.cancel(schedule_id)
                return None

            owner_id = schedule.owner_id
            try:
                params = parse_action_params(schedule.action_kind, schedule.action_params)
            except ValidationError as e:
                outcome = ActionOutcome(
                    success=False,
                    message=f"Stored parameters are invalid: {e.errors()[0]['msg']}",
                    error_code=InvalidState.code,
                )
            else:
                params = await self._with_restore_capacity(db, schedule, params)
                outcome = None

        if outcome is None:
            outcome = await self._execute_with_retry(
                schedule.resource_id,
                params,
                owner_id=owner_id,
                resource_kind=schedule.resource_kind,
                account_scope=schedule.cloud_account_id,
            )

        stored_params = None
        if outcome.success and outcome.prior_capacity is not None:
            stored_params = {
                **(schedule.action_params or {}),
                "prior_capacity": outcome.prior_capacity.model_dump(mode="json"),
            }

        async with self.session_factory() as db:
            await action_log_crud.log_action_outcome(
                db,
                owner_id,
                resource_id=schedule.resource_id,
                action_kind=schedule.action_kind,
                trigger="schedule",
                outcome=outcome,
                schedule_id=schedule.id,
            )
            # Scoped to active schedules: a cancel during the call keeps only the log
            recorded = await scheduled_action_crud.record_schedule_run(
                db,
                schedule.id,
                owner_id,
                outcome.run_status.value,
                outcome.message,
                action_params=stored_params,
            )

        if not recorded:
            logger.info("schedule.run_after_deactivation", schedule_id=str(schedule.id))
        return outcome

    async def _with_restore_capacity(
        self,
        db: AsyncSession,
        schedule: ScheduledAction,
        params: ActionParams,
    ) -> ActionParams:
        """Fill in the capacity a previous scale-down captured for this resource."""
        if not isinstance(params, (StartupParams, ScaleUpParams)) or params.restore_capacity is not None:
            return params
        if schedule.resource_kind not in _CAPACITY_KINDS:
            return params

        snapshot = await scheduled_action_crud.find_prior_capacity(db, schedule.owner_id, schedule.resource_id)
        if not snapshot:
            return params
        return params.model_copy(update={"restore_capacity": CapacitySnapshot.model_validate(snapshot)})

    async def _execute_with_retry(
        self,
        resource_id: str,
        params: ActionParams,
        *,
        owner_id: uuid.UUID,
        resource_kind: str,
        account_scope: uuid.UUID | None,
    ) -> ActionOutcome:
        """Run the executor, retrying only opaque provider failures with exponential backoff."""
        attempt = 1
        while True:
            outcome = await self.executor.execute(
                resource_id,
                params,
                owner_id=owner_id,
                resource_kind=resource_kind,
                account_scope=account_scope,
            )
            if not outcome.is_retryable or attempt >= self.max_attempts:
                break

            if (
                isinstance(params, ResizeParams)
                and outcome.details.get("restart_pending")
                and not outcome.details.get("restarted")
            ):
                # The failed attempt left a previously running instance stopped
                params = params.model_copy(update={"restart_after": True})

            delay = self.retry_base_delay * (2 ** (attempt - 1))
            logger.warning(
                "action.retrying",
                resource_id=resource_id,
                attempt=attempt,
                delay=delay,
                provider_code=outcome.provider_code,
            )
            await asyncio.sleep(delay)
            attempt += 1

        outcome.details["attempts"] = attempt
        return outcome

    async def list_action_logs(
        self,
        db: AsyncSession,
        owner_id: uuid.UUID,
        resource_id: str | None = None,
        schedule_id: uuid.UUID | None = None,
        limit: int = 50,
    ) -> list[LifecycleActionLog]:
        return await action_log_crud.list_action_logs(db, owner_id, resource_id, schedule_id, limit)

    async def schedule_environment_actions(
        self,
        db: AsyncSession,
        owner_id: uuid.UUID,
        request: EnvironmentScheduleRequest,
    ) -> EnvironmentScheduleResult:
        """Schedule shutdown/startup for every instance tagged with a non-production environment."""
        return await self.environments.schedule(db, owner_id, request)

    # Orphaned resources

    async def detect_orphaned_resources(
        self,
        db: AsyncSession,
        owner_id: uuid.UUID,
        account_scope: uuid.UUID | None = None,
        service: str | None = None,
    ) -> OrphanDetectionResult:
        return await self.orphans.detect(db, owner_id, account_scope, service)

    async def list_orphaned_resources(
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
        return await self.orphans.list_orphans(
            db, owner_id, service, orphan_type, min_savings, include_cleaned, skip, limit
        )

    async def mark_orphan_for_cleanup(
        self,
        db: AsyncSession,
        owner_id: uuid.UUID,
        resource_id: str,
    ) -> OrphanResource:
        return await self.orphans.mark_for_cleanup(db, owner_id, resource_id)

    async def cleanup_orphaned_resource(
        self,
        db: AsyncSession,
        owner_id: uuid.UUID,
        resource_id: str,
        force: bool = False,
    ) -> CleanupResult:
        return await self.orphans.cleanup(db, owner_id, resource_id, force)

    # Rightsizing

    async def analyze_rightsizing(
        self,
        db: AsyncSession,
        owner_id: uuid.UUID,
        resource_id: str,
        region: str | None = None,
        account_scope: uuid.UUID | None = None,
    ) -> RightsizingRecommendation | None:
        return await self.rightsizing.analyze(db, owner_id, resource_id, region, account_scope)

    async def list_rightsizing_recommendations(
        self,
        db: AsyncSession,
        owner_id: uuid.UUID,
        min_savings: float | None = None,
        confidence_threshold: int | None = None,
    ) -> list[RightsizingRecommendation]:
        return await self.rightsizing.list_recommendations(db, owner_id, min_savings, confidence_threshold)

    async def apply_rightsizing_recommendation(
        self,
        db: AsyncSession,
        owner_id: uuid.UUID,
        recommendation_id: uuid.UUID,
    ) -> RightsizingApplyResult:
        return await self.rightsizing.apply(db, owner_id, recommendation_id)

    # Sweeps

    async def run_orphan_detection_sweep(self) -> dict[str, int]:
        return await self.orphans.run_sweep()

    async def run_rightsizing_sweep(self) -> dict[str, int]:
        return await self.rightsizing.run_sweep()

    # Status

    async def get_lifecycle_summary(self, db: AsyncSession, owner_id: uuid.UUID) -> LifecycleSummary:
        active_schedules = await scheduled_action_crud.count_active_scheduled_actions(db, owner_id)
        orphans_by_status, open_cost = await orphan_crud.get_orphan_statistics(db, owner_id)
        pending_count, pending_savings = await rightsizing_crud.get_pending_summary(db, owner_id)
        return LifecycleSummary(
            active_schedules=active_schedules,
            orphans_by_status=orphans_by_status,
            open_orphan_monthly_cost=open_cost,
            pending_recommendations=pending_count,
            pending_recommendation_savings=pending_savings,
            credentials_configured=await self.credential_resolver.has_credentials(owner_id),
        )

    async def check_credentials(
        self,
        owner_id: uuid.UUID,
        account_scope: uuid.UUID | None = None,
    ) -> CredentialsCheck:
        try:
            credentials = await self.credential_resolver.resolve(owner_id, account_scope)
        except CredentialsMissing as e:
            return CredentialsCheck(configured=False, message=e.message)
        return CredentialsCheck(
            configured=True,
            cloud_account_id=credentials.account_id,
            regions=credentials.regions,
            message="AWS credentials configured",
        )


def build_lifecycle_coordinator() -> LifecycleCoordinator:
    """Coordinator wired to the application database and AWS."""
    return LifecycleCoordinator(AsyncSessionLocal)
