"""Resource lifecycle API endpoints: schedules, orphans, rightsizing and automation."""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_coordinator, get_current_owner_id, get_current_superuser, get_db
from app.core.rate_limit import automation_limit, orphan_detection_limit
from app.models.scheduled_action import ActionKind
from app.schemas.lifecycle import (
    CredentialsCheck,
    LifecycleActionLog,
    LifecycleSummary,
    SweepTriggered,
)
from app.schemas.orphan_resource import (
    CleanupResult,
    OrphanDetectionRequest,
    OrphanDetectionResult,
    OrphanResource,
)
from app.schemas.rightsizing import (
    RightsizingAnalyzeRequest,
    RightsizingApplyResult,
    RightsizingRecommendation,
)
from app.schemas.scheduled_action import (
    EnvironmentScheduleRequest,
    EnvironmentScheduleResult,
    ScheduledAction,
    ScheduledActionCreate,
    ScheduledActionUpdate,
    ScheduleToggleResponse,
)
from app.services.lifecycle_coordinator import LifecycleCoordinator
from app.services.lifecycle_errors import (
    CredentialsMissing,
    HighRiskRequiresForce,
    InvalidState,
    LifecycleError,
    NotFoundOrUnauthorized,
    ProviderError,
    ResizeTimedOut,
    ResourceNotFound,
    Unauthorized,
)
from app.workers.tasks import run_orphan_detection_sweep, run_rightsizing_sweep

router = APIRouter()

OwnerId = Annotated[uuid.UUID, Depends(get_current_owner_id)]
SuperuserId = Annotated[uuid.UUID, Depends(get_current_superuser)]
Database = Annotated[AsyncSession, Depends(get_db)]
Coordinator = Annotated[LifecycleCoordinator, Depends(get_coordinator)]

_ERROR_STATUS: list[tuple[type[LifecycleError], int]] = [
    (CredentialsMissing, status.HTTP_400_BAD_REQUEST),
    (NotFoundOrUnauthorized, status.HTTP_404_NOT_FOUND),
    (ResourceNotFound, status.HTTP_404_NOT_FOUND),
    (InvalidState, status.HTTP_409_CONFLICT),
    (Unauthorized, status.HTTP_403_FORBIDDEN),
    (ResizeTimedOut, status.HTTP_504_GATEWAY_TIMEOUT),
    (ProviderError, status.HTTP_502_BAD_GATEWAY),
]


def lifecycle_http_error(error: LifecycleError) -> HTTPException:
    """Translate a lifecycle error into an HTTP error carrying its code."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, mapped_status in _ERROR_STATUS:
        if isinstance(error, error_type):
            status_code = mapped_status
            break
    return HTTPException(
        status_code=status_code,
        detail={"error_code": error.code, "message": error.message},
    )


# Scheduled actions


@router.post("/schedules", response_model=ScheduledAction, status_code=status.HTTP_201_CREATED)
async def create_schedule(
    schedule_in: ScheduledActionCreate,
    db: Database,
    owner_id: OwnerId,
    coordinator: Coordinator,
) -> ScheduledAction:
    """
    Schedule a recurring action on a resource.

    Fails with 400 ``NO_AWS_CREDENTIALS`` before anything is stored when the
    caller has no usable credentials.
    """
    try:
        return await coordinator.schedule_action(db, owner_id, schedule_in)
    except LifecycleError as e:
        raise lifecycle_http_error(e)


@router.post(
    "/schedules/environment",
    response_model=EnvironmentScheduleResult,
    status_code=status.HTTP_201_CREATED,
)
async def create_environment_schedules(
    request_in: EnvironmentScheduleRequest,
    db: Database,
    owner_id: OwnerId,
    coordinator: Coordinator,
) -> EnvironmentScheduleResult:
    """
    Schedule shutdown and/or startup for every instance tagged with one of the
    requested environments (``Environment=dev`` and so on).

    Instances that already have the same schedule are reported in ``skipped``.
    """
    try:
        return await coordinator.schedule_environment_actions(db, owner_id, request_in)
    except LifecycleError as e:
        raise lifecycle_http_error(e)


@router.get("/schedules", response_model=list[ScheduledAction])
async def list_schedules(
    db: Database,
    owner_id: OwnerId,
    coordinator: Coordinator,
    resource_id: str | None = Query(None),
    action_kind: ActionKind | None = Query(None),
    include_inactive: bool = Query(False),
) -> list[ScheduledAction]:
    return await coordinator.list_scheduled_actions(db, owner_id, resource_id, action_kind, include_inactive)


@router.put("/schedules/{schedule_id}", response_model=ScheduledAction)
async def update_schedule(
    schedule_id: uuid.UUID,
    schedule_update: ScheduledActionUpdate,
    db: Database,
    owner_id: OwnerId,
    coordinator: Coordinator,
) -> ScheduledAction:
    try:
        return await coordinator.update_scheduled_action(db, owner_id, schedule_id, schedule_update)
    except LifecycleError as e:
        raise lifecycle_http_error(e)


@router.patch("/schedules/{schedule_id}/toggle", response_model=ScheduleToggleResponse)
async def toggle_schedule(
    schedule_id: uuid.UUID,
    db: Database,
    owner_id: OwnerId,
    coordinator: Coordinator,
) -> ScheduleToggleResponse:
    """Pause an active schedule or resume a paused one."""
    try:
        return await coordinator.toggle_scheduled_action(db, owner_id, schedule_id)
    except LifecycleError as e:
        raise lifecycle_http_error(e)


@router.delete("/schedules/{schedule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_schedule(
    schedule_id: uuid.UUID,
    db: Database,
    owner_id: OwnerId,
    coordinator: Coordinator,
) -> None:
    try:
        await coordinator.cancel_scheduled_action(db, owner_id, schedule_id)
    except LifecycleError as e:
        raise lifecycle_http_error(e)


@router.get("/actions", response_model=list[LifecycleActionLog])
async def list_action_log(
    db: Database,
    owner_id: OwnerId,
    coordinator: Coordinator,
    resource_id: str | None = Query(None),
    schedule_id: uuid.UUID | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
) -> list[LifecycleActionLog]:
    """Most recent executed actions, newest first."""
    return await coordinator.list_action_logs(db, owner_id, resource_id, schedule_id, limit)


# Orphaned resources


@router.post("/orphans/detect", response_model=OrphanDetectionResult)
@orphan_detection_limit
async def detect_orphans(
    request: Request,
    response: Response,
    detection_in: OrphanDetectionRequest,
    db: Database,
    owner_id: OwnerId,
    coordinator: Coordinator,
) -> OrphanDetectionResult:
    """
    Scan the caller's account for orphaned resources.

    Stored orphans that the scan no longer reports are removed; cleaned
    orphans are kept as history.
    """
    try:
        return await coordinator.detect_orphaned_resources(
            db, owner_id, detection_in.cloud_account_id, detection_in.service
        )
    except LifecycleError as e:
        raise lifecycle_http_error(e)


@router.get("/orphans", response_model=list[OrphanResource])
async def list_orphans(
    db: Database,
    owner_id: OwnerId,
    coordinator: Coordinator,
    service: str | None = Query(None),
    orphan_type: str | None = Query(None),
    min_savings: float | None = Query(None, ge=0),
    include_cleaned: bool = Query(False),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
) -> list[OrphanResource]:
    return await coordinator.list_orphaned_resources(
        db, owner_id, service, orphan_type, min_savings, include_cleaned, skip, limit
    )


@router.post("/orphans/{resource_id}/schedule-cleanup", response_model=OrphanResource)
async def schedule_orphan_cleanup(
    resource_id: str,
    db: Database,
    owner_id: OwnerId,
    coordinator: Coordinator,
) -> OrphanResource:
    try:
        return await coordinator.mark_orphan_for_cleanup(db, owner_id, resource_id)
    except LifecycleError as e:
        raise lifecycle_http_error(e)


@router.delete("/orphans/{resource_id}", response_model=CleanupResult)
async def cleanup_orphan(
    resource_id: str,
    db: Database,
    owner_id: OwnerId,
    coordinator: Coordinator,
    force: bool = Query(False, description="Required for high-risk resources"),
) -> CleanupResult:
    """
    Delete or release an orphaned resource.

    High-risk resources are rejected with 409 unless ``force=true``.
    """
    try:
        result = await coordinator.cleanup_orphaned_resource(db, owner_id, resource_id, force)
    except LifecycleError as e:
        raise lifecycle_http_error(e)

    if result.error_code == HighRiskRequiresForce.code:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "error_code": result.error_code,
                "message": result.message,
                "risk_level": result.risk_level,
            },
        )
    return result


# Rightsizing


@router.post("/rightsizing/analyze", response_model=RightsizingRecommendation | None)
async def analyze_rightsizing(
    analyze_in: RightsizingAnalyzeRequest,
    db: Database,
    owner_id: OwnerId,
    coordinator: Coordinator,
) -> RightsizingRecommendation | None:
    """Analyze one instance; ``null`` when no downsize is warranted."""
    try:
        return await coordinator.analyze_rightsizing(
            db, owner_id, analyze_in.resource_id, analyze_in.region, analyze_in.cloud_account_id
        )
    except LifecycleError as e:
        raise lifecycle_http_error(e)


@router.get("/rightsizing/recommendations", response_model=list[RightsizingRecommendation])
async def list_rightsizing_recommendations(
    db: Database,
    owner_id: OwnerId,
    coordinator: Coordinator,
    min_savings: float | None = Query(None, ge=0),
    confidence_threshold: int | None = Query(None, ge=0, le=100),
) -> list[RightsizingRecommendation]:
    return await coordinator.list_rightsizing_recommendations(db, owner_id, min_savings, confidence_threshold)


@router.post("/rightsizing/recommendations/{recommendation_id}/apply", response_model=RightsizingApplyResult)
async def apply_rightsizing_recommendation(
    recommendation_id: uuid.UUID,
    db: Database,
    owner_id: OwnerId,
    coordinator: Coordinator,
) -> RightsizingApplyResult:
    try:
        return await coordinator.apply_rightsizing_recommendation(db, owner_id, recommendation_id)
    except LifecycleError as e:
        raise lifecycle_http_error(e)


# Automation (manual sweeps on the worker)


@router.post("/automation/orphan-detection", response_model=SweepTriggered, status_code=status.HTTP_202_ACCEPTED)
@automation_limit
async def trigger_orphan_detection(
    request: Request,
    response: Response,
    _: SuperuserId,
) -> SweepTriggered:
    """Queue an orphan detection sweep across all accounts (superuser only)."""
    task = run_orphan_detection_sweep.delay()
    return SweepTriggered(task_id=task.id, sweep="orphan_detection")


@router.post("/automation/rightsizing", response_model=SweepTriggered, status_code=status.HTTP_202_ACCEPTED)
@automation_limit
async def trigger_rightsizing(
    request: Request,
    response: Response,
    _: SuperuserId,
) -> SweepTriggered:
    """Queue a rightsizing sweep across all accounts (superuser only)."""
    task = run_rightsizing_sweep.delay()
    return SweepTriggered(task_id=task.id, sweep="rightsizing")


# Status


@router.get("/status", response_model=LifecycleSummary)
async def get_lifecycle_status(
    db: Database,
    owner_id: OwnerId,
    coordinator: Coordinator,
) -> LifecycleSummary:
    return await coordinator.get_lifecycle_summary(db, owner_id)


@router.get("/credentials/check", response_model=CredentialsCheck)
async def check_credentials(
    owner_id: OwnerId,
    coordinator: Coordinator,
    cloud_account_id: uuid.UUID | None = Query(None),
) -> CredentialsCheck:
    return await coordinator.check_credentials(owner_id, cloud_account_id)
