"""Tests for schedule management and execution through the coordinator."""

import asyncio
import uuid
from datetime import datetime, timezone

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError

from app.crud import lifecycle_action_log as action_log_crud
from app.crud import scheduled_action as scheduled_action_crud
from app.models.scheduled_action import ActionKind, ResourceKind
from app.schemas.scheduled_action import ScheduledActionCreate, ScheduledActionUpdate
from app.services.lifecycle_coordinator import (
    ORPHAN_SWEEP_JOB_ID,
    RECONCILE_JOB_ID,
    RIGHTSIZING_SWEEP_JOB_ID,
    LifecycleCoordinator,
)
from app.services.lifecycle_errors import InvalidState, NoCredentials, NotFoundOrUnauthorized, ProviderError
from app.services.schedule_registry import ScheduleRegistry

MONDAY_EVENING = datetime(2024, 1, 8, 17, 30, tzinfo=timezone.utc)


async def create_schedule(
    coordinator: LifecycleCoordinator,
    db,
    owner_id: uuid.UUID,
    resource_id: str = "i-abc",
    action_kind: ActionKind = ActionKind.SHUTDOWN,
    cron_expression: str = "0 18 * * 1-5",
    **fields,
):
    return await coordinator.schedule_action(
        db,
        owner_id,
        ScheduledActionCreate(
            resource_id=resource_id,
            action_kind=action_kind,
            cron_expression=cron_expression,
            **fields,
        ),
    )


async def assert_registry_matches_store(coordinator: LifecycleCoordinator, db) -> None:
    """Exactly the active schedules own a live timer."""
    active = await scheduled_action_crud.get_active_scheduled_actions(db)
    assert coordinator.registry.registered_ids() == {schedule.id for schedule in active}


class TestScheduleAction:
    """Creating schedules."""

    @pytest.mark.asyncio
    async def test_without_credentials_nothing_is_persisted(self, coordinator, db_session, owner_id):
        with pytest.raises(NoCredentials) as exc_info:
            await create_schedule(coordinator, db_session, owner_id)

        assert exc_info.value.code == "NO_AWS_CREDENTIALS"
        assert await coordinator.list_scheduled_actions(db_session, owner_id, include_inactive=True) == []
        assert coordinator.registry.registered_ids() == set()

    @pytest.mark.asyncio
    async def test_creates_and_registers(self, coordinator, db_session, owner_id, aws_account):
        schedule = await create_schedule(coordinator, db_session, owner_id)

        assert schedule.is_active is True
        assert schedule.resource_kind == ResourceKind.COMPUTE_INSTANCE.value
        assert schedule.name == "shutdown i-abc"
        assert schedule.action_params["kind"] == "shutdown"
        assert coordinator.registry.is_registered(schedule.id)
        await assert_registry_matches_store(coordinator, db_session)

    @pytest.mark.asyncio
    async def test_explicit_resource_kind_wins(self, coordinator, db_session, owner_id, aws_account):
        schedule = await create_schedule(
            coordinator,
            db_session,
            owner_id,
            resource_id="web-fleet",
            action_kind=ActionKind.SCALE_DOWN,
            resource_kind=ResourceKind.AUTOSCALING_GROUP,
        )

        assert schedule.resource_kind == ResourceKind.AUTOSCALING_GROUP.value

    @pytest.mark.asyncio
    async def test_unsupported_action_for_resource(self, coordinator, db_session, owner_id, aws_account):
        with pytest.raises(InvalidState):
            await create_schedule(
                coordinator,
                db_session,
                owner_id,
                resource_id="db-prod",
                action_kind=ActionKind.RESIZE,
                params={"target_instance_type": "db.t3.small"},
            )

        assert await coordinator.list_scheduled_actions(db_session, owner_id, include_inactive=True) == []

    def test_invalid_cron_is_rejected(self):
        with pytest.raises(ValidationError):
            ScheduledActionCreate(resource_id="i-1", action_kind=ActionKind.SHUTDOWN, cron_expression="every day")

    def test_cleanup_actions_cannot_be_scheduled(self):
        with pytest.raises(ValidationError):
            ScheduledActionCreate(resource_id="vol-1", action_kind=ActionKind.DELETE, cron_expression="0 1 * * *")

    def test_params_must_fit_action(self):
        with pytest.raises(ValidationError):
            ScheduledActionCreate(
                resource_id="i-1",
                action_kind=ActionKind.RESIZE,
                cron_expression="0 1 * * *",
                params={},
            )


class TestUpdateSchedule:
    @pytest.mark.asyncio
    async def test_cron_change_replaces_timer(self, coordinator, db_session, owner_id, aws_account):
        schedule = await create_schedule(coordinator, db_session, owner_id)

        updated = await coordinator.update_scheduled_action(
            db_session, owner_id, schedule.id, ScheduledActionUpdate(cron_expression="0 19 * * 1-5")
        )

        assert updated.cron_expression == "0 19 * * 1-5"
        job_ids = [job.id for job in coordinator.scheduler.get_jobs()]
        assert job_ids.count(ScheduleRegistry.job_id(schedule.id)) == 1
        next_fire = coordinator.registry.get_trigger(schedule.id).get_next_fire_time(None, MONDAY_EVENING)
        assert next_fire == datetime(2024, 1, 8, 19, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_other_owner_cannot_update(self, coordinator, db_session, owner_id, other_owner_id, aws_account):
        schedule = await create_schedule(coordinator, db_session, owner_id)

        with pytest.raises(NotFoundOrUnauthorized):
            await coordinator.update_scheduled_action(
                db_session, other_owner_id, schedule.id, ScheduledActionUpdate(cron_expression="0 3 * * *")
            )

        stored = await scheduled_action_crud.get_scheduled_action(db_session, schedule.id)
        assert stored.cron_expression == "0 18 * * 1-5"
        next_fire = coordinator.registry.get_trigger(schedule.id).get_next_fire_time(None, MONDAY_EVENING)
        assert next_fire == datetime(2024, 1, 8, 18, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_rename_keeps_timer(self, coordinator, db_session, owner_id, aws_account):
        schedule = await create_schedule(coordinator, db_session, owner_id)

        updated = await coordinator.update_scheduled_action(
            db_session, owner_id, schedule.id, ScheduledActionUpdate(name="Nightly stop")
        )

        assert updated.name == "Nightly stop"
        assert coordinator.registry.is_registered(schedule.id)

    @pytest.mark.asyncio
    async def test_invalid_params_are_rejected(self, coordinator, db_session, owner_id, aws_account):
        schedule = await create_schedule(coordinator, db_session, owner_id)

        with pytest.raises(InvalidState):
            await coordinator.update_scheduled_action(
                db_session, owner_id, schedule.id, ScheduledActionUpdate(params={"bogus": True})
            )

    @pytest.mark.asyncio
    async def test_change_action_kind(self, coordinator, db_session, owner_id, aws_account):
        schedule = await create_schedule(coordinator, db_session, owner_id)

        updated = await coordinator.update_scheduled_action(
            db_session, owner_id, schedule.id, ScheduledActionUpdate(action_kind=ActionKind.STARTUP)
        )

        assert updated.action_kind == "startup"
        assert updated.action_params == {"kind": "startup"}


class TestToggleAndCancel:
    @pytest.mark.asyncio
    async def test_toggle_pauses_and_resumes(self, coordinator, db_session, owner_id, aws_account):
        schedule = await create_schedule(coordinator, db_session, owner_id)

        paused = await coordinator.toggle_scheduled_action(db_session, owner_id, schedule.id)

        assert paused.is_active is False
        assert paused.message == "Scheduled action paused"
        assert not coordinator.registry.is_registered(schedule.id)
        await assert_registry_matches_store(coordinator, db_session)

        resumed = await coordinator.toggle_scheduled_action(db_session, owner_id, schedule.id)

        assert resumed.is_active is True
        assert resumed.message == "Scheduled action resumed"
        assert coordinator.registry.is_registered(schedule.id)
        await assert_registry_matches_store(coordinator, db_session)

    @pytest.mark.asyncio
    async def test_cancel_removes_timer(self, coordinator, db_session, owner_id, aws_account):
        schedule = await create_schedule(coordinator, db_session, owner_id)

        await coordinator.cancel_scheduled_action(db_session, owner_id, schedule.id)

        assert not coordinator.registry.is_registered(schedule.id)
        assert await coordinator.list_scheduled_actions(db_session, owner_id) == []
        (stored,) = await coordinator.list_scheduled_actions(db_session, owner_id, include_inactive=True)
        assert stored.is_active is False
        await assert_registry_matches_store(coordinator, db_session)

    @pytest.mark.asyncio
    async def test_other_owner_cannot_cancel(self, coordinator, db_session, owner_id, other_owner_id, aws_account):
        schedule = await create_schedule(coordinator, db_session, owner_id)

        with pytest.raises(NotFoundOrUnauthorized):
            await coordinator.cancel_scheduled_action(db_session, other_owner_id, schedule.id)

        assert coordinator.registry.is_registered(schedule.id)
        stored = await scheduled_action_crud.get_scheduled_action(db_session, schedule.id)
        assert stored.is_active is True

    @pytest.mark.asyncio
    async def test_toggle_unknown_schedule(self, coordinator, db_session, owner_id):
        with pytest.raises(NotFoundOrUnauthorized):
            await coordinator.toggle_scheduled_action(db_session, owner_id, uuid.uuid4())


class TestRegistryRecovery:
    """Timers are rebuilt from the store and drift is repaired."""

    @pytest.mark.asyncio
    async def test_rebuild_after_restart(self, coordinator, session_maker, provider_factory, db_session, owner_id, aws_account):
        schedule = await create_schedule(coordinator, db_session, owner_id)
        paused = await create_schedule(coordinator, db_session, owner_id, resource_id="i-def")
        await coordinator.toggle_scheduled_action(db_session, owner_id, paused.id)

        scheduler = AsyncIOScheduler(timezone=timezone.utc)
        scheduler.start(paused=True)
        try:
            restarted = LifecycleCoordinator(session_maker, scheduler=scheduler, provider_factory=provider_factory)

            assert await restarted.rebuild_registry() == 1
            assert restarted.registry.registered_ids() == {schedule.id}
        finally:
            scheduler.shutdown(wait=False)

    @pytest.mark.asyncio
    async def test_reconcile_repairs_drift(self, coordinator, db_session, owner_id, aws_account):
        lost = await create_schedule(coordinator, db_session, owner_id)
        stale = await create_schedule(coordinator, db_session, owner_id, resource_id="i-def")

        coordinator.scheduler.remove_job(ScheduleRegistry.job_id(lost.id))
        await scheduled_action_crud.set_scheduled_action_active(db_session, stale.id, owner_id, False)

        assert await coordinator.reconcile_registry() == {"installed": 1, "dropped": 1}
        assert coordinator.registry.registered_ids() == {lost.id}
        assert await coordinator.reconcile_registry() == {"installed": 0, "dropped": 0}

    @pytest.mark.asyncio
    async def test_start_installs_sweeps(self, session_maker, provider_factory, db_session, owner_id, aws_account):
        scheduler = AsyncIOScheduler(timezone=timezone.utc)
        coordinator = LifecycleCoordinator(session_maker, scheduler=scheduler, provider_factory=provider_factory)
        await create_schedule(coordinator, db_session, owner_id)
        coordinator.scheduler.remove_all_jobs()

        await coordinator.start()
        try:
            assert scheduler.running
            for job_id in (ORPHAN_SWEEP_JOB_ID, RIGHTSIZING_SWEEP_JOB_ID, RECONCILE_JOB_ID):
                assert scheduler.get_job(job_id) is not None
            assert len(coordinator.registry.registered_ids()) == 1
        finally:
            await coordinator.shutdown()

        # AsyncIOScheduler stops on the next loop iteration
        await asyncio.sleep(0)
        assert not scheduler.running


class TestExecuteScheduledAction:
    """One timer tick."""

    @pytest.mark.asyncio
    async def test_stops_instance_and_records_run(self, coordinator, db_session, owner_id, aws_account, fake_provider):
        fake_provider.add_instance("i-abc", state="running")
        schedule = await create_schedule(coordinator, db_session, owner_id)

        outcome = await coordinator.execute_scheduled_action(schedule.id)

        assert outcome.success is True
        assert fake_provider.instances["i-abc"]["state"] == "stopped"

        stored = await scheduled_action_crud.get_scheduled_action(db_session, schedule.id)
        assert stored.last_run_status == "success"
        assert stored.last_run_at is not None

        (log,) = await action_log_crud.list_action_logs(db_session, owner_id)
        assert log.schedule_id == schedule.id
        assert log.trigger == "schedule"
        assert log.status == "success"
        assert log.details["attempts"] == 1

    @pytest.mark.asyncio
    async def test_already_stopped_is_skipped(self, coordinator, db_session, owner_id, aws_account, fake_provider):
        fake_provider.add_instance("i-abc", state="stopped")
        schedule = await create_schedule(coordinator, db_session, owner_id)

        outcome = await coordinator.execute_scheduled_action(schedule.id)

        assert outcome.skipped is True
        stored = await scheduled_action_crud.get_scheduled_action(db_session, schedule.id)
        assert stored.last_run_status == "skipped"

    @pytest.mark.asyncio
    async def test_inactive_schedule_loses_its_timer(self, coordinator, db_session, owner_id, aws_account, fake_provider):
        fake_provider.add_instance("i-abc", state="running")
        schedule = await create_schedule(coordinator, db_session, owner_id)
        await scheduled_action_crud.set_scheduled_action_active(db_session, schedule.id, owner_id, False)

        assert await coordinator.execute_scheduled_action(schedule.id) is None

        assert not coordinator.registry.is_registered(schedule.id)
        assert fake_provider.called("stop_instance") == []

    @pytest.mark.asyncio
    async def test_unknown_schedule(self, coordinator):
        assert await coordinator.execute_scheduled_action(uuid.uuid4()) is None

    @pytest.mark.asyncio
    async def test_provider_errors_are_retried(self, coordinator, db_session, owner_id, aws_account, fake_provider):
        fake_provider.add_instance("i-abc", state="running")
        fake_provider.failures["stop_instance"] = [
            ProviderError("Throttled", provider_code="RequestLimitExceeded"),
            ProviderError("Throttled", provider_code="RequestLimitExceeded"),
        ]
        schedule = await create_schedule(coordinator, db_session, owner_id)

        outcome = await coordinator.execute_scheduled_action(schedule.id)

        assert outcome.success is True
        assert outcome.details["attempts"] == 3
        assert len(fake_provider.called("stop_instance")) == 3

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self, coordinator, db_session, owner_id, aws_account, fake_provider):
        fake_provider.add_instance("i-abc", state="running")
        fake_provider.failures["stop_instance"] = [ProviderError("Unavailable") for _ in range(5)]
        schedule = await create_schedule(coordinator, db_session, owner_id)

        outcome = await coordinator.execute_scheduled_action(schedule.id)

        assert outcome.success is False
        assert outcome.error_code == "PROVIDER_ERROR"
        assert outcome.details["attempts"] == coordinator.max_attempts
        stored = await scheduled_action_crud.get_scheduled_action(db_session, schedule.id)
        assert stored.last_run_status == "failed"

    @pytest.mark.asyncio
    async def test_invalid_state_is_not_retried(self, coordinator, db_session, owner_id, aws_account, fake_provider):
        fake_provider.add_instance("i-abc", state="pending")
        schedule = await create_schedule(coordinator, db_session, owner_id)

        outcome = await coordinator.execute_scheduled_action(schedule.id)

        assert outcome.error_code == "INVALID_STATE"
        assert outcome.details["attempts"] == 1

    @pytest.mark.asyncio
    async def test_resize_retry_after_failed_modify(self, coordinator, db_session, owner_id, aws_account, fake_provider):
        fake_provider.add_instance("i-abc", state="running", instance_type="t3.large")
        fake_provider.failures["modify_instance_type"] = [ProviderError("Throttled", provider_code="RequestLimitExceeded")]
        schedule = await create_schedule(
            coordinator,
            db_session,
            owner_id,
            action_kind=ActionKind.RESIZE,
            params={"target_instance_type": "t3.medium"},
        )

        outcome = await coordinator.execute_scheduled_action(schedule.id)

        assert outcome.success is True
        assert outcome.details["attempts"] == 2
        assert fake_provider.instances["i-abc"]["state"] == "running"
        assert fake_provider.instances["i-abc"]["instance_type"] == "t3.medium"

    @pytest.mark.asyncio
    async def test_resize_retry_restarts_instance_left_stopped(
        self, coordinator, db_session, owner_id, aws_account, fake_provider
    ):
        fake_provider.add_instance("i-abc", state="running", instance_type="t3.large")
        fake_provider.failures["modify_instance_type"] = [ProviderError("Throttled", provider_code="RequestLimitExceeded")]
        fake_provider.failures["start_instance"] = [ProviderError("Insufficient capacity")]
        schedule = await create_schedule(
            coordinator,
            db_session,
            owner_id,
            action_kind=ActionKind.RESIZE,
            params={"target_instance_type": "t3.medium"},
        )

        outcome = await coordinator.execute_scheduled_action(schedule.id)

        assert outcome.success is True
        assert outcome.details["attempts"] == 2
        assert fake_provider.instances["i-abc"] == {"state": "running", "instance_type": "t3.medium", "name": "i-abc"}
        stored = await scheduled_action_crud.get_scheduled_action(db_session, schedule.id)
        assert "restart_after" not in stored.action_params

    @pytest.mark.asyncio
    async def test_scale_up_restores_captured_capacity(
        self, coordinator, db_session, owner_id, aws_account, fake_provider
    ):
        fake_provider.groups["asg-web"] = {"min_size": 2, "max_size": 4, "desired_capacity": 3}
        down = await create_schedule(
            coordinator, db_session, owner_id, resource_id="asg-web", action_kind=ActionKind.SCALE_DOWN
        )
        up = await create_schedule(
            coordinator,
            db_session,
            owner_id,
            resource_id="asg-web",
            action_kind=ActionKind.SCALE_UP,
            cron_expression="0 8 * * 1-5",
        )

        await coordinator.execute_scheduled_action(down.id)

        assert fake_provider.groups["asg-web"] == {"min_size": 0, "max_size": 4, "desired_capacity": 0}
        stored = await scheduled_action_crud.get_scheduled_action(db_session, down.id)
        assert stored.action_params["prior_capacity"] == {"min_size": 2, "max_size": 4, "desired": 3}

        outcome = await coordinator.execute_scheduled_action(up.id)

        assert outcome.success is True
        assert fake_provider.groups["asg-web"] == {"min_size": 2, "max_size": 4, "desired_capacity": 3}

    @pytest.mark.asyncio
    async def test_invalid_stored_params(self, coordinator, db_session, owner_id, aws_account, fake_provider):
        schedule = await create_schedule(coordinator, db_session, owner_id)
        await scheduled_action_crud.update_scheduled_action(
            db_session, schedule.id, owner_id, {"action_params": {"bogus": True}}
        )

        outcome = await coordinator.execute_scheduled_action(schedule.id)

        assert outcome.error_code == "INVALID_STATE"
        assert fake_provider.calls == []
        stored = await scheduled_action_crud.get_scheduled_action(db_session, schedule.id)
        assert stored.last_run_status == "failed"
