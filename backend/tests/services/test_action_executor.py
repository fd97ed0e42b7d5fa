"""Tests for the action executor and per-resource locking."""

import asyncio
import uuid
from unittest.mock import AsyncMock

import pytest

from app.models.scheduled_action import ActionKind, ResourceKind
from app.schemas.action_params import (
    CapacitySnapshot,
    ResizeParams,
    ScaleDownParams,
    ScaleUpParams,
    ShutdownParams,
    StartupParams,
    TerminateParams,
)
from app.schemas.cloud_account import AWSCredentials
from app.services.action_executor import (
    ActionExecutor,
    ResourceLockManager,
    ensure_supported,
    infer_resource_kind,
)
from app.services.credential_resolver import CredentialResolver
from app.services.lifecycle_errors import CredentialsMissing, InvalidState, ProviderError
from tests.fakes import FakeResourceControl


@pytest.fixture
def executor(stub_resolver, provider_factory) -> ActionExecutor:
    return ActionExecutor(stub_resolver, provider_factory, resize_timeout=1, poll_interval=0.01)


async def run(executor, resource_id, params, kind=ResourceKind.COMPUTE_INSTANCE):
    return await executor.execute(resource_id, params, owner_id=uuid.uuid4(), resource_kind=kind)


class TestResourceKinds:
    """Identifier inference and the supported action matrix."""

    @pytest.mark.parametrize(
        "resource_id,expected",
        [
            ("i-0abc123", ResourceKind.COMPUTE_INSTANCE),
            ("db-prod-1", ResourceKind.DATABASE_INSTANCE),
            ("asg-web", ResourceKind.AUTOSCALING_GROUP),
            ("web-autoscaling", ResourceKind.AUTOSCALING_GROUP),
            ("ecs-api", ResourceKind.CONTAINER_SERVICE),
            ("billing-service", ResourceKind.CONTAINER_SERVICE),
            ("vol-0123", ResourceKind.VOLUME),
            ("eipalloc-0123", ResourceKind.ELASTIC_IP),
            ("eni-0123", ResourceKind.NETWORK_INTERFACE),
            ("something-else", ResourceKind.COMPUTE_INSTANCE),
        ],
    )
    def test_infer_resource_kind(self, resource_id, expected):
        assert infer_resource_kind(resource_id) == expected

    def test_resize_not_supported_for_databases(self):
        with pytest.raises(InvalidState):
            ensure_supported(ResourceKind.DATABASE_INSTANCE, ActionKind.RESIZE)

    def test_shutdown_supported_for_groups(self):
        ensure_supported(ResourceKind.AUTOSCALING_GROUP, ActionKind.SHUTDOWN)


class TestComputeInstances:
    """Stop, start, resize and terminate."""

    @pytest.mark.asyncio
    async def test_stop_running_instance(self, executor, fake_provider):
        fake_provider.add_instance("i-1", state="running")

        outcome = await run(executor, "i-1", ShutdownParams())

        assert outcome.success is True
        assert outcome.skipped is False
        assert fake_provider.instances["i-1"]["state"] == "stopped"
        assert fake_provider.called("stop_instance") == [("i-1", False)]

    @pytest.mark.asyncio
    async def test_stop_already_stopped_is_skipped(self, executor, fake_provider):
        fake_provider.add_instance("i-1", state="stopped")

        outcome = await run(executor, "i-1", ShutdownParams())

        assert outcome.success is True
        assert outcome.skipped is True
        assert fake_provider.called("stop_instance") == []

    @pytest.mark.asyncio
    async def test_stop_transitional_state_is_invalid(self, executor, fake_provider):
        fake_provider.add_instance("i-1", state="pending")

        outcome = await run(executor, "i-1", ShutdownParams())

        assert outcome.success is False
        assert outcome.error_code == "INVALID_STATE"

    @pytest.mark.asyncio
    async def test_stop_with_tags(self, executor, fake_provider):
        fake_provider.add_instance("i-1")

        await run(executor, "i-1", ShutdownParams(add_tags=True))

        (resource_id, tags), = fake_provider.called("tag_resource")
        assert resource_id == "i-1"
        assert "LifecycleShutdownAt" in tags

    @pytest.mark.asyncio
    async def test_start_stopped_instance(self, executor, fake_provider):
        fake_provider.add_instance("i-1", state="stopped")

        outcome = await run(executor, "i-1", StartupParams())

        assert outcome.success is True
        assert fake_provider.instances["i-1"]["state"] == "running"

    @pytest.mark.asyncio
    async def test_resize_running_instance_restarts_it(self, executor, fake_provider):
        fake_provider.add_instance("i-1", state="running", instance_type="t3.large")

        outcome = await run(executor, "i-1", ResizeParams(target_instance_type="t3.medium"))

        assert outcome.success is True
        assert outcome.details["restarted"] is True
        assert fake_provider.instances["i-1"] == {"state": "running", "instance_type": "t3.medium", "name": "i-1"}
        methods = [name for name, _ in fake_provider.calls if name != "describe_instance"]
        assert methods == ["stop_instance", "modify_instance_type", "start_instance"]

    @pytest.mark.asyncio
    async def test_resize_stopped_instance_stays_stopped(self, executor, fake_provider):
        fake_provider.add_instance("i-1", state="stopped", instance_type="t3.large")

        outcome = await run(executor, "i-1", ResizeParams(target_instance_type="t3.medium"))

        assert outcome.details["restarted"] is False
        assert fake_provider.instances["i-1"]["state"] == "stopped"
        assert fake_provider.called("start_instance") == []

    @pytest.mark.asyncio
    async def test_resize_to_same_type_is_skipped(self, executor, fake_provider):
        fake_provider.add_instance("i-1", instance_type="t3.medium")

        outcome = await run(executor, "i-1", ResizeParams(target_instance_type="t3.medium"))

        assert outcome.skipped is True
        assert fake_provider.called("modify_instance_type") == []

    @pytest.mark.asyncio
    async def test_resize_failure_restarts_running_instance(self, executor, fake_provider):
        fake_provider.add_instance("i-1", state="running", instance_type="t3.large")
        fake_provider.failures["modify_instance_type"] = [ProviderError("Throttled", provider_code="RequestLimitExceeded")]

        outcome = await run(executor, "i-1", ResizeParams(target_instance_type="t3.medium"))

        assert outcome.success is False
        assert outcome.error_code == "PROVIDER_ERROR"
        assert outcome.details["restart_pending"] is True
        assert outcome.details["restarted"] is True
        assert fake_provider.instances["i-1"] == {"state": "running", "instance_type": "t3.large", "name": "i-1"}

    @pytest.mark.asyncio
    async def test_failed_restart_is_reported_and_recovered(self, executor, fake_provider):
        fake_provider.add_instance("i-1", state="running", instance_type="t3.large")
        fake_provider.failures["modify_instance_type"] = [ProviderError("Throttled", provider_code="RequestLimitExceeded")]
        fake_provider.failures["start_instance"] = [ProviderError("Insufficient capacity")]

        failed = await run(executor, "i-1", ResizeParams(target_instance_type="t3.medium"))

        assert failed.details["restart_pending"] is True
        assert failed.details["restarted"] is False
        assert fake_provider.instances["i-1"]["state"] == "stopped"

        # The instance now looks stopped; the retry still has to bring it back
        retried = await run(executor, "i-1", ResizeParams(target_instance_type="t3.medium", restart_after=True))

        assert retried.success is True
        assert retried.details["restarted"] is True
        assert fake_provider.instances["i-1"] == {"state": "running", "instance_type": "t3.medium", "name": "i-1"}

    @pytest.mark.asyncio
    async def test_resize_of_stopped_instance_does_not_restart_on_failure(self, executor, fake_provider):
        fake_provider.add_instance("i-1", state="stopped", instance_type="t3.large")
        fake_provider.failures["modify_instance_type"] = [ProviderError("Throttled")]

        outcome = await run(executor, "i-1", ResizeParams(target_instance_type="t3.medium"))

        assert outcome.details["restart_pending"] is False
        assert "restarted" not in outcome.details
        assert fake_provider.called("start_instance") == []

    @pytest.mark.asyncio
    async def test_same_type_with_restart_after_starts_stopped_instance(self, executor, fake_provider):
        fake_provider.add_instance("i-1", state="stopped", instance_type="t3.medium")

        outcome = await run(executor, "i-1", ResizeParams(target_instance_type="t3.medium", restart_after=True))

        assert outcome.success is True
        assert outcome.skipped is False
        assert fake_provider.instances["i-1"]["state"] == "running"
        assert fake_provider.called("modify_instance_type") == []

    @pytest.mark.asyncio
    async def test_resize_wait_is_bounded(self, stub_resolver, provider_factory, fake_provider):
        """An instance that never reaches 'stopped' times out instead of hanging."""
        fake_provider.add_instance("i-1", state="running", instance_type="t3.large")
        fake_provider.stop_settles = False
        executor = ActionExecutor(stub_resolver, provider_factory, resize_timeout=0.05, poll_interval=0.01)

        outcome = await run(executor, "i-1", ResizeParams(target_instance_type="t3.medium"))

        assert outcome.success is False
        assert outcome.error_code == "RESIZE_TIMED_OUT"
        assert fake_provider.called("modify_instance_type") == []

    @pytest.mark.asyncio
    async def test_terminate_requires_force(self, executor, fake_provider):
        fake_provider.add_instance("i-1", state="stopped")

        outcome = await run(executor, "i-1", TerminateParams())

        assert outcome.error_code == "INVALID_STATE"
        assert fake_provider.called("terminate_instance") == []

    @pytest.mark.asyncio
    async def test_terminate_with_force(self, executor, fake_provider):
        fake_provider.add_instance("i-1", state="stopped")

        outcome = await run(executor, "i-1", TerminateParams(force=True))

        assert outcome.success is True
        assert fake_provider.instances["i-1"]["state"] == "terminated"


class TestDatabases:
    @pytest.mark.asyncio
    async def test_stop_with_snapshot(self, executor, fake_provider):
        fake_provider.databases["db-1"] = {"status": "available", "instance_class": "db.t3.micro", "engine": "postgres"}

        outcome = await run(executor, "db-1", ShutdownParams(create_snapshot=True), ResourceKind.DATABASE_INSTANCE)

        assert outcome.success is True
        (db_id, snapshot_id), = fake_provider.called("stop_db_instance")
        assert snapshot_id.startswith("db-1-lifecycle-")

    @pytest.mark.asyncio
    async def test_start_available_database_is_skipped(self, executor, fake_provider):
        fake_provider.databases["db-1"] = {"status": "available", "instance_class": "db.t3.micro", "engine": "postgres"}

        outcome = await run(executor, "db-1", StartupParams(), ResourceKind.DATABASE_INSTANCE)

        assert outcome.skipped is True


class TestCapacity:
    """Groups and services remember their capacity across a scale-down."""

    @pytest.mark.asyncio
    async def test_scale_group_down_captures_prior_capacity(self, executor, fake_provider):
        fake_provider.groups["asg-web"] = {"min_size": 2, "max_size": 4, "desired_capacity": 3}

        outcome = await run(executor, "asg-web", ScaleDownParams(), ResourceKind.AUTOSCALING_GROUP)

        assert outcome.success is True
        assert outcome.prior_capacity == CapacitySnapshot(min_size=2, max_size=4, desired=3)
        assert fake_provider.groups["asg-web"] == {"min_size": 0, "max_size": 4, "desired_capacity": 0}

    @pytest.mark.asyncio
    async def test_scale_group_up_restores_capacity(self, executor, fake_provider):
        fake_provider.groups["asg-web"] = {"min_size": 0, "max_size": 4, "desired_capacity": 0}
        params = ScaleUpParams(restore_capacity=CapacitySnapshot(min_size=2, max_size=4, desired=3))

        outcome = await run(executor, "asg-web", params, ResourceKind.AUTOSCALING_GROUP)

        assert outcome.success is True
        assert fake_provider.groups["asg-web"] == {"min_size": 2, "max_size": 4, "desired_capacity": 3}

    @pytest.mark.asyncio
    async def test_scale_group_up_without_snapshot(self, executor, fake_provider):
        fake_provider.groups["asg-web"] = {"min_size": 0, "max_size": 4, "desired_capacity": 0}

        outcome = await run(executor, "asg-web", ScaleUpParams(), ResourceKind.AUTOSCALING_GROUP)

        assert outcome.error_code == "INVALID_STATE"
        assert fake_provider.called("update_autoscaling_group") == []

    @pytest.mark.asyncio
    async def test_service_scale_down_and_up(self, executor, fake_provider):
        fake_provider.services[("prod", "api")] = {"desired_count": 4, "running_count": 4, "status": "ACTIVE"}

        down = await run(executor, "prod/api", ShutdownParams(), ResourceKind.CONTAINER_SERVICE)

        assert down.prior_capacity == CapacitySnapshot(desired=4)
        assert fake_provider.services[("prod", "api")]["desired_count"] == 0

        up = await run(
            executor,
            "api",
            StartupParams(cluster="prod", restore_capacity=down.prior_capacity),
            ResourceKind.CONTAINER_SERVICE,
        )

        assert up.success is True
        assert fake_provider.services[("prod", "api")]["desired_count"] == 4


class TestFailures:
    """Expected failures come back as outcomes, never as exceptions."""

    @pytest.mark.asyncio
    async def test_missing_credentials(self, stub_resolver, provider_factory):
        stub_resolver.resolve.side_effect = CredentialsMissing()
        executor = ActionExecutor(stub_resolver, provider_factory)

        outcome = await run(executor, "i-1", ShutdownParams())

        assert outcome.success is False
        assert outcome.error_code == "NO_AWS_CREDENTIALS"

    @pytest.mark.asyncio
    async def test_missing_resource(self, executor):
        outcome = await run(executor, "i-missing", ShutdownParams())

        assert outcome.error_code == "RESOURCE_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_provider_error_keeps_native_code(self, executor, fake_provider):
        fake_provider.add_instance("i-1")
        fake_provider.failures["stop_instance"] = [ProviderError("Throttled", provider_code="RequestLimitExceeded")]

        outcome = await run(executor, "i-1", ShutdownParams())

        assert outcome.error_code == "PROVIDER_ERROR"
        assert outcome.provider_code == "RequestLimitExceeded"
        assert outcome.is_retryable is True

    @pytest.mark.asyncio
    async def test_unsupported_pair(self, executor, fake_provider):
        outcome = await run(executor, "vol-1", ShutdownParams(), ResourceKind.VOLUME)

        assert outcome.error_code == "INVALID_STATE"
        assert fake_provider.calls == []


class TestRegionLookup:
    """Resources without an explicit region are found across the account's regions."""

    @pytest.fixture
    def regional(self) -> dict[str, FakeResourceControl]:
        return {"us-east-1": FakeResourceControl("us-east-1"), "eu-west-1": FakeResourceControl("eu-west-1")}

    @pytest.fixture
    def multi_region_executor(self, mock_aws_credentials, regional) -> ActionExecutor:
        resolver = AsyncMock(spec=CredentialResolver)
        resolver.resolve.return_value = AWSCredentials(
            access_key_id=mock_aws_credentials["access_key_id"],
            secret_access_key=mock_aws_credentials["secret_access_key"],
            region="us-east-1",
            regions=["us-east-1", "eu-west-1"],
        )
        return ActionExecutor(resolver, lambda credentials, region: regional[region or "us-east-1"])

    @pytest.mark.asyncio
    async def test_resource_in_second_region(self, multi_region_executor, regional):
        regional["eu-west-1"].add_instance("i-eu")

        outcome = await run(multi_region_executor, "i-eu", ShutdownParams())

        assert outcome.success is True
        assert regional["eu-west-1"].instances["i-eu"]["state"] == "stopped"
        assert regional["us-east-1"].called("stop_instance") == []

    @pytest.mark.asyncio
    async def test_explicit_region_skips_lookup(self, multi_region_executor, regional):
        regional["eu-west-1"].add_instance("i-eu")

        outcome = await run(multi_region_executor, "i-eu", ShutdownParams(region="eu-west-1"))

        assert outcome.success is True
        assert regional["us-east-1"].calls == []

    @pytest.mark.asyncio
    async def test_resource_in_no_region(self, multi_region_executor, regional):
        outcome = await run(multi_region_executor, "i-missing", ShutdownParams())

        assert outcome.error_code == "RESOURCE_NOT_FOUND"
        assert "us-east-1, eu-west-1" in outcome.message


class TestResourceLockManager:
    @pytest.mark.asyncio
    async def test_same_resource_is_serialized(self):
        locks = ResourceLockManager()
        order: list[str] = []

        async def worker(name: str) -> None:
            async with locks.hold("i-1"):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order == ["a-in", "a-out", "b-in", "b-out"]
        assert not locks.is_locked("i-1")
        assert locks._locks == {}

    @pytest.mark.asyncio
    async def test_different_resources_run_concurrently(self):
        locks = ResourceLockManager()
        order: list[str] = []

        async def worker(resource_id: str) -> None:
            async with locks.hold(resource_id):
                order.append(f"{resource_id}-in")
                await asyncio.sleep(0.01)
                order.append(f"{resource_id}-out")

        await asyncio.gather(worker("i-1"), worker("i-2"))

        assert order[:2] == ["i-1-in", "i-2-in"]
