"""Execute one state-changing operation against the resource control API.

The executor never writes to the database; callers persist outcomes. Expected
failures come back as an ``ActionOutcome`` with an error code rather than an
exception.
"""

import asyncio
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Awaitable, Callable

import structlog

from app.core.config import settings
from app.models.scheduled_action import ActionKind, ResourceKind
from app.providers.aws import AWSResourceControl
from app.providers.base import ResourceControlBase
from app.schemas.action_params import (
    ActionOutcome,
    ActionParams,
    CapacitySnapshot,
    ResizeParams,
    ScaleDownParams,
    ScaleUpParams,
    ShutdownParams,
    StartupParams,
    TerminateParams,
)
from app.schemas.cloud_account import AWSCredentials
from app.services.credential_resolver import CredentialResolver
from app.services.lifecycle_errors import InvalidState, LifecycleError, ResizeTimedOut, ResourceNotFound

logger = structlog.get_logger()

ProviderFactory = Callable[[AWSCredentials, str | None], ResourceControlBase]

SUPPORTED_ACTIONS: dict[ResourceKind, frozenset[ActionKind]] = {
    ResourceKind.COMPUTE_INSTANCE: frozenset(
        {ActionKind.SHUTDOWN, ActionKind.STARTUP, ActionKind.RESIZE, ActionKind.TERMINATE}
    ),
    ResourceKind.DATABASE_INSTANCE: frozenset({ActionKind.SHUTDOWN, ActionKind.STARTUP}),
    ResourceKind.AUTOSCALING_GROUP: frozenset(
        {ActionKind.SHUTDOWN, ActionKind.STARTUP, ActionKind.SCALE_DOWN, ActionKind.SCALE_UP}
    ),
    ResourceKind.CONTAINER_SERVICE: frozenset(
        {ActionKind.SHUTDOWN, ActionKind.STARTUP, ActionKind.SCALE_DOWN, ActionKind.SCALE_UP}
    ),
    ResourceKind.VOLUME: frozenset({ActionKind.DELETE}),
    ResourceKind.ELASTIC_IP: frozenset({ActionKind.RELEASE}),
    ResourceKind.NETWORK_INTERFACE: frozenset({ActionKind.DELETE}),
}

DEFAULT_ECS_CLUSTER = "default"


def infer_resource_kind(resource_id: str) -> ResourceKind:
    """
    Guess the resource kind from the identifier shape.

    Only used once, when a schedule is created without an explicit kind; the
    result is stored with the schedule.
    """
    lowered = resource_id.lower()
    if lowered.startswith("i-"):
        return ResourceKind.COMPUTE_INSTANCE
    if lowered.startswith("db-"):
        return ResourceKind.DATABASE_INSTANCE
    if lowered.startswith("asg-") or "autoscaling" in lowered:
        return ResourceKind.AUTOSCALING_GROUP
    if lowered.startswith("ecs-") or "service" in lowered:
        return ResourceKind.CONTAINER_SERVICE
    if lowered.startswith("vol-"):
        return ResourceKind.VOLUME
    if lowered.startswith("eipalloc-"):
        return ResourceKind.ELASTIC_IP
    if lowered.startswith("eni-"):
        return ResourceKind.NETWORK_INTERFACE
    return ResourceKind.COMPUTE_INSTANCE


def ensure_supported(resource_kind: ResourceKind | str, action_kind: ActionKind | str) -> None:
    """
    Raises:
        InvalidState: If the action is not defined for the resource kind
    """
    kind = ResourceKind(resource_kind)
    action = ActionKind(action_kind)
    if action not in SUPPORTED_ACTIONS[kind]:
        raise InvalidState(f"Action '{action.value}' is not supported for {kind.value.replace('_', ' ')}s")


class ResourceLockManager:
    """One asyncio lock per external resource id, dropped when idle."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, resource_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(resource_id, asyncio.Lock())
        self._holders[resource_id] = self._holders.get(resource_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[resource_id] -= 1
            if not self._holders[resource_id]:
                del self._holders[resource_id]
                self._locks.pop(resource_id, None)

    def is_locked(self, resource_id: str) -> bool:
        lock = self._locks.get(resource_id)
        return lock is not None and lock.locked()


def _split_service_id(resource_id: str, cluster: str | None) -> tuple[str, str]:
    # 'cluster/service' identifiers carry their own cluster
    if cluster is None and "/" in resource_id:
        cluster, service = resource_id.split("/", 1)
        return cluster, service
    return cluster or DEFAULT_ECS_CLUSTER, resource_id


Locator = Callable[[ResourceControlBase, str, ActionParams], Awaitable[object]]

# Describe call that tells whether a resource lives in a provider's region
REGION_LOCATORS: dict[ResourceKind, Locator] = {
    ResourceKind.COMPUTE_INSTANCE: lambda provider, resource_id, params: provider.describe_instance(resource_id),
    ResourceKind.DATABASE_INSTANCE: lambda provider, resource_id, params: provider.describe_db_instance(resource_id),
    ResourceKind.AUTOSCALING_GROUP: lambda provider, resource_id, params: provider.describe_autoscaling_group(
        resource_id
    ),
    ResourceKind.CONTAINER_SERVICE: lambda provider, resource_id, params: provider.describe_container_service(
        *_split_service_id(resource_id, getattr(params, "cluster", None))
    ),
}


class ActionExecutor:
    """Dispatches (resource kind, action kind) pairs to provider calls."""

    def __init__(
        self,
        credential_resolver: CredentialResolver,
        provider_factory: ProviderFactory = AWSResourceControl.from_credentials,
        locks: ResourceLockManager | None = None,
        resize_timeout: float = settings.RESIZE_WAIT_TIMEOUT_SECONDS,
        poll_interval: float = settings.RESIZE_POLL_INTERVAL_SECONDS,
    ) -> None:
        self._resolver = credential_resolver
        self._provider_factory = provider_factory
        self.locks = locks or ResourceLockManager()
        self._resize_timeout = resize_timeout
        self._poll_interval = poll_interval

        Handler = Callable[[ResourceControlBase, str, ActionParams], Awaitable[ActionOutcome]]
        self._handlers: dict[tuple[ResourceKind, ActionKind], Handler] = {
            (ResourceKind.COMPUTE_INSTANCE, ActionKind.SHUTDOWN): self._stop_instance,
            (ResourceKind.COMPUTE_INSTANCE, ActionKind.STARTUP): self._start_instance,
            (ResourceKind.COMPUTE_INSTANCE, ActionKind.RESIZE): self._resize_instance,
            (ResourceKind.COMPUTE_INSTANCE, ActionKind.TERMINATE): self._terminate_instance,
            (ResourceKind.DATABASE_INSTANCE, ActionKind.SHUTDOWN): self._stop_database,
            (ResourceKind.DATABASE_INSTANCE, ActionKind.STARTUP): self._start_database,
            (ResourceKind.AUTOSCALING_GROUP, ActionKind.SHUTDOWN): self._scale_group_down,
            (ResourceKind.AUTOSCALING_GROUP, ActionKind.SCALE_DOWN): self._scale_group_down,
            (ResourceKind.AUTOSCALING_GROUP, ActionKind.STARTUP): self._scale_group_up,
            (ResourceKind.AUTOSCALING_GROUP, ActionKind.SCALE_UP): self._scale_group_up,
            (ResourceKind.CONTAINER_SERVICE, ActionKind.SHUTDOWN): self._scale_service_down,
            (ResourceKind.CONTAINER_SERVICE, ActionKind.SCALE_DOWN): self._scale_service_down,
            (ResourceKind.CONTAINER_SERVICE, ActionKind.STARTUP): self._scale_service_up,
            (ResourceKind.CONTAINER_SERVICE, ActionKind.SCALE_UP): self._scale_service_up,
            (ResourceKind.VOLUME, ActionKind.DELETE): self._delete_volume,
            (ResourceKind.ELASTIC_IP, ActionKind.RELEASE): self._release_address,
            (ResourceKind.NETWORK_INTERFACE, ActionKind.DELETE): self._delete_network_interface,
        }

    async def execute(
        self,
        resource_id: str,
        params: ActionParams,
        *,
        owner_id: uuid.UUID,
        resource_kind: ResourceKind | str,
        account_scope: uuid.UUID | None = None,
    ) -> ActionOutcome:
        """
        Perform one action.

        Args:
            resource_id: External resource identifier
            params: Parameter variant; its ``kind`` selects the action
            owner_id: Owner whose credentials are used
            resource_kind: Stored resource kind tag
            account_scope: Specific cloud account, owner's default when None

        Returns:
            Outcome with success/skipped flags, message and error code
        """
        action_kind = ActionKind(params.kind)
        log = logger.bind(
            resource_id=resource_id,
            action=action_kind.value,
            owner_id=str(owner_id),
        )

        try:
            kind = ResourceKind(resource_kind)
            ensure_supported(kind, action_kind)
            credentials = await self._resolver.resolve(owner_id, account_scope)
            provider = await self._provider_for(credentials, resource_id, kind, params)

            async with self.locks.hold(resource_id):
                outcome = await self._handlers[(kind, action_kind)](provider, resource_id, params)
        except LifecycleError as e:
            log.warning("action.failed", error_code=e.code, message=e.message)
            return ActionOutcome.from_error(e)

        log.info("action.completed", skipped=outcome.skipped, message=outcome.message)
        return outcome

    async def _provider_for(
        self,
        credentials: AWSCredentials,
        resource_id: str,
        kind: ResourceKind,
        params: ActionParams,
    ) -> ResourceControlBase:
        """
        Provider bound to the region that holds the resource.

        An explicit ``params.region`` wins. Otherwise every configured region is
        tried in order with the kind's describe call; kinds without one use the
        account's default region.

        Raises:
            ResourceNotFound: If no configured region has the resource
        """
        regions = credentials.regions or [credentials.region]
        locate = REGION_LOCATORS.get(kind)
        if params.region or len(regions) < 2 or locate is None:
            return self._provider_factory(credentials, params.region)

        for region in regions:
            provider = self._provider_factory(credentials, region)
            try:
                await locate(provider, resource_id, params)
            except ResourceNotFound:
                continue
            logger.debug("action.region_located", resource_id=resource_id, region=region)
            return provider

        raise ResourceNotFound(f"{resource_id} was not found in any configured region ({', '.join(regions)})")

    # Compute instances

    async def _stop_instance(
        self, provider: ResourceControlBase, instance_id: str, params: ShutdownParams
    ) -> ActionOutcome:
        instance = await provider.describe_instance(instance_id)
        state = instance["state"]
        if state == "stopped":
            return ActionOutcome(success=True, skipped=True, message=f"Instance {instance_id} is already stopped")
        if state != "running":
            raise InvalidState(f"Instance {instance_id} is {state}; only a running instance can be stopped")

        new_state = await provider.stop_instance(instance_id, force=params.force)
        if params.add_tags:
            await provider.tag_resource(
                instance_id,
                {"LifecycleShutdownAt": datetime.now(timezone.utc).isoformat(timespec="seconds")},
            )
        return ActionOutcome(
            success=True,
            message=f"Instance {instance_id} is stopping",
            details={"previous_state": state, "current_state": new_state},
        )

    async def _start_instance(
        self, provider: ResourceControlBase, instance_id: str, params: StartupParams
    ) -> ActionOutcome:
        instance = await provider.describe_instance(instance_id)
        state = instance["state"]
        if state == "running":
            return ActionOutcome(success=True, skipped=True, message=f"Instance {instance_id} is already running")
        if state != "stopped":
            raise InvalidState(f"Instance {instance_id} is {state}; only a stopped instance can be started")

        new_state = await provider.start_instance(instance_id)
        return ActionOutcome(
            success=True,
            message=f"Instance {instance_id} is starting",
            details={"previous_state": state, "current_state": new_state},
        )

    async def _resize_instance(
        self, provider: ResourceControlBase, instance_id: str, params: ResizeParams
    ) -> ActionOutcome:
        instance = await provider.describe_instance(instance_id)
        state = instance["state"]
        current_type = instance["instance_type"]
        target_type = params.target_instance_type

        if current_type == target_type:
            if params.restart_after and state == "stopped":
                # An earlier attempt changed the type but could not start the instance
                await provider.start_instance(instance_id)
                return ActionOutcome(
                    success=True,
                    message=f"Instance {instance_id} is already {target_type}; started it again",
                    details={"previous_type": current_type, "new_type": target_type, "restarted": True},
                )
            return ActionOutcome(success=True, skipped=True, message=f"Instance {instance_id} is already {target_type}")
        if state not in ("running", "stopped"):
            raise InvalidState(f"Instance {instance_id} is {state}; wait for it to settle before resizing")

        was_running = state == "running"
        restart = params.restart_after if params.restart_after is not None else was_running
        if was_running:
            await provider.stop_instance(instance_id)

        # Past this point the instance may be down; put it back before failing
        try:
            if was_running:
                await self._wait_for_instance_state(provider, instance_id, "stopped")
            await provider.modify_instance_type(instance_id, target_type)
            if restart:
                await provider.start_instance(instance_id)
        except LifecycleError as e:
            e.details["restart_pending"] = restart
            if restart:
                e.details["restarted"] = await self._restart_after_failure(provider, instance_id, e)
            raise

        return ActionOutcome(
            success=True,
            message=f"Instance {instance_id} resized from {current_type} to {target_type}",
            details={"previous_type": current_type, "new_type": target_type, "restarted": restart},
        )

    async def _restart_after_failure(
        self, provider: ResourceControlBase, instance_id: str, error: LifecycleError
    ) -> bool:
        try:
            await provider.start_instance(instance_id)
        except LifecycleError as e:
            logger.error(
                "action.resize_restart_failed",
                resource_id=instance_id,
                error_code=e.code,
                message=e.message,
                cause=error.code,
            )
            return False
        logger.warning("action.resize_restarted_after_failure", resource_id=instance_id, cause=error.code)
        return True

    async def _wait_for_instance_state(
        self, provider: ResourceControlBase, instance_id: str, target_state: str
    ) -> None:
        async def poll() -> None:
            while True:
                state = (await provider.describe_instance(instance_id))["state"]
                if state == target_state:
                    return
                if state in ("shutting-down", "terminated"):
                    raise InvalidState(f"Instance {instance_id} is {state}")
                await asyncio.sleep(self._poll_interval)

        try:
            await asyncio.wait_for(poll(), timeout=self._resize_timeout)
        except asyncio.TimeoutError as e:
            raise ResizeTimedOut(
                f"Instance {instance_id} did not reach '{target_state}' within {self._resize_timeout}s"
            ) from e

    async def _terminate_instance(
        self, provider: ResourceControlBase, instance_id: str, params: TerminateParams
    ) -> ActionOutcome:
        if not params.force:
            raise InvalidState(f"Terminating {instance_id} is irreversible and requires the force flag")

        instance = await provider.describe_instance(instance_id)
        if instance["state"] in ("shutting-down", "terminated"):
            return ActionOutcome(success=True, skipped=True, message=f"Instance {instance_id} is already terminated")

        new_state = await provider.terminate_instance(instance_id)
        return ActionOutcome(
            success=True,
            message=f"Instance {instance_id} is terminating",
            details={"previous_state": instance["state"], "current_state": new_state},
        )

    # Managed databases

    async def _stop_database(
        self, provider: ResourceControlBase, db_instance_id: str, params: ShutdownParams
    ) -> ActionOutcome:
        status = (await provider.describe_db_instance(db_instance_id))["status"]
        if status == "stopped":
            return ActionOutcome(success=True, skipped=True, message=f"Database {db_instance_id} is already stopped")
        if status != "available":
            raise InvalidState(f"Database {db_instance_id} is {status}; only an available database can be stopped")

        snapshot_id = None
        if params.create_snapshot:
            snapshot_id = f"{db_instance_id}-lifecycle-{datetime.now(timezone.utc):%Y%m%d%H%M%S}"

        new_status = await provider.stop_db_instance(db_instance_id, snapshot_identifier=snapshot_id)
        return ActionOutcome(
            success=True,
            message=f"Database {db_instance_id} is stopping",
            details={"previous_status": status, "current_status": new_status, "snapshot_id": snapshot_id},
        )

    async def _start_database(
        self, provider: ResourceControlBase, db_instance_id: str, params: StartupParams
    ) -> ActionOutcome:
        status = (await provider.describe_db_instance(db_instance_id))["status"]
        if status == "available":
            return ActionOutcome(success=True, skipped=True, message=f"Database {db_instance_id} is already available")
        if status != "stopped":
            raise InvalidState(f"Database {db_instance_id} is {status}; only a stopped database can be started")

        new_status = await provider.start_db_instance(db_instance_id)
        return ActionOutcome(
            success=True,
            message=f"Database {db_instance_id} is starting",
            details={"previous_status": status, "current_status": new_status},
        )

    # Autoscaling groups

    async def _scale_group_down(
        self,
        provider: ResourceControlBase,
        group_name: str,
        params: ShutdownParams | ScaleDownParams,
    ) -> ActionOutcome:
        current = await provider.describe_autoscaling_group(group_name)
        target = params.target_capacity

        if current["desired_capacity"] == target and current["min_size"] == target:
            return ActionOutcome(success=True, skipped=True, message=f"Group {group_name} is already at {target}")

        prior = CapacitySnapshot(
            min_size=current["min_size"],
            max_size=current["max_size"],
            desired=current["desired_capacity"],
        )
        await provider.update_autoscaling_group(
            group_name,
            min_size=target,
            max_size=max(target, current["max_size"]),
            desired_capacity=target,
        )
        return ActionOutcome(
            success=True,
            message=f"Group {group_name} scaled from {prior.desired} to {target}",
            prior_capacity=prior,
        )

    async def _scale_group_up(
        self,
        provider: ResourceControlBase,
        group_name: str,
        params: StartupParams | ScaleUpParams,
    ) -> ActionOutcome:
        restore = params.restore_capacity
        if restore is None:
            raise InvalidState(f"No recorded capacity to restore for group {group_name}")

        current = await provider.describe_autoscaling_group(group_name)
        min_size = restore.min_size if restore.min_size is not None else current["min_size"]
        max_size = restore.max_size if restore.max_size is not None else max(current["max_size"], restore.desired)

        if (current["min_size"], current["max_size"], current["desired_capacity"]) == (
            min_size,
            max_size,
            restore.desired,
        ):
            return ActionOutcome(success=True, skipped=True, message=f"Group {group_name} already at restored capacity")

        await provider.update_autoscaling_group(
            group_name,
            min_size=min_size,
            max_size=max_size,
            desired_capacity=restore.desired,
        )
        return ActionOutcome(
            success=True,
            message=f"Group {group_name} restored to {restore.desired}",
            details={"min_size": min_size, "max_size": max_size, "desired": restore.desired},
        )

    # Container services

    async def _scale_service_down(
        self,
        provider: ResourceControlBase,
        resource_id: str,
        params: ShutdownParams | ScaleDownParams,
    ) -> ActionOutcome:
        cluster, service = _split_service_id(resource_id, params.cluster)
        current = await provider.describe_container_service(cluster, service)
        target = params.target_capacity

        if current["desired_count"] == target:
            return ActionOutcome(success=True, skipped=True, message=f"Service {service} already runs {target} tasks")

        await provider.update_container_service(cluster, service, target)
        return ActionOutcome(
            success=True,
            message=f"Service {service} scaled from {current['desired_count']} to {target} tasks",
            prior_capacity=CapacitySnapshot(desired=current["desired_count"]),
            details={"cluster": cluster},
        )

    async def _scale_service_up(
        self,
        provider: ResourceControlBase,
        resource_id: str,
        params: StartupParams | ScaleUpParams,
    ) -> ActionOutcome:
        restore = params.restore_capacity
        if restore is None:
            raise InvalidState(f"No recorded task count to restore for service {resource_id}")

        cluster, service = _split_service_id(resource_id, params.cluster)
        current = await provider.describe_container_service(cluster, service)
        if current["desired_count"] == restore.desired:
            return ActionOutcome(success=True, skipped=True, message=f"Service {service} already runs {restore.desired} tasks")

        await provider.update_container_service(cluster, service, restore.desired)
        return ActionOutcome(
            success=True,
            message=f"Service {service} restored to {restore.desired} tasks",
            details={"cluster": cluster},
        )

    # Orphan cleanup

    async def _delete_volume(
        self, provider: ResourceControlBase, volume_id: str, params: ActionParams
    ) -> ActionOutcome:
        await provider.delete_volume(volume_id)
        return ActionOutcome(success=True, message=f"Volume {volume_id} deleted")

    async def _release_address(
        self, provider: ResourceControlBase, allocation_id: str, params: ActionParams
    ) -> ActionOutcome:
        await provider.release_address(allocation_id)
        return ActionOutcome(success=True, message=f"Elastic IP {allocation_id} released")

    async def _delete_network_interface(
        self, provider: ResourceControlBase, interface_id: str, params: ActionParams
    ) -> ActionOutcome:
        await provider.delete_network_interface(interface_id)
        return ActionOutcome(success=True, message=f"Network interface {interface_id} deleted")
