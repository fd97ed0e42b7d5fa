"""Base abstract class for resource control implementations."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any


class ResourceControlBase(ABC):
    """
    Abstract interface to a cloud provider's resource control API.

    One instance is bound to one credential set and one region. Implementations
    raise the lifecycle error taxonomy (ResourceNotFound, InvalidState,
    Unauthorized, ProviderError) instead of provider-native exceptions.
    """

    def __init__(
        self,
        access_key: str,
        secret_key: str,
        region: str,
    ) -> None:
        """
        Initialize provider client.

        Args:
            access_key: Provider access key or ID
            secret_key: Provider secret key or token
            region: Region every call is made against
        """
        self.access_key = access_key
        self.secret_key = secret_key
        self.region = region

    # Compute instances

    @abstractmethod
    async def describe_instance(self, instance_id: str) -> dict[str, Any]:
        """Return ``{"state", "instance_type", "name"}`` for one instance."""
        pass

    @abstractmethod
    async def stop_instance(self, instance_id: str, force: bool = False) -> str:
        """Request a stop; returns the reported state."""
        pass

    @abstractmethod
    async def start_instance(self, instance_id: str) -> str:
        pass

    @abstractmethod
    async def modify_instance_type(self, instance_id: str, instance_type: str) -> None:
        pass

    @abstractmethod
    async def terminate_instance(self, instance_id: str) -> str:
        pass

    @abstractmethod
    async def tag_resource(self, resource_id: str, tags: dict[str, str]) -> None:
        pass

    # Managed databases

    @abstractmethod
    async def describe_db_instance(self, db_instance_id: str) -> dict[str, Any]:
        """Return ``{"status", "instance_class", "engine"}`` for one database."""
        pass

    @abstractmethod
    async def stop_db_instance(
        self, db_instance_id: str, snapshot_identifier: str | None = None
    ) -> str:
        pass

    @abstractmethod
    async def start_db_instance(self, db_instance_id: str) -> str:
        pass

    # Autoscaling groups

    @abstractmethod
    async def describe_autoscaling_group(self, group_name: str) -> dict[str, int]:
        """Return ``{"min_size", "max_size", "desired_capacity"}``."""
        pass

    @abstractmethod
    async def update_autoscaling_group(
        self, group_name: str, min_size: int, max_size: int, desired_capacity: int
    ) -> None:
        pass

    # Container services

    @abstractmethod
    async def describe_container_service(self, cluster: str, service: str) -> dict[str, Any]:
        """Return ``{"desired_count", "running_count", "status"}``."""
        pass

    @abstractmethod
    async def update_container_service(self, cluster: str, service: str, desired_count: int) -> None:
        pass

    # Inventory used by orphan detection and rightsizing

    @abstractmethod
    async def list_volumes(self) -> list[dict[str, Any]]:
        pass

    @abstractmethod
    async def list_addresses(self) -> list[dict[str, Any]]:
        pass

    @abstractmethod
    async def list_instances(
        self,
        states: list[str] | None = None,
        tag_filters: dict[str, list[str]] | None = None,
    ) -> list[dict[str, Any]]:
        """Instances in ``states`` whose tags match every key in ``tag_filters`` (any listed value)."""
        pass

    @abstractmethod
    async def list_network_interfaces(self) -> list[dict[str, Any]]:
        pass

    # Orphan cleanup

    @abstractmethod
    async def delete_volume(self, volume_id: str) -> None:
        pass

    @abstractmethod
    async def release_address(self, allocation_id: str) -> None:
        pass

    @abstractmethod
    async def delete_network_interface(self, network_interface_id: str) -> None:
        pass

    # Metrics

    @abstractmethod
    async def get_cpu_statistics(
        self,
        instance_id: str,
        start_time: datetime,
        end_time: datetime,
        period: int = 3600,
    ) -> list[dict[str, Any]]:
        """Hourly CPUUtilization datapoints with ``Average`` and ``Maximum``."""
        pass
