"""AWS implementation of the resource control interface."""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator

import aioboto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from app.core.config import settings
from app.providers.base import ResourceControlBase
from app.schemas.cloud_account import AWSCredentials
from app.services.lifecycle_errors import (
    InvalidState,
    ProviderError,
    ResourceNotFound,
    Unauthorized,
)

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = {
    "DBInstanceNotFound",
    "DBInstanceNotFoundFault",
    "ClusterNotFoundException",
    "ServiceNotFoundException",
    "ResourceNotFoundException",
}
UNAUTHORIZED_CODES = {
    "UnauthorizedOperation",
    "AccessDenied",
    "AccessDeniedException",
    "AuthFailure",
    "InvalidClientTokenId",
    "SignatureDoesNotMatch",
}
INVALID_STATE_CODES = {
    "IncorrectInstanceState",
    "IncorrectState",
    "InvalidDBInstanceState",
    "InvalidDBInstanceStateFault",
    "ScalingActivityInProgress",
    "ResourceInUse",
    "VolumeInUse",
    "InvalidIPAddress.InUse",
    "InvalidNetworkInterface.InUse",
    "UnsupportedOperation",
}

# Friendly messages for the most common failures on cleanup
FRIENDLY_MESSAGES = {
    "InvalidVolume.NotFound": "Volume not found - it may have already been deleted",
    "InvalidAllocationID.NotFound": "Elastic IP not found - it may have already been released",
    "InvalidNetworkInterfaceID.NotFound": "Network Interface not found - it may have already been deleted",
    "InvalidInstanceID.NotFound": "Instance not found - it may have already been terminated",
    "UnauthorizedOperation": "Insufficient permissions to perform this operation",
}


@contextmanager
def translate_aws_errors(resource_id: str, operation: str) -> Iterator[None]:
    """
    Map botocore failures raised inside the block to lifecycle errors.

    Args:
        resource_id: Resource the call targets (for messages)
        operation: AWS API operation name (for messages and logs)
    """
    try:
        yield
    except ClientError as e:
        error = e.response.get("Error", {})
        error_code = error.get("Code", "Unknown")
        message = FRIENDLY_MESSAGES.get(error_code) or error.get("Message", str(e))
        logger.warning(f"{operation} on {resource_id} failed: {error_code} - {message}")

        if error_code in NOT_FOUND_CODES or error_code.endswith(".NotFound"):
            raise ResourceNotFound(f"{resource_id}: {message}") from e
        if error_code in UNAUTHORIZED_CODES:
            raise Unauthorized(f"{operation} denied for {resource_id}: {message}") from e
        if error_code in INVALID_STATE_CODES:
            raise InvalidState(f"{resource_id}: {message}") from e
        raise ProviderError(f"{operation} failed for {resource_id}: {message}", provider_code=error_code) from e
    except BotoCoreError as e:
        logger.warning(f"{operation} on {resource_id} failed: {e}")
        raise ProviderError(
            f"{operation} failed for {resource_id}: {e}", provider_code=type(e).__name__
        ) from e


class AWSResourceControl(ResourceControlBase):
    """
    AWS implementation over aioboto3.

    Compute, volumes, addresses and network interfaces go through EC2; databases
    through RDS; groups through Auto Scaling; container services through ECS;
    utilization through CloudWatch.
    """

    def __init__(self, access_key: str, secret_key: str, region: str) -> None:
        super().__init__(access_key, secret_key, region)
        self.config = Config(
            connect_timeout=settings.AWS_CONNECT_TIMEOUT,
            read_timeout=settings.AWS_READ_TIMEOUT,
            retries={"max_attempts": settings.AWS_MAX_ATTEMPTS, "mode": "standard"},
        )
        self.session = aioboto3.Session(
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
        )

    @classmethod
    def from_credentials(
        cls, credentials: AWSCredentials, region: str | None = None
    ) -> "AWSResourceControl":
        return cls(
            credentials.access_key_id,
            credentials.secret_access_key,
            region or credentials.region,
        )

    def _client(self, service: str) -> Any:
        return self.session.client(service, region_name=self.region, config=self.config)

    # Compute instances

    async def describe_instance(self, instance_id: str) -> dict[str, Any]:
        async with self._client("ec2") as ec2:
            with translate_aws_errors(instance_id, "DescribeInstances"):
                response = await ec2.describe_instances(InstanceIds=[instance_id])

        reservations = response.get("Reservations", [])
        if not reservations or not reservations[0].get("Instances"):
            raise ResourceNotFound(f"Instance {instance_id} not found")

        instance = reservations[0]["Instances"][0]
        tags = {tag["Key"]: tag["Value"] for tag in instance.get("Tags", [])}
        return {
            "state": instance["State"]["Name"],
            "instance_type": instance.get("InstanceType"),
            "name": tags.get("Name"),
        }

    async def stop_instance(self, instance_id: str, force: bool = False) -> str:
        async with self._client("ec2") as ec2:
            with translate_aws_errors(instance_id, "StopInstances"):
                response = await ec2.stop_instances(InstanceIds=[instance_id], Force=force)
        return response["StoppingInstances"][0]["CurrentState"]["Name"]

    async def start_instance(self, instance_id: str) -> str:
        async with self._client("ec2") as ec2:
            with translate_aws_errors(instance_id, "StartInstances"):
                response = await ec2.start_instances(InstanceIds=[instance_id])
        return response["StartingInstances"][0]["CurrentState"]["Name"]

    async def modify_instance_type(self, instance_id: str, instance_type: str) -> None:
        async with self._client("ec2") as ec2:
            with translate_aws_errors(instance_id, "ModifyInstanceAttribute"):
                await ec2.modify_instance_attribute(
                    InstanceId=instance_id,
                    InstanceType={"Value": instance_type},
                )

    async def terminate_instance(self, instance_id: str) -> str:
        async with self._client("ec2") as ec2:
            with translate_aws_errors(instance_id, "TerminateInstances"):
                response = await ec2.terminate_instances(InstanceIds=[instance_id])
        return response["TerminatingInstances"][0]["CurrentState"]["Name"]

    async def tag_resource(self, resource_id: str, tags: dict[str, str]) -> None:
        async with self._client("ec2") as ec2:
            with translate_aws_errors(resource_id, "CreateTags"):
                await ec2.create_tags(
                    Resources=[resource_id],
                    Tags=[{"Key": key, "Value": value} for key, value in tags.items()],
                )

    # Managed databases

    async def describe_db_instance(self, db_instance_id: str) -> dict[str, Any]:
        async with self._client("rds") as rds:
            with translate_aws_errors(db_instance_id, "DescribeDBInstances"):
                response = await rds.describe_db_instances(DBInstanceIdentifier=db_instance_id)

        instances = response.get("DBInstances", [])
        if not instances:
            raise ResourceNotFound(f"Database {db_instance_id} not found")
        return {
            "status": instances[0]["DBInstanceStatus"],
            "instance_class": instances[0].get("DBInstanceClass"),
            "engine": instances[0].get("Engine"),
        }

    async def stop_db_instance(
        self, db_instance_id: str, snapshot_identifier: str | None = None
    ) -> str:
        params: dict[str, Any] = {"DBInstanceIdentifier": db_instance_id}
        if snapshot_identifier:
            params["DBSnapshotIdentifier"] = snapshot_identifier

        async with self._client("rds") as rds:
            with translate_aws_errors(db_instance_id, "StopDBInstance"):
                response = await rds.stop_db_instance(**params)
        return response["DBInstance"]["DBInstanceStatus"]

    async def start_db_instance(self, db_instance_id: str) -> str:
        async with self._client("rds") as rds:
            with translate_aws_errors(db_instance_id, "StartDBInstance"):
                response = await rds.start_db_instance(DBInstanceIdentifier=db_instance_id)
        return response["DBInstance"]["DBInstanceStatus"]

    # Autoscaling groups

    async def describe_autoscaling_group(self, group_name: str) -> dict[str, int]:
        async with self._client("autoscaling") as autoscaling:
            with translate_aws_errors(group_name, "DescribeAutoScalingGroups"):
                response = await autoscaling.describe_auto_scaling_groups(
                    AutoScalingGroupNames=[group_name]
                )

        groups = response.get("AutoScalingGroups", [])
        if not groups:
            raise ResourceNotFound(f"Auto Scaling group {group_name} not found")
        return {
            "min_size": groups[0]["MinSize"],
            "max_size": groups[0]["MaxSize"],
            "desired_capacity": groups[0]["DesiredCapacity"],
        }

    async def update_autoscaling_group(
        self, group_name: str, min_size: int, max_size: int, desired_capacity: int
    ) -> None:
        async with self._client("autoscaling") as autoscaling:
            with translate_aws_errors(group_name, "UpdateAutoScalingGroup"):
                await autoscaling.update_auto_scaling_group(
                    AutoScalingGroupName=group_name,
                    MinSize=min_size,
                    MaxSize=max_size,
                    DesiredCapacity=desired_capacity,
                )

    # Container services

    async def describe_container_service(self, cluster: str, service: str) -> dict[str, Any]:
        async with self._client("ecs") as ecs:
            with translate_aws_errors(service, "DescribeServices"):
                response = await ecs.describe_services(cluster=cluster, services=[service])

        services = response.get("services", [])
        if not services or services[0].get("status") == "INACTIVE":
            raise ResourceNotFound(f"ECS service {service} not found in cluster {cluster}")
        return {
            "desired_count": services[0]["desiredCount"],
            "running_count": services[0].get("runningCount", 0),
            "status": services[0].get("status"),
        }

    async def update_container_service(self, cluster: str, service: str, desired_count: int) -> None:
        async with self._client("ecs") as ecs:
            with translate_aws_errors(service, "UpdateService"):
                await ecs.update_service(
                    cluster=cluster,
                    service=service,
                    desiredCount=desired_count,
                )

    # Inventory

    async def list_volumes(self) -> list[dict[str, Any]]:
        volumes: list[dict[str, Any]] = []
        async with self._client("ec2") as ec2:
            with translate_aws_errors(self.region, "DescribeVolumes"):
                paginator = ec2.get_paginator("describe_volumes")
                async for page in paginator.paginate():
                    volumes.extend(page.get("Volumes", []))
        return volumes

    async def list_addresses(self) -> list[dict[str, Any]]:
        async with self._client("ec2") as ec2:
            with translate_aws_errors(self.region, "DescribeAddresses"):
                response = await ec2.describe_addresses()
        return response.get("Addresses", [])

    async def list_instances(
        self,
        states: list[str] | None = None,
        tag_filters: dict[str, list[str]] | None = None,
    ) -> list[dict[str, Any]]:
        filters: list[dict[str, Any]] = []
        if states:
            filters.append({"Name": "instance-state-name", "Values": states})
        for key, values in (tag_filters or {}).items():
            filters.append({"Name": f"tag:{key}", "Values": values})
        params: dict[str, Any] = {"Filters": filters} if filters else {}

        instances: list[dict[str, Any]] = []
        async with self._client("ec2") as ec2:
            with translate_aws_errors(self.region, "DescribeInstances"):
                paginator = ec2.get_paginator("describe_instances")
                async for page in paginator.paginate(**params):
                    for reservation in page.get("Reservations", []):
                        instances.extend(reservation.get("Instances", []))
        return instances

    async def list_network_interfaces(self) -> list[dict[str, Any]]:
        interfaces: list[dict[str, Any]] = []
        async with self._client("ec2") as ec2:
            with translate_aws_errors(self.region, "DescribeNetworkInterfaces"):
                paginator = ec2.get_paginator("describe_network_interfaces")
                async for page in paginator.paginate():
                    interfaces.extend(page.get("NetworkInterfaces", []))
        return interfaces

    # Orphan cleanup

    async def delete_volume(self, volume_id: str) -> None:
        async with self._client("ec2") as ec2:
            with translate_aws_errors(volume_id, "DeleteVolume"):
                await ec2.delete_volume(VolumeId=volume_id)

    async def release_address(self, allocation_id: str) -> None:
        async with self._client("ec2") as ec2:
            with translate_aws_errors(allocation_id, "ReleaseAddress"):
                await ec2.release_address(AllocationId=allocation_id)

    async def delete_network_interface(self, network_interface_id: str) -> None:
        async with self._client("ec2") as ec2:
            with translate_aws_errors(network_interface_id, "DeleteNetworkInterface"):
                await ec2.delete_network_interface(NetworkInterfaceId=network_interface_id)

    # Metrics

    async def get_cpu_statistics(
        self,
        instance_id: str,
        start_time: datetime,
        end_time: datetime,
        period: int = 3600,
    ) -> list[dict[str, Any]]:
        async with self._client("cloudwatch") as cloudwatch:
            with translate_aws_errors(instance_id, "GetMetricStatistics"):
                response = await cloudwatch.get_metric_statistics(
                    Namespace="AWS/EC2",
                    MetricName="CPUUtilization",
                    Dimensions=[{"Name": "InstanceId", "Value": instance_id}],
                    StartTime=start_time,
                    EndTime=end_time,
                    Period=period,
                    Statistics=["Average", "Maximum"],
                )
        return response.get("Datapoints", [])
