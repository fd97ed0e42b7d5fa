"""Read-only scan of a provider account for orphaned, cost-incurring resources."""

import re
import uuid
from datetime import datetime, timezone
from typing import Any, Callable

import structlog

from app.core.config import settings
from app.models.orphan_resource import OrphanType, RiskLevel
from app.providers.aws import AWSResourceControl
from app.providers.base import ResourceControlBase
from app.schemas.cloud_account import AWSCredentials
from app.schemas.orphan_resource import OrphanCandidate
from app.services.cost_calculator import CostCalculator
from app.services.credential_resolver import CredentialResolver

logger = structlog.get_logger()

ProviderFactory = Callable[[AWSCredentials, str | None], ResourceControlBase]

SERVICE_NAME = "EC2"

# resource_type values, also used to pick the cleanup action
EBS_VOLUME = "ebs_volume"
ELASTIC_IP = "elastic_ip"
STOPPED_INSTANCE = "stopped_instance"
NETWORK_INTERFACE = "network_interface"

# "User initiated (2024-01-15 10:30:00 GMT)"
_STOPPED_AT_PATTERN = re.compile(r"\((\d{4}-\d{2}-\d{2})")


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def _name_tag(tags: list[dict[str, str]] | None) -> str | None:
    for tag in tags or []:
        if tag.get("Key") == "Name":
            return tag.get("Value")
    return None


def parse_stopped_at(state_transition_reason: str | None) -> datetime | None:
    """Extract the stop timestamp EC2 embeds in StateTransitionReason."""
    match = _STOPPED_AT_PATTERN.search(state_transition_reason or "")
    if not match:
        return None
    return datetime.strptime(match.group(1), "%Y-%m-%d").replace(tzinfo=timezone.utc)


def volume_candidates(volumes: list[dict[str, Any]], region: str, now: datetime) -> list[OrphanCandidate]:
    """Volumes in state ``available`` are attached to nothing."""
    candidates = []
    for volume in volumes:
        if volume.get("State") != "available":
            continue

        created_at = _as_utc(volume.get("CreateTime"))
        age_days = (now - created_at).days if created_at else 0
        volume_type = volume.get("VolumeType", "gp2")
        size_gb = volume.get("Size", 0)

        candidates.append(
            OrphanCandidate(
                resource_id=volume["VolumeId"],
                resource_type=EBS_VOLUME,
                resource_name=_name_tag(volume.get("Tags")),
                service_name=SERVICE_NAME,
                region=region,
                orphan_type=OrphanType.UNATTACHED.value,
                last_activity=created_at,
                estimated_monthly_cost=CostCalculator.calculate_ebs_volume_cost(size_gb, volume_type),
                risk_level=(RiskLevel.LOW if age_days > 30 else RiskLevel.MEDIUM).value,
                resource_metadata={
                    "size_gb": size_gb,
                    "volume_type": volume_type,
                    "availability_zone": volume.get("AvailabilityZone"),
                    "age_days": age_days,
                },
            )
        )
    return candidates


def address_candidates(addresses: list[dict[str, Any]], region: str) -> list[OrphanCandidate]:
    """Elastic IPs associated with neither an instance nor a network interface."""
    candidates = []
    for address in addresses:
        if address.get("InstanceId") or address.get("NetworkInterfaceId"):
            continue
        if not address.get("AllocationId"):
            continue  # EC2-Classic addresses cannot be released by allocation id

        candidates.append(
            OrphanCandidate(
                resource_id=address["AllocationId"],
                resource_type=ELASTIC_IP,
                resource_name=_name_tag(address.get("Tags")),
                service_name=SERVICE_NAME,
                region=region,
                orphan_type=OrphanType.UNUSED.value,
                estimated_monthly_cost=CostCalculator.calculate_elastic_ip_cost(),
                risk_level=RiskLevel.LOW.value,
                resource_metadata={
                    "public_ip": address.get("PublicIp"),
                    "domain": address.get("Domain"),
                },
            )
        )
    return candidates


def stopped_instance_candidates(
    instances: list[dict[str, Any]],
    region: str,
    now: datetime,
    threshold_days: int = 7,
) -> list[OrphanCandidate]:
    """
    Instances stopped for longer than ``threshold_days``.

    The longer an instance has been stopped, the less likely anyone still needs
    it: more than 30 days is low risk, anything shorter is high risk.
    """
    candidates = []
    for instance in instances:
        if instance.get("State", {}).get("Name") != "stopped":
            continue

        stopped_at = parse_stopped_at(instance.get("StateTransitionReason"))
        days_stopped = (now - stopped_at).days if stopped_at else 0
        if days_stopped <= threshold_days:
            continue

        candidates.append(
            OrphanCandidate(
                resource_id=instance["InstanceId"],
                resource_type=STOPPED_INSTANCE,
                resource_name=_name_tag(instance.get("Tags")),
                service_name=SERVICE_NAME,
                region=region,
                orphan_type=OrphanType.IDLE.value,
                last_activity=stopped_at,
                estimated_monthly_cost=CostCalculator.calculate_stopped_instance_cost(),
                risk_level=(RiskLevel.LOW if days_stopped > 30 else RiskLevel.HIGH).value,
                resource_metadata={
                    "instance_type": instance.get("InstanceType"),
                    "availability_zone": instance.get("Placement", {}).get("AvailabilityZone"),
                    "days_stopped": days_stopped,
                },
            )
        )
    return candidates


def network_interface_candidates(interfaces: list[dict[str, Any]], region: str) -> list[OrphanCandidate]:
    """Network interfaces in status ``available`` with no attachment."""
    candidates = []
    for interface in interfaces:
        if interface.get("Status") != "available" or interface.get("Attachment"):
            continue

        candidates.append(
            OrphanCandidate(
                resource_id=interface["NetworkInterfaceId"],
                resource_type=NETWORK_INTERFACE,
                resource_name=_name_tag(interface.get("TagSet")),
                service_name=SERVICE_NAME,
                region=region,
                orphan_type=OrphanType.UNATTACHED.value,
                estimated_monthly_cost=CostCalculator.calculate_network_interface_cost(),
                risk_level=RiskLevel.LOW.value,
                resource_metadata={
                    "description": interface.get("Description") or None,
                    "private_ip": interface.get("PrivateIpAddress"),
                    "subnet_id": interface.get("SubnetId"),
                    "vpc_id": interface.get("VpcId"),
                    "interface_type": interface.get("InterfaceType", "interface"),
                },
            )
        )
    return candidates


class OrphanScanner:
    """Finds orphan candidates in every region of an owner's account."""

    CATEGORIES = (EBS_VOLUME, ELASTIC_IP, STOPPED_INSTANCE, NETWORK_INTERFACE)

    def __init__(
        self,
        credential_resolver: CredentialResolver,
        provider_factory: ProviderFactory = AWSResourceControl.from_credentials,
        stopped_threshold_days: int = settings.STOPPED_INSTANCE_THRESHOLD_DAYS,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._resolver = credential_resolver
        self._provider_factory = provider_factory
        self._stopped_threshold_days = stopped_threshold_days
        self._clock = clock

    @classmethod
    def categories_for(cls, service_filter: str | None) -> tuple[str, ...]:
        """Resource types a service filter selects."""
        if not service_filter:
            return cls.CATEGORIES
        lowered = service_filter.lower()
        if lowered == SERVICE_NAME.lower():
            return cls.CATEGORIES
        return tuple(category for category in cls.CATEGORIES if category == lowered)

    async def scan(
        self,
        account_scope: uuid.UUID | None,
        service_filter: str | None,
        owner_id: uuid.UUID,
    ) -> list[OrphanCandidate]:
        """
        Scan every configured region.

        Args:
            account_scope: Cloud account to scan, owner's default when None
            service_filter: Service name ('EC2') or a single resource type
            owner_id: Owner whose credentials are used

        Returns:
            Orphan candidates, one per resource id

        Raises:
            CredentialsMissing: If no credentials resolve
            LifecycleError: Provider failures propagate unchanged
        """
        credentials = await self._resolver.resolve(owner_id, account_scope)
        return await self.scan_with_credentials(credentials, service_filter, owner_id)

    async def scan_with_credentials(
        self,
        credentials: AWSCredentials,
        service_filter: str | None,
        owner_id: uuid.UUID,
    ) -> list[OrphanCandidate]:
        """Scan the regions of already resolved credentials."""
        wanted = self.categories_for(service_filter)
        now = self._clock()

        found: dict[str, OrphanCandidate] = {}
        for region in credentials.regions or [credentials.region]:
            provider = self._provider_factory(credentials, region)

            # Categories are independent; each one is a single list call
            if EBS_VOLUME in wanted:
                for candidate in volume_candidates(await provider.list_volumes(), region, now):
                    found[candidate.resource_id] = candidate
            if ELASTIC_IP in wanted:
                for candidate in address_candidates(await provider.list_addresses(), region):
                    found[candidate.resource_id] = candidate
            if STOPPED_INSTANCE in wanted:
                instances = await provider.list_instances(states=["stopped"])
                for candidate in stopped_instance_candidates(
                    instances, region, now, self._stopped_threshold_days
                ):
                    found[candidate.resource_id] = candidate
            if NETWORK_INTERFACE in wanted:
                for candidate in network_interface_candidates(await provider.list_network_interfaces(), region):
                    found[candidate.resource_id] = candidate

        logger.info(
            "orphans.scanned",
            owner_id=str(owner_id),
            cloud_account_id=str(credentials.account_id) if credentials.account_id else None,
            regions=credentials.regions,
            service_filter=service_filter,
            found=len(found),
        )
        return list(found.values())
