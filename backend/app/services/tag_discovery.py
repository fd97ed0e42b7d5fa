"""Find compute instances by tag across an account's regions."""

from dataclasses import dataclass, field
from typing import Any, Callable

import structlog

from app.providers.aws import AWSResourceControl
from app.providers.base import ResourceControlBase
from app.schemas.cloud_account import AWSCredentials

logger = structlog.get_logger()

ProviderFactory = Callable[[AWSCredentials, str | None], ResourceControlBase]


@dataclass
class DiscoveredInstance:
    """An instance matched by tag. Plain data, the caller decides what to do with it."""

    instance_id: str
    region: str
    state: str
    instance_type: str | None
    name: str | None
    tags: dict[str, str] = field(default_factory=dict)


class TagDiscovery:
    """
    Discovers instances whose tag matches one of several values.

    Filtering happens provider side (``tag:<key>`` filters), one listing call
    per region.
    """

    def __init__(
        self,
        tag_key: str,
        tag_values: list[str],
        provider_factory: ProviderFactory = AWSResourceControl.from_credentials,
    ) -> None:
        self.tag_key = tag_key
        self.tag_values = tag_values
        self._provider_factory = provider_factory

    async def discover(
        self,
        credentials: AWSCredentials,
        states: list[str] | None = None,
    ) -> list[DiscoveredInstance]:
        """
        Args:
            credentials: Resolved account credentials; every region is searched
            states: Instance states to include, all when None

        Returns:
            Matching instances, one per instance id
        """
        found: dict[str, DiscoveredInstance] = {}
        for region in credentials.regions or [credentials.region]:
            provider = self._provider_factory(credentials, region)
            instances = await provider.list_instances(
                states=states, tag_filters={self.tag_key: self.tag_values}
            )
            for instance in instances:
                discovered = self._to_discovered(instance, region)
                found[discovered.instance_id] = discovered

        logger.info(
            "discovery.instances_found",
            tag_key=self.tag_key,
            tag_values=self.tag_values,
            regions=credentials.regions,
            found=len(found),
        )
        return list(found.values())

    @staticmethod
    def _to_discovered(instance: dict[str, Any], region: str) -> DiscoveredInstance:
        tags = {tag["Key"]: tag["Value"] for tag in instance.get("Tags", [])}
        return DiscoveredInstance(
            instance_id=instance["InstanceId"],
            region=region,
            state=instance.get("State", {}).get("Name", "unknown"),
            instance_type=instance.get("InstanceType"),
            name=tags.get("Name"),
            tags=tags,
        )
