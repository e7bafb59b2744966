import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Dict, Iterable, Optional

from botocore.exceptions import BotoCoreError, ClientError

from .constants import DEFAULT_MAX_WORKERS, ENABLED_TAG, TAG_PREFIX
from .utils import tags_to_dict

logger = logging.getLogger(__name__)


class ResourceInventory:
    """Fetches tags and metadata for taggable resources."""

    RESOURCE_CONFIG = {
        "EC2": {"type": "ec2:instance", "delimiter": "/"},
        "SQS": {"type": "sqs", "delimiter": ":"},
        "ALB": {"type": "elasticloadbalancing:loadbalancer", "delimiter": "loadbalancer/"},
        "TARGETGROUP": {"type": "elasticloadbalancing:targetgroup", "delimiter": ":"},
        "OPENSEARCH": {"type": "es:domain", "delimiter": "domain/"},
    }

    def __init__(
        self,
        tagging: Any,
        ec2: Optional[Any] = None,
        tag_prefix: str = TAG_PREFIX,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ) -> None:
        self.tagging = tagging
        self.ec2 = ec2
        self.tag_prefix = tag_prefix
        self.max_workers = max_workers

    def get_tags(self, resource_type: str, resource_id: str) -> Dict[str, str]:
        """Fetch the current tag map of one resource."""
        if resource_type == "EC2" and self.ec2 is not None:
            try:
                response = self.ec2.describe_tags(
                    Filters=[{"Name": "resource-id", "Values": [resource_id]}]
                )
            except (BotoCoreError, ClientError) as e:
                logger.error(f"Error fetching tags for {resource_id}: {e}")
                raise
            tags = tags_to_dict(response.get("Tags", []))
        else:
            tags = self._get_all_tagged(resource_type).get(resource_id, {})
        logger.info(f"Fetched {len(tags)} tags for {resource_type} {resource_id}")
        return tags

    def get_enabled_resources(self, resource_type: str) -> Dict[str, Dict[str, str]]:
        """All resources of a type with alarms enabled, mapped to their tags."""
        return self._get_all_tagged(
            resource_type,
            tag_filters=[{"Key": f"{self.tag_prefix}:{ENABLED_TAG}", "Values": ["true"]}],
        )

    def get_reporting_identifiers(
        self, resource_type: str, resource_ids: Iterable[str]
    ) -> Dict[str, str]:
        """Map resource ids to the label value their exporter reports under.

        EC2 instances report by private IP; other types by their id.
        """
        resource_ids = list(resource_ids)
        if resource_type != "EC2" or self.ec2 is None:
            return {rid: rid for rid in resource_ids}

        identifiers: Dict[str, str] = {}
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(self._get_private_ip, rid): rid for rid in resource_ids
            }
            for future in as_completed(futures):
                rid = futures[future]
                try:
                    ip = future.result()
                except (BotoCoreError, ClientError) as e:
                    logger.error(f"Failed to fetch private IP for {rid}: {e}")
                    continue
                if ip:
                    identifiers[rid] = ip
        return identifiers

    def _get_private_ip(self, instance_id: str) -> Optional[str]:
        response = self.ec2.describe_instances(InstanceIds=[instance_id])
        for reservation in response.get("Reservations", []):
            for instance in reservation.get("Instances", []):
                return instance.get("PrivateIpAddress")
        return None

    def _get_all_tagged(
        self, resource_type: str, tag_filters: Optional[list] = None
    ) -> Dict[str, Dict[str, str]]:
        config = self.RESOURCE_CONFIG.get(resource_type)
        if not config:
            raise ValueError(f"Unsupported resource type: {resource_type}")

        kwargs: Dict[str, Any] = {"ResourceTypeFilters": [config["type"]]}
        if tag_filters:
            kwargs["TagFilters"] = tag_filters

        resources: Dict[str, Dict[str, str]] = {}
        paginator = self.tagging.get_paginator("get_resources")
        try:
            for page in paginator.paginate(**kwargs):
                for item in page.get("ResourceTagMappingList", []):
                    resource_id = item["ResourceARN"].split(config["delimiter"])[-1]
                    resources[resource_id] = tags_to_dict(item.get("Tags", []))
        except (BotoCoreError, ClientError) as e:
            logger.error(f"AWS resource fetch failed: {e}")
            raise
        return resources
