import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .alarm_config import MetricAlarmConfig, MetricKind, ResolvedMetric

logger = logging.getLogger(__name__)

# Dimensions kept on CWAgent storage metrics, by platform
LINUX_STORAGE_DIMENSIONS = ["InstanceId", "ImageId", "InstanceType", "device", "path", "fstype"]
WINDOWS_STORAGE_DIMENSIONS = ["InstanceId", "ImageId", "InstanceType", "instance", "objectname"]


class DimensionResolver(ABC):
    @abstractmethod
    def resolve(
        self, resource_id: str, config: MetricAlarmConfig
    ) -> List[ResolvedMetric]:
        """
        Return the concrete metric name and dimension set(s) for a resource.
        May return several sets, e.g. one per storage path.
        """
        pass


class CloudWatchDimensionResolver(DimensionResolver):
    """Resolves metric names and dimension sets from CloudWatch and EC2."""

    def __init__(
        self, cloudwatch: Any, ec2: Optional[Any] = None, sts: Optional[Any] = None
    ) -> None:
        self.cloudwatch = cloudwatch
        self.ec2 = ec2
        self.sts = sts
        self._account_id: Optional[str] = None

    def resolve(self, resource_id: str, config: MetricAlarmConfig) -> List[ResolvedMetric]:
        if config.kind is MetricKind.STORAGE:
            return self._resolve_storage(resource_id, config)

        metric_name = config.metric_name
        if config.kind is MetricKind.MEMORY and self._is_windows(resource_id):
            metric_name = config.windows_metric_name or metric_name
        dimensions = (
            [{"Name": config.dimension_key, "Value": resource_id}]
            if config.dimension_key
            else []
        )
        if config.account_dimension:
            dimensions.append({"Name": config.account_dimension, "Value": self.account_id})
        return [
            ResolvedMetric(
                metric_name=metric_name,
                namespace=config.metric_namespace,
                dimensions=dimensions,
            )
        ]

    def _resolve_storage(
        self, resource_id: str, config: MetricAlarmConfig
    ) -> List[ResolvedMetric]:
        """One dimension set per mounted path reported by the CloudWatch agent."""
        is_windows = self._is_windows(resource_id)
        metric_name = (
            config.windows_metric_name or config.metric_name
            if is_windows
            else config.metric_name
        )
        required = WINDOWS_STORAGE_DIMENSIONS if is_windows else LINUX_STORAGE_DIMENSIONS
        path_key = "instance" if is_windows else "path"

        paths: Dict[str, ResolvedMetric] = {}
        paginator = self.cloudwatch.get_paginator("list_metrics")
        for page in paginator.paginate(
            Namespace=config.metric_namespace,
            MetricName=metric_name,
            Dimensions=[{"Name": config.dimension_key or "InstanceId", "Value": resource_id}],
        ):
            for metric in page.get("Metrics", []):
                values = {name: "" for name in required}
                values["InstanceId"] = resource_id
                for dim in metric.get("Dimensions", []):
                    if dim.get("Name") in values and dim.get("Value"):
                        values[dim["Name"]] = dim["Value"]
                path = values.get(path_key)
                if not path:
                    continue
                paths[path] = ResolvedMetric(
                    metric_name=metric_name,
                    namespace=config.metric_namespace,
                    dimensions=[{"Name": k, "Value": values[k]} for k in required if values[k]],
                    path=path,
                )

        if not paths:
            logger.info(f"No storage paths reported for {resource_id} ({metric_name})")
        return list(paths.values())

    @property
    def account_id(self) -> str:
        """Account id of the caller, looked up once through STS."""
        if self._account_id is None:
            if self.sts is None:
                raise ValueError("An STS client is needed to resolve account dimensions")
            self._account_id = self.sts.get_caller_identity()["Account"]
        return self._account_id

    def _is_windows(self, resource_id: str) -> bool:
        if self.ec2 is None:
            return False
        response = self.ec2.describe_instances(InstanceIds=[resource_id])
        reservations = response.get("Reservations", [])
        if not reservations or not reservations[0].get("Instances"):
            return False
        platform = reservations[0]["Instances"][0].get("PlatformDetails", "")
        return "windows" in platform.lower()
