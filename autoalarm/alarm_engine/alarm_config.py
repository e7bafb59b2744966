import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from ..constants import ALARM_PREFIX


class AlarmCategory(str, Enum):
    STATIC = "StaticThreshold"
    ANOMALY = "AnomalyDetection"


class AlarmClassification(str, Enum):
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class MetricKind(str, Enum):
    """How a metric's dimensions are resolved for a resource."""

    NATIVE = "native"
    MEMORY = "memory"
    STORAGE = "storage"


@dataclass(frozen=True)
class MetricAlarmOptions:
    """Concrete parameters for the alarms of one metric.

    Attributes:
        warning_threshold: Static WARNING threshold, None disables it
        critical_threshold: Static CRITICAL threshold, None disables it
        anomaly_detection_threshold: Band width for anomaly alarms, None disables it
        period: Seconds per evaluation period
        evaluation_periods: Number of periods evaluated
        data_points_to_alarm: Breaching periods required to alarm
        statistic: Standard statistic name or extended statistic (e.g. 'p95')
        comparison_operator: CloudWatch comparison operator
        missing_data_treatment: CloudWatch TreatMissingData value
    """

    warning_threshold: Optional[float] = None
    critical_threshold: Optional[float] = None
    anomaly_detection_threshold: Optional[float] = None
    period: int = 60
    evaluation_periods: int = 5
    data_points_to_alarm: int = 5
    statistic: str = "Average"
    comparison_operator: str = "GreaterThanThreshold"
    missing_data_treatment: str = "ignore"

    def threshold_for(self, classification: AlarmClassification) -> Optional[float]:
        if classification is AlarmClassification.WARNING:
            return self.warning_threshold
        return self.critical_threshold

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MetricAlarmOptions":
        """Create options from a catalog 'defaults' mapping."""

        def _num(key: str) -> Optional[float]:
            value = data.get(key)
            return None if value is None else float(value)

        evaluation_periods = int(data.get("evaluation_periods", 5))
        return cls(
            warning_threshold=_num("warning_threshold"),
            critical_threshold=_num("critical_threshold"),
            anomaly_detection_threshold=_num("anomaly_detection_threshold"),
            period=int(data.get("period", 60)),
            evaluation_periods=evaluation_periods,
            data_points_to_alarm=int(
                data.get("data_points_to_alarm", evaluation_periods)
            ),
            statistic=data.get("statistic", "Average"),
            comparison_operator=data.get("comparison_operator", "GreaterThanThreshold"),
            missing_data_treatment=data.get("missing_data_treatment", "ignore"),
        )


@dataclass(frozen=True)
class MetricAlarmConfig:
    """Catalog entry: one taggable metric of a resource type."""

    tag_key: str
    metric_name: str
    metric_namespace: str
    default_create: bool
    anomaly: bool
    defaults: MetricAlarmOptions
    kind: MetricKind = MetricKind.NATIVE
    windows_metric_name: Optional[str] = None
    dimension_key: Optional[str] = None
    # second dimension carrying the account id, e.g. ClientId for OpenSearch
    account_dimension: Optional[str] = None
    # PromQL template for the rules backend, None if the metric has no rule form
    prometheus_expr: Optional[str] = None

    @property
    def category(self) -> AlarmCategory:
        return AlarmCategory.ANOMALY if self.anomaly else AlarmCategory.STATIC

    def classifications(self) -> List[AlarmClassification]:
        # anomaly alarms are always CRITICAL
        if self.anomaly:
            return [AlarmClassification.CRITICAL]
        return [AlarmClassification.WARNING, AlarmClassification.CRITICAL]


_IDENTITY_PATTERN = re.compile(
    r"^(?P<owner>[^-]+)-(?P<resource_type>[^-]+)-(?P<category>StaticThreshold|AnomalyDetection)"
    r"-(?P<resource_id>.+?)-(?P<classification>WARNING|CRITICAL)-(?P<tail>.+)$"
)


@dataclass(frozen=True)
class AlarmIdentity:
    """Deterministic alarm / rule name that embeds its owning resource."""

    resource_type: str
    category: AlarmCategory
    resource_id: str
    classification: AlarmClassification
    metric_key: str
    path: Optional[str] = None
    owner: str = ALARM_PREFIX

    @property
    def name(self) -> str:
        name = (
            f"{self.owner}-{self.resource_type}-{self.category.value}-"
            f"{self.resource_id}-{self.classification.value}-{self.metric_key}"
        )
        return f"{name}-{self.path}" if self.path else name

    def __str__(self) -> str:
        return self.name

    @staticmethod
    def owned_prefixes(
        resource_type: str, resource_id: str, owner: str = ALARM_PREFIX
    ) -> List[str]:
        """Name prefixes covering every alarm owned by one resource."""
        return [
            f"{owner}-{resource_type}-{category.value}-{resource_id}-"
            for category in AlarmCategory
        ]

    @classmethod
    def is_owned_by(cls, name: str, resource_id: str) -> bool:
        """True only when the name parses back to exactly this resource id."""
        identity = cls.parse(name)
        return identity is not None and identity.resource_id == resource_id

    @classmethod
    def parse(
        cls, name: str, metric_keys: Iterable[str] = ()
    ) -> Optional["AlarmIdentity"]:
        """Parse a name back into its identity, or None if not ours.

        With known metric keys, a trailing path suffix is split off the
        longest matching key; otherwise the whole tail is the metric key.
        """
        match = _IDENTITY_PATTERN.match(name)
        if not match:
            return None
        tail = match.group("tail")
        metric_key, path = tail, None
        for key in sorted(metric_keys, key=len, reverse=True):
            if tail == key:
                break
            if tail.startswith(f"{key}-"):
                metric_key, path = key, tail[len(key) + 1 :]
                break
        return cls(
            resource_type=match.group("resource_type"),
            category=AlarmCategory(match.group("category")),
            resource_id=match.group("resource_id"),
            classification=AlarmClassification(match.group("classification")),
            metric_key=metric_key,
            path=path,
            owner=match.group("owner"),
        )


@dataclass
class ResolvedMetric:
    """A concrete metric name and dimension set for one resource."""

    metric_name: str
    namespace: str
    dimensions: List[Dict[str, str]] = field(default_factory=list)
    # distinct path for storage metrics
    path: Optional[str] = None
