"""Constants shared across the autoalarm package."""

from pathlib import Path
from typing import Dict, Final, FrozenSet

# File paths
CONFIG_DIR: Final[Path] = Path(__file__).parent / "configs"
METRIC_CATALOG: Final[Path] = CONFIG_DIR / "metric_catalog.yml"

# Logging
LOG_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# AWS
DEFAULT_REGION: Final[str] = "us-east-1"
DEFAULT_MAX_WORKERS: Final[int] = 5

# Naming
ALARM_PREFIX: Final[str] = "AutoAlarm"
TAG_PREFIX: Final[str] = "autoalarm"
ENABLED_TAG: Final[str] = "enabled"
TARGET_TAG: Final[str] = "target"


# Rules backend
RULE_CAPACITY_LIMIT: Final[int] = 2000
DEFAULT_PROPAGATION_DELAY: Final[float] = 90.0
DEFAULT_RETRY_ATTEMPTS: Final[int] = 5
DEFAULT_RETRY_DELAY: Final[float] = 30.0

# Lifecycle states treated as "gone"
DEAD_STATES: Final[FrozenSet[str]] = frozenset({"terminated", "deleted", "shutting-down"})

# CloudWatch enumerations
STANDARD_STATISTICS: Final[Dict[str, str]] = {
    s.lower(): s for s in ("SampleCount", "Average", "Sum", "Minimum", "Maximum")
}
STATIC_OPERATORS: Final[Dict[str, str]] = {
    s.lower(): s
    for s in (
        "GreaterThanOrEqualToThreshold",
        "GreaterThanThreshold",
        "LessThanThreshold",
        "LessThanOrEqualToThreshold",
    )
}
ANOMALY_OPERATORS: Final[Dict[str, str]] = {
    s.lower(): s
    for s in (
        "LessThanLowerOrGreaterThanUpperThreshold",
        "LessThanLowerThreshold",
        "GreaterThanUpperThreshold",
    )
}
MISSING_DATA_TREATMENTS: Final[Dict[str, str]] = {
    s.lower(): s for s in ("breaching", "notBreaching", "ignore", "missing")
}

# Error codes the batch driver retries on
TRANSIENT_ERROR_CODES: Final[FrozenSet[str]] = frozenset(
    {
        "ThrottlingException",
        "Throttling",
        "TooManyRequestsException",
        "ConflictException",
        "InternalServerException",
        "ServiceUnavailableException",
    }
)

# Mandatory health alarm per resource type, outside the metric catalog
HEALTH_ALARMS: Final[Dict[str, Dict[str, object]]] = {
    "EC2": {
        "metric_name": "StatusCheckFailed",
        "namespace": "AWS/EC2",
        "dimension_key": "InstanceId",
        "threshold": 0.0,
        "period": 300,
        "evaluation_periods": 1,
        "statistic": "Maximum",
        "comparison_operator": "GreaterThanThreshold",
        "missing_data_treatment": "ignore",
    },
    "ALB": {
        "metric_name": "UnHealthyHostCount",
        "namespace": "AWS/ApplicationELB",
        "dimension_key": "LoadBalancer",
        "threshold": 0.0,
        "period": 300,
        "evaluation_periods": 2,
        "statistic": "Maximum",
        "comparison_operator": "GreaterThanThreshold",
        "missing_data_treatment": "ignore",
    },
}
