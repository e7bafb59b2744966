from .alarm_config import (
    AlarmCategory,
    AlarmClassification,
    AlarmIdentity,
    MetricAlarmConfig,
    MetricAlarmOptions,
    MetricKind,
    ResolvedMetric,
)
from .alarm_manager import ReconcileSummary, ThresholdAlarmReconciler
from .config_loader import ConfigRegistry
from .dimensions import CloudWatchDimensionResolver, DimensionResolver

__all__ = [
    "AlarmCategory",
    "AlarmClassification",
    "AlarmIdentity",
    "MetricAlarmConfig",
    "MetricAlarmOptions",
    "MetricKind",
    "ResolvedMetric",
    "ReconcileSummary",
    "ThresholdAlarmReconciler",
    "ConfigRegistry",
    "CloudWatchDimensionResolver",
    "DimensionResolver",
]
