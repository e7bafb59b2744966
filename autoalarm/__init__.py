"""
AutoAlarm

Tag-driven alarm management for AWS resources:
- CloudWatch static threshold and anomaly detection alarms
- Prometheus alerting rules in Amazon Managed Service for Prometheus
- Per-resource selection of the authoritative backend
"""

__version__ = "0.1.0"

from .backend_selector import Backend, BackendDecision, BackendSelector
from .exceptions import (
    AutoAlarmError,
    ConfigurationError,
    RetryExhaustedError,
    RuleBackendError,
    RuleCapacityExceededError,
    ThresholdBackendError,
)
from .service import AutoAlarmService, HandleResult
from .settings import Settings

__all__ = [
    # Backend selection
    "Backend",
    "BackendDecision",
    "BackendSelector",
    # Service
    "AutoAlarmService",
    "HandleResult",
    "Settings",
    # Errors
    "AutoAlarmError",
    "ConfigurationError",
    "RetryExhaustedError",
    "RuleBackendError",
    "RuleCapacityExceededError",
    "ThresholdBackendError",
]
