from typing import Optional


class AutoAlarmError(Exception):
    """Base exception for the autoalarm package."""

    pass


class ConfigurationError(AutoAlarmError):
    """Raised when the catalog or settings are invalid."""

    pass


class ThresholdBackendError(AutoAlarmError):
    """Raised when CloudWatch alarm operations fail."""

    pass


class RuleBackendError(AutoAlarmError):
    """Raised when rule group namespace operations fail."""

    pass


class RuleCapacityExceededError(RuleBackendError):
    """Raised before any write when the workspace holds too many rules.

    Callers should fall back to the threshold backend.
    """

    fallback_to_threshold = True

    def __init__(self, rule_count: int, limit: int, workspace_id: Optional[str] = None):
        self.rule_count = rule_count
        self.limit = limit
        self.workspace_id = workspace_id
        super().__init__(
            f"Workspace {workspace_id} holds {rule_count} rules (limit {limit}); "
            "refusing to modify rule groups, fall back to CloudWatch alarms"
        )


class RetryExhaustedError(AutoAlarmError):
    """Raised when a bounded retry loop gives up."""

    def __init__(self, message: str, attempts: int, elapsed_seconds: float):
        self.attempts = attempts
        self.elapsed_seconds = elapsed_seconds
        super().__init__(
            f"{message} after {attempts} attempts ({elapsed_seconds:.1f}s elapsed)"
        )
