"""
Decide, per resource, whether CloudWatch alarms or Prometheus rules are
authoritative, and clean up the backend that is not.

Decision order:
    1. an explicit '<prefix>:target' tag wins
    2. a configured workspace the resource reports to selects Prometheus
    3. otherwise CloudWatch

The decision is returned as a record; nothing is kept between calls, so
concurrent invocations for different resources don't interfere.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional

from .alarm_engine.alarm_manager import ThresholdAlarmReconciler
from .constants import ENABLED_TAG, TARGET_TAG
from .rule_engine.rule_manager import RuleAlarmReconciler
from .settings import Settings

logger = logging.getLogger(__name__)


class Backend(str, Enum):
    THRESHOLD = "cloudwatch"
    RULES = "prometheus"


TARGET_ALIASES = {
    "cloudwatch": Backend.THRESHOLD,
    "cw": Backend.THRESHOLD,
    "prometheus": Backend.RULES,
    "amp": Backend.RULES,
}


@dataclass(frozen=True)
class BackendDecision:
    resource_id: str
    enabled: bool
    backend: Optional[Backend]
    reason: str

    @property
    def update_rules(self) -> bool:
        return self.backend is Backend.RULES

    @property
    def update_threshold(self) -> bool:
        return self.backend is Backend.THRESHOLD

    @property
    def delete_rules(self) -> bool:
        return not self.update_rules

    @property
    def delete_threshold(self) -> bool:
        return not self.update_threshold


class BackendSelector:
    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or Settings()

    def select(
        self, resource_id: str, tags: Mapping[str, str], is_reporting: bool
    ) -> Backend:
        target = self.explicit_target(resource_id, tags)
        if target is Backend.RULES and not self.settings.rules_backend_configured:
            logger.warning(
                f"{resource_id} targets Prometheus but no workspace is configured, "
                "using CloudWatch"
            )
            return Backend.THRESHOLD
        if target is not None:
            return target
        if self.settings.rules_backend_configured and is_reporting:
            return Backend.RULES
        return Backend.THRESHOLD

    def decide(
        self, resource_id: str, tags: Mapping[str, str], is_reporting: bool
    ) -> BackendDecision:
        if tags.get(self.settings.tag_key(ENABLED_TAG)) != "true":
            return BackendDecision(resource_id, False, None, "alarms not enabled")

        backend = self.select(resource_id, tags, is_reporting)
        if self.explicit_target(resource_id, tags) is not None:
            reason = "target tag"
        elif backend is Backend.RULES:
            reason = "reporting to Prometheus"
        else:
            reason = "default"
        logger.info(f"{resource_id} uses {backend.value} ({reason})")
        return BackendDecision(resource_id, True, backend, reason)

    def explicit_target(
        self, resource_id: str, tags: Mapping[str, str]
    ) -> Optional[Backend]:
        raw = tags.get(self.settings.tag_key(TARGET_TAG))
        if raw is None:
            return None
        target = TARGET_ALIASES.get(raw.strip().lower())
        if target is None:
            logger.warning(f"Ignoring unknown target '{raw}' on {resource_id}")
        return target

    def apply(
        self,
        resource_type: str,
        resource_id: str,
        tags: Mapping[str, str],
        is_reporting: bool,
        threshold: ThresholdAlarmReconciler,
        rules: Optional[RuleAlarmReconciler] = None,
    ) -> BackendDecision:
        """Decide and remove this resource's artifacts from the other backend."""
        decision = self.decide(resource_id, tags, is_reporting)
        # CloudWatch alarms of a rules-managed resource go only after its rules are written
        if decision.delete_threshold and not decision.update_rules:
            threshold.delete_all_alarms(resource_type, resource_id)
        if decision.delete_rules and rules is not None and self.settings.rules_backend_configured:
            rules.delete_rules_for_resource(
                self.settings.prometheus_workspace_id, resource_type, resource_id
            )
        return decision
