import logging
from dataclasses import dataclass
from typing import Mapping, Optional

from .alarm_engine.alarm_manager import ReconcileSummary, ThresholdAlarmReconciler
from .backend_selector import Backend, BackendDecision, BackendSelector
from .constants import DEAD_STATES
from .exceptions import ConfigurationError, RuleCapacityExceededError
from .resources import ResourceInventory
from .rule_engine.batch import BatchResult, RuleBatchDriver
from .rule_engine.prometheus_query import PrometheusReportingQuery
from .rule_engine.rule_manager import RuleAlarmReconciler
from .settings import Settings

logger = logging.getLogger(__name__)


@dataclass
class HandleResult:
    decision: BackendDecision
    threshold: Optional[ReconcileSummary] = None
    batch: Optional[BatchResult] = None
    fell_back: bool = False


class AutoAlarmService:
    """
    Entry point for one resource event: works out which backend owns the
    resource, removes its artifacts from the other one and converges the
    owner.
    """

    def __init__(
        self,
        threshold: ThresholdAlarmReconciler,
        inventory: ResourceInventory,
        settings: Optional[Settings] = None,
        rules: Optional[RuleAlarmReconciler] = None,
        reporting: Optional[PrometheusReportingQuery] = None,
        batch: Optional[RuleBatchDriver] = None,
        selector: Optional[BackendSelector] = None,
    ) -> None:
        self.threshold = threshold
        self.inventory = inventory
        self.settings = settings or threshold.settings
        self.rules = rules
        self.reporting = reporting
        self.batch = batch
        self.selector = selector or BackendSelector(self.settings)

        if self.settings.rules_backend_configured and (rules is None or batch is None):
            raise ConfigurationError(
                "A Prometheus workspace is configured but the rules backend is not wired"
            )

    def handle(
        self,
        resource_type: str,
        resource_id: str,
        tags: Optional[Mapping[str, str]] = None,
        state: Optional[str] = None,
    ) -> HandleResult:
        """Reconcile one resource.

        Args:
            resource_type: Resource type, e.g. 'EC2'
            resource_id: Resource identifier
            tags: Current tag map; fetched when not given
            state: Optional lifecycle state; dead states remove everything

        Raises:
            RetryExhaustedError: The rules batch did not converge
        """
        if state and state.lower() in DEAD_STATES:
            logger.info(f"{resource_type} {resource_id} is {state}, removing all alarms")
            return HandleResult(decision=self._remove_everything(resource_type, resource_id, state))

        if tags is None:
            tags = self.inventory.get_tags(resource_type, resource_id)

        is_reporting = self.is_reporting(resource_type, resource_id, tags)
        decision = self.selector.apply(
            resource_type, resource_id, tags, is_reporting, self.threshold, self.rules
        )
        result = HandleResult(decision=decision)

        if not decision.enabled:
            logger.info(f"Alarms disabled for {resource_type} {resource_id}")
            return result

        if decision.backend is Backend.THRESHOLD:
            result.threshold = self.threshold.reconcile(resource_type, resource_id, tags)
            return result

        try:
            result.batch = self.batch.run(resource_type, expected=[resource_id])
        except RuleCapacityExceededError as e:
            logger.warning(f"{e}; managing {resource_id} with CloudWatch alarms instead")
            result.fell_back = True
            result.threshold = self.threshold.reconcile(resource_type, resource_id, tags)
            self.rules.delete_rules_for_resource(
                self.settings.prometheus_workspace_id, resource_type, resource_id
            )
        return result

    def plan(
        self,
        resource_type: str,
        resource_id: str,
        tags: Optional[Mapping[str, str]] = None,
        state: Optional[str] = None,
    ) -> BackendDecision:
        """Work out the backend decision without changing anything."""
        if state and state.lower() in DEAD_STATES:
            return BackendDecision(resource_id, False, None, f"resource {state}")
        if tags is None:
            tags = self.inventory.get_tags(resource_type, resource_id)
        return self.selector.decide(
            resource_id, tags, self.is_reporting(resource_type, resource_id, tags)
        )

    def is_reporting(
        self, resource_type: str, resource_id: str, tags: Mapping[str, str]
    ) -> bool:
        """Whether the resource currently reports to the configured workspace."""
        if not self.settings.rules_backend_configured or self.reporting is None:
            return False
        if self.selector.explicit_target(resource_id, tags) is not None:
            # the target tag decides, no need to ask the workspace
            return False
        identifier = self.inventory.get_reporting_identifiers(
            resource_type, [resource_id]
        ).get(resource_id)
        if identifier is None:
            return False
        reporting = self.reporting.is_reporting(
            resource_type, self.settings.prometheus_workspace_id
        )
        return identifier in reporting

    def _remove_everything(
        self, resource_type: str, resource_id: str, state: str
    ) -> BackendDecision:
        self.threshold.delete_all_alarms(resource_type, resource_id)
        if self.rules is not None and self.settings.rules_backend_configured:
            self.rules.delete_rules_for_resource(
                self.settings.prometheus_workspace_id, resource_type, resource_id
            )
        return BackendDecision(resource_id, False, None, f"resource {state}")
