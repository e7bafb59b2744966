import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Iterable, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from ..constants import TRANSIENT_ERROR_CODES
from ..exceptions import AutoAlarmError, RetryExhaustedError
from ..settings import Settings
from .prometheus_query import PrometheusReportingQuery, ReportingQueryError
from .rule_manager import CohortMember, RuleAlarmReconciler, RuleUpsertResult

if TYPE_CHECKING:
    from ..alarm_engine.alarm_manager import ThresholdAlarmReconciler
    from ..backend_selector import BackendSelector
    from ..resources import ResourceInventory

logger = logging.getLogger(__name__)


class CohortNotReadyError(AutoAlarmError):
    """Expected resources are not yet visible as reporting."""

    pass


@dataclass
class BatchResult:
    resource_type: str
    cohort: List[str] = field(default_factory=list)
    threshold_managed: List[str] = field(default_factory=list)
    upsert: Optional[RuleUpsertResult] = None
    attempts: int = 0


class RuleBatchDriver:
    """
    Discovers the cohort of one resource type and upserts its rules with a
    single namespace write, retrying the whole discover/compute/upsert
    sequence on transient failure.
    """

    def __init__(
        self,
        rules: RuleAlarmReconciler,
        threshold: "ThresholdAlarmReconciler",
        inventory: "ResourceInventory",
        reporting: PrometheusReportingQuery,
        selector: "BackendSelector",
        settings: Optional[Settings] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.rules = rules
        self.threshold = threshold
        self.inventory = inventory
        self.reporting = reporting
        self.selector = selector
        self.settings = settings or rules.settings
        self.sleep = sleep
        self.clock = clock

    def run(self, resource_type: str, expected: Iterable[str] = ()) -> BatchResult:
        """Reconcile the rules of every resource of a type.

        Args:
            resource_type: Resource type, e.g. 'EC2'
            expected: Resource ids that must be in the cohort; their absence
                is treated as propagation lag and retried.

        Raises:
            RuleCapacityExceededError: The workspace is full, no write was made
            RetryExhaustedError: Transient failures outlasted the retry limit
        """
        expected = set(expected)
        started = self.clock()
        max_attempts = max(1, self.settings.retry_attempts)
        last_error: Optional[Exception] = None

        for attempt in range(1, max_attempts + 1):
            try:
                result = self._run_once(resource_type, expected)
                result.attempts = attempt
                return result
            except (CohortNotReadyError, ReportingQueryError, BotoCoreError) as e:
                last_error = e
            except ClientError as e:
                code = e.response.get("Error", {}).get("Code", "")
                if code not in TRANSIENT_ERROR_CODES:
                    raise
                last_error = e

            logger.warning(
                f"Attempt {attempt}/{max_attempts} for {resource_type} rules failed: {last_error}"
            )
            if attempt < max_attempts:
                self.sleep(self.settings.retry_delay)

        elapsed = self.clock() - started
        logger.error(f"Giving up on {resource_type} rules after {elapsed:.1f}s: {last_error}")
        raise RetryExhaustedError(
            f"Rule reconciliation for {resource_type} did not succeed",
            attempts=max_attempts,
            elapsed_seconds=elapsed,
        ) from last_error

    def _run_once(self, resource_type: str, expected: set) -> BatchResult:
        workspace_id = self.settings.prometheus_workspace_id
        result = BatchResult(resource_type=resource_type)

        enabled = self.inventory.get_enabled_resources(resource_type)
        if not enabled:
            logger.info(f"No enabled {resource_type} resources")
            if expected:
                raise CohortNotReadyError(f"{sorted(expected)} not yet tagged as enabled")
            return result

        reporting = self.reporting.is_reporting(resource_type, workspace_id)
        identifiers = self.inventory.get_reporting_identifiers(resource_type, enabled)

        cohort: List[CohortMember] = []
        for resource_id, tags in sorted(enabled.items()):
            identifier = identifiers.get(resource_id)
            decision = self.selector.decide(
                resource_id, tags, identifier is not None and identifier in reporting
            )
            if decision.update_rules:
                cohort.append(CohortMember(resource_id, tags, identifier))
            else:
                result.threshold_managed.append(resource_id)
        result.cohort = [member.resource_id for member in cohort]

        missing = expected - set(result.cohort)
        if missing:
            raise CohortNotReadyError(f"{sorted(missing)} not yet reporting")

        if cohort:
            result.upsert = self.rules.reconcile_cohort(workspace_id, resource_type, cohort)
            self._delete_threshold_alarms(resource_type, result.cohort)
        if result.threshold_managed:
            self.rules.delete_rules_for_resources(
                workspace_id, resource_type, result.threshold_managed
            )
        logger.info(
            f"{resource_type}: {len(result.cohort)} on Prometheus, "
            f"{len(result.threshold_managed)} on CloudWatch"
        )
        return result

    def _delete_threshold_alarms(self, resource_type: str, resource_ids: List[str]) -> None:
        with ThreadPoolExecutor(max_workers=self.settings.max_workers) as executor:
            futures = {
                executor.submit(self.threshold.delete_all_alarms, resource_type, rid): rid
                for rid in resource_ids
            }
            for future in as_completed(futures):
                rid = futures[future]
                try:
                    future.result()
                except Exception as e:
                    logger.error(f"Failed to delete CloudWatch alarms for {rid}: {e}")
                    raise
