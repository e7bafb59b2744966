# ====================================================
# Standard Library Imports
# ====================================================
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set

from botocore.exceptions import BotoCoreError, ClientError

# ====================================================
# Internal Module Imports
# ====================================================
from ..constants import ENABLED_TAG, HEALTH_ALARMS
from ..exceptions import ThresholdBackendError
from ..settings import Settings
from ..utils import chunks
from .alarm_config import (
    AlarmCategory,
    AlarmClassification,
    AlarmIdentity,
    MetricAlarmConfig,
    MetricAlarmOptions,
    ResolvedMetric,
)
from .config_loader import ConfigRegistry
from .dimensions import DimensionResolver
from .options_parser import is_extended_statistic, parse

# ====================================================
# Logger Setup
# ====================================================
logger = logging.getLogger(__name__)

# CloudWatch limit for DeleteAlarms
DELETE_BATCH_SIZE = 100
ANOMALY_BAND_PATTERN = re.compile(r"ANOMALY_DETECTION_BAND\(\s*m1\s*,\s*([0-9.]+)\s*\)")
# Existing actions are carried over so updates don't drop them
ACTION_FIELDS = ("AlarmActions", "OKActions", "InsufficientDataActions")


@dataclass
class ReconcileSummary:
    """What a reconciliation pass changed for one resource."""

    resource_type: str
    resource_id: str
    created: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    kept: Set[str] = field(default_factory=set)

    @property
    def mutations(self) -> int:
        return len(self.created) + len(self.updated) + len(self.deleted)


# ====================================================
# ThresholdAlarmReconciler Class Definition
# ====================================================
class ThresholdAlarmReconciler:
    """
    Converges the CloudWatch alarms of one resource to the state its tags
    describe: creates missing alarms, updates drifted ones, and deletes
    every owned alarm that the pass does not keep.
    """

    def __init__(
        self,
        cloudwatch: Any,
        resolver: DimensionResolver,
        settings: Optional[Settings] = None,
        registry: Optional[ConfigRegistry] = None,
    ) -> None:
        self.cloudwatch = cloudwatch
        self.resolver = resolver
        self.settings = settings or Settings()
        self.registry = registry or ConfigRegistry(self.settings.catalog_path)

    # ----------------------------
    # Public Methods
    # ----------------------------
    def reconcile(
        self,
        resource_type: str,
        resource_id: str,
        tags: Mapping[str, str],
        configs: Optional[Sequence[MetricAlarmConfig]] = None,
    ) -> ReconcileSummary:
        """Run one reconciliation pass for a resource."""
        summary = ReconcileSummary(resource_type, resource_id)
        if configs is None:
            configs = self.registry.get_configs(resource_type)

        if tags.get(self.settings.tag_key(ENABLED_TAG)) != "true":
            logger.info(
                f"Alarms not enabled for {resource_type} {resource_id}, deleting owned alarms"
            )
            summary.deleted = self.delete_all_alarms(resource_type, resource_id)
            return summary

        existing = self.list_owned_alarms(resource_type, resource_id)
        metric_keys = [config.tag_key for config in configs]

        self._ensure_health_alarm(resource_type, resource_id, existing, summary)

        for config in configs:
            raw_value = tags.get(self.settings.tag_key(config.tag_key))
            if raw_value is None and not config.default_create:
                logger.debug(
                    f"No tag for {config.tag_key} on {resource_id} and not created by default"
                )
                continue

            options = parse(raw_value, config.defaults, config.category)
            try:
                resolved = self.resolver.resolve(resource_id, config)
            except Exception as e:
                logger.error(
                    f"Failed to resolve dimensions for {resource_id} {config.tag_key}: {e}"
                )
                summary.kept.update(
                    self._alarms_for_metric(existing, config, metric_keys)
                )
                continue

            for metric in resolved:
                self._reconcile_metric(
                    resource_type, resource_id, config, options, metric, existing, summary
                )

        remaining = self.list_owned_alarms(resource_type, resource_id)
        stale = sorted(set(remaining) - summary.kept)
        if stale:
            self.delete_alarms(stale)
            summary.deleted.extend(stale)

        logger.info(
            f"Reconciled {resource_type} {resource_id}: created={len(summary.created)} "
            f"updated={len(summary.updated)} deleted={len(summary.deleted)} "
            f"kept={len(summary.kept)}"
        )
        return summary

    def delete_all_alarms(self, resource_type: str, resource_id: str) -> List[str]:
        """Delete every alarm owned by a resource; returns the deleted names."""
        names = sorted(self.list_owned_alarms(resource_type, resource_id))
        if not names:
            logger.info(f"No alarms to delete for {resource_type} {resource_id}.")
            return []
        self.delete_alarms(names)
        return names

    def list_owned_alarms(
        self, resource_type: str, resource_id: str
    ) -> Dict[str, Dict[str, Any]]:
        """Read the live alarms owned by a resource, keyed by name."""
        alarms: Dict[str, Dict[str, Any]] = {}
        paginator = self.cloudwatch.get_paginator("describe_alarms")
        for prefix in AlarmIdentity.owned_prefixes(
            resource_type, resource_id, self.settings.alarm_prefix
        ):
            try:
                for page in paginator.paginate(
                    AlarmNamePrefix=prefix, AlarmTypes=["MetricAlarm"]
                ):
                    for alarm in page.get("MetricAlarms", []):
                        # the prefix also matches longer ids such as orders-dlq
                        if AlarmIdentity.is_owned_by(alarm["AlarmName"], resource_id):
                            alarms[alarm["AlarmName"]] = alarm
            except (BotoCoreError, ClientError) as e:
                logger.error(f"Failed to describe alarms with prefix {prefix}: {e}")
                raise ThresholdBackendError(
                    f"Cannot list alarms for {resource_type} {resource_id}"
                ) from e
        return alarms

    def delete_alarms(self, alarm_names: Iterable[str]) -> None:
        """Delete alarms in as few batch calls as the API allows."""
        names = list(alarm_names)
        for batch in chunks(names, DELETE_BATCH_SIZE):
            try:
                self.cloudwatch.delete_alarms(AlarmNames=batch)
                logger.info(f"Successfully deleted alarms: {batch}")
            except (BotoCoreError, ClientError) as e:
                logger.error(f"Error deleting alarms {batch}: {e}")
                raise ThresholdBackendError(f"Failed to delete alarms {batch}") from e

    # ----------------------------
    # Per-metric Reconciliation
    # ----------------------------
    def _reconcile_metric(
        self,
        resource_type: str,
        resource_id: str,
        config: MetricAlarmConfig,
        options: MetricAlarmOptions,
        metric: ResolvedMetric,
        existing: Dict[str, Dict[str, Any]],
        summary: ReconcileSummary,
    ) -> None:
        for classification in config.classifications():
            identity = AlarmIdentity(
                resource_type=resource_type,
                category=config.category,
                resource_id=resource_id,
                classification=classification,
                metric_key=config.tag_key,
                path=metric.path,
                owner=self.settings.alarm_prefix,
            )
            name = identity.name
            threshold = (
                options.anomaly_detection_threshold
                if config.anomaly
                else options.threshold_for(classification)
            )

            if threshold is None:
                if name in existing:
                    logger.info(f"{classification.value} disabled by tag, deleting {name}")
                    self.delete_alarms([name])
                    summary.deleted.append(name)
                    existing.pop(name, None)
                continue

            if config.anomaly:
                request = self._build_anomaly_request(name, metric, options, threshold)
            else:
                request = self._build_static_request(name, metric, options, threshold)

            current = existing.get(name)
            if current is None:
                self._put_alarm(request, current)
                summary.created.append(name)
            elif self._needs_update(current, request, config.anomaly):
                logger.info(f"Alarm {name} drifted, updating")
                self._put_alarm(request, current)
                summary.updated.append(name)
            else:
                logger.debug(f"Alarm {name} up to date")
            summary.kept.add(name)

    def _ensure_health_alarm(
        self,
        resource_type: str,
        resource_id: str,
        existing: Dict[str, Dict[str, Any]],
        summary: ReconcileSummary,
    ) -> None:
        health = HEALTH_ALARMS.get(resource_type)
        if not health:
            logger.debug(f"No health alarm defined for {resource_type}")
            return
        identity = AlarmIdentity(
            resource_type=resource_type,
            category=AlarmCategory.STATIC,
            resource_id=resource_id,
            classification=AlarmClassification.CRITICAL,
            metric_key=str(health["metric_name"]),
            owner=self.settings.alarm_prefix,
        )
        options = MetricAlarmOptions(
            critical_threshold=float(health["threshold"]),
            period=int(health["period"]),
            evaluation_periods=int(health["evaluation_periods"]),
            data_points_to_alarm=int(health["evaluation_periods"]),
            statistic=str(health["statistic"]),
            comparison_operator=str(health["comparison_operator"]),
            missing_data_treatment=str(health["missing_data_treatment"]),
        )
        metric = ResolvedMetric(
            metric_name=str(health["metric_name"]),
            namespace=str(health["namespace"]),
            dimensions=[{"Name": str(health["dimension_key"]), "Value": resource_id}],
        )
        request = self._build_static_request(
            identity.name, metric, options, float(health["threshold"])
        )
        current = existing.get(identity.name)
        if current is None:
            self._put_alarm(request, current)
            summary.created.append(identity.name)
        elif self._needs_update(current, request, anomaly=False):
            self._put_alarm(request, current)
            summary.updated.append(identity.name)
        summary.kept.add(identity.name)

    # ----------------------------
    # Helper Methods
    # ----------------------------
    def _alarms_for_metric(
        self,
        existing: Dict[str, Dict[str, Any]],
        config: MetricAlarmConfig,
        metric_keys: List[str],
    ) -> Set[str]:
        """Existing alarm names belonging to one catalog metric."""
        names = set()
        for name in existing:
            identity = AlarmIdentity.parse(name, metric_keys)
            if (
                identity
                and identity.metric_key == config.tag_key
                and identity.category is config.category
            ):
                names.add(name)
        return names

    def _build_static_request(
        self,
        name: str,
        metric: ResolvedMetric,
        options: MetricAlarmOptions,
        threshold: float,
    ) -> Dict[str, Any]:
        request: Dict[str, Any] = {
            "AlarmName": name,
            "AlarmDescription": f"Static threshold alarm for {metric.metric_name}",
            "MetricName": metric.metric_name,
            "Namespace": metric.namespace,
            "Dimensions": metric.dimensions,
            "Period": options.period,
            "EvaluationPeriods": options.evaluation_periods,
            "DatapointsToAlarm": options.data_points_to_alarm,
            "Threshold": float(threshold),
            "ComparisonOperator": options.comparison_operator,
            "TreatMissingData": options.missing_data_treatment,
            "Tags": self._build_alarm_tags(),
        }
        if is_extended_statistic(options.statistic):
            request["ExtendedStatistic"] = options.statistic
        else:
            request["Statistic"] = options.statistic
        return request

    def _build_anomaly_request(
        self,
        name: str,
        metric: ResolvedMetric,
        options: MetricAlarmOptions,
        band: float,
    ) -> Dict[str, Any]:
        return {
            "AlarmName": name,
            "AlarmDescription": f"Anomaly detection alarm for {metric.metric_name}",
            "ComparisonOperator": options.comparison_operator,
            "EvaluationPeriods": options.evaluation_periods,
            "DatapointsToAlarm": options.data_points_to_alarm,
            "TreatMissingData": options.missing_data_treatment,
            "ThresholdMetricId": "ad1",
            "Metrics": [
                {
                    "Id": "m1",
                    "MetricStat": {
                        "Metric": {
                            "Namespace": metric.namespace,
                            "MetricName": metric.metric_name,
                            "Dimensions": metric.dimensions,
                        },
                        "Period": options.period,
                        "Stat": options.statistic,
                    },
                    "ReturnData": True,
                },
                {
                    "Id": "ad1",
                    "Expression": f"ANOMALY_DETECTION_BAND(m1, {_format_number(band)})",
                    "Label": f"{metric.metric_name} (expected)",
                    "ReturnData": True,
                },
            ],
            "Tags": self._build_alarm_tags(),
        }

    def _needs_update(
        self, current: Dict[str, Any], request: Dict[str, Any], anomaly: bool
    ) -> bool:
        """Compare the live alarm with the desired request on tunable fields."""
        evaluation_periods = current.get("EvaluationPeriods")
        observed = {
            "EvaluationPeriods": evaluation_periods,
            "DatapointsToAlarm": current.get("DatapointsToAlarm", evaluation_periods),
            "ComparisonOperator": current.get("ComparisonOperator"),
            "TreatMissingData": current.get("TreatMissingData", "missing"),
        }
        desired = {key: request[key] for key in observed}

        if anomaly:
            stat = _metric_stat(current)
            observed["Period"] = stat.get("Period")
            observed["Stat"] = stat.get("Stat")
            observed["Band"] = _anomaly_band(current)
            request_stat = request["Metrics"][0]["MetricStat"]
            desired["Period"] = request_stat["Period"]
            desired["Stat"] = request_stat["Stat"]
            desired["Band"] = _anomaly_band(request)
        else:
            observed["Period"] = current.get("Period")
            observed["Threshold"] = _as_float(current.get("Threshold"))
            observed["Statistic"] = current.get("ExtendedStatistic") or current.get("Statistic")
            desired["Period"] = request["Period"]
            desired["Threshold"] = request["Threshold"]
            desired["Statistic"] = request.get("ExtendedStatistic") or request.get("Statistic")

        drift = {k: (observed[k], desired[k]) for k in desired if observed[k] != desired[k]}
        if drift:
            logger.info(f"Alarm {request['AlarmName']} needs update: {drift}")
        return bool(drift)

    def _put_alarm(self, request: Dict[str, Any], current: Optional[Dict[str, Any]]) -> None:
        """Create or overwrite one alarm."""
        request = dict(request)
        if current:
            for key in ACTION_FIELDS:
                if current.get(key):
                    request[key] = current[key]
        try:
            self.cloudwatch.put_metric_alarm(**request)
            logger.info(f"Successfully deployed alarm: {request['AlarmName']}")
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to deploy alarm {request['AlarmName']}: {e}")
            raise ThresholdBackendError(
                f"Failed to deploy alarm {request['AlarmName']}"
            ) from e

    def _build_alarm_tags(self) -> List[Dict[str, str]]:
        """Create standardized tags for CloudWatch alarms."""
        return [
            {"Key": "managed_by", "Value": self.settings.alarm_prefix},
            {"Key": "ResourceType", "Value": "CloudWatchAlarm"},
        ]


def _metric_stat(alarm: Dict[str, Any]) -> Dict[str, Any]:
    for query in alarm.get("Metrics", []):
        if query.get("Id") == "m1":
            return query.get("MetricStat", {})
    return {}


def _anomaly_band(alarm: Dict[str, Any]) -> Optional[float]:
    for query in alarm.get("Metrics", []):
        match = ANOMALY_BAND_PATTERN.search(query.get("Expression") or "")
        if match:
            return float(match.group(1))
    return None


def _as_float(value: Any) -> Optional[float]:
    return None if value is None else float(value)


def _format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)
