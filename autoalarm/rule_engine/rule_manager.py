import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence

from botocore.exceptions import ClientError

from ..alarm_engine.alarm_config import AlarmIdentity, MetricAlarmConfig
from ..alarm_engine.config_loader import ConfigRegistry
from ..alarm_engine.options_parser import parse
from ..exceptions import RuleCapacityExceededError
from ..settings import Settings
from .rule_document import AlertRule, RuleGroupNamespace, build_rule, namespace_name

logger = logging.getLogger(__name__)


@dataclass
class CohortMember:
    """One resource in a rules-backend batch."""

    resource_id: str
    tags: Mapping[str, str]
    # label value the exporter reports under, e.g. the private IP for EC2
    identifier: Optional[str] = None

    @property
    def reporting_identifier(self) -> str:
        return self.identifier or self.resource_id


@dataclass
class RuleUpsertResult:
    namespace: str
    created_namespace: bool = False
    added: List[str] = field(default_factory=list)
    replaced: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)

    @property
    def written(self) -> bool:
        return self.created_namespace or bool(self.added or self.replaced or self.removed)


class RuleAlarmReconciler:
    """
    Converges Prometheus alerting rules in an Amazon Managed Service for
    Prometheus workspace. Each resource type owns one rule groups namespace,
    which is read, modified and written back as a whole document.
    """

    def __init__(
        self,
        amp: Any,
        settings: Optional[Settings] = None,
        registry: Optional[ConfigRegistry] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.amp = amp
        self.settings = settings or Settings()
        self.registry = registry or ConfigRegistry(self.settings.catalog_path)
        self.sleep = sleep

    # ---- Workspace inspection ----
    def list_namespaces(self, workspace_id: str) -> List[str]:
        names: List[str] = []
        paginator = self.amp.get_paginator("list_rule_groups_namespaces")
        for page in paginator.paginate(workspaceId=workspace_id):
            names.extend(ns["name"] for ns in page.get("ruleGroupsNamespaces", []))
        return names

    def get_namespace(self, workspace_id: str, name: str) -> Optional[RuleGroupNamespace]:
        """Fetch and parse a namespace document, or None if it does not exist."""
        try:
            response = self.amp.describe_rule_groups_namespace(
                workspaceId=workspace_id, name=name
            )
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "ResourceNotFoundException":
                return None
            logger.error(f"Failed to describe rule groups namespace {name}: {e}")
            raise
        data = response.get("ruleGroupsNamespace", {}).get("data")
        return RuleGroupNamespace.from_yaml(name, data)

    def count_rules(self, workspace_id: str, namespaces: Iterable[str]) -> int:
        total = 0
        for name in namespaces:
            document = self.get_namespace(workspace_id, name)
            if document is not None:
                total += document.rule_count
        return total

    def check_capacity(self, workspace_id: str) -> List[str]:
        """Refuse to go on when the workspace is at the rule ceiling.

        Returns the namespace names so callers don't list them twice.
        """
        namespaces = self.list_namespaces(workspace_id)
        total = self.count_rules(workspace_id, namespaces)
        limit = self.settings.rule_capacity_limit
        logger.info(
            f"Workspace {workspace_id} holds {total} rules across {len(namespaces)} namespaces"
        )
        if total >= limit:
            logger.error(f"Rule capacity reached in workspace {workspace_id}: {total}/{limit}")
            raise RuleCapacityExceededError(total, limit, workspace_id)
        return namespaces

    # ---- Desired state ----
    def desired_rules(
        self,
        resource_type: str,
        cohort: Sequence[CohortMember],
        configs: Optional[Sequence[MetricAlarmConfig]] = None,
    ) -> List[AlertRule]:
        if configs is None:
            configs = self.registry.get_configs(resource_type)
        rule_configs = [c for c in configs if c.prometheus_expr and not c.anomaly]

        rules: List[AlertRule] = []
        for member in cohort:
            for config in rule_configs:
                raw_value = member.tags.get(self.settings.tag_key(config.tag_key))
                if raw_value is None and not config.default_create:
                    continue
                options = parse(raw_value, config.defaults, config.category)
                for classification in config.classifications():
                    threshold = options.threshold_for(classification)
                    if threshold is None:
                        continue
                    identity = AlarmIdentity(
                        resource_type=resource_type,
                        category=config.category,
                        resource_id=member.resource_id,
                        classification=classification,
                        metric_key=config.tag_key,
                        owner=self.settings.alarm_prefix,
                    )
                    rules.append(
                        build_rule(
                            identity, config, options, threshold, member.reporting_identifier
                        )
                    )
        return rules

    # ---- Mutations ----
    def reconcile_cohort(
        self,
        workspace_id: str,
        resource_type: str,
        cohort: Sequence[CohortMember],
        configs: Optional[Sequence[MetricAlarmConfig]] = None,
    ) -> RuleUpsertResult:
        """Upsert the rules of a whole cohort with one read-modify-write."""
        name = namespace_name(self.settings.alarm_prefix, resource_type)
        result = RuleUpsertResult(namespace=name)

        namespaces = self.check_capacity(workspace_id)
        desired = self.desired_rules(resource_type, cohort, configs)

        if name not in namespaces:
            if not desired:
                logger.info(f"No rules desired for {resource_type}, not creating {name}")
                return result
            document = RuleGroupNamespace(name=name)
            group = document.ensure_group(name)
            group.rules = [rule.to_dict() for rule in desired]
            self.amp.create_rule_groups_namespace(
                workspaceId=workspace_id, name=name, data=document.to_bytes()
            )
            result.created_namespace = True
            result.added = [rule.alert for rule in desired]
            logger.info(f"Created rule groups namespace {name} with {len(desired)} rules")
            self._wait_for_propagation(name)
            return result

        document = self.get_namespace(workspace_id, name) or RuleGroupNamespace(name=name)
        group = document.ensure_group(name)

        for rule in desired:
            index = group.find(rule.alert)
            if index is None:
                group.rules.append(rule.to_dict())
                result.added.append(rule.alert)
                continue
            current = group.rules[index]
            if current.get("expr") != rule.expr or current.get("for") != rule.for_:
                current["expr"] = rule.expr
                current["for"] = rule.for_
                result.replaced.append(rule.alert)

        # drop rules of cohort members that are no longer desired
        desired_names = {rule.alert for rule in desired}
        owner_prefix = f"{self.settings.alarm_prefix}-{resource_type}-"
        cohort_ids = {m.resource_id for m in cohort}
        kept_rules = []
        for rule in group.rules:
            alert = rule.get("alert", "")
            owned = alert.startswith(owner_prefix) and _owner(alert) in cohort_ids
            if owned and alert not in desired_names:
                result.removed.append(alert)
                continue
            kept_rules.append(rule)
        group.rules = kept_rules

        if not result.written:
            logger.info(f"Rule groups namespace {name} already up to date")
            return result

        self._put_namespace(workspace_id, document)
        logger.info(
            f"Updated {name}: added={len(result.added)} replaced={len(result.replaced)} "
            f"removed={len(result.removed)}"
        )
        self._wait_for_propagation(name)
        return result

    def delete_rules_for_resource(
        self, workspace_id: str, resource_type: str, resource_id: str
    ) -> List[str]:
        return self.delete_rules_for_resources(workspace_id, resource_type, [resource_id])

    def delete_rules_for_resources(
        self, workspace_id: str, resource_type: str, resource_ids: Iterable[str]
    ) -> List[str]:
        """Remove every rule naming one of the resources, in a single write."""
        resource_ids = list(resource_ids)
        if not resource_ids:
            return []
        name = namespace_name(self.settings.alarm_prefix, resource_type)
        document = self.get_namespace(workspace_id, name)
        if document is None:
            logger.info(f"Rule groups namespace {name} does not exist, nothing to delete")
            return []

        removed: List[str] = []
        for group in document.groups:
            kept_rules = []
            for rule in group.rules:
                alert = rule.get("alert", "")
                if _owner(alert) in resource_ids:
                    removed.append(alert)
                else:
                    kept_rules.append(rule)
            group.rules = kept_rules
        if not removed:
            logger.info(f"No rules in {name} for {resource_ids}")
            return []

        document.groups = [group for group in document.groups if group.rules]
        self._put_namespace(workspace_id, document)
        logger.info(f"Deleted {len(removed)} rules from {name}")
        self._wait_for_propagation(name)
        return removed

    # ---- Helpers ----
    def _put_namespace(self, workspace_id: str, document: RuleGroupNamespace) -> None:
        try:
            self.amp.put_rule_groups_namespace(
                workspaceId=workspace_id, name=document.name, data=document.to_bytes()
            )
        except ClientError as e:
            logger.error(f"Failed to write rule groups namespace {document.name}: {e}")
            raise

    def _wait_for_propagation(self, name: str) -> None:
        delay = self.settings.propagation_delay
        if delay > 0:
            logger.info(f"Waiting {delay}s for {name} to propagate")
            self.sleep(delay)


def _owner(alert: str) -> Optional[str]:
    identity = AlarmIdentity.parse(alert)
    return identity.resource_id if identity else None
