import logging
from dataclasses import dataclass, field
from string import Template
from typing import Any, Dict, List, Optional, Union

import yaml

from ..alarm_engine.alarm_config import (
    AlarmIdentity,
    MetricAlarmConfig,
    MetricAlarmOptions,
)
from ..exceptions import RuleBackendError

logger = logging.getLogger(__name__)


@dataclass
class AlertRule:
    """A single Prometheus alerting rule."""

    alert: str
    expr: str
    for_: Optional[str] = None
    labels: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)
    # keys we don't manage (e.g. keep_firing_for) survive a round trip
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AlertRule":
        known = {"alert", "expr", "for", "labels", "annotations"}
        return cls(
            alert=data.get("alert", ""),
            expr=str(data.get("expr", "")),
            for_=data.get("for"),
            labels=dict(data.get("labels") or {}),
            annotations=dict(data.get("annotations") or {}),
            extra={k: v for k, v in data.items() if k not in known},
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"alert": self.alert, "expr": self.expr}
        if self.for_:
            data["for"] = self.for_
        if self.labels:
            data["labels"] = dict(self.labels)
        if self.annotations:
            data["annotations"] = dict(self.annotations)
        data.update(self.extra)
        return data


@dataclass
class RuleGroup:
    name: str
    rules: List[Dict[str, Any]] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)

    def alert_rules(self) -> List[AlertRule]:
        return [AlertRule.from_dict(rule) for rule in self.rules if "alert" in rule]

    def find(self, alert: str) -> Optional[int]:
        return next(
            (i for i, rule in enumerate(self.rules) if rule.get("alert") == alert), None
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name}
        data.update(self.extra)
        data["rules"] = self.rules
        return data


@dataclass
class RuleGroupNamespace:
    """The whole-document rule artifact stored per namespace."""

    name: str
    groups: List[RuleGroup] = field(default_factory=list)

    @property
    def rule_count(self) -> int:
        return sum(len(group.rules) for group in self.groups)

    def get_group(self, name: str) -> Optional[RuleGroup]:
        return next((g for g in self.groups if g.name == name), None)

    def ensure_group(self, name: str) -> RuleGroup:
        group = self.get_group(name)
        if group is None:
            group = RuleGroup(name=name)
            self.groups.append(group)
        return group

    @classmethod
    def from_yaml(cls, name: str, data: Union[str, bytes, None]) -> "RuleGroupNamespace":
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        try:
            document = yaml.safe_load(data or "") or {}
        except yaml.YAMLError as e:
            logger.error(f"Rule groups namespace {name} is not valid YAML: {e}")
            raise RuleBackendError(f"Cannot parse rule groups namespace {name}") from e
        groups = []
        for group in document.get("groups") or []:
            groups.append(
                RuleGroup(
                    name=group.get("name", ""),
                    rules=list(group.get("rules") or []),
                    extra={k: v for k, v in group.items() if k not in ("name", "rules")},
                )
            )
        return cls(name=name, groups=groups)

    def to_yaml(self) -> str:
        return yaml.safe_dump(
            {"groups": [group.to_dict() for group in self.groups]},
            sort_keys=False,
            default_flow_style=False,
        )

    def to_bytes(self) -> bytes:
        return self.to_yaml().encode("utf-8")


def namespace_name(prefix: str, resource_type: str) -> str:
    return f"{prefix}-{resource_type.upper()}"


def build_rule(
    identity: AlarmIdentity,
    config: MetricAlarmConfig,
    options: MetricAlarmOptions,
    threshold: float,
    identifier: str,
) -> AlertRule:
    """Render one alerting rule from a catalog PromQL template."""
    if not config.prometheus_expr:
        raise RuleBackendError(f"Metric {config.tag_key} has no Prometheus expression")
    expr = Template(config.prometheus_expr).safe_substitute(
        identifier=identifier, threshold=_format_threshold(threshold)
    )
    severity = identity.classification.value.lower()
    return AlertRule(
        alert=identity.name,
        expr=expr,
        for_=f"{options.period * options.evaluation_periods}s",
        labels={
            "severity": severity,
            "resource_type": identity.resource_type,
            "resource_id": identity.resource_id,
        },
        annotations={
            "summary": (
                f"{config.tag_key} {severity} threshold {_format_threshold(threshold)} "
                f"exceeded on {identity.resource_id}"
            ),
        },
    )


def _format_threshold(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)
