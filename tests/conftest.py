# =====================================================================
# AutoAlarm Pytest Configuration and Fixtures
# =====================================================================
# In-memory stand-ins for the CloudWatch and AMP clients, shared by the
# reconciler tests. They record every call so tests can count writes.
# =====================================================================

import copy
from typing import Any, Callable, Dict, List
from unittest.mock import Mock

import pytest
from botocore.exceptions import ClientError

from autoalarm.alarm_engine.config_loader import ConfigRegistry
from autoalarm.alarm_engine.dimensions import CloudWatchDimensionResolver
from autoalarm.settings import Settings


class FakePaginator:
    def __init__(self, pages: Callable[..., List[Dict[str, Any]]]):
        self._pages = pages

    def paginate(self, **kwargs):
        return iter(self._pages(**kwargs))


class FakeCloudWatch:
    """Just enough of the CloudWatch client for the alarm reconciler."""

    MUTATING = {"put_metric_alarm", "delete_alarms", "set_alarm_state"}

    def __init__(self):
        self.alarms: Dict[str, Dict[str, Any]] = {}
        self.metrics: List[Dict[str, Any]] = []
        self.calls: List[tuple] = []

    # --- helpers for tests ---
    def add_alarm(self, name: str, **fields) -> Dict[str, Any]:
        alarm = {
            "AlarmName": name,
            "StateValue": "OK",
            "Period": 60,
            "EvaluationPeriods": 1,
            "DatapointsToAlarm": 1,
            "Threshold": 1.0,
            "Statistic": "Average",
            "ComparisonOperator": "GreaterThanThreshold",
            "TreatMissingData": "ignore",
        }
        alarm.update(fields)
        self.alarms[name] = alarm
        return alarm

    @property
    def mutating_calls(self) -> List[tuple]:
        return [call for call in self.calls if call[0] in self.MUTATING]

    def reset_calls(self) -> None:
        self.calls = []

    # --- client surface ---
    def get_paginator(self, operation: str) -> FakePaginator:
        if operation == "describe_alarms":
            return FakePaginator(self._describe_alarms)
        if operation == "list_metrics":
            return FakePaginator(self._list_metrics)
        raise NotImplementedError(operation)

    def _describe_alarms(self, AlarmNamePrefix: str = "", **kwargs):
        self.calls.append(("describe_alarms", {"AlarmNamePrefix": AlarmNamePrefix}))
        matching = [
            copy.deepcopy(alarm)
            for name, alarm in sorted(self.alarms.items())
            if name.startswith(AlarmNamePrefix or "")
        ]
        return [{"MetricAlarms": matching}]

    def _list_metrics(self, MetricName: str = None, **kwargs):
        self.calls.append(("list_metrics", {"MetricName": MetricName}))
        metrics = [m for m in self.metrics if m.get("MetricName") == MetricName]
        return [{"Metrics": metrics}]

    def put_metric_alarm(self, **kwargs):
        self.calls.append(("put_metric_alarm", kwargs))
        alarm = {k: copy.deepcopy(v) for k, v in kwargs.items() if k != "Tags"}
        alarm["StateValue"] = self.alarms.get(kwargs["AlarmName"], {}).get("StateValue", "OK")
        self.alarms[kwargs["AlarmName"]] = alarm
        return {}

    def delete_alarms(self, AlarmNames: List[str]):
        self.calls.append(("delete_alarms", {"AlarmNames": list(AlarmNames)}))
        for name in AlarmNames:
            self.alarms.pop(name, None)
        return {}

    def set_alarm_state(self, AlarmName: str, StateValue: str, StateReason: str):
        self.calls.append(("set_alarm_state", {"AlarmName": AlarmName, "StateValue": StateValue}))
        self.alarms[AlarmName]["StateValue"] = StateValue
        return {}


class FakeAmp:
    """Rule groups namespaces of one workspace, stored as raw YAML bytes."""

    MUTATING = {"create_rule_groups_namespace", "put_rule_groups_namespace"}

    def __init__(self):
        self.namespaces: Dict[str, bytes] = {}
        self.calls: List[tuple] = []

    @property
    def mutating_calls(self) -> List[tuple]:
        return [call for call in self.calls if call[0] in self.MUTATING]

    def get_paginator(self, operation: str) -> FakePaginator:
        if operation != "list_rule_groups_namespaces":
            raise NotImplementedError(operation)
        return FakePaginator(self._list_namespaces)

    def _list_namespaces(self, workspaceId: str, **kwargs):
        self.calls.append(("list_rule_groups_namespaces", {"workspaceId": workspaceId}))
        return [{"ruleGroupsNamespaces": [{"name": name} for name in sorted(self.namespaces)]}]

    def describe_rule_groups_namespace(self, workspaceId: str, name: str):
        self.calls.append(("describe_rule_groups_namespace", {"name": name}))
        if name not in self.namespaces:
            raise client_error("ResourceNotFoundException", "DescribeRuleGroupsNamespace")
        return {"ruleGroupsNamespace": {"name": name, "data": self.namespaces[name]}}

    def create_rule_groups_namespace(self, workspaceId: str, name: str, data: bytes):
        self.calls.append(("create_rule_groups_namespace", {"name": name}))
        self.namespaces[name] = data
        return {"name": name}

    def put_rule_groups_namespace(self, workspaceId: str, name: str, data: bytes):
        self.calls.append(("put_rule_groups_namespace", {"name": name}))
        self.namespaces[name] = data
        return {"name": name}


def client_error(code: str, operation: str = "Operation") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


# --- Catalog ---

@pytest.fixture(autouse=True)
def registry():
    """Load the shipped metric catalog fresh for every test."""
    ConfigRegistry.reset()
    yield ConfigRegistry()
    ConfigRegistry.reset()


# --- Settings ---

@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def rules_settings():
    return Settings(prometheus_workspace_id="ws-1", retry_attempts=3, retry_delay=5.0)


# --- Fake clients ---

@pytest.fixture
def cloudwatch():
    return FakeCloudWatch()


@pytest.fixture
def amp():
    return FakeAmp()


@pytest.fixture
def resolver(cloudwatch):
    return CloudWatchDimensionResolver(cloudwatch)


@pytest.fixture
def sleep():
    return Mock()


@pytest.fixture
def enabled_tags():
    return {"autoalarm:enabled": "true"}


@pytest.fixture
def make_client_error():
    return client_error
