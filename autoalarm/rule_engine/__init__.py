from .batch import BatchResult, RuleBatchDriver
from .prometheus_query import PrometheusReportingQuery, ReportingQueryError
from .rule_document import AlertRule, RuleGroup, RuleGroupNamespace
from .rule_manager import CohortMember, RuleAlarmReconciler, RuleUpsertResult

__all__ = [
    "BatchResult",
    "RuleBatchDriver",
    "PrometheusReportingQuery",
    "ReportingQueryError",
    "AlertRule",
    "RuleGroup",
    "RuleGroupNamespace",
    "CohortMember",
    "RuleAlarmReconciler",
    "RuleUpsertResult",
]
