# =====================================================================
# Rule Alarm Reconciler Tests
# =====================================================================
# Exercises RuleAlarmReconciler against the in-memory AMP fake.
# =====================================================================

import pytest
import yaml

from autoalarm.exceptions import RuleBackendError, RuleCapacityExceededError
from autoalarm.rule_engine.rule_document import RuleGroup, RuleGroupNamespace
from autoalarm.rule_engine.rule_manager import CohortMember, RuleAlarmReconciler
from autoalarm.settings import Settings

WS = "ws-1"
NAMESPACE = "AutoAlarm-EC2"


def rule(alert, expr="up == 0", **extra):
    data = {"alert": alert, "expr": expr}
    data.update(extra)
    return data


def store(amp, name, *groups):
    amp.namespaces[name] = RuleGroupNamespace(name=name, groups=list(groups)).to_bytes()


def load(amp, name=NAMESPACE):
    return yaml.safe_load(amp.namespaces[name].decode("utf-8"))


def alerts(amp, name=NAMESPACE):
    return [r["alert"] for group in load(amp, name)["groups"] for r in group["rules"]]


@pytest.fixture
def reconciler(amp, rules_settings, registry, sleep):
    return RuleAlarmReconciler(amp, settings=rules_settings, registry=registry, sleep=sleep)


@pytest.fixture
def member(enabled_tags):
    return CohortMember("i-1", enabled_tags, "10.0.0.1")


class TestCapacityGuard:
    def test_full_workspace_refuses_before_writing(self, amp, registry, sleep, member):
        settings = Settings(prometheus_workspace_id=WS, rule_capacity_limit=3)
        store(amp, "Other", RuleGroup("other", [rule(f"r{i}") for i in range(3)]))
        reconciler = RuleAlarmReconciler(amp, settings=settings, registry=registry, sleep=sleep)

        with pytest.raises(RuleCapacityExceededError) as excinfo:
            reconciler.reconcile_cohort(WS, "EC2", [member])

        assert excinfo.value.rule_count == 3
        assert excinfo.value.fallback_to_threshold is True
        assert amp.mutating_calls == []
        sleep.assert_not_called()

    def test_counts_rules_across_all_namespaces(self, amp, reconciler):
        store(amp, "A", RuleGroup("a", [rule("a1"), rule("a2")]))
        store(amp, "B", RuleGroup("b1", [rule("b1")]), RuleGroup("b2", [rule("b2")]))

        assert reconciler.count_rules(WS, reconciler.list_namespaces(WS)) == 4

    def test_below_limit_passes(self, amp, reconciler):
        store(amp, "A", RuleGroup("a", [rule("a1")]))

        assert reconciler.check_capacity(WS) == ["A"]


class TestCreateNamespace:
    def test_missing_namespace_created_with_cohort_rules(self, amp, reconciler, member, sleep):
        result = reconciler.reconcile_cohort(WS, "EC2", [member])

        assert result.created_namespace is True
        assert [call[0] for call in amp.mutating_calls] == ["create_rule_groups_namespace"]
        document = load(amp)
        assert [group["name"] for group in document["groups"]] == [NAMESPACE]
        names = alerts(amp)
        assert "AutoAlarm-EC2-StaticThreshold-i-1-WARNING-cpu" in names
        assert "AutoAlarm-EC2-StaticThreshold-i-1-CRITICAL-memory" in names
        assert not any("AnomalyDetection" in name for name in names)
        sleep.assert_called_once_with(90.0)

    def test_rule_content(self, amp, reconciler, member):
        reconciler.reconcile_cohort(WS, "EC2", [member])

        cpu = next(
            r
            for r in load(amp)["groups"][0]["rules"]
            if r["alert"] == "AutoAlarm-EC2-StaticThreshold-i-1-CRITICAL-cpu"
        )
        assert '10.0.0.1:.*' in cpu["expr"]
        assert cpu["expr"].endswith("> 98")
        assert cpu["for"] == "300s"
        assert cpu["labels"] == {
            "severity": "critical",
            "resource_type": "EC2",
            "resource_id": "i-1",
        }

    def test_nothing_desired_creates_nothing(self, amp, reconciler):
        tags = {
            "autoalarm:enabled": "true",
            "autoalarm:cpu": "-/-",
            "autoalarm:memory": "-/-",
            "autoalarm:storage": "-/-",
        }

        result = reconciler.reconcile_cohort(WS, "EC2", [CohortMember("i-1", tags)])

        assert result.written is False
        assert amp.mutating_calls == []


class TestUpsert:
    def test_second_run_does_not_write(self, amp, reconciler, member, sleep):
        reconciler.reconcile_cohort(WS, "EC2", [member])
        amp.calls = []
        sleep.reset_mock()

        result = reconciler.reconcile_cohort(WS, "EC2", [member])

        assert result.written is False
        assert amp.mutating_calls == []
        sleep.assert_not_called()

    def test_changed_expression_replaced_in_place(self, amp, reconciler, member):
        reconciler.reconcile_cohort(WS, "EC2", [member])
        member.tags = dict(member.tags, **{"autoalarm:cpu": "80/90"})

        result = reconciler.reconcile_cohort(WS, "EC2", [member])

        assert sorted(result.replaced) == [
            "AutoAlarm-EC2-StaticThreshold-i-1-CRITICAL-cpu",
            "AutoAlarm-EC2-StaticThreshold-i-1-WARNING-cpu",
        ]
        assert result.added == []
        rules = {r["alert"]: r for r in load(amp)["groups"][0]["rules"]}
        assert rules["AutoAlarm-EC2-StaticThreshold-i-1-WARNING-cpu"]["expr"].endswith("> 80")

    def test_new_cohort_member_appended(self, amp, reconciler, member, enabled_tags):
        reconciler.reconcile_cohort(WS, "EC2", [member])
        before = alerts(amp)

        result = reconciler.reconcile_cohort(
            WS, "EC2", [member, CohortMember("i-2", enabled_tags, "10.0.0.2")]
        )

        assert result.replaced == []
        assert all("-i-2-" in name for name in result.added)
        assert alerts(amp)[: len(before)] == before
        assert [call[0] for call in amp.mutating_calls][-1] == "put_rule_groups_namespace"

    def test_rules_outside_cohort_untouched(self, amp, reconciler, member):
        foreign = rule(
            "AutoAlarm-EC2-StaticThreshold-i-9-WARNING-cpu", "stale > 1", labels={"team": "x"}
        )
        hand_made = rule("HighLoad", "load1 > 10")
        store(amp, NAMESPACE, RuleGroup(NAMESPACE, [foreign, hand_made], {"interval": "1m"}))

        reconciler.reconcile_cohort(WS, "EC2", [member])

        document = load(amp)
        group = document["groups"][0]
        assert group["interval"] == "1m"
        assert group["rules"][0] == foreign
        assert group["rules"][1] == hand_made

    def test_switched_off_classification_removed(self, amp, reconciler, member):
        reconciler.reconcile_cohort(WS, "EC2", [member])
        member.tags = dict(member.tags, **{"autoalarm:cpu": "-/98"})

        result = reconciler.reconcile_cohort(WS, "EC2", [member])

        assert result.removed == ["AutoAlarm-EC2-StaticThreshold-i-1-WARNING-cpu"]
        assert "AutoAlarm-EC2-StaticThreshold-i-1-WARNING-cpu" not in alerts(amp)
        assert "AutoAlarm-EC2-StaticThreshold-i-1-CRITICAL-cpu" in alerts(amp)

    def test_corrupt_document_raises(self, amp, reconciler, member):
        amp.namespaces[NAMESPACE] = b"groups: [unclosed"

        with pytest.raises(RuleBackendError):
            reconciler.reconcile_cohort(WS, "EC2", [member])


class TestDeleteByResource:
    def test_removes_only_matching_rules_and_empty_groups(self, amp, reconciler, sleep):
        store(
            amp,
            NAMESPACE,
            RuleGroup("g1", [rule("AutoAlarm-EC2-StaticThreshold-i-1-WARNING-cpu")]),
            RuleGroup(
                "g2",
                [
                    rule("AutoAlarm-EC2-StaticThreshold-i-1-CRITICAL-cpu"),
                    rule("AutoAlarm-EC2-StaticThreshold-i-10-CRITICAL-cpu"),
                ],
            ),
        )

        removed = reconciler.delete_rules_for_resource(WS, "EC2", "i-1")

        assert sorted(removed) == [
            "AutoAlarm-EC2-StaticThreshold-i-1-CRITICAL-cpu",
            "AutoAlarm-EC2-StaticThreshold-i-1-WARNING-cpu",
        ]
        document = load(amp)
        assert [g["name"] for g in document["groups"]] == ["g2"]
        assert alerts(amp) == ["AutoAlarm-EC2-StaticThreshold-i-10-CRITICAL-cpu"]
        sleep.assert_called_once_with(90.0)

    def test_batched_delete_is_one_write(self, amp, reconciler):
        store(
            amp,
            NAMESPACE,
            RuleGroup(
                NAMESPACE,
                [
                    rule("AutoAlarm-EC2-StaticThreshold-i-1-WARNING-cpu"),
                    rule("AutoAlarm-EC2-StaticThreshold-i-2-WARNING-cpu"),
                    rule("AutoAlarm-EC2-StaticThreshold-i-3-WARNING-cpu"),
                ],
            ),
        )

        reconciler.delete_rules_for_resources(WS, "EC2", (rid for rid in ["i-1", "i-2"]))

        assert len(amp.mutating_calls) == 1
        assert alerts(amp) == ["AutoAlarm-EC2-StaticThreshold-i-3-WARNING-cpu"]

    def test_no_match_is_a_no_op(self, amp, reconciler, sleep):
        store(
            amp,
            NAMESPACE,
            RuleGroup(NAMESPACE, [rule("AutoAlarm-EC2-StaticThreshold-i-2-WARNING-cpu")]),
        )

        assert reconciler.delete_rules_for_resource(WS, "EC2", "i-1") == []
        assert amp.mutating_calls == []
        sleep.assert_not_called()

    def test_missing_namespace_is_a_no_op(self, amp, reconciler):
        assert reconciler.delete_rules_for_resource(WS, "EC2", "i-1") == []
        assert amp.mutating_calls == []


class TestHyphenatedResourceIds:
    ORDERS = "AutoAlarm-SQS-StaticThreshold-orders-WARNING-messages-visible"
    ORDERS_DLQ = "AutoAlarm-SQS-StaticThreshold-orders-dlq-WARNING-messages-visible"

    def test_delete_keeps_longer_id_sharing_the_prefix(self, amp, reconciler):
        store(amp, "AutoAlarm-SQS", RuleGroup("g", [rule(self.ORDERS), rule(self.ORDERS_DLQ)]))

        removed = reconciler.delete_rules_for_resource(WS, "SQS", "orders")

        assert removed == [self.ORDERS]
        assert alerts(amp, "AutoAlarm-SQS") == [self.ORDERS_DLQ]

    def test_cohort_upsert_keeps_rules_of_non_members(self, amp, reconciler):
        store(
            amp,
            "AutoAlarm-SQS",
            RuleGroup("AutoAlarm-SQS", [rule(self.ORDERS), rule(self.ORDERS_DLQ)]),
        )
        member = CohortMember("orders", {"autoalarm:enabled": "true"})

        result = reconciler.reconcile_cohort(WS, "SQS", [member])

        assert result.removed == [self.ORDERS]
        assert alerts(amp, "AutoAlarm-SQS") == [self.ORDERS_DLQ]
