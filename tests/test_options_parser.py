# =====================================================================
# Options Parser Unit Tests
# =====================================================================
# Run with: pytest tests/test_options_parser.py -v
# =====================================================================

import pytest

from autoalarm.alarm_engine.alarm_config import AlarmCategory, MetricAlarmOptions
from autoalarm.alarm_engine.options_parser import (
    is_extended_statistic,
    normalize_period,
    parse,
    parse_statistic,
)


@pytest.fixture
def cpu_defaults():
    return MetricAlarmOptions(
        warning_threshold=95,
        critical_threshold=98,
        period=60,
        evaluation_periods=5,
        data_points_to_alarm=5,
        statistic="Maximum",
        comparison_operator="GreaterThanThreshold",
        missing_data_treatment="ignore",
    )


@pytest.fixture
def anomaly_defaults():
    return MetricAlarmOptions(
        anomaly_detection_threshold=2,
        period=300,
        evaluation_periods=2,
        data_points_to_alarm=2,
        statistic="Average",
        comparison_operator="GreaterThanUpperThreshold",
        missing_data_treatment="ignore",
    )


class TestStaticScenarios:
    def test_full_tag_overrides_everything(self, cpu_defaults):
        """Scenario A: every positional field is applied"""
        options = parse(
            "90/98/300/2/p95/2/GreaterThanThreshold/ignore",
            cpu_defaults,
            AlarmCategory.STATIC,
        )

        assert options.warning_threshold == 90
        assert options.critical_threshold == 98
        assert options.period == 300
        assert options.evaluation_periods == 2
        assert options.statistic == "p95"
        assert options.data_points_to_alarm == 2
        assert options.comparison_operator == "GreaterThanThreshold"
        assert options.missing_data_treatment == "ignore"

    def test_dash_disables_warning(self, cpu_defaults):
        """Scenario B: '-' nulls the warning, blanks inherit"""
        options = parse("-/98/////", cpu_defaults, AlarmCategory.STATIC)

        assert options.warning_threshold is None
        assert options.critical_threshold == 98
        assert options.period == cpu_defaults.period
        assert options.evaluation_periods == cpu_defaults.evaluation_periods
        assert options.statistic == cpu_defaults.statistic

    def test_dash_disables_critical_only(self, cpu_defaults):
        options = parse("80/-", cpu_defaults, AlarmCategory.STATIC)

        assert options.warning_threshold == 80
        assert options.critical_threshold is None


class TestDefaultInheritance:
    @pytest.mark.parametrize("raw", [None, "", "/", "///////", "  /  /  "])
    def test_blank_fields_equal_defaults(self, cpu_defaults, raw):
        assert parse(raw, cpu_defaults, AlarmCategory.STATIC) == cpu_defaults

    def test_unparseable_fields_fall_back(self, cpu_defaults):
        options = parse(
            "abc/xyz/often/never/p999x/many/Bigger/sometimes",
            cpu_defaults,
            AlarmCategory.STATIC,
        )

        assert options == cpu_defaults

    def test_non_positive_counts_fall_back(self, cpu_defaults):
        options = parse("//0/-3//0", cpu_defaults, AlarmCategory.STATIC)

        assert options.period == cpu_defaults.period
        assert options.evaluation_periods == cpu_defaults.evaluation_periods
        assert options.data_points_to_alarm == cpu_defaults.data_points_to_alarm

    def test_extra_fields_are_ignored(self, cpu_defaults):
        options = parse(
            "1/2/60/1/Sum/1/LessThanThreshold/breaching/extra",
            cpu_defaults,
            AlarmCategory.STATIC,
        )

        assert options.missing_data_treatment == "breaching"


class TestNormalisation:
    @pytest.mark.parametrize(
        "raw,expected",
        [(1, 10), (10, 10), (11, 30), (30, 30), (31, 60), (60, 60), (61, 120), (301, 360)],
    )
    def test_normalize_period(self, raw, expected):
        assert normalize_period(raw) == expected

    def test_parsed_period_is_normalised(self, cpu_defaults):
        options = parse("//45", cpu_defaults, AlarmCategory.STATIC)

        assert options.period == 60

    def test_data_points_clamped_to_evaluation_periods(self, cpu_defaults):
        options = parse("///3//10", cpu_defaults, AlarmCategory.STATIC)

        assert options.evaluation_periods == 3
        assert options.data_points_to_alarm == 3

    def test_case_insensitive_enums(self, cpu_defaults):
        options = parse(
            "////maximum//lessthanorequaltothreshold/NOTBREACHING",
            cpu_defaults,
            AlarmCategory.STATIC,
        )

        assert options.statistic == "Maximum"
        assert options.comparison_operator == "LessThanOrEqualToThreshold"
        assert options.missing_data_treatment == "notBreaching"


class TestStatistics:
    @pytest.mark.parametrize(
        "value",
        [
            "p95", "p99.9", "P50", "tm90", "wm(10%:90%)",
            "tc(:500)", "TS(10:)", "pr(100:2000)", "IQM",
        ],
    )
    def test_extended_statistics_accepted(self, value):
        assert parse_statistic(value, "Average") == value
        assert is_extended_statistic(value)

    @pytest.mark.parametrize("value", ["p", "p101", "median", "tm(90)", "pr"])
    def test_invalid_statistics_use_default(self, value):
        assert parse_statistic(value, "Average") == "Average"

    def test_standard_statistic_is_canonicalised(self):
        assert parse_statistic("samplecount", "Average") == "SampleCount"
        assert not is_extended_statistic("SampleCount")


class TestAnomaly:
    def test_anomaly_field_order(self, anomaly_defaults):
        options = parse(
            "3/p90/600/4/3/LessThanLowerThreshold/breaching",
            anomaly_defaults,
            AlarmCategory.ANOMALY,
        )

        assert options.anomaly_detection_threshold == 3
        assert options.statistic == "p90"
        assert options.period == 600
        assert options.evaluation_periods == 4
        assert options.data_points_to_alarm == 3
        assert options.comparison_operator == "LessThanLowerThreshold"
        assert options.missing_data_treatment == "breaching"

    def test_static_operator_rejected_for_anomaly(self, anomaly_defaults):
        options = parse("//////", anomaly_defaults, AlarmCategory.ANOMALY)
        rejected = parse("/////GreaterThanThreshold", anomaly_defaults, AlarmCategory.ANOMALY)

        assert options.comparison_operator == "GreaterThanUpperThreshold"
        assert rejected.comparison_operator == "GreaterThanUpperThreshold"

    def test_band_operator_rejected_for_static(self, cpu_defaults):
        options = parse(
            "//////GreaterThanUpperThreshold", cpu_defaults, AlarmCategory.STATIC
        )

        assert options.comparison_operator == "GreaterThanThreshold"

    def test_dash_disables_anomaly(self, anomaly_defaults):
        options = parse("-", anomaly_defaults, AlarmCategory.ANOMALY)

        assert options.anomaly_detection_threshold is None
        assert options.warning_threshold is None
