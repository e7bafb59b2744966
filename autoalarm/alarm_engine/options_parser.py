"""
Parse the positional tag DSL into concrete alarm options.

Static tag value:
    warning/critical/period/evaluationPeriods/statistic/dataPoints/comparisonOperator/missingData

Anomaly tag value:
    bandWidth/statistic/period/evaluationPeriods/dataPoints/comparisonOperator/missingData

Blank or missing fields inherit the default, a literal '-' in a threshold
field disables that classification, and anything unparseable falls back to
the default. Parsing never raises.
"""

import logging
import math
import re
from dataclasses import replace
from typing import Dict, List, Optional

from ..constants import (
    ANOMALY_OPERATORS,
    MISSING_DATA_TREATMENTS,
    STANDARD_STATISTICS,
    STATIC_OPERATORS,
)
from .alarm_config import AlarmCategory, MetricAlarmOptions

logger = logging.getLogger(__name__)

DISABLED = "-"

STATIC_FIELDS: List[str] = [
    "warning_threshold",
    "critical_threshold",
    "period",
    "evaluation_periods",
    "statistic",
    "data_points_to_alarm",
    "comparison_operator",
    "missing_data_treatment",
]

ANOMALY_FIELDS: List[str] = [
    "anomaly_detection_threshold",
    "statistic",
    "period",
    "evaluation_periods",
    "data_points_to_alarm",
    "comparison_operator",
    "missing_data_treatment",
]

_EXTENDED_STATISTIC = re.compile(
    r"^(?:"
    r"(?:p|tm|wm|tc|ts)(?:100|\d{1,2})(?:\.\d+)?"
    r"|(?:tm|wm|tc|ts|pr)\(\s*\d+(?:\.\d+)?%?\s*:\s*\d+(?:\.\d+)?%?\s*\)"
    r"|(?:tm|wm|tc|ts|pr)\(\s*:\s*\d+(?:\.\d+)?%?\s*\)"
    r"|(?:tm|wm|tc|ts|pr)\(\s*\d+(?:\.\d+)?%?\s*:\s*\)"
    r"|iqm"
    r")$",
    re.IGNORECASE,
)


def parse(
    raw_tag_value: Optional[str],
    defaults: MetricAlarmOptions,
    category: AlarmCategory,
) -> MetricAlarmOptions:
    """Parse a tag value against a config's defaults."""
    names = ANOMALY_FIELDS if category is AlarmCategory.ANOMALY else STATIC_FIELDS
    parts = (raw_tag_value or "").split("/")
    raw: Dict[str, str] = {
        name: parts[i].strip() if i < len(parts) else ""
        for i, name in enumerate(names)
    }

    changes = {}
    for name in ("warning_threshold", "critical_threshold", "anomaly_detection_threshold"):
        if name in raw:
            changes[name] = _parse_threshold(raw[name], getattr(defaults, name), name)

    changes["period"] = _parse_period(raw["period"], defaults.period)
    changes["evaluation_periods"] = _parse_positive_int(
        raw["evaluation_periods"], defaults.evaluation_periods, "evaluation_periods"
    )
    changes["data_points_to_alarm"] = _parse_positive_int(
        raw["data_points_to_alarm"],
        defaults.data_points_to_alarm,
        "data_points_to_alarm",
    )
    changes["statistic"] = parse_statistic(raw["statistic"], defaults.statistic)
    operators = ANOMALY_OPERATORS if category is AlarmCategory.ANOMALY else STATIC_OPERATORS
    changes["comparison_operator"] = _match_enum(
        raw["comparison_operator"], operators, defaults.comparison_operator
    )
    changes["missing_data_treatment"] = _match_enum(
        raw["missing_data_treatment"],
        MISSING_DATA_TREATMENTS,
        defaults.missing_data_treatment,
    )

    options = replace(defaults, **changes)
    if options.data_points_to_alarm > options.evaluation_periods:
        logger.info(
            f"Datapoints {options.data_points_to_alarm} exceed evaluation periods "
            f"{options.evaluation_periods}, clamping"
        )
        options = replace(options, data_points_to_alarm=options.evaluation_periods)
    return options


def parse_statistic(value: str, default: str) -> str:
    if not value:
        return default
    standard = STANDARD_STATISTICS.get(value.lower())
    if standard:
        return standard
    if _EXTENDED_STATISTIC.match(value):
        return value
    logger.warning(f"Invalid statistic '{value}', using default {default}")
    return default


def is_extended_statistic(statistic: str) -> bool:
    return statistic.lower() not in STANDARD_STATISTICS


def normalize_period(period: int) -> int:
    """Round a period up to one CloudWatch accepts (10, 30 or a multiple of 60)."""
    if period <= 10:
        return 10
    if period <= 30:
        return 30
    return int(math.ceil(period / 60) * 60)


def _parse_threshold(value: str, default: Optional[float], name: str) -> Optional[float]:
    if value == DISABLED:
        return None
    if not value:
        return default
    try:
        parsed = float(value)
    except ValueError:
        logger.warning(f"Invalid {name} '{value}', using default {default}")
        return default
    if math.isnan(parsed) or math.isinf(parsed):
        return default
    return parsed


def _parse_period(value: str, default: int) -> int:
    if not value:
        return default
    try:
        parsed = int(value)
    except ValueError:
        logger.warning(f"Invalid period '{value}', using default {default}")
        return default
    if parsed <= 0:
        return default
    normalized = normalize_period(parsed)
    if normalized != parsed:
        logger.info(f"Period {parsed} adjusted to {normalized}")
    return normalized


def _parse_positive_int(value: str, default: int, name: str) -> int:
    if not value:
        return default
    try:
        parsed = int(value)
    except ValueError:
        logger.warning(f"Invalid {name} '{value}', using default {default}")
        return default
    return parsed if parsed > 0 else default


def _match_enum(value: str, choices: Dict[str, str], default: str) -> str:
    if not value:
        return default
    return choices.get(value.lower(), default)
