import logging
from typing import Any, Dict, List

from botocore.exceptions import BotoCoreError, ClientError

from .constants import ALARM_PREFIX

logger = logging.getLogger(__name__)

RESET_REASON = "Resetting state from AutoAlarm re-alarm"


class AlarmResetter:
    """Puts alarms stuck in ALARM back to OK so their actions fire again."""

    def __init__(self, cloudwatch: Any, alarm_prefix: str = ALARM_PREFIX) -> None:
        self.cloudwatch = cloudwatch
        self.alarm_prefix = alarm_prefix

    def get_alarms(self) -> List[Dict[str, Any]]:
        alarms: List[Dict[str, Any]] = []
        paginator = self.cloudwatch.get_paginator("describe_alarms")
        for page in paginator.paginate(
            AlarmNamePrefix=f"{self.alarm_prefix}-", PaginationConfig={"PageSize": 100}
        ):
            alarms.extend(page.get("MetricAlarms", []))
        logger.info(f"Total alarms found: {len(alarms)}")
        return alarms

    def reset_alarm_state(self, alarm_name: str) -> None:
        try:
            self.cloudwatch.set_alarm_state(
                AlarmName=alarm_name, StateValue="OK", StateReason=RESET_REASON
            )
            logger.info(f"Successfully reset alarm: {alarm_name}")
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to reset alarm {alarm_name}: {e}")
            raise

    def reset_alarms(self) -> List[str]:
        """Reset every owned alarm in ALARM state; returns the reset names.

        Alarms with an auto scaling action are skipped, resetting them would
        retrigger scaling.
        """
        reset: List[str] = []
        for alarm in self.get_alarms():
            if alarm.get("StateValue") != "ALARM":
                continue
            name = alarm["AlarmName"]
            actions = alarm.get("AlarmActions") or []
            if any("autoscaling" in action for action in actions):
                logger.info(f"Skipped resetting {name} due to Auto Scaling action")
                continue
            logger.info(f"{name} is in ALARM state, resetting")
            self.reset_alarm_state(name)
            reset.append(name)
        return reset


def reset_alarms(cloudwatch: Any, alarm_prefix: str = ALARM_PREFIX) -> List[str]:
    return AlarmResetter(cloudwatch, alarm_prefix).reset_alarms()
