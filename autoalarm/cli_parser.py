import argparse
import logging
from typing import List, NamedTuple, Optional

ACTIONS = ("reconcile", "batch", "realarm")


class CliArgs(NamedTuple):
    action: str
    resource_type: Optional[str]
    resource_id: Optional[str]
    state: Optional[str]
    dry_run: bool
    config: Optional[str]


class CliParser:
    @staticmethod
    def parse_arguments(argv: Optional[List[str]] = None) -> CliArgs:
        parser = argparse.ArgumentParser(description="AutoAlarm tag-driven alarm management")
        parser.add_argument(
            "action",
            choices=ACTIONS,
            help=(
                "Action to perform: 'reconcile' one resource, 'batch' the rules of a "
                "resource type, or 'realarm' alarms stuck in ALARM."
            ),
        )
        parser.add_argument(
            "--resource-type",
            "-t",
            type=str,
            help="Resource type (e.g., EC2, SQS, ALB).",
        )
        parser.add_argument(
            "--resource-id",
            "-r",
            type=str,
            help="Resource identifier (e.g., i-0123456789abcdef0).",
        )
        parser.add_argument(
            "--state",
            "-s",
            type=str,
            help="Lifecycle state from the triggering event (e.g., running, terminated).",
        )
        parser.add_argument(
            "--dry-run",
            "-dr",
            action="store_true",
            help="Print the backend decision without applying any changes.",
        )
        parser.add_argument(
            "--config",
            "-c",
            type=str,
            help="Path to a settings YAML file.",
        )
        args = parser.parse_args(argv)
        return CliArgs(
            action=args.action,
            resource_type=args.resource_type.upper() if args.resource_type else None,
            resource_id=args.resource_id,
            state=args.state,
            dry_run=args.dry_run,
            config=args.config,
        )

    @staticmethod
    def validate_args(args: CliArgs, logger: logging.Logger) -> None:
        """
        Check that the options each action needs are present. Raises a
        ValueError if validation fails.
        """
        missing = []
        if args.action in ("reconcile", "batch") and not args.resource_type:
            missing.append("--resource-type")
        if args.action == "reconcile" and not args.resource_id:
            missing.append("--resource-id")
        if missing:
            error_message = f"Action '{args.action}' requires {', '.join(missing)}."
            logger.error(error_message)
            raise ValueError(error_message)
