import logging
from pathlib import Path
from typing import Dict, Optional

# Internal Module Imports
from .alarm_engine import CloudWatchDimensionResolver, ConfigRegistry, ThresholdAlarmReconciler
from .backend_selector import BackendSelector
from .cli_parser import CliArgs, CliParser
from .logger import LoggerSetup
from .realarm import AlarmResetter
from .resources import ResourceInventory
from .rule_engine import PrometheusReportingQuery, RuleAlarmReconciler, RuleBatchDriver
from .service import AutoAlarmService
from .session import AwsClients, SessionManager
from .settings import Settings
from .utils import validate_config_paths

# Constants & Config
from .constants import LOG_FORMAT, METRIC_CATALOG


def config_paths(args: CliArgs, settings: Settings) -> Dict[str, Path]:
    paths = {"catalog": Path(settings.catalog_path or METRIC_CATALOG)}
    if args.config:
        paths["settings"] = Path(args.config)
    return paths


def build_service(settings: Settings, clients: AwsClients, session=None) -> AutoAlarmService:
    """Wire the reconcilers, inventory and selector for one invocation."""
    registry = ConfigRegistry(settings.catalog_path)
    threshold = ThresholdAlarmReconciler(
        clients.cloudwatch,
        CloudWatchDimensionResolver(clients.cloudwatch, clients.ec2, clients.sts),
        settings=settings,
        registry=registry,
    )
    inventory = ResourceInventory(
        clients.tagging,
        clients.ec2,
        tag_prefix=settings.tag_prefix,
        max_workers=settings.max_workers,
    )
    selector = BackendSelector(settings)

    rules = reporting = batch = None
    if settings.rules_backend_configured:
        rules = RuleAlarmReconciler(clients.amp, settings=settings, registry=registry)
        reporting = PrometheusReportingQuery(session, settings.region)
        batch = RuleBatchDriver(
            rules, threshold, inventory, reporting, selector, settings=settings
        )

    return AutoAlarmService(
        threshold,
        inventory,
        settings=settings,
        rules=rules,
        reporting=reporting,
        batch=batch,
        selector=selector,
    )


def run_action(
    args: CliArgs,
    settings: Settings,
    logger: logging.Logger,
    session=None,
    clients: Optional[AwsClients] = None,
) -> None:
    """Dispatch one CLI action against AWS."""
    if session is None:
        session = SessionManager.get_session(region=settings.region, role_arn=settings.role_arn)
    if clients is None:
        clients = AwsClients.from_session(session)

    if args.action == "realarm":
        resetter = AlarmResetter(clients.cloudwatch, settings.alarm_prefix)
        if args.dry_run:
            stuck = [
                a["AlarmName"] for a in resetter.get_alarms() if a.get("StateValue") == "ALARM"
            ]
            logger.info(f"Dry run mode enabled. {len(stuck)} alarms in ALARM state:")
            for name in sorted(stuck):
                logger.info(f"  {name}")
            return
        reset = resetter.reset_alarms()
        logger.info(f"Reset {len(reset)} alarms")
        return

    service = build_service(settings, clients, session)

    if args.action == "reconcile":
        if args.dry_run:
            decision = service.plan(
                args.resource_type, args.resource_id, state=args.state
            )
            logger.info(f"Dry run mode enabled. Decision: {decision}")
            return
        result = service.handle(args.resource_type, args.resource_id, state=args.state)
        logger.info(f"Completed {args.resource_type} {args.resource_id}: {result.decision.reason}")
    elif args.action == "batch":
        if service.batch is None:
            raise ValueError("The batch action needs a Prometheus workspace id")
        if args.dry_run:
            enabled = service.inventory.get_enabled_resources(args.resource_type)
            logger.info(
                f"Dry run mode enabled. {len(enabled)} enabled {args.resource_type} resources"
            )
            return
        result = service.batch.run(args.resource_type)
        logger.info(
            f"Batch complete for {args.resource_type}: cohort={len(result.cohort)} "
            f"attempts={result.attempts}"
        )
    else:
        logger.error(f"Unknown action: {args.action}")


def main() -> None:
    # Parse CLI arguments using CliParser
    args: CliArgs = CliParser.parse_arguments()
    settings = Settings.load(args.config)

    # Initialize logger (configured once)
    logger = LoggerSetup(LOG_FORMAT, settings.log_level).get_logger("autoalarm")
    logger.info(f"Starting {args.action}")

    CliParser.validate_args(args, logger)
    validate_config_paths(config_paths(args, settings), logger)

    try:
        run_action(args, settings, logger)
    except Exception as e:
        logger.exception(f"Error running {args.action}: {e}")
        raise


if __name__ == "__main__":
    main()
