import logging
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional, Tuple, Union

import yaml
from yaml.constructor import ConstructorError

from ..constants import METRIC_CATALOG
from ..exceptions import ConfigurationError
from ..utils import load_yaml
from .alarm_config import MetricAlarmConfig, MetricAlarmOptions, MetricKind

logger = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """SafeLoader that refuses repeated mapping keys instead of keeping the last."""

    def construct_mapping(self, node, deep=False):
        self.flatten_mapping(node)
        seen = set()
        for key_node, _ in node.value:
            key = self.construct_object(key_node, deep=deep)
            if key in seen:
                raise ConstructorError(
                    "while constructing a mapping",
                    node.start_mark,
                    f"found duplicate key {key!r}",
                    key_node.start_mark,
                )
            seen.add(key)
        return super().construct_mapping(node, deep=deep)


class ConfigRegistry:
    """Immutable catalog of metric alarm configs per resource type.

    The catalog is loaded once per process; later instances share it.
    """

    _configs: Dict[str, Tuple[MetricAlarmConfig, ...]] = {}
    _lock = Lock()

    def __init__(self, file_path: Optional[Union[str, Path]] = None):
        with ConfigRegistry._lock:
            if not ConfigRegistry._configs:
                ConfigRegistry._configs = self.load_catalog(file_path or METRIC_CATALOG)

    @classmethod
    def reset(cls) -> None:
        """Forget the loaded catalog (tests only)."""
        with cls._lock:
            cls._configs = {}

    @staticmethod
    def load_catalog(
        file_path: Union[str, Path]
    ) -> Dict[str, Tuple[MetricAlarmConfig, ...]]:
        """Load and validate the metric catalog from YAML."""
        try:
            data = load_yaml(file_path, loader=UniqueKeyLoader) or {}
        except (FileNotFoundError, yaml.YAMLError) as e:
            logger.error(f"Error loading metric catalog from {file_path}: {e}")
            raise ConfigurationError(f"Cannot load metric catalog {file_path}") from e

        catalog = {
            resource_type: tuple(
                ConfigRegistry._build_config(resource_type, tag_key, settings)
                for tag_key, settings in (metrics or {}).items()
            )
            for resource_type, metrics in data.items()
        }
        total = sum(len(configs) for configs in catalog.values())
        logger.info(
            f"Loaded {total} metric configs for {len(catalog)} resource types from {file_path}"
        )
        return catalog

    @staticmethod
    def _build_config(
        resource_type: str, tag_key: str, settings: Dict[str, Any]
    ) -> MetricAlarmConfig:
        try:
            return MetricAlarmConfig(
                tag_key=str(tag_key),
                metric_name=settings["metric_name"],
                metric_namespace=settings["namespace"],
                default_create=bool(settings.get("default_create", False)),
                anomaly=bool(settings.get("anomaly", False)),
                defaults=MetricAlarmOptions.from_dict(settings.get("defaults", {})),
                kind=MetricKind(settings.get("kind", MetricKind.NATIVE.value)),
                windows_metric_name=settings.get("windows_metric_name"),
                dimension_key=settings.get("dimension_key"),
                account_dimension=settings.get("account_dimension"),
                prometheus_expr=settings.get("prometheus_expr"),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(
                f"Invalid catalog entry {resource_type}.{tag_key}: {e}"
            ) from e

    @classmethod
    def get_configs(cls, resource_type: str) -> Tuple[MetricAlarmConfig, ...]:
        configs = cls._configs.get(resource_type)
        if configs is None:
            logger.info(f"No metric configs found for resource type '{resource_type}'.")
            return ()
        return configs

    @classmethod
    def get_config(cls, resource_type: str, tag_key: str) -> Optional[MetricAlarmConfig]:
        return next(
            (c for c in cls.get_configs(resource_type) if c.tag_key == tag_key), None
        )

    @classmethod
    def resource_types(cls) -> Tuple[str, ...]:
        return tuple(cls._configs)
