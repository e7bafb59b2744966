import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from .constants import (
    ALARM_PREFIX,
    DEFAULT_MAX_WORKERS,
    DEFAULT_PROPAGATION_DELAY,
    DEFAULT_REGION,
    DEFAULT_RETRY_ATTEMPTS,
    DEFAULT_RETRY_DELAY,
    RULE_CAPACITY_LIMIT,
    TAG_PREFIX,
)
from .exceptions import ConfigurationError
from .utils import load_yaml

logger = logging.getLogger(__name__)

# Environment variable -> settings field
ENV_OVERRIDES: Dict[str, str] = {
    "AUTOALARM_REGION": "region",
    "PROMETHEUS_WORKSPACE_ID": "prometheus_workspace_id",
    "AUTOALARM_PROPAGATION_DELAY": "propagation_delay",
    "AUTOALARM_RETRY_ATTEMPTS": "retry_attempts",
    "AUTOALARM_RETRY_DELAY": "retry_delay",
    "AUTOALARM_MAX_WORKERS": "max_workers",
    "AUTOALARM_LOG_LEVEL": "log_level",
    "AUTOALARM_CATALOG": "catalog_path",
    "AUTOALARM_ROLE_ARN": "role_arn",
}


@dataclass(frozen=True)
class Settings:
    region: str = DEFAULT_REGION
    alarm_prefix: str = ALARM_PREFIX
    tag_prefix: str = TAG_PREFIX
    prometheus_workspace_id: Optional[str] = None
    rule_capacity_limit: int = RULE_CAPACITY_LIMIT
    propagation_delay: float = DEFAULT_PROPAGATION_DELAY
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    retry_delay: float = DEFAULT_RETRY_DELAY
    max_workers: int = DEFAULT_MAX_WORKERS
    log_level: str = "INFO"
    catalog_path: Optional[str] = None
    role_arn: Optional[str] = None

    @property
    def rules_backend_configured(self) -> bool:
        return bool(self.prometheus_workspace_id)

    def tag_key(self, key: str) -> str:
        return f"{self.tag_prefix}:{key}"

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Settings":
        """Build settings from a plain mapping, coercing to the field types."""
        known = {f.name: f for f in fields(cls)}
        values: Dict[str, Any] = {}
        for key, raw in data.items():
            if key not in known:
                logger.warning(f"Ignoring unknown setting: {key}")
                continue
            values[key] = _coerce(key, raw, known[key].default)
        return cls(**values)

    @classmethod
    def load(
        cls,
        config_path: Optional[Union[str, Path]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "Settings":
        """Load settings from an optional YAML file, then apply env overrides."""
        environ = os.environ if environ is None else environ
        settings = cls()
        if config_path:
            data = load_yaml(config_path) or {}
            if not isinstance(data, dict):
                raise ConfigurationError(f"Settings file {config_path} is not a mapping")
            settings = cls.from_mapping(data)
            logger.info(f"Loaded settings from {config_path}")

        overrides: Dict[str, Any] = {}
        for env_name, field_name in ENV_OVERRIDES.items():
            value = environ.get(env_name)
            if value not in (None, ""):
                default = getattr(cls, field_name, None)
                overrides[field_name] = _coerce(field_name, value, default)
        if overrides:
            settings = replace(settings, **overrides)
        return settings


def _coerce(name: str, value: Any, default: Any) -> Any:
    if value is None:
        return None
    try:
        if isinstance(default, bool):
            return str(value).lower() == "true"
        if isinstance(default, int):
            return int(value)
        if isinstance(default, float):
            return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid value for setting {name}: {value!r}") from e
    return str(value)
