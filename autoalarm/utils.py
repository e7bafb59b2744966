from logging import Logger
from pathlib import Path
from typing import Dict, Iterable, List, Union

import yaml


def load_yaml(file_path: Union[str, Path], loader=yaml.SafeLoader) -> Dict:
    with open(file_path, "r") as file:
        data = yaml.load(file, Loader=loader)
    return data


def validate_config_paths(config_paths: Dict[str, Path], logger: Logger) -> bool:
    """Validate that all configuration paths exist."""
    for config_name, path in config_paths.items():
        if not path.exists():
            logger.error(f"Configuration file not found: {config_name} at {path}")
            raise FileNotFoundError(
                f"Configuration file not found: {config_name} at {path}"
            )
    return True


def tags_to_dict(tags: Iterable[Dict[str, str]]) -> Dict[str, str]:
    """Flatten an AWS [{Key, Value}] tag list into a dict."""
    return {tag["Key"]: tag.get("Value", "") for tag in tags if tag.get("Key")}


def chunks(items: List, size: int) -> Iterable[List]:
    for i in range(0, len(items), size):
        yield items[i : i + size]
