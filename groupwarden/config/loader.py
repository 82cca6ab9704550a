"""Read and write the JSON config file."""

import json
import os
import re
from collections.abc import Callable
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import ValidationError

from groupwarden.config.defaults import apply_missing_defaults
from groupwarden.config.schema import Config

CONFIG_VERSION = 1

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")

# Sections whose keys are data (identifiers), not field names.
_VERBATIM_KEYS = {("identity", "seed_mappings"): "seedMappings"}


def get_config_path() -> Path:
    """``config.json`` under the groupwarden home directory."""
    from groupwarden.utils.helpers import get_data_path

    return get_data_path() / "config.json"


def load_config(config_path: Path | None = None) -> Config:
    """Load the config file, or defaults when it is missing or unusable.

    Environment overrides (``GROUPWARDEN_<SECTION>__<FIELD>``) apply only
    when no file is present.
    """
    path = config_path or get_config_path()
    if not path.exists():
        return Config()

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        return Config.model_validate(_normalize(raw))
    except (json.JSONDecodeError, ValidationError, ValueError) as e:
        logger.warning("Failed to load config from {}: {}; using defaults", path, e)
        return Config()


def save_config(config: Config, config_path: Path | None = None) -> None:
    """Write ``config`` as camelCase JSON, readable only by the owner."""
    _atomic_write_config(config_path or get_config_path(), config)


def _normalize(data: Any) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise ValueError("config root must be a JSON object")
    snake = convert_keys(data)
    for (section, field), camel in _VERBATIM_KEYS.items():
        original = data.get(section)
        if not isinstance(original, dict) or not isinstance(snake.get(section), dict):
            continue
        value = original.get(camel, original.get(field))
        if isinstance(value, dict):
            snake[section][field] = dict(value)
    apply_missing_defaults(snake)
    snake["config_version"] = CONFIG_VERSION
    return snake


def _atomic_write_config(path: Path, config: Config) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    dumped = config.model_dump()
    payload = convert_to_camel(dumped)
    for (section, field), camel in _VERBATIM_KEYS.items():
        payload[snake_to_camel(section)][camel] = dict(dumped[section][field])

    tmp_path = path.with_name(f".{path.name}.tmp-{os.getpid()}")
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)
    _restrict(tmp_path)
    os.replace(tmp_path, path)
    _restrict(path)


def _restrict(path: Path) -> None:
    try:
        path.chmod(0o600)
    except OSError as e:
        logger.debug("Could not restrict permissions on {}: {}", path, e)


def _rekey(data: Any, rename: Callable[[str], str]) -> Any:
    if isinstance(data, dict):
        return {rename(k): _rekey(v, rename) for k, v in data.items()}
    if isinstance(data, list):
        return [_rekey(item, rename) for item in data]
    return data


def convert_keys(data: Any) -> Any:
    """camelCase keys -> snake_case, recursively."""
    return _rekey(data, camel_to_snake)


def convert_to_camel(data: Any) -> Any:
    """snake_case keys -> camelCase, recursively."""
    return _rekey(data, snake_to_camel)


def camel_to_snake(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def snake_to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)
