"""YAML config loader and writer, with hashing and dotted-key get/set."""

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel

from occupancy.config.schema import OccupancyConfig


def load_config(path: str | Path) -> OccupancyConfig:
    """Load and validate config from a YAML file. An empty file yields defaults."""
    with open(path) as f:
        raw = yaml.safe_load(f) or {}
    return OccupancyConfig(**raw)


def save_config(config: OccupancyConfig, path: str | Path) -> None:
    """Write config as YAML, keeping the previous file alongside as .bak."""
    path = Path(path)
    if path.exists():
        path.with_suffix(path.suffix + ".bak").write_text(path.read_text())
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.dump(config.model_dump(mode="json"), f, default_flow_style=False, sort_keys=False)


def config_hash(config: OccupancyConfig) -> str:
    """Short deterministic SHA256 of the config, logged at daemon start."""
    data = config.model_dump_json(indent=None)
    return hashlib.sha256(data.encode()).hexdigest()[:16]


def get_config_value(config: OccupancyConfig, dotted_key: str) -> Any:
    """Get a config value by dotted key path. E.g. 'predictor.k_neighbours'."""
    node: Any = config
    for part in dotted_key.split("."):
        if not isinstance(node, BaseModel) or part not in type(node).model_fields:
            raise KeyError(f"Config key not found: {dotted_key}")
        node = getattr(node, part)
    return node


def set_config_value(config: OccupancyConfig, dotted_key: str, value: Any) -> OccupancyConfig:
    """Return a re-validated copy with one value replaced.

    String values are coerced to int or float when the current value has
    that type, so CLI input like ``scheduler.poll_interval_seconds=120`` works.
    """
    data = json.loads(config.model_dump_json())
    *parents, leaf = dotted_key.split(".")
    section = data
    for part in parents:
        section = section.get(part) if isinstance(section, dict) else None
    if not isinstance(section, dict) or leaf not in section:
        raise KeyError(f"Config key not found: {dotted_key}")

    current = section[leaf]
    if isinstance(value, str) and isinstance(current, (int, float)) and not isinstance(current, bool):
        value = type(current)(value)
    section[leaf] = value
    return OccupancyConfig(**data)
