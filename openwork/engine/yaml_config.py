"""YAML configuration loader.

Optional file layered over the environment. Only keys present in the
file override the env-derived values.

Example YAML:
    bridge:
      watch_debounce_ms: 500
      watch_force_polling: true
      approval_timeout_seconds: 600
      log_level: DEBUG
      agent_runtime: mypackage.agent:create_runtime
"""
from __future__ import annotations

import logging
from dataclasses import fields, replace
from pathlib import Path
from typing import Any

import yaml

from .config import BridgeConfig

logger = logging.getLogger(__name__)

_BRIDGE_FIELDS = {f.name: f for f in fields(BridgeConfig)}


def _coerce(name: str, value: Any, default: Any) -> Any:
    if value is None:
        return None if name == "agent_runtime" else default
    if isinstance(default, bool):
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes"}
        return bool(value)
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    return str(value)


def apply_bridge_section(config: BridgeConfig, section: dict[str, Any]) -> BridgeConfig:
    """Return *config* with the keys of a ``bridge:`` mapping applied.

    Unknown keys are logged and ignored. A value that cannot be coerced
    to the field's type raises ValueError.
    """
    updates: dict[str, Any] = {}
    for key, value in section.items():
        if key not in _BRIDGE_FIELDS:
            logger.warning("Ignoring unknown bridge config key: %s", key)
            continue
        current = getattr(config, key)
        try:
            updates[key] = _coerce(key, value, current)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid value for bridge.{key}: {value!r}") from exc
    return replace(config, **updates) if updates else config


def load_yaml_config(path: str | Path, base: BridgeConfig | None = None) -> BridgeConfig:
    """Load *path* and layer its ``bridge:`` section over *base*.

    *base* defaults to ``BridgeConfig.from_env()``.
    """
    path = Path(path)
    logger.info("load_yaml_config: loading %s (exists=%s)", path, path.exists())
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error("load_yaml_config: config file not found at %s", path.absolute())
        raise
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise ValueError(f"{path}: invalid YAML: {exc}") from exc

    if not isinstance(raw, dict):
        raise ValueError(f"{path}: top level must be a mapping")

    config = base or BridgeConfig.from_env()
    section = raw.get("bridge") or {}
    if not isinstance(section, dict):
        raise ValueError(f"{path}: 'bridge' must be a mapping")
    config = apply_bridge_section(config, section)
    logger.info(
        "Parsed YAML config %s, bridge keys: %s",
        path.name, ", ".join(sorted(section)) if section else "(none)",
    )
    return config


def resolve_config(
    explicit_path: str | None = None, base: BridgeConfig | None = None,
) -> BridgeConfig:
    """Environment config (or *base*), layered with ``--config`` or ``<home>/openwork.yaml``."""
    config = base or BridgeConfig.from_env()
    if explicit_path:
        return load_yaml_config(explicit_path, config)
    candidate = config.default_yaml_path
    if candidate.is_file():
        return load_yaml_config(candidate, config)
    return config
