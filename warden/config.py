"""Fleet configuration loading and validation.

A fleet config is a YAML file merged over :data:`DEFAULT_CONFIG`. Per-kind
templates under ``kinds`` are layered over the global sections when an
agent is spawned, so a ``protector`` can carry a different retreat
threshold or scan radius than a ``scout``.

Call :func:`validate_config` early in startup to fail fast with a helpful
message rather than a KeyError deep inside an agent's tick.

Example file::

    system:
      command_marker: "#"
    auth:
      users:
        Steve: owner
    agents:
      - id: Guard1
        kind: protector
        position: [0, 64, 0]
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, List, Optional, Tuple

import yaml

from warden.errors import ConfigError

logger = logging.getLogger("OpenWarden.Config")

DEFAULT_CONFIG: Dict[str, Any] = {
    "system": {
        "command_marker": "#",
        "tick_interval_s": 0.5,
        "save_interval_s": 60.0,
        "data_dir": "~/.openwarden/data",
        "console_operator": "console",
    },
    "navigation": {
        "default_tolerance": 1.0,
        "default_timeout_s": 60.0,
        "sample_interval_s": 0.25,
        "stuck_epsilon": 0.05,
        "stuck_samples": 8,
        "max_stuck_recoveries": 3,
        "unstick_duration_s": 1.0,
        "retry": {
            "max_attempts": 3,
            "attempt_timeout_s": 20.0,
            "tolerance_step": 1.0,
            "backoff_s": 0.5,
        },
    },
    "combat": {
        "scan_interval_s": 2.0,
        "scan_radius": 16.0,
        "melee_range": 3.0,
        "strike_interval_s": 0.5,
        "engagement_timeout_s": 30.0,
        "max_chase_distance": 32.0,
        "threat_window_s": 300.0,
        "passive_defense": True,
        "passive_radius": 6.0,
        "aggression": "medium",
        "hostile": [],
        "neutral": [],
    },
    "retreat": {
        "health_fraction": 0.35,
        "flee_distance": 20.0,
        "safe_zones": [],
    },
    "guard": {
        "radius": 16.0,
        "follow_distance": 3.0,
        "search_interval_s": 1.0,
    },
    "patrol": {
        "check_radius": 5.0,
        "dwell_s": 2.0,
    },
    "auth": {
        "default_level": "guest",
        "users": {},
        "permissions": {},
    },
    "kinds": {
        "protector": {
            "verbs": ["goto", "come", "guard", "patrol", "attack", "stop", "status",
                      "threats", "mark", "whitelist", "aggression"],
        },
        "scout": {
            "verbs": ["goto", "come", "patrol", "stop", "status", "threats", "mark"],
            "combat": {"passive_defense": False},
            "retreat": {"health_fraction": 0.5},
        },
    },
    "agents": [],
    "world": {"entities": [], "blocked": [], "speed": 4.0},
    "catalog": {},
    "logging": {"level": "INFO", "file": None},
}

# Sections that every merged config must expose as mappings
REQUIRED_SECTIONS: List[str] = [
    "system",
    "navigation",
    "combat",
    "retreat",
    "guard",
    "patrol",
    "auth",
    "kinds",
]

# Sections a kind template may override
KIND_OVERRIDABLE: Tuple[str, ...] = ("navigation", "combat", "retreat", "guard", "patrol")


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Return a new dict with *override* merged recursively over *base*."""
    result = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def load_config(path: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None) -> dict:
    """Load a fleet YAML file merged over the defaults.

    Args:
        path: YAML file path, or ``None`` to use defaults only.
        overrides: Extra mapping merged last (handy for tests).

    Raises:
        ConfigError: If the file is missing or is not a YAML mapping.
    """
    data: Dict[str, Any] = {}
    if path:
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except FileNotFoundError as exc:
            raise ConfigError(f"Config file not found: {path}") from exc
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"Config must be a YAML mapping, got {type(data).__name__}")
        logger.info("Loaded fleet configuration from %s (%d agent(s))", path,
                    len(data.get("agents") or []))
    config = deep_merge(DEFAULT_CONFIG, data)
    if overrides:
        config = deep_merge(config, overrides)
    return config


def kind_settings(config: dict, kind: str) -> dict:
    """Return *config* with the ``kinds[kind]`` template layered on top.

    Raises:
        ConfigError: If *kind* has no template.
    """
    kinds = config.get("kinds") or {}
    if kind not in kinds:
        raise ConfigError(f"No configuration template found for agent kind: {kind}")
    template = kinds[kind] or {}
    merged = copy.deepcopy(config)
    for section in KIND_OVERRIDABLE:
        if isinstance(template.get(section), dict):
            merged[section] = deep_merge(merged.get(section, {}), template[section])
    merged["verbs"] = list(template.get("verbs", []))
    return merged


def validate_config(config: dict) -> Tuple[bool, List[str]]:
    """Validate a merged fleet config.

    Returns:
        A ``(is_valid, errors)`` tuple; ``is_valid`` is ``True`` only when
        ``errors`` is empty.
    """
    if not isinstance(config, dict):
        return False, ["Config must be a dict (check YAML syntax)"]

    errors: List[str] = []

    # ── Sections ──────────────────────────────────────────────────────────────
    for key in REQUIRED_SECTIONS:
        if not isinstance(config.get(key), dict):
            errors.append(f"'{key}' must be a mapping (dict)")

    system = config.get("system") or {}
    marker = system.get("command_marker")
    if not isinstance(marker, str) or not marker:
        errors.append("'system.command_marker' must be a non-empty string")
    for key in ("tick_interval_s", "save_interval_s"):
        if not _positive(system.get(key)):
            errors.append(f"'system.{key}' must be a positive number")

    # ── Navigation ────────────────────────────────────────────────────────────
    nav = config.get("navigation") or {}
    retry = nav.get("retry") or {}
    attempts = retry.get("max_attempts")
    if not isinstance(attempts, int) or attempts < 1:
        errors.append("'navigation.retry.max_attempts' must be an integer >= 1")
    samples = nav.get("stuck_samples")
    if not isinstance(samples, int) or samples < 2:
        errors.append("'navigation.stuck_samples' must be an integer >= 2")

    # ── Combat ────────────────────────────────────────────────────────────────
    aggression = (config.get("combat") or {}).get("aggression", "medium")
    if str(aggression).lower() not in ("low", "medium", "high"):
        errors.append("'combat.aggression' must be one of: low, medium, high")
    for name, template in (config.get("kinds") or {}).items():
        level = ((template or {}).get("combat") or {}).get("aggression")
        if level is not None and str(level).lower() not in ("low", "medium", "high"):
            errors.append(f"'kinds.{name}.combat.aggression' must be one of: low, medium, high")

    # ── Retreat ───────────────────────────────────────────────────────────────
    fraction = (config.get("retreat") or {}).get("health_fraction")
    if not isinstance(fraction, (int, float)) or not 0.0 < fraction < 1.0:
        errors.append("'retreat.health_fraction' must be between 0 and 1")

    # ── Agents ────────────────────────────────────────────────────────────────
    agents = config.get("agents")
    if not isinstance(agents, list):
        errors.append("'agents' must be a list")
    else:
        seen = set()
        for i, entry in enumerate(agents):
            if not isinstance(entry, dict) or not entry.get("id"):
                errors.append(f"agents[{i}] needs an 'id'")
                continue
            if entry["id"] in seen:
                errors.append(f"Duplicate agent id: '{entry['id']}'")
            seen.add(entry["id"])
            kind = entry.get("kind", "protector")
            if kind not in (config.get("kinds") or {}):
                errors.append(f"agents[{i}] has unknown kind '{kind}'")

    return len(errors) == 0, errors


def log_validation_result(config: dict, label: str = "Fleet config") -> bool:
    """Validate *config* and log each error.  Returns True if valid."""
    ok, errors = validate_config(config)
    if ok:
        logger.debug("%s validation passed", label)
    else:
        for msg in errors:
            logger.error("%s validation error: %s", label, msg)
    return ok


def _positive(value: Any) -> bool:
    return isinstance(value, (int, float)) and value > 0
