"""Centralized opinionated defaults for generated/migrated config files."""

from __future__ import annotations

from copy import deepcopy
from typing import Any

# Accounts whose LID is known ahead of time.
DEFAULT_SEED_MAPPINGS: dict[str, str] = {
    "59318229561477@lid": "6285753436471",
    "177829446709455@lid": "6283817954420",
}

DEFAULT_BRIDGE: dict[str, Any] = {
    "url": "ws://127.0.0.1:3001",
    "token": "",
    "connect_timeout_ms": 15000,
    "max_payload_bytes": 262144,
}

DEFAULT_IDENTITY: dict[str, Any] = {
    "mapping_file": "~/.groupwarden/data/lid_mappings.json",
    "country_code": "62",
    "trunk_prefix": "0",
    "local_prefix": "8",
    "national_min_length": 10,
    "canonical_length": 12,
    "existence_lookup": True,
}

DEFAULT_MUTATIONS: dict[str, Any] = {
    "call_timeout_s": 20.0,
    "pacing_s": 3.0,
    "rate_limit_cooldown_s": 60.0,
    "propagation_wait_s": 5.0,
    "verify_delay_s": 2.0,
    "add_max_attempts": 3,
    "promote_max_attempts": 3,
    "demote_max_attempts": 3,
    "rename_max_attempts": 3,
    "backoff_base_s": 5.0,
    "backoff_step_s": 5.0,
    "fixed_backoff_s": 5.0,
}

DEFAULT_RECONCILER: dict[str, Any] = {
    "enabled": False,
    "interval_s": 300.0,
    "approve_pacing_s": 1.0,
    "initial_delay_s": 5.0,
}


def default_seed_mappings() -> dict[str, str]:
    """Return a copied identity.seed_mappings payload."""
    return dict(DEFAULT_SEED_MAPPINGS)


def apply_missing_defaults(snake_config: dict[str, Any]) -> None:
    """Inject missing config defaults without overriding existing user values."""
    if not isinstance(snake_config, dict):
        return

    sections = (
        ("bridge", DEFAULT_BRIDGE),
        ("identity", DEFAULT_IDENTITY),
        ("mutations", DEFAULT_MUTATIONS),
        ("reconciler", DEFAULT_RECONCILER),
    )
    for name, defaults in sections:
        section = snake_config.setdefault(name, {})
        if not isinstance(section, dict):
            snake_config[name] = deepcopy(defaults)
            continue
        for k, v in defaults.items():
            section.setdefault(k, deepcopy(v))

    identity = snake_config["identity"]
    if not isinstance(identity.get("seed_mappings"), dict):
        identity["seed_mappings"] = default_seed_mappings()
