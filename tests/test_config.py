import json
import stat

from groupwarden.config.defaults import DEFAULT_SEED_MAPPINGS
from groupwarden.config.loader import camel_to_snake, load_config, save_config, snake_to_camel
from groupwarden.config.schema import Config


def test_missing_file_yields_defaults(tmp_path) -> None:
    config = load_config(tmp_path / "config.json")

    assert config.bridge.url == "ws://127.0.0.1:3001"
    assert config.mutations.pacing_s == 3.0
    assert config.mutations.rate_limit_cooldown_s == 60.0
    assert config.reconciler.enabled is False
    assert config.identity.seed_mappings == DEFAULT_SEED_MAPPINGS


def test_camel_case_file_is_loaded_and_merged_with_defaults(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps(
            {
                "bridge": {"token": "secret", "connectTimeoutMs": 5000},
                "mutations": {"addMaxAttempts": 5},
                "reconciler": {"enabled": True, "intervalS": 120},
            }
        ),
        encoding="utf-8",
    )

    config = load_config(path)

    assert config.bridge.token == "secret"
    assert config.bridge.connect_timeout_ms == 5000
    assert config.bridge.url == "ws://127.0.0.1:3001"
    assert config.mutations.add_max_attempts == 5
    assert config.mutations.promote_max_attempts == 3
    assert config.reconciler.enabled is True
    assert config.reconciler.interval_s == 120


def test_seed_mapping_keys_are_kept_verbatim(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps({"identity": {"seedMappings": {"11122233344455@lid": "6281234567890"}}}),
        encoding="utf-8",
    )

    config = load_config(path)

    assert config.identity.seed_mappings == {"11122233344455@lid": "6281234567890"}


def test_malformed_file_falls_back_to_defaults(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{broken", encoding="utf-8")

    assert load_config(path).bridge.url == "ws://127.0.0.1:3001"


def test_invalid_values_fall_back_to_defaults(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"identity": {"countryCode": "+62"}}), encoding="utf-8")

    assert load_config(path).identity.country_code == "62"


def test_save_writes_camel_case_with_private_permissions(tmp_path) -> None:
    path = tmp_path / "nested" / "config.json"
    config = Config()
    config.bridge.token = "secret"

    save_config(config, path)

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["bridge"]["token"] == "secret"
    assert data["mutations"]["rateLimitCooldownS"] == 60.0
    assert data["identity"]["seedMappings"] == DEFAULT_SEED_MAPPINGS
    assert stat.S_IMODE(path.stat().st_mode) == 0o600
    assert load_config(path).bridge.token == "secret"


def test_environment_overrides_defaults(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("GROUPWARDEN_MUTATIONS__PACING_S", "0.5")

    config = load_config(tmp_path / "config.json")

    assert config.mutations.pacing_s == 0.5


def test_key_case_conversion() -> None:
    assert camel_to_snake("rateLimitCooldownS") == "rate_limit_cooldown_s"
    assert snake_to_camel("rate_limit_cooldown_s") == "rateLimitCooldownS"
