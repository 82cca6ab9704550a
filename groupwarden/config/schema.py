"""Configuration schema using Pydantic."""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings

from groupwarden.config.defaults import (
    DEFAULT_BRIDGE,
    DEFAULT_IDENTITY,
    DEFAULT_MUTATIONS,
    DEFAULT_RECONCILER,
    default_seed_mappings,
)


class BridgeConfig(BaseModel):
    """Websocket bridge to the messaging network."""

    model_config = ConfigDict(extra="ignore")

    url: str = str(DEFAULT_BRIDGE["url"])
    token: str = str(DEFAULT_BRIDGE["token"])
    connect_timeout_ms: int = Field(default=int(DEFAULT_BRIDGE["connect_timeout_ms"]), ge=100)
    max_payload_bytes: int = Field(default=int(DEFAULT_BRIDGE["max_payload_bytes"]), ge=1024)


class IdentityConfig(BaseModel):
    """Identifier resolution and mapping cache settings."""

    model_config = ConfigDict(extra="ignore")

    mapping_file: str = str(DEFAULT_IDENTITY["mapping_file"])
    country_code: str = str(DEFAULT_IDENTITY["country_code"])
    trunk_prefix: str = str(DEFAULT_IDENTITY["trunk_prefix"])
    local_prefix: str = str(DEFAULT_IDENTITY["local_prefix"])
    national_min_length: int = Field(default=int(DEFAULT_IDENTITY["national_min_length"]), ge=1)
    canonical_length: int = Field(default=int(DEFAULT_IDENTITY["canonical_length"]), ge=10, le=15)
    existence_lookup: bool = bool(DEFAULT_IDENTITY["existence_lookup"])
    seed_mappings: dict[str, str] = Field(default_factory=default_seed_mappings)

    @field_validator("country_code", "trunk_prefix", "local_prefix")
    @classmethod
    def _digits_only(cls, value: str) -> str:
        value = value.strip()
        if not value.isdigit():
            raise ValueError("dialing prefixes must be digits")
        return value

    @property
    def mapping_path(self) -> Path:
        return Path(self.mapping_file).expanduser()


class MutationsConfig(BaseModel):
    """Timeouts, pacing and retry budgets for membership mutations."""

    model_config = ConfigDict(extra="ignore")

    call_timeout_s: float = Field(default=float(DEFAULT_MUTATIONS["call_timeout_s"]), gt=0)
    pacing_s: float = Field(default=float(DEFAULT_MUTATIONS["pacing_s"]), ge=0)
    rate_limit_cooldown_s: float = Field(default=float(DEFAULT_MUTATIONS["rate_limit_cooldown_s"]), ge=0)
    propagation_wait_s: float = Field(default=float(DEFAULT_MUTATIONS["propagation_wait_s"]), ge=0)
    verify_delay_s: float = Field(default=float(DEFAULT_MUTATIONS["verify_delay_s"]), ge=0)
    add_max_attempts: int = Field(default=int(DEFAULT_MUTATIONS["add_max_attempts"]), ge=1)
    promote_max_attempts: int = Field(default=int(DEFAULT_MUTATIONS["promote_max_attempts"]), ge=1)
    demote_max_attempts: int = Field(default=int(DEFAULT_MUTATIONS["demote_max_attempts"]), ge=1)
    rename_max_attempts: int = Field(default=int(DEFAULT_MUTATIONS["rename_max_attempts"]), ge=1)
    backoff_base_s: float = Field(default=float(DEFAULT_MUTATIONS["backoff_base_s"]), ge=0)
    backoff_step_s: float = Field(default=float(DEFAULT_MUTATIONS["backoff_step_s"]), ge=0)
    fixed_backoff_s: float = Field(default=float(DEFAULT_MUTATIONS["fixed_backoff_s"]), ge=0)


class ReconcilerConfig(BaseModel):
    """Pending join request auto-approval."""

    model_config = ConfigDict(extra="ignore")

    enabled: bool = bool(DEFAULT_RECONCILER["enabled"])
    interval_s: float = Field(default=float(DEFAULT_RECONCILER["interval_s"]), gt=0)
    approve_pacing_s: float = Field(default=float(DEFAULT_RECONCILER["approve_pacing_s"]), ge=0)
    initial_delay_s: float = Field(default=float(DEFAULT_RECONCILER["initial_delay_s"]), ge=0)


class Config(BaseSettings):
    """Root configuration for groupwarden."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True, env_prefix="GROUPWARDEN_", env_nested_delimiter="__")

    config_version: int = 1
    bridge: BridgeConfig = Field(default_factory=BridgeConfig)
    identity: IdentityConfig = Field(default_factory=IdentityConfig)
    mutations: MutationsConfig = Field(default_factory=MutationsConfig)
    reconciler: ReconcilerConfig = Field(default_factory=ReconcilerConfig)
