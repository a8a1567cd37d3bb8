"""Configuration models using Pydantic for validation."""
from typing import Any, Dict, Literal, Optional
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
import os

from nasmetrics.errors import ConfigurationError


ENDPOINTS = {
    "east-1": "https://nas.jp-east-1.api.cloud.nifty.com/",
    "east-2": "https://nas.jp-east-2.api.cloud.nifty.com/",
    "east-3": "https://nas.jp-east-3.api.cloud.nifty.com/",
    "east-4": "https://nas.jp-east-4.api.cloud.nifty.com/",
    "west-1": "https://nas.jp-west-1.api.cloud.nifty.com/",
}

# Environment variable -> (section, key)
ENV_OVERRIDES = {
    "NIFCLOUD_REGION": ("plugin", "region"),
    "NIFCLOUD_ACCESS_KEY_ID": ("plugin", "access_key_id"),
    "NIFCLOUD_SECRET_ACCESS_KEY": ("plugin", "secret_access_key"),
    "NAS_IDENTIFIER": ("plugin", "identifier"),
    "LOG_LEVEL": ("global", "log_level"),
}


def endpoint_for_region(region: str) -> str:
    """Return the API endpoint for a region."""
    try:
        return ENDPOINTS[region]
    except KeyError:
        raise ConfigurationError(f"An invalid region was specified: {region!r}")


class PluginConfig(BaseModel):
    """Target instance, credentials and fetch behaviour."""
    region: str
    access_key_id: str
    secret_access_key: str
    identifier: str
    metric_key_prefix: str = "nas"
    metric_label_prefix: str = ""
    lookback_s: int = 180  # wide enough for at least one bucket
    timeout_s: float = 30.0
    max_workers: Optional[int] = None

    @field_validator("region")
    @classmethod
    def validate_region(cls, v):
        """Only the known NIFCLOUD regions have NAS endpoints."""
        if v not in ENDPOINTS:
            raise ValueError(f"An invalid region was specified: {v!r} (known: {sorted(ENDPOINTS)})")
        return v

    @field_validator("access_key_id", "secret_access_key", "identifier")
    @classmethod
    def validate_not_empty(cls, v, info):
        if not v:
            raise ValueError(f"{info.field_name} is required")
        return v

    @field_validator("lookback_s", "timeout_s")
    @classmethod
    def validate_positive(cls, v, info):
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive")
        return v

    @field_validator("max_workers")
    @classmethod
    def validate_max_workers(cls, v):
        if v is not None and v < 1:
            raise ValueError("max_workers must be at least 1")
        return v

    @model_validator(mode="after")
    def default_label_prefix(self):
        """Derive the label prefix from the key prefix when not given."""
        if not self.metric_key_prefix:
            self.metric_key_prefix = "nas"
        if not self.metric_label_prefix:
            if self.metric_key_prefix == "nas":
                self.metric_label_prefix = "NAS"
            else:
                self.metric_label_prefix = self.metric_key_prefix.title()
        return self

    @property
    def endpoint(self) -> str:
        return endpoint_for_region(self.region)


class SelfMetricsConfig(BaseModel):
    """Prometheus self-metrics written after each run."""
    enabled: bool = False
    textfile: Optional[str] = None
    prefix: str = "nasmetrics_"

    @model_validator(mode="after")
    def validate_textfile(self):
        """Self-metrics are only ever written to a textfile."""
        if self.enabled and not self.textfile:
            raise ValueError("self_metrics.textfile is required when self_metrics is enabled")
        return self


class GlobalConfig(BaseModel):
    """Global configuration settings."""
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "text"


class Config(BaseModel):
    """Root configuration model."""
    global_: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    plugin: PluginConfig
    self_metrics: SelfMetricsConfig = Field(default_factory=SelfMetricsConfig)

    class Config:
        populate_by_name = True


def _set(raw_config: Dict[str, Any], section: str, key: str, value: Any):
    if raw_config.get(section) is None:
        raw_config[section] = {}
    raw_config[section][key] = value


def load_config(
    config_path: Optional[str] = None,
    overrides: Optional[Dict[str, Dict[str, Any]]] = None,
) -> Config:
    """
    Load and validate configuration.

    Values are layered: YAML file first, then environment variables, then
    explicit overrides (typically command-line flags). Override values of
    None are ignored.

    Raises:
        ConfigurationError: The file is missing or the result does not validate
    """
    import yaml

    raw_config: Dict[str, Any] = {}
    if config_path:
        if not os.path.exists(config_path):
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        with open(config_path, 'r') as f:
            raw_config = yaml.safe_load(f) or {}

        if not isinstance(raw_config, dict):
            raise ConfigurationError(f"Configuration file must contain a mapping: {config_path}")

    # Apply environment variable overrides
    for env_name, (section, key) in ENV_OVERRIDES.items():
        if env_value := os.getenv(env_name):
            _set(raw_config, section, key, env_value)

    for section, values in (overrides or {}).items():
        for key, value in values.items():
            if value is not None:
                _set(raw_config, section, key, value)

    if raw_config.get("plugin") is None:
        raw_config["plugin"] = {}

    try:
        return Config(**raw_config)
    except ValidationError as e:
        raise ConfigurationError(f"Configuration validation failed: {e}")
