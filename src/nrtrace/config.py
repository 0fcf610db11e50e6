# src/nrtrace/config.py
"""
Configuration schema and loading for the nrtrace bridge.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, SecretStr, ValidationError, field_validator, model_validator

from nrtrace.errors import ConfigurationError

# Account license keys, user keys (NRAK-...) and insert keys (NRII-...)
# are all dash/alnum tokens; anything with whitespace or punctuation is a
# copy/paste mistake we want to catch at startup.
_API_KEY_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_\-]{7,127}$")

_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")

_REGION_HOSTS: dict[str, tuple[str, str]] = {
    "us": ("https://trace-api.newrelic.com", "https://log-api.newrelic.com"),
    "eu": ("https://trace-api.eu.newrelic.com", "https://log-api.eu.newrelic.com"),
}

TRACE_PATH = "/trace/v1"
LOG_PATH = "/log/v1"


class ApiSettings(BaseModel):
    """Vendor API credentials and endpoint selection.

    `endpoint` overrides both hosts with a custom base URL (proxies, mock
    servers); `trace_endpoint`/`log_endpoint` override one full URL each.
    """

    model_config = {"frozen": True}

    key: SecretStr = Field(description="Vendor API key sent in the Api-Key header")
    region: Literal["us", "eu"] = Field(default="us", description="Vendor data center")
    endpoint: str | None = Field(default=None, description="Custom base URL for both APIs")
    trace_endpoint: str | None = Field(default=None, description="Full trace ingest URL override")
    log_endpoint: str | None = Field(default=None, description="Full log ingest URL override")

    @field_validator("key")
    @classmethod
    def validate_key_format(cls, v: SecretStr) -> SecretStr:
        if not _API_KEY_PATTERN.match(v.get_secret_value()):
            raise ValueError("API key has an invalid format")
        return v

    @field_validator("endpoint", "trace_endpoint", "log_endpoint")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        if v is None:
            return v
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"endpoint must be an http(s) URL, got {v!r}")
        return v.rstrip("/")

    @property
    def trace_url(self) -> str:
        if self.trace_endpoint is not None:
            return self.trace_endpoint
        base = self.endpoint if self.endpoint is not None else _REGION_HOSTS[self.region][0]
        return f"{base}{TRACE_PATH}"

    @property
    def log_url(self) -> str:
        if self.log_endpoint is not None:
            return self.log_endpoint
        base = self.endpoint if self.endpoint is not None else _REGION_HOSTS[self.region][1]
        return f"{base}{LOG_PATH}"


class BridgeSettings(BaseModel):
    """Top-level bridge configuration.

    Durations are in seconds. max_retries is the TOTAL number of attempts
    per payload, so max_retries=3 means: try, retry, retry.
    """

    model_config = {"frozen": True}

    api: ApiSettings
    reporter: str = Field(default="blocking", description="Reporter name: blocking, async or noop")
    batch_size: int = Field(default=500, gt=0, description="Max records per flush")
    flush_interval: float = Field(default=5.0, gt=0, description="Max seconds between flushes")
    max_retries: int = Field(default=5, gt=0, description="Attempt cap per payload")
    retry_backoff: float = Field(default=1.0, ge=0, description="Base backoff delay")
    max_backoff: float = Field(default=30.0, ge=0, description="Backoff ceiling")
    request_timeout: float = Field(default=10.0, gt=0, description="Wall-clock cap on one attempt")
    max_elapsed: float = Field(default=60.0, gt=0, description="Delivery budget per batch, all payloads")
    buffer_capacity: int = Field(default=10_000, gt=0, description="Max buffered records")
    shutdown_grace: float = Field(default=5.0, ge=0, description="Final flush budget at shutdown")
    service_name: str | None = Field(default=None, description="Common service.name attribute")
    hostname: str | None = Field(default=None, description="Common hostname attribute")

    @field_validator("reporter")
    @classmethod
    def normalize_reporter(cls, v: str) -> str:
        return v.strip().lower()

    @model_validator(mode="after")
    def validate_capacity(self) -> BridgeSettings:
        if self.buffer_capacity < self.batch_size:
            raise ValueError(f"buffer_capacity ({self.buffer_capacity}) must be >= batch_size ({self.batch_size})")
        return self

    @classmethod
    def create(cls, **values: Any) -> BridgeSettings:
        """Validate settings, converting validation failures to ConfigurationError."""
        try:
            return cls.model_validate(values)
        except ValidationError as e:
            raise ConfigurationError("settings", _format_validation_error(e)) from e

    def common_attributes(self) -> dict[str, str]:
        """Attributes placed in the `common` block of every payload."""
        attributes = {"instrumentation.provider": "nrtrace"}
        if self.service_name is not None:
            attributes["service.name"] = self.service_name
        if self.hostname is not None:
            attributes["hostname"] = self.hostname
        return attributes


def _format_validation_error(error: ValidationError) -> str:
    # Never echo input values: one of them is the API key
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item["loc"]) or "settings"
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)


def _expand_env_vars(config: dict[str, Any]) -> dict[str, Any]:
    """Recursively expand ${VAR} and ${VAR:-default} patterns in config values."""

    def _expand_string(value: str) -> str:
        def replacer(match: re.Match[str]) -> str:
            env_value = os.environ.get(match.group(1))
            if env_value is not None:
                return env_value
            if match.group(2) is not None:
                return match.group(2)
            # No env var and no default - keep original (fails key validation)
            return match.group(0)

        return _ENV_VAR_PATTERN.sub(replacer, value)

    def _expand_value(value: Any) -> Any:
        if isinstance(value, str):
            return _expand_string(value)
        elif isinstance(value, dict):
            return {k: _expand_value(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [_expand_value(item) for item in value]
        else:
            return value

    return {k: _expand_value(v) for k, v in config.items()}


def _lower_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k).lower(): _lower_keys(v) for k, v in value.items()}
    return value


def load_settings(config_path: Path) -> BridgeSettings:
    """Load settings from a YAML file with environment variable overrides.

    Uses Dynaconf for multi-source loading with precedence:
    1. Environment variables (NRTRACE_*) - highest priority
    2. Config file
    3. Defaults from the Pydantic schema - lowest priority

    Environment variable format: NRTRACE_API__KEY for nested keys.

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ConfigurationError: If configuration fails validation
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="NRTRACE",
        settings_files=[str(config_path)],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k: v for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}
    raw_config = _lower_keys(raw_config)
    raw_config = _expand_env_vars(raw_config)

    return BridgeSettings.create(**raw_config)
