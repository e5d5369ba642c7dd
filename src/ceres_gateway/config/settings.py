"""Configuration system for the gateway."""

from __future__ import annotations

import os
from collections.abc import Mapping, Sequence
from enum import Enum
from functools import lru_cache
from typing import Any

from pydantic import BaseModel, Field, SecretStr, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environments supported by the platform."""

    DEV = "dev"
    STAGING = "staging"
    PROD = "prod"


class TelemetrySettings(BaseModel):
    """Configuration block for OpenTelemetry export."""

    exporter: str = Field(default="console", description="Span exporter: console, otlp, or none")
    endpoint: str | None = Field(default=None, description="Exporter endpoint")
    sample_ratio: float = Field(default=0.1, ge=0.0, le=1.0)


class LoggingSettings(BaseModel):
    """Structured logging configuration."""

    level: str = Field(default="INFO", description="Log level for application output")
    correlation_id_header: str = Field(
        default="IA-Request-Id", description="Header used for trace correlation"
    )
    scrub_fields: Sequence[str] = Field(
        default_factory=lambda: ["password", "token", "secret", "authorization", "api_key"],
        description="Fields that should be redacted in logs",
    )


class MetricsSettings(BaseModel):
    """Prometheus metrics configuration."""

    enabled: bool = True
    path: str = Field(default="/metrics", description="HTTP path for Prometheus metrics")


class SentrySettings(BaseModel):
    """Sentry error tracking configuration."""

    dsn: str | None = Field(default=None, description="Sentry DSN for reporting errors")
    traces_sample_rate: float = Field(default=0.1, ge=0.0, le=1.0)
    send_default_pii: bool = False
    environment: str | None = Field(default=None, description="Override environment tag")


class ObservabilitySettings(BaseModel):
    """Aggregated observability configuration."""

    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    metrics: MetricsSettings = Field(default_factory=MetricsSettings)
    sentry: SentrySettings = Field(default_factory=SentrySettings)
    telemetry: TelemetrySettings = Field(default_factory=TelemetrySettings)


class ServerSettings(BaseModel):
    """HTTP listener configuration."""

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=4000, ge=0, le=65535)
    keep_alive_timeout: float | None = Field(
        default=None, gt=0.0, description="Override for the HTTP keep-alive timeout in seconds"
    )


class RetrySettings(BaseModel):
    """Backoff policy applied when a remote schema cannot be resolved."""

    factor: float = Field(default=2.0, ge=1.0)
    min_timeout: float = Field(default=1.0, ge=0.0, description="First backoff delay in seconds")
    retries: int = Field(default=5, ge=0)
    max_timeout: float | None = Field(default=None, gt=0.0)

    @model_validator(mode="after")
    def _validate_bounds(self) -> RetrySettings:
        if self.max_timeout is not None and self.max_timeout < self.min_timeout:
            raise ValueError("max_timeout must be greater than or equal to min_timeout")
        return self


class GraphQLSettings(BaseModel):
    """GraphQL endpoint and schema federation configuration."""

    path: str = Field(default="/graphql")
    remote_schema_urls: list[str] = Field(default_factory=list)
    request_timeout: float = Field(default=10.0, gt=0.0)
    initial_fetch_deadline: float | None = Field(
        default=None,
        gt=0.0,
        description="Upper bound in seconds for the initial remote schema fan-out",
    )
    forward_headers: list[str] = Field(
        default_factory=lambda: ["IA-Context", "IA-Trace-Id", "IA-Request-Id", "Authorization"]
    )
    retry: RetrySettings = Field(default_factory=RetrySettings)


class ReportingSettings(BaseModel):
    """Operation reporting (schema tag and resolver tracing) configuration."""

    api_key: SecretStr | None = Field(default=None, description="Enables operation reporting")
    schema_tag: str | None = Field(default=None, description="Tag of the published schema")
    debug_resolver_tracing: bool = False

    @property
    def enabled(self) -> bool:
        return self.api_key is not None and bool(self.api_key.get_secret_value())


class AppSettings(BaseSettings):
    """Top-level application settings."""

    environment: Environment = Environment.DEV
    debug: bool = False
    service_name: str = "ceres-gateway"
    version: str = "0.1.0"
    manifest: str = Field(default="ceres-gateway", description="Payload returned by /health")
    server: ServerSettings = Field(default_factory=ServerSettings)
    graphql: GraphQLSettings = Field(default_factory=GraphQLSettings)
    reporting: ReportingSettings = Field(default_factory=ReportingSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    model_config = SettingsConfigDict(env_prefix="CERES_", env_nested_delimiter="__")


ENVIRONMENT_DEFAULTS: Mapping[Environment, dict[str, Any]] = {
    Environment.DEV: {
        "debug": True,
        "observability": {"telemetry": {"exporter": "console"}},
    },
    Environment.STAGING: {
        "observability": {"telemetry": {"exporter": "otlp", "sample_ratio": 0.25}},
    },
    Environment.PROD: {
        "observability": {"telemetry": {"exporter": "otlp", "sample_ratio": 0.05}},
        "graphql": {"initial_fetch_deadline": 60.0},
    },
}

# Un-prefixed operational variables understood for compatibility with existing deploys.
OPERATIONAL_ALIASES: Mapping[str, str] = {
    "ENGINE_API_KEY": "api_key",
    "ENGINE_SCHEMA_TAG": "schema_tag",
    "DEBUG_RESOLVER_TRACING": "debug_resolver_tracing",
}


def _deep_update(target: dict[str, Any], updates: Mapping[str, Any]) -> dict[str, Any]:
    for key, value in updates.items():
        current = target.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            target[key] = _deep_update(dict(current), value)
        else:
            target[key] = value
    return target


def _operational_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    reporting: dict[str, Any] = {}
    for variable, field_name in OPERATIONAL_ALIASES.items():
        value = environ.get(variable)
        if value:
            reporting[field_name] = value
    return {"reporting": reporting} if reporting else {}


def load_settings(environment: str | None = None) -> AppSettings:
    """Load application settings with environment specific defaults applied.

    Explicit ``CERES_`` variables win over environment presets, and the
    operational aliases (``ENGINE_API_KEY`` and friends) fill reporting fields
    that were not configured through the prefixed variables.
    """
    env_value = (environment or os.getenv("CERES_ENV", "dev")).lower()
    env = Environment(env_value)
    try:
        base_settings = AppSettings()
    except ValidationError as err:
        raise RuntimeError(f"Invalid configuration: {err}") from err
    explicit = base_settings.model_dump(exclude_unset=True)
    merged = AppSettings.model_construct().model_dump()
    merged = _deep_update(merged, ENVIRONMENT_DEFAULTS.get(env, {}))
    merged = _deep_update(merged, _operational_overrides(os.environ))
    merged = _deep_update(merged, explicit)
    merged["environment"] = env
    if isinstance(merged["reporting"].get("api_key"), SecretStr):
        merged["reporting"]["api_key"] = merged["reporting"]["api_key"].get_secret_value()
    return AppSettings.model_validate(merged)


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    """Cached accessor used by production code."""
    return load_settings()
