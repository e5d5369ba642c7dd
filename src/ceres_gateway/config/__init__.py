"""Configuration package exports."""

from __future__ import annotations

from .settings import (
    ENVIRONMENT_DEFAULTS,
    AppSettings,
    Environment,
    GraphQLSettings,
    LoggingSettings,
    MetricsSettings,
    ObservabilitySettings,
    ReportingSettings,
    RetrySettings,
    SentrySettings,
    ServerSettings,
    TelemetrySettings,
    get_settings,
    load_settings,
)

__all__ = [
    "ENVIRONMENT_DEFAULTS",
    "AppSettings",
    "Environment",
    "GraphQLSettings",
    "LoggingSettings",
    "MetricsSettings",
    "ObservabilitySettings",
    "ReportingSettings",
    "RetrySettings",
    "SentrySettings",
    "ServerSettings",
    "TelemetrySettings",
    "get_settings",
    "load_settings",
]
