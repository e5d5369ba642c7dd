"""Tests covering application settings loading and environment presets."""

import pytest

from ceres_gateway.config.settings import (
    ENVIRONMENT_DEFAULTS,
    AppSettings,
    Environment,
    RetrySettings,
    get_settings,
    load_settings,
)


def test_environment_defaults_provide_expected_overrides() -> None:
    """Environment presets should include telemetry and fetch deadline overrides."""
    staging_defaults = ENVIRONMENT_DEFAULTS[Environment.STAGING]
    assert staging_defaults["observability"]["telemetry"]["exporter"] == "otlp"

    prod_defaults = ENVIRONMENT_DEFAULTS[Environment.PROD]
    assert prod_defaults["observability"]["telemetry"]["sample_ratio"] == 0.05
    assert prod_defaults["graphql"]["initial_fetch_deadline"] == 60.0


def test_environment_enum_covers_supported_values() -> None:
    assert {env.value for env in Environment} == {"dev", "staging", "prod"}


def test_defaults() -> None:
    settings = AppSettings()

    assert settings.server.port == 4000
    assert settings.graphql.path == "/graphql"
    assert settings.graphql.remote_schema_urls == []
    assert settings.graphql.retry.retries == 5
    assert settings.observability.logging.correlation_id_header == "IA-Request-Id"
    assert not settings.reporting.enabled


def test_load_settings_applies_environment_preset() -> None:
    settings = load_settings("prod")

    assert settings.environment is Environment.PROD
    assert settings.graphql.initial_fetch_deadline == 60.0
    assert settings.observability.telemetry.exporter == "otlp"
    assert not settings.debug


def test_prefixed_variables_override_presets(monkeypatch) -> None:
    monkeypatch.setenv("CERES_GRAPHQL__INITIAL_FETCH_DEADLINE", "15")
    monkeypatch.setenv("CERES_GRAPHQL__RETRY__RETRIES", "2")
    monkeypatch.setenv(
        "CERES_GRAPHQL__REMOTE_SCHEMA_URLS", '["http://pricing/graphql", "http://weather/graphql"]'
    )
    monkeypatch.setenv("CERES_SERVER__PORT", "8080")

    settings = load_settings("prod")

    assert settings.graphql.initial_fetch_deadline == 15.0
    assert settings.graphql.retry.retries == 2
    assert settings.graphql.retry.factor == 2.0
    assert settings.graphql.remote_schema_urls == [
        "http://pricing/graphql",
        "http://weather/graphql",
    ]
    assert settings.server.port == 8080


def test_operational_aliases_configure_reporting(monkeypatch) -> None:
    monkeypatch.setenv("ENGINE_API_KEY", "service:ceres:secret")
    monkeypatch.setenv("ENGINE_SCHEMA_TAG", "staging")
    monkeypatch.setenv("DEBUG_RESOLVER_TRACING", "true")

    settings = load_settings("dev")

    assert settings.reporting.enabled
    assert settings.reporting.api_key.get_secret_value() == "service:ceres:secret"
    assert settings.reporting.schema_tag == "staging"
    assert settings.reporting.debug_resolver_tracing is True


def test_prefixed_reporting_wins_over_alias(monkeypatch) -> None:
    monkeypatch.setenv("ENGINE_SCHEMA_TAG", "alias")
    monkeypatch.setenv("CERES_REPORTING__SCHEMA_TAG", "explicit")

    assert load_settings().reporting.schema_tag == "explicit"


def test_env_selects_environment(monkeypatch) -> None:
    monkeypatch.setenv("CERES_ENV", "staging")

    assert get_settings().environment is Environment.STAGING
    assert get_settings() is get_settings()


def test_invalid_configuration_is_reported(monkeypatch) -> None:
    monkeypatch.setenv("CERES_SERVER__PORT", "not-a-port")

    with pytest.raises(RuntimeError, match="Invalid configuration"):
        load_settings()


def test_retry_bounds_are_validated() -> None:
    with pytest.raises(ValueError):
        RetrySettings(min_timeout=5.0, max_timeout=1.0)
