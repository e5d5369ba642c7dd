"""Sentry error tracking integration."""

from __future__ import annotations

import logging

import sentry_sdk
from sentry_sdk.integrations import Integration
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from ceres_gateway.config.settings import AppSettings

_SENTRY_INITIALISED = False


def initialise_sentry(settings: AppSettings) -> None:
    global _SENTRY_INITIALISED

    if _SENTRY_INITIALISED:
        return

    sentry_settings = settings.observability.sentry
    if not sentry_settings.dsn:
        return

    integrations: list[Integration] = [FastApiIntegration(transaction_style="endpoint")]
    integrations.append(LoggingIntegration(level=logging.INFO, event_level=logging.ERROR))

    sentry_sdk.init(
        dsn=sentry_settings.dsn,
        environment=sentry_settings.environment or settings.environment.value,
        release=f"{settings.service_name}@{settings.version}",
        traces_sample_rate=sentry_settings.traces_sample_rate,
        send_default_pii=sentry_settings.send_default_pii,
        integrations=integrations,
    )

    _SENTRY_INITIALISED = True


def capture_exception(error: BaseException) -> None:
    """Report ``error`` when Sentry has been initialised; no-op otherwise."""
    if not _SENTRY_INITIALISED:
        return
    sentry_sdk.capture_exception(error)


__all__ = ["capture_exception", "initialise_sentry"]
