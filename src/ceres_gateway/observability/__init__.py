"""Observability helpers for the gateway application."""

from __future__ import annotations

from fastapi import FastAPI

from ceres_gateway.config.settings import AppSettings

from ..utils.logging import configure_logging
from .metrics import register_metrics
from .sentry import capture_exception, initialise_sentry
from .tracing import configure_tracing

__all__ = ["capture_exception", "setup_observability"]


def setup_observability(app: FastAPI, settings: AppSettings) -> None:
    """Configure logging, tracing, metrics, and error tracking for the app."""
    configure_logging(settings.observability.logging)
    configure_tracing(settings)
    initialise_sentry(settings)
    register_metrics(app, settings)
