from __future__ import annotations

import os

import pytest

from ceres_gateway.config.settings import OPERATIONAL_ALIASES, get_settings
from ceres_gateway.core.lifecycle import LifecycleBus
from ceres_gateway.core.retry import RetryPolicy

from .helpers import FakeListener


@pytest.fixture(autouse=True)
def _isolate_settings(monkeypatch):
    for variable in list(os.environ):
        if variable.startswith("CERES_"):
            monkeypatch.delenv(variable, raising=False)
    for variable in OPERATIONAL_ALIASES:
        monkeypatch.delenv(variable, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def bus() -> LifecycleBus:
    return LifecycleBus()


@pytest.fixture
def listener() -> FakeListener:
    return FakeListener()


@pytest.fixture
def fast_policy() -> RetryPolicy:
    return RetryPolicy(factor=2.0, min_timeout=0.01, retries=3)
