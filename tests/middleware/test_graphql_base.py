from __future__ import annotations

import asyncio

import httpx
import pytest
from fastapi import FastAPI
from graphql import build_schema, graphql

from ceres_gateway.config.settings import AppSettings, ReportingSettings
from ceres_gateway.core.lifecycle import LifecycleEvent
from ceres_gateway.core.retry import RetryPolicy
from ceres_gateway.middleware.graphql.base import (
    GraphQLBase,
    GraphQLBaseConfig,
    RemoteSchemaStatus,
)
from ceres_gateway.schema import schema as gateway_schema
from ceres_gateway.utils.errors import ConfigurationError, RemoteSchemaUnavailableError

from tests.helpers import RemoteRouter, eventually, pricing_service, shutdown, weather_service

LOCAL_SDL = """
type Query {
  version: String
  greeting: String
}
"""

PRICING_URL = "http://pricing.test/graphql"
WEATHER_URL = "http://weather.test/graphql"


def _local_schema():
    schema = build_schema(LOCAL_SDL)
    schema.query_type.fields["version"].resolve = lambda *_: "gateway"
    schema.query_type.fields["greeting"].resolve = lambda *_: "hello"
    return schema


def _record(bus) -> list[tuple[LifecycleEvent, object]]:
    events: list[tuple[LifecycleEvent, object]] = []
    for event in (LifecycleEvent.REMOTE_SCHEMAS_FETCHING, LifecycleEvent.REMOTE_SCHEMAS_FETCHED):
        bus.subscribe(event, lambda payload, event=event: events.append((event, payload)))
    return events


def _resolver(bus, router, urls, policy=None, on_fatal=None) -> GraphQLBase:
    config = GraphQLBaseConfig(
        schema=_local_schema(),
        remote_schema_urls=urls,
        retry_policy=policy or RetryPolicy(factor=2.0, min_timeout=0.01, retries=3),
    )
    return GraphQLBase(config, bus=bus, client=router.client(), on_fatal=on_fatal)


@pytest.mark.asyncio
async def test_local_schema_only_is_served_as_is(bus) -> None:
    events = _record(bus)
    local = _local_schema()
    graphql_base = GraphQLBase(GraphQLBaseConfig(schema=local), bus=bus)

    await graphql_base.initialize(FastAPI())

    assert graphql_base.served_schema.schema is local
    assert graphql_base.served_schema.middleware is None
    assert graphql_base.is_schema_healthy()
    assert not graphql_base.has_remote_schema
    assert graphql_base.retry_operations == {}
    assert [event for event, _ in events] == [
        LifecycleEvent.REMOTE_SCHEMAS_FETCHING,
        LifecycleEvent.REMOTE_SCHEMAS_FETCHED,
    ]
    assert all(payload is graphql_base for _, payload in events)
    await graphql_base.close()


def test_strawberry_schema_is_unwrapped() -> None:
    config = GraphQLBaseConfig(schema=gateway_schema)

    assert config.local_schema is gateway_schema._schema


def test_config_from_settings_applies_retry_policy() -> None:
    settings = AppSettings()
    settings.graphql.remote_schema_urls = [PRICING_URL]
    settings.graphql.retry.retries = 2

    config = GraphQLBaseConfig.from_settings(gateway_schema, settings, path="/api")

    assert config.remote_schema_urls == (PRICING_URL,)
    assert config.retry_policy.retries == 2
    assert config.path == "/api"


@pytest.mark.asyncio
async def test_remote_schemas_are_merged_with_local(bus) -> None:
    pricing, weather = pricing_service(version="7"), weather_service(version="3")
    router = RemoteRouter(pricing, weather)
    graphql_base = _resolver(bus, router, [PRICING_URL, WEATHER_URL])

    await graphql_base.initialize(FastAPI())

    assert graphql_base.get_remote_schema_status(PRICING_URL) is RemoteSchemaStatus.ACTIVE
    assert graphql_base.get_remote_schema_status(WEATHER_URL) is RemoteSchemaStatus.ACTIVE
    assert graphql_base.get_remote_schema_version(PRICING_URL) == "7"
    assert graphql_base.get_remote_schema_version(WEATHER_URL) == "3"
    assert graphql_base.retry_operations == {}

    result = await graphql(
        graphql_base.served_schema.schema,
        '{ version greeting price(commodity: "corn") { amount } forecast(region: "north") { rainfall } }',
    )

    assert result.errors is None
    assert result.data == {
        "version": "gateway",
        "greeting": "hello",
        "price": {"amount": 4.5},
        "forecast": {"rainfall": 12.5},
    }
    await shutdown(graphql_base)


@pytest.mark.asyncio
async def test_matching_version_skips_refetch(bus) -> None:
    pricing = pricing_service(version="7")
    graphql_base = _resolver(bus, RemoteRouter(pricing), [PRICING_URL])
    await graphql_base.initialize(FastAPI())
    served = graphql_base.served_schema
    requests_before = len(pricing.requests)
    events = _record(bus)

    await graphql_base.update_remote_schema(PRICING_URL, "7")

    assert events == []
    assert len(pricing.requests) == requests_before
    assert graphql_base.served_schema is served
    await shutdown(graphql_base)


@pytest.mark.asyncio
async def test_new_version_refetches_and_republishes(bus) -> None:
    pricing = pricing_service(version="7")
    graphql_base = _resolver(bus, RemoteRouter(pricing), [PRICING_URL])
    await graphql_base.initialize(FastAPI())
    served = graphql_base.served_schema
    events = _record(bus)
    pricing.version = "8"

    await graphql_base.update_remote_schema(PRICING_URL, "8")

    assert [event for event, _ in events] == [
        LifecycleEvent.REMOTE_SCHEMAS_FETCHING,
        LifecycleEvent.REMOTE_SCHEMAS_FETCHED,
    ]
    assert pricing.introspection_calls == 2
    assert graphql_base.get_remote_schema_version(PRICING_URL) == "8"
    assert graphql_base.served_schema is not served
    assert graphql_base.retry_operations == {}
    await shutdown(graphql_base)


@pytest.mark.asyncio
async def test_update_of_unknown_url_fails(bus) -> None:
    graphql_base = _resolver(bus, RemoteRouter(), [])

    with pytest.raises(KeyError, match="Unknown remote schema URL"):
        await graphql_base.update_remote_schema("http://unknown.test/graphql")


@pytest.mark.asyncio
async def test_unreachable_schema_recovers_through_retry(bus) -> None:
    pricing = pricing_service(introspection_failures=2)
    graphql_base = _resolver(bus, RemoteRouter(pricing), [PRICING_URL])
    statuses: list[RemoteSchemaStatus] = []
    bus.subscribe(
        LifecycleEvent.REMOTE_SCHEMAS_FETCHING,
        lambda _: statuses.append(graphql_base.get_remote_schema_status(PRICING_URL)),
    )

    await graphql_base.initialize(FastAPI())
    assert graphql_base.get_remote_schema_status(PRICING_URL) is RemoteSchemaStatus.INACTIVE
    assert not graphql_base.is_schema_healthy()
    operation = graphql_base.retry_operations[PRICING_URL]

    await eventually(lambda: graphql_base.is_schema_healthy())
    await asyncio.wait_for(operation.wait(), timeout=2.0)

    assert statuses == [RemoteSchemaStatus.INACTIVE] * 3
    assert graphql_base.get_remote_schema_status(PRICING_URL) is RemoteSchemaStatus.ACTIVE
    assert pricing.introspection_calls == 3
    assert operation.attempts == 2
    assert not operation.active
    assert graphql_base.failures == {}

    await asyncio.sleep(0.05)
    assert pricing.introspection_calls == 3
    await shutdown(graphql_base)


@pytest.mark.asyncio
async def test_exhausted_retries_report_fatal_error(bus) -> None:
    fatal: list[RemoteSchemaUnavailableError] = []
    graphql_base = _resolver(
        bus,
        RemoteRouter(),
        [PRICING_URL],
        policy=RetryPolicy(factor=2.0, min_timeout=0.001, retries=2),
        on_fatal=fatal.append,
    )

    await graphql_base.initialize(FastAPI())
    operation = graphql_base.retry_operations[PRICING_URL]
    await asyncio.wait_for(operation.wait(), timeout=2.0)

    assert operation.attempts == 3
    assert len(fatal) == 1
    error = fatal[0]
    assert str(error) == "Ceres failed to get remote schema"
    assert error.url == PRICING_URL
    assert error.attempts == 3
    assert isinstance(error.__cause__, Exception)
    assert graphql_base.failures[PRICING_URL] is error
    assert graphql_base.get_remote_schema_status(PRICING_URL) is RemoteSchemaStatus.INACTIVE
    assert graphql_base.served_schema is not None
    await shutdown(graphql_base)


@pytest.mark.asyncio
async def test_refresh_restarts_exhausted_retry(bus) -> None:
    pricing = pricing_service(introspection_failures=10)
    fatal: list[RemoteSchemaUnavailableError] = []
    graphql_base = _resolver(
        bus,
        RemoteRouter(pricing),
        [PRICING_URL],
        policy=RetryPolicy(factor=1.0, min_timeout=0.001, retries=1),
        on_fatal=fatal.append,
    )
    await graphql_base.initialize(FastAPI())
    first = graphql_base.retry_operations[PRICING_URL]
    await asyncio.wait_for(first.wait(), timeout=2.0)
    assert len(fatal) == 1
    pricing.introspection_failures = 0

    graphql_base.refresh()
    second = graphql_base.retry_operations[PRICING_URL]
    await eventually(graphql_base.is_schema_healthy)

    assert second is not first
    assert graphql_base.failures == {}
    await shutdown(graphql_base)


@pytest.mark.asyncio
async def test_active_retry_is_not_duplicated(bus) -> None:
    graphql_base = _resolver(
        bus,
        RemoteRouter(),
        [PRICING_URL],
        policy=RetryPolicy(factor=2.0, min_timeout=30.0, retries=3),
    )
    await graphql_base.initialize(FastAPI())
    operation = graphql_base.retry_operations[PRICING_URL]
    await eventually(lambda: operation.attempts == 1)

    await graphql_base.update_remote_schema(PRICING_URL)
    graphql_base.refresh()

    assert graphql_base.retry_operations[PRICING_URL] is operation
    assert operation.active

    await graphql_base.update_remote_schema(PRICING_URL, "9")
    replacement = graphql_base.retry_operations[PRICING_URL]
    assert replacement is not operation
    assert operation.halted
    await asyncio.wait_for(operation.wait(), timeout=1.0)
    await shutdown(graphql_base)


@pytest.mark.asyncio
async def test_missing_version_field_keeps_schema_active(bus) -> None:
    pricing = pricing_service(version=None)
    graphql_base = _resolver(bus, RemoteRouter(pricing), [PRICING_URL])

    await graphql_base.initialize(FastAPI())

    assert graphql_base.get_remote_schema_status(PRICING_URL) is RemoteSchemaStatus.ACTIVE
    assert graphql_base.get_remote_schema_version(PRICING_URL) is None
    await shutdown(graphql_base)


@pytest.mark.asyncio
async def test_initial_fetch_deadline_does_not_block_startup(bus) -> None:
    pricing = pricing_service()
    calls = 0

    async def slow_first_call(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        if calls == 1:
            await asyncio.sleep(5)
        return pricing.handle(request)

    config = GraphQLBaseConfig(
        schema=_local_schema(),
        remote_schema_urls=[PRICING_URL],
        retry_policy=RetryPolicy(factor=2.0, min_timeout=0.01, retries=3),
        initial_fetch_deadline=0.05,
    )
    client = httpx.AsyncClient(transport=httpx.MockTransport(slow_first_call))
    graphql_base = GraphQLBase(config, bus=bus, client=client)

    await asyncio.wait_for(graphql_base.initialize(FastAPI()), timeout=1.0)

    assert graphql_base.served_schema is not None
    assert PRICING_URL in graphql_base.retry_operations
    await eventually(graphql_base.is_schema_healthy)
    await shutdown(graphql_base)


@pytest.mark.asyncio
async def test_reporting_without_schema_tag_is_rejected(bus) -> None:
    config = GraphQLBaseConfig(
        schema=_local_schema(), reporting=ReportingSettings(api_key="service:key")
    )
    graphql_base = GraphQLBase(config, bus=bus)

    with pytest.raises(ConfigurationError, match="ENGINE_SCHEMA_TAG"):
        await graphql_base.initialize(FastAPI())
    await graphql_base.close()


@pytest.mark.asyncio
async def test_reporting_and_tracing_install_resolver_middleware(bus) -> None:
    config = GraphQLBaseConfig(
        schema=_local_schema(),
        reporting=ReportingSettings(
            api_key="service:key", schema_tag="current", debug_resolver_tracing=True
        ),
    )
    graphql_base = GraphQLBase(config, bus=bus)

    await graphql_base.initialize(FastAPI())

    assert graphql_base.served_schema.middleware is not None
    await graphql_base.close()


@pytest.mark.asyncio
async def test_close_prevents_new_retries(bus) -> None:
    graphql_base = _resolver(
        bus,
        RemoteRouter(),
        [PRICING_URL],
        policy=RetryPolicy(factor=2.0, min_timeout=30.0, retries=3),
    )
    await graphql_base.initialize(FastAPI())
    operation = graphql_base.retry_operations[PRICING_URL]

    await shutdown(graphql_base)
    graphql_base.refresh()

    assert operation.halted
    assert graphql_base.retry_operations[PRICING_URL] is operation


@pytest.mark.asyncio
async def test_rebuild_keeps_pending_version_target(bus) -> None:
    pricing = pricing_service(introspection_failures=1)
    weather = weather_service(introspection_failures=1000)
    graphql_base = _resolver(
        bus,
        RemoteRouter(pricing, weather),
        [PRICING_URL, WEATHER_URL],
        policy=RetryPolicy(factor=1.0, min_timeout=0.01, retries=100),
    )
    await graphql_base.initialize(FastAPI())

    await graphql_base.update_remote_schema(WEATHER_URL, "2.0.0")
    targeted = graphql_base.retry_operations[WEATHER_URL]
    await eventually(
        lambda: graphql_base.get_remote_schema_status(PRICING_URL) is RemoteSchemaStatus.ACTIVE
    )

    assert graphql_base.retry_operations[WEATHER_URL] is targeted
    assert graphql_base.retry_targets[WEATHER_URL].target_version == "2.0.0"
    assert targeted.active
    await shutdown(graphql_base)


@pytest.mark.asyncio
async def test_empty_target_version_means_no_target(bus) -> None:
    pricing = pricing_service(version="7")
    graphql_base = _resolver(bus, RemoteRouter(pricing), [PRICING_URL])
    await graphql_base.initialize(FastAPI())

    await graphql_base.update_remote_schema(PRICING_URL, "")

    assert pricing.introspection_calls == 2
    assert graphql_base.retry_operations == {}
    await shutdown(graphql_base)
