"""Lifecycle event vocabulary and the in-process lifecycle bus.

Key Responsibilities:
    - Enumerate the milestones published by the gateway server and the remote
      schema resolver
    - Provide a named-event multicast that decouples publishers from the
      components reacting to them

Collaborators:
    - Upstream: ``Server`` and ``GraphQLBase`` publish events
    - Downstream: The server readiness state machine and any component that
      subscribes through ``Server.on``

Side Effects:
    - Invokes subscriber callbacks synchronously on ``publish``
    - Logs (and swallows) exceptions raised by individual subscribers

Thread Safety:
    - Not thread-safe; intended for use from a single event loop
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable
from enum import Enum
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_NAMESPACE = "ceres.server"


class LifecycleEvent(str, Enum):
    """Named milestones in server startup and remote schema resolution."""

    CONNECTORS_READY = "CONNECTORS_READY"
    MIDDLEWARE_READY = "MIDDLEWARE_READY"
    STARTED = "SERVER_STARTED"
    STOPPED = "SERVER_STOPPED"
    REMOTE_SCHEMAS_FETCHING = "REMOTE_SCHEMAS_FETCHING"
    REMOTE_SCHEMAS_FETCHED = "REMOTE_SCHEMAS_FETCHED"


LifecycleHandler = Callable[[Any], None]


class LifecycleBus:
    """Topic based publish/subscribe channel keyed by lifecycle events.

    Delivery is synchronous and at-least-once per subscription. There is no
    ordering guarantee between subscribers of the same topic and nothing is
    retained for subscribers that register after a publish.
    """

    def __init__(self, namespace: str = DEFAULT_NAMESPACE) -> None:
        self._namespace = namespace
        self._subscribers: dict[str, list[LifecycleHandler]] = defaultdict(list)

    def topic(self, event: LifecycleEvent) -> str:
        return f"{self._namespace}.{event.value}"

    def subscribe(self, event: LifecycleEvent, handler: LifecycleHandler) -> None:
        self._subscribers[self.topic(event)].append(handler)

    def publish(self, event: LifecycleEvent, payload: Any = None) -> int:
        """Invoke every handler subscribed to ``event`` with ``payload``.

        Returns:
            Number of handlers that completed without raising.
        """
        topic = self.topic(event)
        delivered = 0
        for handler in list(self._subscribers.get(topic, ())):
            try:
                handler(payload)
            except Exception:
                logger.exception("lifecycle.handler.failed", topic=topic, handler=repr(handler))
                continue
            delivered += 1
        return delivered

    def subscriber_count(self, event: LifecycleEvent) -> int:
        return len(self._subscribers.get(self.topic(event), ()))

    def clear(self) -> None:
        self._subscribers.clear()


__all__ = ["DEFAULT_NAMESPACE", "LifecycleBus", "LifecycleEvent", "LifecycleHandler"]
