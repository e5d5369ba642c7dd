"""HTTP listener abstraction used by the gateway server."""

from __future__ import annotations

import asyncio
import socket
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

import structlog
import uvicorn
from fastapi import FastAPI

logger = structlog.get_logger(__name__)

_DEFAULT_KEEP_ALIVE_SECONDS = 5


@dataclass(frozen=True)
class ServerConfig:
    """Address and connection settings for the HTTP listener."""

    port: int
    host: str = "0.0.0.0"
    keep_alive_timeout: float | None = None

    @property
    def address(self) -> str:
        return f"http://{self.host}:{self.port}"


class HttpListener(Protocol):
    """Protocol every HTTP listener implementation must follow."""

    @property
    def is_open(self) -> bool:
        """Return ``True`` while the listener owns an open socket."""

    async def open(
        self, app: FastAPI, config: ServerConfig, on_listening: Callable[[], None]
    ) -> None:
        """Start serving ``app``; call ``on_listening`` once the socket accepts connections."""

    async def close(self) -> None:
        """Stop accepting connections and release the socket."""


class _NotifyingServer(uvicorn.Server):
    """Uvicorn server that reports when its sockets are bound."""

    def __init__(self, config: uvicorn.Config, on_listening: Callable[[], None]) -> None:
        super().__init__(config)
        self._on_listening = on_listening

    async def startup(self, sockets: list[socket.socket] | None = None) -> None:
        await super().startup(sockets=sockets)
        if not self.should_exit:
            self._on_listening()


class UvicornListener:
    """Serve the gateway application with an in-process ``uvicorn`` server."""

    def __init__(self, *, log_level: str = "info") -> None:
        self._log_level = log_level
        self._server: _NotifyingServer | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def is_open(self) -> bool:
        return self._task is not None and not self._task.done()

    async def open(
        self, app: FastAPI, config: ServerConfig, on_listening: Callable[[], None]
    ) -> None:
        if self.is_open:
            raise RuntimeError("HTTP listener is already open")
        keep_alive = (
            int(config.keep_alive_timeout)
            if config.keep_alive_timeout is not None
            else _DEFAULT_KEEP_ALIVE_SECONDS
        )
        uvicorn_config = uvicorn.Config(
            app,
            host=config.host,
            port=config.port,
            timeout_keep_alive=keep_alive,
            log_config=None,
            log_level=self._log_level,
            lifespan="off",
        )
        self._server = _NotifyingServer(uvicorn_config, on_listening)
        self._task = asyncio.get_running_loop().create_task(
            self._server.serve(), name="ceres-http-listener"
        )
        logger.debug("listener.opened", host=config.host, port=config.port, keep_alive=keep_alive)

    async def close(self) -> None:
        if self._server is None or self._task is None:
            return
        self._server.should_exit = True
        try:
            await self._task
        finally:
            self._server = None
            self._task = None
        logger.debug("listener.closed")

    async def serve_forever(self) -> None:
        """Block until the underlying server task finishes."""
        if self._task is not None:
            await self._task


__all__ = ["HttpListener", "ServerConfig", "UvicornListener"]
