"""Health check middleware gated on application readiness."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from ceres_gateway.core.server import readiness_probe

logger = structlog.get_logger(__name__)

NOT_READY_MESSAGE = "Application not ready"


@dataclass(frozen=True)
class HealthConfig:
    manifest: Any
    path: str = "/health"


class Health:
    """Register a binary readiness endpoint on the application."""

    def __init__(self, config: HealthConfig) -> None:
        self.config = config

    async def initialize(self, app: FastAPI) -> None:
        is_ready = readiness_probe(app)
        manifest = self.config.manifest

        @app.get(self.config.path, include_in_schema=False)
        async def health() -> JSONResponse:
            if not is_ready():
                return JSONResponse({"data": NOT_READY_MESSAGE}, status_code=500)
            return JSONResponse({"data": manifest})

        logger.debug("health.registered", path=self.config.path)


__all__ = ["Health", "HealthConfig"]
