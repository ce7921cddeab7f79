"""Application factory for the FastAPI app.

Centralizes app construction (lifespan, middleware, handlers, routers) so tests
can build isolated instances with their own settings.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx
from fastapi import FastAPI

from app.adapters.upstream import create_upstream_client
from app.api.routes import health_router, limits_router
from app.core.config import Settings, settings as default_settings
from app.core.exception_handlers import setup_exception_handlers
from app.core.limits import build_resource_limiters
from app.core.logging import configure_logging
from app.core.middleware import request_id_middleware


def create_app(
    app_settings: Settings | None = None,
    *,
    upstream_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    The resource limiters and the upstream client are created when the app
    starts and live on ``app.state`` until shutdown.

    Args:
        app_settings: Settings to build from; defaults to the global settings.
        upstream_transport: Optional httpx transport for the upstream client.

    Returns:
        Configured FastAPI app.
    """
    cfg = app_settings or default_settings

    # Logging first so subsequent init logs are formatted as desired
    configure_logging(cfg.log)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        limiters = build_resource_limiters(cfg.limits)
        app.state.limiters = limiters
        app.state.upstream = create_upstream_client(
            limiters, cfg.upstream, transport=upstream_transport
        )
        try:
            yield
        finally:
            await app.state.upstream.aclose()

    app = FastAPI(
        title="Playground Map Upstream Gate",
        description=(
            "Admission control for the playground map's calls to its search, "
            "geocoding and map-data providers."
        ),
        version="0.1.0",
        debug=cfg.app.debug,
        lifespan=lifespan,
    )

    app.middleware("http")(request_id_middleware)
    setup_exception_handlers(app)

    app.include_router(limits_router, prefix="/v1")
    app.include_router(health_router)

    return app
