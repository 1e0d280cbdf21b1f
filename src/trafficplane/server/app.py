# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Trafficplane Contributors

"""Starlette ASGI application for the Trafficplane federation server.

Serves the node-to-node federation protocol alongside the administrative
federation API, with bearer-token authentication, CORS and a health check.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import asynccontextmanager
from typing import Any

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from ..core.logging import configure_logging, correlation_context
from ..federation.service import get_federation_service
from .auth import get_token_store
from .config import get_settings
from .federation_endpoints import federation_routes

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Run every request inside a correlation-id scope.

    An inbound X-Correlation-ID is honoured so a handshake can be traced
    across both nodes; the id is echoed on the response.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        with correlation_context(request.headers.get(CORRELATION_HEADER)) as cid:
            response = await call_next(request)
            response.headers[CORRELATION_HEADER] = cid
            return response


async def health_endpoint(request: Request) -> JSONResponse:
    """Health check endpoint."""
    settings = get_settings()

    health_data: dict[str, Any] = {
        "status": "healthy",
        "version": settings.server_version,
        "federation": "enabled" if settings.federation_enabled else "disabled",
        "store": settings.federation_store,
    }

    # Only the postgres store has a dependency worth probing
    if settings.federation_store.lower() == "postgres":
        try:
            from ..core.db import get_cursor

            with get_cursor() as cur:
                cur.execute("SELECT 1")
            health_data["database"] = "connected"
        except Exception as e:  # Intentionally broad: health check should report all errors
            health_data["database"] = f"error: {str(e)}"
            health_data["status"] = "degraded"

    status_code = 200 if health_data["status"] == "healthy" else 503
    return JSONResponse(health_data, status_code=status_code)


@asynccontextmanager
async def lifespan(app: Starlette):
    """Application lifespan handler."""
    settings = get_settings()
    configure_logging(settings.log_level, log_file=settings.log_file)
    logger.info(f"Starting Trafficplane federation server on {settings.host}:{settings.port}")

    get_token_store(settings.token_file)
    logger.info(f"Token store initialized from {settings.token_file}")

    if settings.federation_enabled:
        identity = get_federation_service().identities.get_or_create(settings.federation_org_id)
        logger.info(f"Federation enabled: node {identity.node_id} ({identity.role.value}) for org {identity.org_id}")
        if not identity.is_configured:
            logger.warning("Node URL not configured; partnership requests cannot be sent or accepted")

    yield

    if settings.federation_store.lower() == "postgres":
        from ..core.db import close_pool

        close_pool()
    logger.info("Trafficplane federation server shutting down")


def create_app() -> Starlette:
    """Create the Starlette ASGI application."""
    settings = get_settings()

    routes = [
        Route("/api/v1/health", health_endpoint, methods=["GET"]),
        *federation_routes(),
    ]

    middleware = [
        Middleware(CorrelationIdMiddleware),
        Middleware(
            CORSMiddleware,
            allow_origins=settings.allowed_origins,
            allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
            allow_headers=["Authorization", "Content-Type", "X-Federation-Secret", CORRELATION_HEADER],
            expose_headers=[CORRELATION_HEADER],
        ),
    ]

    return Starlette(
        routes=routes,
        middleware=middleware,
        lifespan=lifespan,
    )


def run() -> None:
    """Run the server using uvicorn."""
    import uvicorn

    settings = get_settings()

    logger.info(f"Starting Trafficplane federation server on {settings.host}:{settings.port}")

    uvicorn.run(
        create_app(),
        host=settings.host,
        port=settings.port,
        log_level="info",
    )


if __name__ == "__main__":
    run()
