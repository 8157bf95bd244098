"""FastAPI application entrypoint.

Configures CORS, includes routers, owns the launch status scheduler through
the app lifespan, and exposes a healthcheck endpoint.
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response as StarletteResponse
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

from .deps import get_settings
from .routers import analytics as analytics_router
from .routers import launches as launches_router
from .routers import public as public_router
from .routers import purchases as purchases_router
from .routers import sync_jobs as sync_jobs_router
from .routers import tracking as tracking_router
from .services.launch_status_scheduler import LaunchStatusScheduler
from .telemetry import init_observability
from . import schemas

# Registers every table on Base.metadata
from . import models  # noqa: F401


# Snippet endpoints are called from any course landing page
PUBLIC_TRACKING_PATHS = ("/v1/track", "/v1/identify")


class TrackingCORSMiddleware(BaseHTTPMiddleware):
    """Wildcard CORS for the tracking snippet endpoints.

    The snippet runs on arbitrary customer domains and sends no credentials,
    so these two paths answer any origin.
    """

    async def dispatch(self, request, call_next):
        if request.url.path not in PUBLIC_TRACKING_PATHS:
            return await call_next(request)

        cors_headers = {
            "Access-Control-Allow-Origin": "*",
            "Access-Control-Allow-Methods": "POST, OPTIONS",
            "Access-Control-Allow-Headers": "Content-Type",
            "Access-Control-Max-Age": "86400",
        }
        if request.method == "OPTIONS":
            return StarletteResponse(status_code=200, headers=cors_headers)

        response = await call_next(request)
        for key, value in cors_headers.items():
            response.headers[key] = value
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the launch status scheduler (immediate tick, then every interval)."""
    settings = get_settings()
    scheduler = None
    if settings.LAUNCH_STATUS_SCHEDULER_ENABLED:
        scheduler = LaunchStatusScheduler(interval_seconds=settings.LAUNCH_STATUS_INTERVAL_SECONDS)
        scheduler.start()
    else:
        logger.info("[STARTUP] Launch status scheduler disabled")
    app.state.launch_status_scheduler = scheduler
    try:
        yield
    finally:
        if scheduler is not None:
            await scheduler.stop()


def create_app() -> FastAPI:
    app = FastAPI(
        title="launchlens API",
        description="""
        launchlens attributes course-platform purchases to the marketing
        touchpoints that produced them and tracks time-boxed launches.

        This API provides endpoints for:
        - Launch management, sharing and per-launch analytics
        - Dashboard revenue analytics and CSV export
        - Tracking snippet ingestion
        - Purchase attribution for platform integrations

        ## Authentication

        Account endpoints expect a JWT in the `access_token` cookie or an
        `Authorization: Bearer` header. Tracking and public recap endpoints
        are unauthenticated.
        """,
        version="1.0.0",
        lifespan=lifespan,
    )

    # Trust X-Forwarded-Proto from the load balancer
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")

    settings = get_settings()
    init_observability()

    # BACKEND_CORS_ORIGINS can be a comma-separated list
    cors_origins_str = os.getenv("BACKEND_CORS_ORIGINS", settings.BACKEND_CORS_ORIGINS)
    allowed_origins = [origin.strip() for origin in cors_origins_str.split(",") if origin.strip()]
    if settings.APP_URL not in allowed_origins:
        allowed_origins.append(settings.APP_URL)

    logger.info("[CORS] Allowed origins: %s", allowed_origins)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # Added after CORSMiddleware so it runs first
    app.add_middleware(TrackingCORSMiddleware)

    app.include_router(launches_router.router)
    app.include_router(analytics_router.router)
    app.include_router(public_router.router)
    app.include_router(tracking_router.router)
    app.include_router(purchases_router.router)
    app.include_router(sync_jobs_router.router)

    @app.get(
        "/health",
        response_model=schemas.HealthResponse,
        tags=["Health"],
        summary="Health check",
    )
    def health():
        return schemas.HealthResponse(status="ok")

    def custom_openapi():
        if app.openapi_schema:
            return app.openapi_schema

        openapi_schema = get_openapi(
            title=app.title,
            version=app.version,
            description=app.description,
            routes=app.routes,
        )
        openapi_schema.setdefault("components", {})["securitySchemes"] = {
            "cookieAuth": {
                "type": "apiKey",
                "in": "cookie",
                "name": "access_token",
                "description": "JWT issued by the auth service",
            }
        }

        for path, methods in openapi_schema["paths"].items():
            if path == "/health" or path.startswith("/public") or path in PUBLIC_TRACKING_PATHS:
                continue
            for operation in methods.values():
                operation.setdefault("security", [{"cookieAuth": []}])

        app.openapi_schema = openapi_schema
        return app.openapi_schema

    app.openapi = custom_openapi
    return app


app = create_app()
