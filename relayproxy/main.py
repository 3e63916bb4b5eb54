"""relayproxy FastAPI application factory + lifespan lifecycle.

This module implements:
  - create_app() — testable application factory; loads config and builds routers
  - lifespan — @asynccontextmanager startup/shutdown sequence
  - app = create_app() — module-level instance for uvicorn / managed ASGI hosts

Startup sequence:
  1. create_http_client()  → app.state.http_client (shared, bounded timeout)
  2. app.state.ready = True

Shutdown sequence (reverse):
  app.state.ready = False → close the shared HTTP client

Middleware (outermost first):
  CORSMiddleware → BodySizeLimitMiddleware → routers

Relay routes turn their own failures into 500 JSON inside the route, so those
responses pass back through CORS. The app-level ``Exception`` handler is only a
last resort: Starlette runs it in ServerErrorMiddleware, outside CORS.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from relayproxy.config import Config, load_config
from relayproxy.constants import CORS_ALLOW_HEADERS, CORS_ALLOW_METHODS
from relayproxy.health import create_health_router
from relayproxy.models.errors import build_error_response
from relayproxy.proxy.engine import create_http_client, create_relay_router
from relayproxy.proxy.middleware import BodySizeLimitMiddleware
from relayproxy.utils.logger import configure_from_env, get_logger

# ─── Logging Setup ────────────────────────────────────────────────────────────
DEBUG = configure_from_env()
logger = get_logger(__name__)


# ─── Dependencies ─────────────────────────────────────────────────────────────


async def require_ready(request: Request) -> None:
    """FastAPI dependency: raises HTTP 503 if app.state.ready is not True.

    All relay routes consume this dependency; the shared HTTP client does not
    exist before the lifespan has started.
    """
    if not getattr(request.app.state, "ready", False):
        raise HTTPException(
            status_code=503,
            detail={
                "status": "starting",
                "message": "Relay proxy is starting up...",
            },
        )


# ─── Lifespan ─────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan — startup and shutdown sequence."""
    config: Config = app.state.config
    logger.info(
        "relayproxy starting up...",
        upstream=config.upstream.base_url,
        prefix=config.relay.prefix,
        query_route=config.relay.query_route,
        deploy_mode=config.deploy_mode,
    )

    # Single shared client, NEVER instantiated per-request.
    http_client: httpx.AsyncClient = create_http_client(
        timeout_s=config.upstream.timeout_s
    )
    app.state.http_client = http_client
    logger.info("HTTP relay client created", timeout_s=config.upstream.timeout_s)

    app.state.ready = True
    logger.info("relayproxy ready")

    yield

    logger.info("relayproxy shutting down...")
    app.state.ready = False

    try:
        await http_client.aclose()
        logger.info("HTTP relay client closed")
    except Exception as exc:  # noqa: BLE001
        logger.warning("HTTP relay client close error (non-fatal)", error=str(exc))

    logger.info("relayproxy shutdown complete")


# ─── Application Factory ──────────────────────────────────────────────────────


def create_app(config: Optional[Config] = None) -> FastAPI:
    """Create and configure the relayproxy FastAPI application.

    Call this function directly in tests to get an isolated app instance:
        app = create_app(Config.defaults())

    Args:
        config: Configuration to build routes from; ``load_config()`` is used
                when omitted.

    Returns:
        Configured FastAPI application with lifespan, routers, and middleware.
    """
    if config is None:
        config = load_config()

    application = FastAPI(
        title="Relay Proxy",
        description="Transparent HTTP forwarding proxy",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if DEBUG else None,
        redoc_url="/redoc" if DEBUG else None,
        openapi_url="/openapi.json" if DEBUG else None,
    )

    application.state.config = config
    # Ensures relay routes return 503 on any request that arrives before startup.
    application.state.ready = False

    application.add_middleware(
        BodySizeLimitMiddleware, max_body_bytes=config.proxy.max_body_bytes
    )

    # NOTE: In Starlette, the LAST-added middleware is OUTERMOST (runs first).
    # CORS wraps the size limit so 413/400 rejections still carry CORS headers.
    # Permissive CORS: any origin is reflected back, credentials allowed.
    application.add_middleware(
        CORSMiddleware,
        allow_origin_regex=".*",
        allow_credentials=True,
        allow_methods=CORS_ALLOW_METHODS,
        allow_headers=CORS_ALLOW_HEADERS,
    )

    # Health/root first: <prefix>/health must win over the <prefix>/* catch-all.
    application.include_router(create_health_router(config))
    application.include_router(
        create_relay_router(config), dependencies=[Depends(require_ready)]
    )

    # Registered for Starlette's base class so routing 404/405s share the shape.
    @application.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        logger.warning(
            "HTTP exception",
            status_code=exc.status_code,
            detail=exc.detail,
            path=str(request.url.path),
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )

    @application.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
        )
        return build_error_response(
            500,
            "Internal server error",
            str(exc) or type(exc).__name__,
            str(request.url.path),
        )

    return application


# ─── Module-Level App ─────────────────────────────────────────────────────────
# Used by uvicorn (relayproxy.run) and by managed ASGI hosts that import it.

app = create_app()
