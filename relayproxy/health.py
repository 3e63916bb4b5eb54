"""Health and service-discovery endpoints for relayproxy.

Implements:
  GET <prefix>/health — liveness check (503 before ready, 200 after)
  GET /               — informational root describing the relay routes

The health route lives under the path-mapped prefix, so its router MUST be
included before the relay router or the catch-all would forward it upstream.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, HTTPException, Request

from relayproxy.config import Config


def create_health_router(config: Config) -> APIRouter:
    """Build the health + root router for ``config``'s route layout."""
    router = APIRouter(tags=["health"])
    prefix = config.relay.prefix
    query_route = config.relay.query_route
    query_param = config.relay.query_param
    upstream_base = config.upstream.base_url

    @router.get(f"{prefix}/health")
    async def health(request: Request) -> dict[str, Any]:
        """Liveness check.

        Response body (200):
            {
              "status": "ok",
              "timestamp": "2024-01-01T00:00:00.000000+00:00",
              "message": "Relay proxy server is running",
              "deployment_mode": "self-hosted" | "managed"
            }
        """
        if not getattr(request.app.state, "ready", False):
            raise HTTPException(
                status_code=503,
                detail={
                    "status": "starting",
                    "message": "Relay proxy is starting up...",
                },
            )
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "message": "Relay proxy server is running",
            "deployment_mode": config.deploy_mode,
        }

    @router.get("/")
    async def root() -> dict[str, Any]:
        """Root endpoint — service identity and usage."""
        return {
            "message": "Relay Proxy Server",
            "description": f"This proxy forwards {prefix}/* requests to {upstream_base}/*",
            "usage": {
                "Path-mapped relay": f"ANY {prefix}/{{path}}",
                "Query-parameter relay": f"ANY {query_route}?{query_param}={{absolute-url}}",
                "Health Check": f"GET {prefix}/health",
            },
            "examples": [
                f"{prefix}/bootstrap-static/",
                f"{prefix}/fixtures/",
                f"{prefix}/entry/1/history/",
                f"{prefix}/event/1/live/",
            ],
            "note": (
                f"Point your client's base URL at this proxy and keep the same "
                f"{prefix}/* paths"
            ),
        }

    return router
