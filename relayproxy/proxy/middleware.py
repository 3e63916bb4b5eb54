"""Request body size limit middleware for relayproxy.

Enforces the request body cap (``proxy.max_body_bytes``, 1 MB by default):
  - HTTP 413 is returned for bodies exceeding the cap.
  - The check occurs BEFORE any relay work or upstream connection.
  - Two-phase check:
      1. Content-Length fast path: reject immediately on oversized header value.
      2. Chunked/streaming slow path: accumulate body with rolling cap; reject
         as soon as the cap is exceeded.
"""

from __future__ import annotations

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from relayproxy.constants import MAX_REQUEST_BODY_BYTES
from relayproxy.utils.logger import get_logger

logger = get_logger(__name__)


def _payload_too_large(limit: int) -> JSONResponse:
    return JSONResponse(
        status_code=413,
        content={
            "error": "Request body too large",
            "message": f"Maximum size: {limit} bytes",
        },
    )


_INVALID_CONTENT_LENGTH_BODY: dict = {
    "error": "Bad request",
    "message": "Invalid Content-Length header",
}


class BodySizeLimitMiddleware(BaseHTTPMiddleware):
    """Starlette middleware enforcing a hard cap on request body size.

    Registration (in create_app() in relayproxy/main.py):
        application.add_middleware(BodySizeLimitMiddleware, max_body_bytes=...)

      - Content-Length > limit  → HTTP 413 (fast path, no body read)
      - Content-Length == limit → accepted
      - No Content-Length, accumulated body > limit → HTTP 413 (rolling cap)
      - No Content-Length, accumulated body ≤ limit → accepted, body cached in request
    """

    def __init__(self, app: ASGIApp, max_body_bytes: int = MAX_REQUEST_BODY_BYTES) -> None:
        super().__init__(app)
        self.max_body_bytes = max_body_bytes

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        content_length_header = request.headers.get("content-length")

        # ── Phase 1: Content-Length fast path ─────────────────────────────────
        if content_length_header is not None:
            try:
                declared_size = int(content_length_header)
            except ValueError:
                logger.warning(
                    "Invalid Content-Length header",
                    value=content_length_header,
                    path=request.url.path,
                )
                return JSONResponse(status_code=400, content=_INVALID_CONTENT_LENGTH_BODY)

            if declared_size > self.max_body_bytes:
                logger.warning(
                    "Request body too large (Content-Length)",
                    declared_size=declared_size,
                    limit=self.max_body_bytes,
                    path=request.url.path,
                )
                return _payload_too_large(self.max_body_bytes)

            return await call_next(request)

        # ── Phase 2: Chunked / no Content-Length — rolling cap ───────────────
        body_chunks: list[bytes] = []
        total_size: int = 0

        async for chunk in request.stream():
            total_size += len(chunk)
            if total_size > self.max_body_bytes:
                logger.warning(
                    "Request body too large (chunked)",
                    accumulated_size=total_size,
                    limit=self.max_body_bytes,
                    path=request.url.path,
                )
                return _payload_too_large(self.max_body_bytes)
            body_chunks.append(chunk)

        # Starlette's Request.body() returns request._body when set, so the
        # relay handler reads the cached bytes instead of the consumed stream.
        request._body = b"".join(body_chunks)  # type: ignore[attr-defined]

        return await call_next(request)
