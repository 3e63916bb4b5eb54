"""Async Forward-and-Relay engine for relayproxy.

Two route families share one pipeline:

  - Path-Mapped Relay      ``<prefix>`` and ``<prefix>/{path}``
                           → ``upstream.base_url + path[len(prefix):]`` + raw query
  - Query-Parameter Relay  ``<query_route>?url=<absolute URL>``
                           → the caller-named URL, validated locally first

Pipeline (forward_and_relay):
  build outbound request (header policy + body transcoding) → await the shared
  httpx.AsyncClient → copy allowlisted response headers → negotiate the body →
  exactly one Response.

Key design properties:
  - Shared httpx.AsyncClient at app.state.http_client, never instantiated per-request
  - Bounded total timeout on every outbound call; expiry is an upstream failure
  - No cross-request mutable state; each relay's policy is a frozen RelayPolicy
    built from Config when the router is constructed
  - Failure handling:
      * missing / malformed ``url`` → HTTP 400, upstream never contacted
      * host outside relay.allowed_hosts → HTTP 403, upstream never contacted
      * httpx.TransportError (DNS, refused, timeout, protocol) → HTTP 500 JSON
      * any other exception in the pipeline → HTTP 500 JSON
      * upstream HTTP 4xx/5xx → relayed as-is (NOT converted to 500)
"""

from __future__ import annotations

from typing import Optional, Union

import httpx
from fastapi import APIRouter, Request, Response

from relayproxy.config import Config
from relayproxy.constants import (
    JSON_MEDIA_TYPE,
    RELAY_METHODS,
    TEXT_MEDIA_TYPE,
)
from relayproxy.models.errors import (
    RelayError,
    build_relay_error_response,
    build_relay_failure_response,
)
from relayproxy.models.relay import (
    InboundRequest,
    OutboundRequest,
    RelayPolicy,
    path_mapped_policy,
    query_param_policy,
)
from relayproxy.proxy.body import encode_request_body, parse_inbound_body, render_upstream_body
from relayproxy.proxy.headers import build_client_response_headers, build_upstream_headers
from relayproxy.proxy.targets import build_path_mapped_url, resolve_query_target
from relayproxy.utils.logger import clear_relay_id, get_logger, set_relay_id
from relayproxy.utils.ulid import generate_ulid

logger = get_logger(__name__)

# ─── httpx.AsyncClient factory ────────────────────────────────────────────────


def create_http_client(timeout_s: float) -> httpx.AsyncClient:
    """Create the shared httpx.AsyncClient used for every outbound call.

    Created once at lifespan startup and stored in app.state.http_client.

    Args:
        timeout_s: Total timeout applied to each outbound call.

    Returns:
        Configured httpx.AsyncClient ready for use.
    """
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout_s),
        follow_redirects=True,  # fetch semantics: the caller sees the final response
    )


# ─── Inbound request capture ──────────────────────────────────────────────────


async def read_inbound(request: Request) -> InboundRequest:
    """Capture the caller's request as an immutable InboundRequest.

    The path is taken from the raw request target when the server provides it,
    so percent-encoded segments (``%2F``) reach the upstream unchanged.
    """
    raw_path: Optional[bytes] = request.scope.get("raw_path")
    path = (
        raw_path.split(b"?", 1)[0].decode("latin-1")
        if raw_path
        else request.scope["path"]
    )
    body = await request.body()
    return InboundRequest(
        method=request.method.upper(),
        path=path,
        query_string=request.scope.get("query_string", b"").decode("latin-1"),
        headers=tuple(request.headers.items()),
        body=body,
        parsed_body=parse_inbound_body(body, request.headers.get("content-type")),
    )


# ─── Outbound request / response construction ─────────────────────────────────


def build_outbound_request(
    inbound: InboundRequest,
    target_url: str,
    policy: RelayPolicy,
) -> OutboundRequest:
    """Apply the header policy and body transcoding to ``inbound``."""
    headers = build_upstream_headers(inbound.headers, policy)
    encoded = encode_request_body(inbound)
    if encoded.content_type is not None:
        for name in [n for n in headers if n.lower() == "content-type"]:
            del headers[name]
        headers["content-type"] = encoded.content_type
    return OutboundRequest(
        url=target_url,
        method=inbound.method,
        headers=headers,
        content=encoded.content,
    )


def build_client_response(
    upstream_response: httpx.Response,
    method: str,
    policy: RelayPolicy,
) -> Response:
    """Turn the upstream reply into the caller's response.

    Status is copied verbatim. Only allowlisted headers survive. httpx has
    already decoded any content-encoding, so that header is dropped and
    content-length is recomputed from the emitted body (HEAD keeps the
    upstream value since it has no body).
    """
    headers = build_client_response_headers(
        upstream_response.headers, policy.response_headers
    )
    headers.pop("content-encoding", None)

    if method.upper() == "HEAD":
        return Response(status_code=upstream_response.status_code, headers=headers)

    headers.pop("content-length", None)
    rendered = render_upstream_body(
        upstream_response.content,
        upstream_response.headers.get("content-type"),
        sniff_json=policy.sniff_json,
    )
    if "content-type" not in headers and rendered.content:
        headers["content-type"] = JSON_MEDIA_TYPE if rendered.is_json else TEXT_MEDIA_TYPE

    return Response(
        content=rendered.content,
        status_code=upstream_response.status_code,
        headers=headers,
    )


# ─── Forward-and-Relay ────────────────────────────────────────────────────────


async def forward_and_relay(
    http_client: httpx.AsyncClient,
    inbound: InboundRequest,
    target_url: str,
    policy: RelayPolicy,
) -> Response:
    """Send ``inbound`` to ``target_url`` and relay the reply.

    Never raises: every failure becomes a 500 JSON error response.
    """
    set_relay_id(generate_ulid())
    try:
        outbound = build_outbound_request(inbound, target_url, policy)
        upstream_response = await http_client.request(
            outbound.method,
            outbound.url,
            headers=outbound.headers,
            content=outbound.content,
        )
        response = build_client_response(upstream_response, inbound.method, policy)
    except httpx.TransportError as exc:
        # ConnectError, TimeoutException, RemoteProtocolError, ...
        logger.warning(
            "upstream_unavailable",
            variant=policy.name,
            method=inbound.method,
            target=target_url,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return build_relay_failure_response(
            policy.error_label, exc, **policy.error_context(inbound)
        )
    except Exception as exc:  # noqa: BLE001
        logger.error(
            "relay_failed",
            variant=policy.name,
            method=inbound.method,
            target=target_url,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return build_relay_failure_response(
            policy.error_label, exc, **policy.error_context(inbound)
        )
    else:
        logger.info(
            "request_proxied",
            variant=policy.name,
            method=inbound.method,
            path=inbound.path,
            target=target_url,
            status_code=upstream_response.status_code,
        )
        return response
    finally:
        clear_relay_id()


# ─── Router factory ───────────────────────────────────────────────────────────


def create_relay_router(config: Config) -> APIRouter:
    """Build the router carrying both relay route families for ``config``.

    Policies and routing values are captured here, once; handlers only read them.
    """
    router = APIRouter(tags=["relay"])

    prefix = config.relay.prefix
    upstream_base = config.upstream.base_url
    query_param = config.relay.query_param
    allowed_hosts = tuple(config.relay.allowed_hosts)
    path_policy = path_mapped_policy(config)
    query_policy = query_param_policy(config)

    async def capture(request: Request, policy: RelayPolicy) -> Union[InboundRequest, Response]:
        """Read the inbound request, or build the 500 to return if that fails."""
        try:
            return await read_inbound(request)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "inbound_read_failed",
                variant=policy.name,
                path=request.url.path,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            path = request.url.path if policy.include_path_in_errors else None
            return build_relay_failure_response(policy.error_label, exc, path)

    async def path_mapped_relay(request: Request) -> Response:
        inbound = await capture(request, path_policy)
        if isinstance(inbound, Response):
            return inbound
        path = inbound.path
        if not path.startswith(prefix):
            # Raw target spelled the prefix with escapes; fall back to the decoded path.
            path = request.scope["path"]
        try:
            target_url = build_path_mapped_url(
                path, inbound.query_string, prefix, upstream_base
            )
        except ValueError as exc:
            logger.error("target_construction_failed", path=path, error=str(exc))
            return build_relay_failure_response(
                path_policy.error_label, exc, **path_policy.error_context(inbound)
            )
        return await forward_and_relay(
            request.app.state.http_client, inbound, target_url, path_policy
        )

    async def query_param_relay(request: Request) -> Response:
        inbound = await capture(request, query_policy)
        if isinstance(inbound, Response):
            return inbound
        try:
            target_url = resolve_query_target(
                request.query_params.get(query_param), allowed_hosts
            )
        except RelayError as exc:
            logger.info(
                "relay_target_rejected",
                status_code=exc.status_code,
                error=exc.error,
                detail=exc.message,
            )
            return build_relay_error_response(exc)
        return await forward_and_relay(
            request.app.state.http_client, inbound, target_url, query_policy
        )

    methods = list(RELAY_METHODS)
    router.add_api_route(
        prefix, path_mapped_relay, methods=methods, name="path_mapped_relay_root"
    )
    router.add_api_route(
        prefix + "/{path:path}", path_mapped_relay, methods=methods, name="path_mapped_relay"
    )
    router.add_api_route(
        config.relay.query_route, query_param_relay, methods=methods, name="query_param_relay"
    )
    return router
