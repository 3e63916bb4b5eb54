"""Per-request value objects and per-variant relay policy.

InboundRequest and OutboundRequest live for one request only. RelayPolicy is
built once from Config when the application is constructed and never mutated,
so several differently configured apps can coexist in one process (tests do).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Union

from relayproxy.config import Config
from relayproxy.constants import (
    DEFAULT_ACCEPT,
    DEFAULT_ACCEPT_LANGUAGE,
    PATH_MAPPED_ERROR_LABEL,
    PATH_MAPPED_RESPONSE_HEADERS,
    PATH_MAPPED_USER_AGENT,
    QUERY_PARAM_ERROR_LABEL,
    QUERY_PARAM_RESPONSE_HEADERS,
    QUERY_PARAM_USER_AGENT,
    REQUEST_HEADER_DENYLIST,
)

StructuredBody = Union[dict, list]


@dataclass(frozen=True)
class InboundRequest:
    """The caller's request as received by a relay route.

    Attributes:
        method:       Upper-case HTTP method.
        path:         Request path, percent-encoding preserved.
        query_string: Raw query string without the leading ``?`` ("" if none).
        headers:      ``(name, value)`` pairs in arrival order.
        body:         Raw body bytes (b"" when absent).
        parsed_body:  Structured value when the body was JSON or form data.
    """

    method: str
    path: str
    query_string: str
    headers: tuple[tuple[str, str], ...]
    body: bytes = b""
    parsed_body: Optional[StructuredBody] = None


@dataclass(frozen=True)
class OutboundRequest:
    """The request about to be sent upstream."""

    url: str
    method: str
    headers: dict[str, str]
    content: Optional[bytes] = None


@dataclass(frozen=True)
class RelayPolicy:
    """How one relay variant treats headers, bodies and failures.

    Attributes:
        name:                 Variant name used in logs.
        user_agent:           Always sent upstream in place of the caller's value.
        forward_headers:      Copy non-denylisted inbound headers upstream.
        force_accept:         Always send ``default_accept`` (ignore caller's Accept).
        default_accept:       Accept value used when the caller sent none.
        default_accept_language: Accept-Language used when the caller sent none
                              (None disables the default).
        header_denylist:      Lower-case inbound header names never forwarded.
        platform_header_prefix: Lower-case prefix of a platform-internal header
                              family never forwarded ("" disables the check).
        response_headers:     Upstream response headers copied to the caller.
        sniff_json:           Parse any upstream body as JSON, not only bodies
                              whose content type says JSON.
        error_label:          ``error`` field of locally synthesized 500s.
        include_path_in_errors: Add the inbound path to error bodies.
    """

    name: str
    user_agent: str
    forward_headers: bool
    force_accept: bool
    default_accept: str
    default_accept_language: Optional[str]
    header_denylist: frozenset[str]
    platform_header_prefix: str
    response_headers: tuple[str, ...]
    sniff_json: bool
    error_label: str
    include_path_in_errors: bool

    def error_context(self, inbound: InboundRequest) -> dict[str, Any]:
        return {"path": inbound.path} if self.include_path_in_errors else {}


def path_mapped_policy(config: Config) -> RelayPolicy:
    return RelayPolicy(
        name="path_mapped",
        user_agent=PATH_MAPPED_USER_AGENT,
        forward_headers=True,
        force_accept=False,
        default_accept=DEFAULT_ACCEPT,
        default_accept_language=DEFAULT_ACCEPT_LANGUAGE,
        header_denylist=REQUEST_HEADER_DENYLIST,
        platform_header_prefix=config.relay.platform_header_prefix,
        response_headers=PATH_MAPPED_RESPONSE_HEADERS,
        sniff_json=False,
        error_label=PATH_MAPPED_ERROR_LABEL,
        include_path_in_errors=True,
    )


def query_param_policy(config: Config) -> RelayPolicy:
    return RelayPolicy(
        name="query_param",
        user_agent=QUERY_PARAM_USER_AGENT,
        forward_headers=False,
        force_accept=True,
        default_accept=DEFAULT_ACCEPT,
        default_accept_language=None,
        header_denylist=REQUEST_HEADER_DENYLIST,
        platform_header_prefix=config.relay.platform_header_prefix,
        response_headers=QUERY_PARAM_RESPONSE_HEADERS,
        sniff_json=True,
        error_label=QUERY_PARAM_ERROR_LABEL,
        include_path_in_errors=False,
    )
