"""Shared constants for relayproxy.

Header policy tables, fixed identification strings and numeric defaults used
across modules are defined here. No magic values in other modules; import
from here.
"""

# ─── Methods ──────────────────────────────────────────────────────────────────

# Every relay route accepts all of these; method only affects body rules.
RELAY_METHODS: tuple[str, ...] = (
    "GET",
    "POST",
    "PUT",
    "PATCH",
    "DELETE",
    "HEAD",
    "OPTIONS",
)

# Methods that never carry an outbound body, whatever the caller sent.
BODYLESS_METHODS: frozenset[str] = frozenset({"GET", "HEAD"})

# ─── Media types ──────────────────────────────────────────────────────────────

JSON_MEDIA_TYPE: str = "application/json"
FORM_MEDIA_TYPE: str = "application/x-www-form-urlencoded"
TEXT_MEDIA_TYPE: str = "text/plain; charset=utf-8"

# ─── Request-direction header policy ──────────────────────────────────────────

# Connection- and origin-identifying headers: forwarding these would leak the
# proxy's own topology or break upstream virtual-host routing.
ORIGIN_IDENTIFYING_HEADERS: frozenset[str] = frozenset(
    {
        "host",
        "connection",
        "origin",
        "referer",
        "x-forwarded-for",
        "x-forwarded-proto",
        "x-forwarded-host",
        "x-forwarded-port",
        "forwarded",
        "x-real-ip",
    }
)

# Hop-by-hop headers (RFC 7230 §6.1) plus content-length, which httpx
# recomputes from the outbound body.
HOP_BY_HOP_HEADERS: frozenset[str] = frozenset(
    {
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
        "content-length",
    }
)

REQUEST_HEADER_DENYLIST: frozenset[str] = ORIGIN_IDENTIFYING_HEADERS | HOP_BY_HOP_HEADERS

# Platform-internal header family (hosting provider request metadata).
DEFAULT_PLATFORM_HEADER_PREFIX: str = "x-vercel"

# Fixed identification sent upstream in place of the caller's User-Agent.
PATH_MAPPED_USER_AGENT: str = "Mozilla/5.0 (compatible; FPL-Proxy/1.0)"
QUERY_PARAM_USER_AGENT: str = "FPL-Proxy/1.0"

DEFAULT_ACCEPT: str = JSON_MEDIA_TYPE
DEFAULT_ACCEPT_LANGUAGE: str = "en-US,en;q=0.9"

# ─── Response-direction header policy ─────────────────────────────────────────

PATH_MAPPED_RESPONSE_HEADERS: tuple[str, ...] = (
    "content-type",
    "cache-control",
    "expires",
    "last-modified",
    "etag",
    "content-length",
    "content-encoding",
)

QUERY_PARAM_RESPONSE_HEADERS: tuple[str, ...] = (
    "content-type",
    "cache-control",
    "expires",
    "last-modified",
)

# ─── CORS ─────────────────────────────────────────────────────────────────────

CORS_ALLOW_METHODS: list[str] = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
CORS_ALLOW_HEADERS: list[str] = ["Content-Type", "Authorization", "X-Requested-With"]

# ─── Limits & timeouts ────────────────────────────────────────────────────────

# Request bodies above this size are refused with HTTP 413 before any relay work.
MAX_REQUEST_BODY_BYTES: int = 1_048_576  # 1 MB

# Total budget for one outbound call (connect + send + receive).
DEFAULT_UPSTREAM_TIMEOUT_S: float = 30.0

# ─── Error messages ───────────────────────────────────────────────────────────

MISSING_URL_MESSAGE: str = "Missing URL parameter. Use: /proxy?url=YOUR_API_URL"
INVALID_URL_MESSAGE: str = "Invalid URL format"
TARGET_NOT_ALLOWED_MESSAGE: str = "Target host not allowed"
PATH_MAPPED_ERROR_LABEL: str = "Proxy server error"
QUERY_PARAM_ERROR_LABEL: str = "Internal server error"
