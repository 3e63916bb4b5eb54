"""HTTP header processing for the relay.

Request direction — build_upstream_headers():
  - drops connection-/origin-identifying and hop-by-hop headers, plus the
    platform-internal header family (e.g. ``x-vercel-*``);
  - copies every other inbound header unchanged, merging case-insensitive
    duplicates into one header;
  - always sets the policy's User-Agent; sets Accept (and Accept-Language)
    only when the caller sent none, unless the policy forces Accept.

Response direction — build_client_response_headers():
  - copies only allowlisted upstream headers that are present, so upstream
    transport internals never reach the caller.

Lookups are case-insensitive throughout; output keeps the caller's spelling.
"""

from __future__ import annotations

from typing import Iterable, Optional

import httpx

from relayproxy.models.relay import RelayPolicy


def _merge_values(lower_name: str, existing: str, value: str) -> str:
    separator = "; " if lower_name == "cookie" else ", "
    return f"{existing}{separator}{value}"


def _set_header(
    headers: dict[str, str],
    names: dict[str, str],
    name: str,
    value: str,
) -> None:
    """Set ``name`` replacing any case-variant already present."""
    lower_name = name.lower()
    previous = names.pop(lower_name, None)
    if previous is not None:
        del headers[previous]
    headers[name] = value
    names[lower_name] = name


def is_denied(name: str, policy: RelayPolicy) -> bool:
    """Return True if an inbound header must not be forwarded upstream."""
    lower_name = name.lower()
    if lower_name in policy.header_denylist:
        return True
    prefix = policy.platform_header_prefix
    return bool(prefix) and lower_name.startswith(prefix)


def build_upstream_headers(
    request_headers: Iterable[tuple[str, str]],
    policy: RelayPolicy,
) -> dict[str, str]:
    """Build the header dict to send upstream.

    Args:
        request_headers: ``(name, value)`` pairs from the inbound request.
        policy:          Variant policy (denylist, user agent, accept rules).

    Returns:
        ``dict[str, str]`` with at most one entry per case-insensitive name.
    """
    headers: dict[str, str] = {}
    names: dict[str, str] = {}  # lower-case name → key used in ``headers``

    if policy.forward_headers:
        for name, value in request_headers:
            if is_denied(name, policy):
                continue
            lower_name = name.lower()
            existing = names.get(lower_name)
            if existing is None:
                headers[name] = value
                names[lower_name] = name
            else:
                headers[existing] = _merge_values(lower_name, headers[existing], value)

    _set_header(headers, names, "User-Agent", policy.user_agent)

    if policy.force_accept or "accept" not in names:
        _set_header(headers, names, "Accept", policy.default_accept)

    if policy.default_accept_language and "accept-language" not in names:
        _set_header(headers, names, "Accept-Language", policy.default_accept_language)

    return headers


def build_client_response_headers(
    upstream_headers: httpx.Headers,
    allowlist: Iterable[str],
) -> dict[str, str]:
    """Copy allowlisted upstream response headers that are present and non-empty."""
    headers: dict[str, str] = {}
    for name in allowlist:
        value: Optional[str] = upstream_headers.get(name)
        if value:
            headers[name] = value
    return headers
