"""Target URL construction for both relay variants.

Path-mapped:      strip the configured prefix (by its exact length) from the
                  inbound path and append the remainder to the upstream base;
                  the raw query string follows unchanged.
Query-parameter:  the caller names the absolute target URL; it is validated
                  locally and never reaches the network when rejected.
"""

from __future__ import annotations

from typing import Iterable, Optional

import httpx

from relayproxy.constants import INVALID_URL_MESSAGE, MISSING_URL_MESSAGE
from relayproxy.models.errors import BadTargetError, TargetNotAllowedError

_TARGET_SCHEMES: frozenset[str] = frozenset({"http", "https"})


def build_path_mapped_url(
    path: str,
    query_string: str,
    prefix: str,
    upstream_base: str,
) -> str:
    """Rewrite an inbound path under ``prefix`` onto ``upstream_base``.

    ``/api/entry/1/?page=2`` with prefix ``/api`` and base
    ``https://origin.example/api`` becomes
    ``https://origin.example/api/entry/1/?page=2``. A path equal to the prefix
    maps to the bare base.

    Raises:
        ValueError: If ``path`` does not start with ``prefix``.
    """
    if not path.startswith(prefix):
        raise ValueError(f"path {path!r} is not under prefix {prefix!r}")
    target = upstream_base + path[len(prefix):]
    if query_string:
        target = f"{target}?{query_string}"
    return target


def resolve_query_target(
    raw_url: Optional[str],
    allowed_hosts: Iterable[str] = (),
) -> str:
    """Validate a caller-supplied target URL and return it unchanged.

    Args:
        raw_url:       Value of the target query parameter (None if absent).
        allowed_hosts: Lower-case host names the relay may contact; an entry
                       also admits its subdomains. Empty admits every host.

    Raises:
        BadTargetError:        Missing value, or not an absolute http(s) URL.
        TargetNotAllowedError: Host outside a non-empty ``allowed_hosts``.
    """
    if not raw_url:
        raise BadTargetError(MISSING_URL_MESSAGE)

    try:
        url = httpx.URL(raw_url)
    except httpx.InvalidURL:
        raise BadTargetError(INVALID_URL_MESSAGE) from None

    if url.scheme not in _TARGET_SCHEMES or not url.host:
        raise BadTargetError(INVALID_URL_MESSAGE)

    allowed = [h.lower() for h in allowed_hosts]
    if allowed and not _host_allowed(url.host.lower(), allowed):
        raise TargetNotAllowedError(url.host)

    return raw_url


def _host_allowed(host: str, allowed: list[str]) -> bool:
    return any(host == entry or host.endswith("." + entry) for entry in allowed)
