"""Local error types and JSON error response builders.

Every locally synthesized response shares one stable shape::

    {"error": "<kind>", "message": "<detail>", "path": "<inbound path>"}

``message`` and ``path`` are present only where they carry information.

Failure kinds:

  BadTargetError        — HTTP 400; the query-parameter relay's target is
                          missing or not an absolute http(s) URL. Raised before
                          any network call.
  TargetNotAllowedError — HTTP 403; the target host is outside the configured
                          allowlist. Raised before any network call.
  build_relay_failure_response()
                        — HTTP 500; the outbound call failed (DNS, refused
                          connection, timeout) or the pipeline raised.

Non-2xx upstream statuses are not errors: they are relayed verbatim.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi.responses import JSONResponse

from relayproxy.constants import TARGET_NOT_ALLOWED_MESSAGE


class RelayError(Exception):
    """Base class for failures detected locally, before contacting upstream."""

    status_code: int = 400

    def __init__(self, error: str, message: Optional[str] = None) -> None:
        super().__init__(message or error)
        self.error = error
        self.message = message


class BadTargetError(RelayError):
    status_code = 400


class TargetNotAllowedError(RelayError):
    status_code = 403

    def __init__(self, host: str) -> None:
        super().__init__(TARGET_NOT_ALLOWED_MESSAGE, host)
        self.host = host


def build_error_response(
    status_code: int,
    error: Any,
    message: Optional[str] = None,
    path: Optional[str] = None,
) -> JSONResponse:
    """Build a JSON error response in the relay's stable error shape."""
    content: dict[str, Any] = {"error": error}
    if message is not None:
        content["message"] = message
    if path is not None:
        content["path"] = path
    return JSONResponse(status_code=status_code, content=content)


def build_relay_error_response(exc: RelayError) -> JSONResponse:
    """HTTP 400/403 for a target rejected during local validation."""
    return build_error_response(exc.status_code, exc.error, exc.message)


def build_relay_failure_response(
    label: str,
    exc: BaseException,
    path: Optional[str] = None,
) -> JSONResponse:
    """HTTP 500 for an upstream transport failure or unexpected pipeline error.

    Args:
        label: Variant-specific ``error`` value (e.g. ``"Proxy server error"``).
        exc:   The intercepted exception; its text becomes ``message``.
        path:  Inbound path, for variants that report it.
    """
    message = str(exc) or type(exc).__name__
    return build_error_response(500, label, message, path)
