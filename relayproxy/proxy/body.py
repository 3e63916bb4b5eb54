"""Body transcoding in both directions.

Request direction:
  parse_inbound_body()   — JSON objects/arrays and URL-encoded forms become
                           structured values; everything else stays raw bytes.
  encode_request_body()  — GET/HEAD never carry a body; structured values are
                           serialized to compact JSON and labelled
                           application/json; raw bytes pass through unchanged.

Response direction:
  render_upstream_body() — JSON bodies are parsed and re-emitted compactly with
                           every value preserved; non-JSON bodies, and JSON that
                           fails to parse, are emitted byte-for-byte. Never raises.
"""

from __future__ import annotations

import json
import math
from typing import Any, NamedTuple, Optional
from urllib.parse import parse_qsl

from relayproxy.constants import BODYLESS_METHODS, FORM_MEDIA_TYPE, JSON_MEDIA_TYPE
from relayproxy.models.relay import InboundRequest, StructuredBody


class EncodedBody(NamedTuple):
    content: Optional[bytes]
    content_type: Optional[str]  # override for the outbound Content-Type, if any


class RenderedBody(NamedTuple):
    content: bytes
    is_json: bool


def media_type(content_type: Optional[str]) -> str:
    """Return the lower-case ``type/subtype`` part of a Content-Type value."""
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def is_json_media_type(content_type: Optional[str]) -> bool:
    mt = media_type(content_type)
    return mt == JSON_MEDIA_TYPE or mt.endswith("+json")


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-standard JSON constant: {name}")


def _finite_float(text: str) -> float:
    value = float(text)
    if not math.isfinite(value):
        raise ValueError(f"JSON number out of range: {text}")
    return value


def load_json(content: bytes) -> Any:
    """Parse strict JSON.

    NaN / Infinity tokens and numbers that overflow a float raise ValueError,
    so everything parsed here can be re-emitted as valid JSON unchanged.
    """
    return json.loads(content, parse_constant=_reject_constant, parse_float=_finite_float)


def dump_json(value: Any) -> bytes:
    """Compact JSON text without ASCII escaping."""
    return json.dumps(
        value, ensure_ascii=False, separators=(",", ":"), allow_nan=False
    ).encode("utf-8")


def _parse_form(body: bytes) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    for key, value in parse_qsl(body.decode("utf-8", errors="replace"), keep_blank_values=True):
        if key not in fields:
            fields[key] = value
        elif isinstance(fields[key], list):
            fields[key].append(value)
        else:
            fields[key] = [fields[key], value]
    return fields


def parse_inbound_body(
    body: bytes,
    content_type: Optional[str],
) -> Optional[StructuredBody]:
    """Parse an inbound body into a structured value where its type allows.

    Returns:
        ``dict``/``list`` for JSON objects/arrays and non-empty form bodies;
        ``None`` for empty, malformed, scalar-JSON, or other bodies (these are
        forwarded raw).
    """
    if not body:
        return None

    if is_json_media_type(content_type):
        try:
            parsed = load_json(body)
        except (ValueError, RecursionError):
            return None
        return parsed if isinstance(parsed, (dict, list)) else None

    if media_type(content_type) == FORM_MEDIA_TYPE:
        return _parse_form(body) or None

    return None


def encode_request_body(inbound: InboundRequest) -> EncodedBody:
    """Decide the outbound body for ``inbound``."""
    if inbound.method.upper() in BODYLESS_METHODS:
        return EncodedBody(None, None)

    if inbound.parsed_body is not None:
        return EncodedBody(dump_json(inbound.parsed_body), JSON_MEDIA_TYPE)

    if inbound.body:
        return EncodedBody(inbound.body, None)

    return EncodedBody(None, None)


def render_upstream_body(
    content: bytes,
    content_type: Optional[str],
    sniff_json: bool = False,
) -> RenderedBody:
    """Choose between structured re-emission and raw pass-through.

    Args:
        content:      Decoded upstream body bytes.
        content_type: Upstream Content-Type (None if absent).
        sniff_json:   Try JSON on any body, whatever its declared type.
    """
    if not content or not (sniff_json or is_json_media_type(content_type)):
        return RenderedBody(content, False)

    try:
        return RenderedBody(dump_json(load_json(content)), True)
    except (ValueError, RecursionError):
        # HTML error pages, truncated JSON and NaN/Infinity fall back to raw text.
        return RenderedBody(content, False)
