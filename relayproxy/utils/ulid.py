"""ULID generation utility for relayproxy.

Every relayed request gets a ULID (Universally Unique Lexicographically
Sortable Identifier) used as its ``relay_id`` in structured log entries, so all
lines for one inbound request can be correlated.

ULIDs are 26 characters, Crockford Base32 encoded (0-9A-HJKMNP-TV-Z), with a
48-bit millisecond timestamp followed by 80 random bits.

Uses the `python-ulid` library (see pyproject.toml).
"""

from __future__ import annotations

from ulid import ULID


def generate_ulid() -> str:
    """Generate a new ULID as a 26-character uppercase string.

    Returns:
        str: A 26-character ULID string (e.g., ``"01KJ0JRVHYA7KX32VPN5ZSCTMV"``).
    """
    return str(ULID())
