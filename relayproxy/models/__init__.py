"""relayproxy models package.

  - relay.py  — InboundRequest, OutboundRequest, RelayPolicy and the two
                per-variant policy constructors
  - errors.py — local error types and the JSON error response builders
"""
