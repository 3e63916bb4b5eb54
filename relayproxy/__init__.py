"""relayproxy — transparent HTTP forwarding proxy."""

__version__ = "1.0.0"
