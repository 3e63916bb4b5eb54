"""Relay engine: targets, header policy, body transcoding, routes."""
