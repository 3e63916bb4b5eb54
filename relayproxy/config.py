"""Config loading for relayproxy.

Reads `.relayproxy/config.yaml` (or `~/.relayproxy/config.yaml`).
Raises SystemExit on parse errors, a missing `version` field, or invalid values.
If no config file is found, returns default values (safe to run without config).

Config search order:
  1. `config_path` argument (if provided, for tests or explicit override)
  2. RELAYPROXY_CONFIG environment variable (if set)
  3. `.relayproxy/config.yaml` (working directory, for development)
  4. `~/.relayproxy/config.yaml` (home directory, for production deployments)

Environment variable overrides:
  RELAYPROXY_PORT        — overrides proxy.port (wins over PORT)
  PORT                   — overrides proxy.port (platform convention)
  RELAYPROXY_DEPLOY_MODE — overrides deploy_mode ("self-hosted" | "managed")
  RELAYPROXY_CONFIG      — sets an explicit config file path to try first
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlsplit

import yaml

from relayproxy.constants import (
    DEFAULT_PLATFORM_HEADER_PREFIX,
    DEFAULT_UPSTREAM_TIMEOUT_S,
    MAX_REQUEST_BODY_BYTES,
)
from relayproxy.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Version constants ────────────────────────────────────────────────────────

SUPPORTED_CONFIG_VERSION = 1

SUPPORTED_VERSIONS: frozenset[int] = frozenset({1})

# ─── Validation sets ─────────────────────────────────────────────────────────

# "managed": an external host imports relayproxy.main:app per request;
# the in-process listener is not started.
VALID_DEPLOY_MODES: frozenset[str] = frozenset({"self-hosted", "managed"})

VALID_UPSTREAM_SCHEMES: frozenset[str] = frozenset({"http", "https"})

DEFAULT_CONFIG_PATHS = [
    ".relayproxy/config.yaml",
    os.path.expanduser("~/.relayproxy/config.yaml"),
]


# ─── Dataclasses ─────────────────────────────────────────────────────────────


@dataclass
class UpstreamConfig:
    """Upstream origin configuration.

    base_url:  Fixed base onto which path-mapped traffic is rewritten.
    timeout_s: Total budget for a single outbound call.
    """

    base_url: str = "https://fantasy.premierleague.com/api"
    timeout_s: float = DEFAULT_UPSTREAM_TIMEOUT_S


@dataclass
class RelayConfig:
    """Route families and target policy."""

    prefix: str = "/api"
    query_route: str = "/proxy"
    query_param: str = "url"
    # Hosts the query-parameter relay may target. Empty = any host (open proxy).
    allowed_hosts: list[str] = field(default_factory=list)
    platform_header_prefix: str = DEFAULT_PLATFORM_HEADER_PREFIX


@dataclass
class ProxyConfig:
    """Listener configuration."""

    host: str = "0.0.0.0"
    port: int = 3000
    max_body_bytes: int = MAX_REQUEST_BODY_BYTES


@dataclass
class Config:
    """Root configuration object populated from .relayproxy/config.yaml.

    All fields have safe defaults; relayproxy can start without any config file.
    """

    version: int = SUPPORTED_CONFIG_VERSION
    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)
    relay: RelayConfig = field(default_factory=RelayConfig)
    proxy: ProxyConfig = field(default_factory=ProxyConfig)
    deploy_mode: str = "self-hosted"
    path: Optional[str] = None  # Path to the loaded config file

    @classmethod
    def defaults(cls) -> "Config":
        """Return a fully-default Config (no file required)."""
        return cls()

    @classmethod
    def from_dict(cls, raw: dict, path: Optional[str] = None) -> "Config":
        """Construct Config from a parsed YAML dict.

        Merges user-supplied values onto defaults; unknown keys are silently ignored.

        Args:
            raw:  Parsed YAML dict (must already be validated for version field).
            path: Path to the config file.

        Returns:
            Config with all fields populated from raw + defaults for missing fields.

        Raises:
            SystemExit(1): On an invalid upstream URL, prefix, or deploy mode.
        """
        # ── Upstream ──────────────────────────────────────────────────────────
        upstream_raw = raw.get("upstream") or {}
        upstream = UpstreamConfig(
            base_url=str(upstream_raw.get("base_url", UpstreamConfig.base_url)).rstrip("/"),
            timeout_s=float(upstream_raw.get("timeout_s", DEFAULT_UPSTREAM_TIMEOUT_S)),
        )
        _validate_upstream_url(upstream.base_url, "upstream.base_url")
        if upstream.timeout_s <= 0:
            _config_error(f"upstream.timeout_s must be positive, got {upstream.timeout_s}")

        # ── Relay ─────────────────────────────────────────────────────────────
        relay_raw = raw.get("relay") or {}
        relay = RelayConfig(
            prefix=relay_raw.get("prefix", RelayConfig.prefix),
            query_route=relay_raw.get("query_route", RelayConfig.query_route),
            query_param=relay_raw.get("query_param", RelayConfig.query_param),
            allowed_hosts=[
                str(h).lower() for h in (relay_raw.get("allowed_hosts") or [])
            ],
            platform_header_prefix=str(
                relay_raw.get("platform_header_prefix", DEFAULT_PLATFORM_HEADER_PREFIX)
            ).lower(),
        )
        _validate_route(relay.prefix, "relay.prefix")
        _validate_route(relay.query_route, "relay.query_route")

        # ── Proxy ─────────────────────────────────────────────────────────────
        proxy_raw = raw.get("proxy") or {}
        proxy = ProxyConfig(
            host=proxy_raw.get("host", ProxyConfig.host),
            port=proxy_raw.get("port", ProxyConfig.port),
            max_body_bytes=proxy_raw.get("max_body_bytes", MAX_REQUEST_BODY_BYTES),
        )

        deploy_mode = raw.get("deploy_mode", "self-hosted")
        _validate_deploy_mode(deploy_mode, "deploy_mode")

        return cls(
            version=raw.get("version", SUPPORTED_CONFIG_VERSION),
            upstream=upstream,
            relay=relay,
            proxy=proxy,
            deploy_mode=deploy_mode,
            path=path,
        )


# ─── Validation helpers ───────────────────────────────────────────────────────


def _config_error(msg: str) -> None:
    print(f"CONFIG ERROR: {msg}", file=sys.stderr)
    raise SystemExit(1)


def _validate_upstream_url(url: str, field_name: str) -> None:
    """Reject upstream base URLs that cannot be relayed to safely.

    Accepted: absolute http:// or https:// URLs with a hostname.
    Rejected: other schemes, missing host, embedded credentials.

    Raises:
        SystemExit(1): With a CONFIG ERROR message naming ``field_name``.
    """
    parts = urlsplit(url)
    if parts.scheme not in VALID_UPSTREAM_SCHEMES:
        _config_error(
            f"{field_name} must be an http:// or https:// URL, got '{url}'"
        )
    if not parts.hostname:
        _config_error(f"{field_name} has no hostname: '{url}'")
    if parts.username or parts.password:
        _config_error(f"{field_name} must not embed credentials")


def _validate_route(route: str, field_name: str) -> None:
    if not isinstance(route, str) or not route.startswith("/") or len(route) < 2:
        _config_error(f"{field_name} must start with '/' and name a path, got '{route}'")
    if route.endswith("/"):
        _config_error(f"{field_name} must not end with '/', got '{route}'")


def _validate_deploy_mode(mode: str, source: str) -> None:
    if mode not in VALID_DEPLOY_MODES:
        _config_error(
            f"Invalid {source}: '{mode}'. Supported values: {sorted(VALID_DEPLOY_MODES)}."
        )


# ─── Config loading ───────────────────────────────────────────────────────────


def load_config(config_path: Optional[str] = None) -> Config:
    """Load and validate relayproxy configuration.

    Search order:
      1. ``config_path`` argument (if provided)
      2. ``RELAYPROXY_CONFIG`` environment variable (if set)
      3. ``.relayproxy/config.yaml``
      4. ``~/.relayproxy/config.yaml``

    If no file is found at any of these paths, returns default Config (not an error).
    If a file is found but invalid, writes error to stderr and raises SystemExit(1).
    Environment overrides are applied last, whether or not a file was found.

    Raises:
        SystemExit(1): On YAML parse error, missing or unsupported ``version``,
                       invalid field values, or invalid env overrides.
    """
    search_paths: list[str] = []
    if config_path:
        search_paths.append(config_path)
    env_config = os.environ.get("RELAYPROXY_CONFIG")
    if env_config:
        search_paths.append(env_config)
    search_paths.extend(DEFAULT_CONFIG_PATHS)

    found_path: Optional[str] = None
    for candidate in search_paths:
        expanded = os.path.expanduser(candidate)
        if os.path.isfile(expanded):
            found_path = expanded
            break

    if found_path is None:
        logger.info("No config file found — using defaults", searched=search_paths)
        config = Config.defaults()
        _apply_env_overrides(config)
        _warn_open_proxy(config)
        return config

    logger.info("Loading config", path=found_path)

    try:
        with open(found_path) as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        msg = (
            f"CONFIG ERROR: Failed to parse {found_path}: {exc}\n"
            "relayproxy refuses to start with an invalid config. "
            "Check the YAML syntax and try again."
        )
        print(msg, file=sys.stderr)
        raise SystemExit(1)
    except OSError as exc:
        msg = f"CONFIG ERROR: Could not read {found_path}: {exc}"
        print(msg, file=sys.stderr)
        raise SystemExit(1)

    if not isinstance(raw, dict):
        if raw is None:
            msg = (
                f"CONFIG ERROR: {found_path} is missing the required 'version' field.\n"
                "Add 'version: 1' to the top of your config file."
            )
        else:
            msg = (
                f"CONFIG ERROR: {found_path} is not a valid YAML mapping.\n"
                "The config file must be a YAML dictionary at the top level."
            )
        print(msg, file=sys.stderr)
        raise SystemExit(1)

    version = raw.get("version")
    if version is None:
        msg = (
            f"CONFIG ERROR: {found_path} is missing the required 'version' field.\n"
            "Add 'version: 1' to the top of your config file."
        )
        print(msg, file=sys.stderr)
        raise SystemExit(1)

    if version not in SUPPORTED_VERSIONS:
        msg = (
            f"CONFIG ERROR: Unsupported config version: {version}. "
            f"Supported versions: {sorted(SUPPORTED_VERSIONS)}."
        )
        print(msg, file=sys.stderr)
        raise SystemExit(1)

    config = Config.from_dict(raw, path=found_path)
    _apply_env_overrides(config)
    _warn_open_proxy(config)

    logger.info(
        "Config loaded",
        path=found_path,
        version=config.version,
        upstream=config.upstream.base_url,
        deploy_mode=config.deploy_mode,
    )
    return config


def _apply_env_overrides(config: Config) -> None:
    """Apply environment variable overrides to a Config object in-place.

    Handles:
      RELAYPROXY_PORT / PORT — config.proxy.port (integer; RELAYPROXY_PORT wins)
      RELAYPROXY_DEPLOY_MODE — config.deploy_mode

    Raises:
        SystemExit(1): If a port override is not a valid integer or the deploy
                       mode is unknown.
    """
    for var in ("RELAYPROXY_PORT", "PORT"):
        env_port = os.environ.get(var)
        if env_port is None:
            continue
        try:
            config.proxy.port = int(env_port)
        except ValueError:
            msg = (
                f"CONFIG ERROR: {var} environment variable is not a valid "
                f"integer: '{env_port}'"
            )
            print(msg, file=sys.stderr)
            raise SystemExit(1)
        break

    env_mode = os.environ.get("RELAYPROXY_DEPLOY_MODE")
    if env_mode is not None:
        _validate_deploy_mode(env_mode, "RELAYPROXY_DEPLOY_MODE")
        config.deploy_mode = env_mode


def _warn_open_proxy(config: Config) -> None:
    if not config.relay.allowed_hosts:
        logger.warning(
            "SECURITY WARNING: the query-parameter relay accepts any target host. "
            "Set relay.allowed_hosts to restrict it.",
            route=config.relay.query_route,
        )
