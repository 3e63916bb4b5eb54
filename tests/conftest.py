"""Root test configuration for relayproxy.

Clears every environment variable the config layer reads so a developer's
shell (PORT, RELAYPROXY_*) never leaks into test expectations.
"""

import pytest

_CONFIG_ENV_VARS = (
    "RELAYPROXY_CONFIG",
    "RELAYPROXY_PORT",
    "RELAYPROXY_DEPLOY_MODE",
    "PORT",
)


@pytest.fixture(autouse=True)
def isolate_config_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove config-affecting env vars for every test."""
    for var in _CONFIG_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
