"""
Shared test fixtures for the tool gateway test suite.

Key fixtures:
- write_config: writes a gateway configuration dict to a temporary JSON file
- store: a ConfigStore reading that file, isolated from GATEWAY_* env vars
- client: an httpx.AsyncClient wired to the gateway ASGI app (in-memory)

Testing approach:
- test_auth.py, test_sessions.py, test_policy.py: the resolvers in isolation,
  fed with hand-built config models
- test_config.py: parsing, validation and fresh reads of the config file
- test_gate.py: the three-step decision against a file-backed store
- test_tools_invoke.py: POST /tools/invoke through the full Starlette app
- test_mcp_middleware.py: the same policy applied on the MCP endpoint
"""

import json
from pathlib import Path

import httpx
import pytest

from tool_gateway.config import ConfigStore, Settings
from tool_gateway.server import create_server


@pytest.fixture(autouse=True)
def _isolate_gateway_env(monkeypatch):
    """Keep host GATEWAY_TOKEN / GATEWAY_PASSWORD out of the tests."""
    monkeypatch.delenv("GATEWAY_TOKEN", raising=False)
    monkeypatch.delenv("GATEWAY_PASSWORD", raising=False)


@pytest.fixture
def config_path(tmp_path) -> Path:
    return tmp_path / "gateway.json"


@pytest.fixture
def write_config(config_path):
    """
    Factory fixture that writes a configuration document.

    Usage in tests:
        def test_something(write_config, store):
            write_config({"tools": {"profile": "minimal"}})
            store.get_global_tools_config()
    """

    def _write_config(config: dict) -> Path:
        config_path.write_text(json.dumps(config), encoding="utf-8")
        return config_path

    return _write_config


@pytest.fixture
def env_settings() -> Settings:
    return Settings(_env_file=None, token=None, password=None)


@pytest.fixture
def store(config_path, env_settings) -> ConfigStore:
    return ConfigStore(config_path, env=env_settings)


@pytest.fixture
async def client(store):
    """httpx client bound to the gateway app; no real server process needed."""
    app = create_server(store).http_app(transport="streamable-http")
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
