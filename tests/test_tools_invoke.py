"""
Integration tests for POST /tools/invoke.

Requests go through the full Starlette -> route -> InvocationGate -> FastMCP
tool pipeline using httpx.AsyncClient on the ASGI app (in-memory, no server
process). Configuration is written to a temporary JSON file per test.
"""

import json

import pytest
from fastmcp.tools.tool import FunctionTool

from tool_gateway.server import ToolInvokeBody, _tool_args

MAIN_ALLOWS_SESSIONS_LIST = {
    "agents": {"list": [{"id": "main", "tools": {"allow": ["sessions_list"]}}]}
}


async def invoke(client, payload: dict, token: str | None = None):
    headers = {"Content-Type": "application/json"}
    if token is not None:
        headers["Authorization"] = f"Bearer {token}"
    return await client.post("/tools/invoke", headers=headers, json=payload)


def sessions_list_payload(**extra) -> dict:
    return {"tool": "sessions_list", "action": "json", "args": {}, **extra}


class TestInvoke:
    async def test_invokes_tool_and_returns_result(self, write_config, client):
        write_config(MAIN_ALLOWS_SESSIONS_LIST)

        response = await invoke(client, sessions_list_payload(sessionKey="main"))

        assert response.status_code == 200
        body = response.json()
        assert body["ok"] is True
        assert "result" in body

    async def test_result_reflects_configured_agents(self, write_config, client):
        write_config({"agents": {"list": [{"id": "ops-bot", "default": True}]}})

        response = await invoke(client, sessions_list_payload())

        assert response.status_code == 200
        assert "ops-bot" in json.dumps(response.json()["result"])

    async def test_also_allow_extends_profile(self, write_config, client):
        write_config(
            {
                "agents": {"list": [{"id": "main"}]},
                "tools": {"profile": "minimal", "alsoAllow": ["sessions_list"]},
            }
        )

        response = await invoke(client, sessions_list_payload(sessionKey="main"))

        assert response.status_code == 200
        assert response.json()["ok"] is True

    async def test_also_allow_without_allow_or_profile(self, write_config, client):
        write_config(
            {"agents": {"list": [{"id": "main"}]}, "tools": {"alsoAllow": ["sessions_list"]}}
        )

        response = await invoke(client, sessions_list_payload(sessionKey="main"))

        assert response.status_code == 200

    async def test_profile_is_ceiling_for_agent_allow(self, write_config, client):
        write_config({**MAIN_ALLOWS_SESSIONS_LIST, "tools": {"profile": "minimal"}})

        response = await invoke(client, sessions_list_payload(sessionKey="main"))

        assert response.status_code == 404

    async def test_denied_tool_returns_404(self, write_config, client):
        write_config({"agents": {"list": [{"id": "main", "tools": {"deny": ["sessions_list"]}}]}})

        response = await invoke(client, sessions_list_payload(sessionKey="main"))

        assert response.status_code == 404
        assert response.json() == {
            "ok": False,
            "error": {"type": "not_found", "message": "Tool not available: sessions_list"},
        }

    async def test_unknown_session_looks_like_unknown_tool(self, write_config, client):
        write_config(MAIN_ALLOWS_SESSIONS_LIST)

        response = await invoke(client, sessions_list_payload(sessionKey="ghost"))

        assert response.status_code == 404
        assert response.json()["error"]["message"] == "Tool not available: sessions_list"

    async def test_permitted_but_unregistered_tool_returns_404(self, client):
        response = await invoke(client, {"tool": "exec", "args": {"command": "ls"}})

        assert response.status_code == 404
        assert response.json()["error"]["type"] == "not_found"


class TestAuth:
    async def test_token_mode_without_header_returns_401(self, write_config, client):
        write_config({**MAIN_ALLOWS_SESSIONS_LIST, "gateway": {"auth": {"mode": "token", "token": "t"}}})

        response = await invoke(client, sessions_list_payload(sessionKey="main"))

        assert response.status_code == 401
        assert response.json()["error"]["type"] == "unauthorized"

    async def test_token_mode_unauthorized_before_session_lookup(self, write_config, client):
        write_config({"gateway": {"auth": {"mode": "token", "token": "t"}}})

        response = await invoke(client, sessions_list_payload(sessionKey="ghost"), token="x")

        assert response.status_code == 401

    async def test_token_mode_with_matching_token(self, write_config, client):
        write_config({**MAIN_ALLOWS_SESSIONS_LIST, "gateway": {"auth": {"mode": "token", "token": "t"}}})

        response = await invoke(client, sessions_list_payload(sessionKey="main"), token="t")

        assert response.status_code == 200

    async def test_password_mode_accepts_matching_bearer(self, write_config, client):
        write_config(
            {
                **MAIN_ALLOWS_SESSIONS_LIST,
                "gateway": {"auth": {"mode": "password", "password": "secret"}},
            }
        )

        response = await invoke(client, sessions_list_payload(sessionKey="main"), token="secret")

        assert response.status_code == 200

    async def test_env_token_is_enforced(self, monkeypatch, config_path):
        import httpx

        from tool_gateway.config import ConfigStore, Settings
        from tool_gateway.server import create_server

        monkeypatch.setenv("GATEWAY_TOKEN", "from-env")
        store = ConfigStore(config_path, env=Settings(_env_file=None))
        app = create_server(store).http_app(transport="streamable-http")

        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url="http://testserver"
        ) as client:
            denied = await invoke(client, sessions_list_payload())
            allowed = await invoke(client, sessions_list_payload(), token="from-env")

        assert denied.status_code == 401
        assert allowed.status_code == 200


class TestSessionKeys:
    CONFIG = {
        "agents": {
            "list": [
                {"id": "main", "tools": {"deny": ["sessions_list"]}},
                {"id": "ops", "default": True, "tools": {"allow": ["sessions_list"]}},
            ]
        },
        "session": {"mainKey": "primary"},
    }

    @pytest.mark.parametrize("session_key", [None, "main", "primary"])
    async def test_main_aliases_use_default_agent(self, write_config, client, session_key):
        write_config(self.CONFIG)
        payload = sessions_list_payload()
        if session_key is not None:
            payload["sessionKey"] = session_key

        response = await invoke(client, payload)

        assert response.status_code == 200

    async def test_explicit_agent_id(self, write_config, client):
        write_config(self.CONFIG)

        response = await invoke(client, sessions_list_payload(sessionKey="ops"))

        assert response.status_code == 200


class TestRequestValidation:
    async def test_missing_tool_returns_400(self, client):
        response = await invoke(client, {"args": {}})

        assert response.status_code == 400
        assert response.json()["error"]["type"] == "invalid_request_error"

    async def test_blank_tool_returns_400(self, client):
        response = await invoke(client, {"tool": "   "})

        assert response.status_code == 400

    async def test_non_object_args_returns_400(self, client):
        response = await invoke(client, {"tool": "sessions_list", "args": ["a"]})

        assert response.status_code == 400

    async def test_invalid_json_returns_400(self, client):
        response = await client.post(
            "/tools/invoke", headers={"Content-Type": "application/json"}, content=b"{nope"
        )

        assert response.status_code == 400

    async def test_get_is_not_allowed(self, client):
        response = await client.get("/tools/invoke")

        assert response.status_code == 405


class TestToolExecution:
    async def test_tool_failure_returns_400(self, write_config, client):
        write_config({"agents": {"list": [{"id": "main"}]}})

        response = await invoke(
            client, {"tool": "session_status", "args": {"session_key": "ghost"}}
        )

        assert response.status_code == 400
        assert response.json()["error"]["type"] == "tool_error"

    async def test_session_status_reports_resolved_agent(self, write_config, client):
        write_config({"agents": {"list": [{"id": "ops-bot", "default": True}]}})

        response = await invoke(client, {"tool": "session_status", "args": {}})

        assert response.status_code == 200
        assert "ops-bot" in json.dumps(response.json()["result"])

    def test_action_is_merged_for_tools_that_accept_it(self):
        def lookup(action: str = "list") -> str:
            return action

        tool = FunctionTool.from_function(lookup)

        assert _tool_args(tool, ToolInvokeBody(tool="lookup", action="json")) == {"action": "json"}
        assert _tool_args(
            tool, ToolInvokeBody(tool="lookup", action="json", args={"action": "raw"})
        ) == {"action": "raw"}

    def test_action_is_dropped_for_tools_without_it(self):
        def ping() -> str:
            return "pong"

        tool = FunctionTool.from_function(ping)

        assert _tool_args(tool, ToolInvokeBody(tool="ping", action="json")) == {}

    async def test_session_status_acts_in_requested_session(self, write_config, client):
        """The tool sees the session the gate resolved, not the default one."""
        write_config({"agents": {"list": [{"id": "main", "default": True}, {"id": "ops"}]}})

        response = await invoke(client, {"tool": "session_status", "sessionKey": "ops"})

        assert response.status_code == 200
        result = response.json()["result"]
        assert result["agentId"] == "ops"
        assert result["sessionKey"] == "ops"

    def test_session_key_is_merged_for_tools_that_accept_it(self):
        def status(session_key: str | None = None) -> str:
            return session_key or "main"

        tool = FunctionTool.from_function(status)

        assert _tool_args(tool, ToolInvokeBody(tool="status", sessionKey="ops")) == {
            "session_key": "ops"
        }
        assert _tool_args(
            tool, ToolInvokeBody(tool="status", sessionKey="ops", args={"session_key": "main"})
        ) == {"session_key": "main"}

    def test_session_key_is_dropped_for_tools_without_it(self):
        def ping() -> str:
            return "pong"

        tool = FunctionTool.from_function(ping)

        assert _tool_args(tool, ToolInvokeBody(tool="ping", sessionKey="ops")) == {}


class TestEventLoop:
    async def test_gate_runs_off_the_event_loop(self, config_path, env_settings):
        """Config file reads for the gate happen in a worker thread."""
        import threading

        import httpx

        from tool_gateway.config import ConfigStore
        from tool_gateway.server import create_server

        class RecordingStore(ConfigStore):
            def __init__(self, *args, **kwargs):
                super().__init__(*args, **kwargs)
                self.threads: set[int] = set()

            def get_auth_config(self):
                self.threads.add(threading.get_ident())
                return super().get_auth_config()

        store = RecordingStore(config_path, env=env_settings)
        app = create_server(store).http_app(transport="streamable-http")

        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url="http://testserver"
        ) as client:
            response = await invoke(client, sessions_list_payload())

        assert response.status_code == 200
        assert store.threads
        assert threading.get_ident() not in store.threads


async def test_health_check(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}
