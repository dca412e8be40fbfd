"""
Tool gateway HTTP server built on FastMCP v2.

This module creates and runs the gateway with:
- POST /tools/invoke: invoke one tool for a session, gated by auth and policy
- The MCP endpoint at /mcp, guarded by the same gate through a middleware
- Two built-in tools: sessions_list and session_status
- A health endpoint for liveness probes
- Structured JSON logging for all gate decisions

Request flow for /tools/invoke:

    1. Body is validated ({tool, action?, args?, sessionKey?})     -> 400
    2. InvocationGate.handle() authenticates the Bearer value      -> 401
    3. ... resolves the session key to an agent                    -> 404
    4. ... checks the tool against the agent and global policy     -> 404
    5. The registered FastMCP tool runs                            -> 200 / 400

Session and policy failures share the same 404 body so callers cannot tell
which one applied.

Running the server:
    python -m tool_gateway.server
"""

import asyncio
import json
import logging
import sys
from typing import Any, Sequence

from fastmcp import FastMCP
from fastmcp.server.dependencies import get_http_request
from fastmcp.server.middleware import CallNext, Middleware, MiddlewareContext
from fastmcp.tools.tool import Tool, ToolResult
from mcp.types import CallToolRequestParams, ListToolsRequest
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from tool_gateway.auth import AuthError, extract_bearer
from tool_gateway.config import ConfigStore, settings
from tool_gateway.gate import InvocationGate, InvocationRequest
from tool_gateway.sessions import resolve_agent

# ---------------------------------------------------------------------------
# Structured JSON Logging
# ---------------------------------------------------------------------------
# Logs go to stdout, one JSON object per line, so a log collector can index
# the gate fields (tool, agent_id, decision, reason) without parsing free
# text. Credentials never appear in these fields: the gate logs the failure
# reason ("token_mismatch"), not the presented value.


class JSONLogFormatter(logging.Formatter):
    """
    Formats log records as single-line JSON objects.

    Example output:

        {"timestamp": "2026-10-19 10:30:00,120", "level": "WARNING",
         "logger": "tool-gateway", "message": "Tool invocation denied",
         "tool": "exec", "agent_id": "ops", "reason": "tool_not_permitted"}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        # Structured gate decisions arrive via extra={"gate_data": {...}}
        if hasattr(record, "gate_data"):
            log_entry.update(record.gate_data)
        return json.dumps(log_entry)


handler = logging.StreamHandler(sys.stdout)
handler.setFormatter(JSONLogFormatter())

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    handlers=[handler],
)
logger = logging.getLogger("tool-gateway")


# ---------------------------------------------------------------------------
# MCP Middleware
# ---------------------------------------------------------------------------
# The MCP endpoint (/mcp) exposes the same tools as /tools/invoke, so it must
# pass through the same gate. FastMCP's hook system gives us two places:
#
# - on_list_tools: called for tools/list; we authenticate first, then hide
#   every tool the main session may not invoke
# - on_call_tool: called for tools/call; the gate must allow the call before
#   the tool handler runs
#
# MCP clients have no session key field, so they always act in the main
# session. Gate checks read the config file synchronously, so they run in a
# worker thread to keep the event loop free.


class PolicyMiddleware(Middleware):
    """
    Applies the invocation gate to MCP tools/list and tools/call.

    - tools/list responses only include tools the main session may invoke
    - tools/call is refused unless the gate allows it
    """

    def __init__(self, gate: InvocationGate):
        self.gate = gate

    def _get_credential(self) -> str | None:
        """Bearer value of the current HTTP request; None for stdio transport."""
        try:
            request = get_http_request()
        except RuntimeError:
            return None
        return extract_bearer(request.headers.get("authorization"))

    async def on_list_tools(
        self,
        context: MiddlewareContext[ListToolsRequest],
        call_next: CallNext[ListToolsRequest, Sequence[Tool]],
    ) -> Sequence[Tool]:
        credential = self._get_credential()

        # Step 1: Authenticate before the tool list is even built, so an
        # unauthenticated caller learns nothing about which tools exist.
        try:
            await asyncio.to_thread(self.gate.authenticate, credential)
        except AuthError:
            logger.warning("Tool list refused: authentication failed")
            raise PermissionError("Unauthorized")

        # Step 2: Filter the full list down to what policy permits
        all_tools = await call_next(context)
        try:
            permitted = await asyncio.to_thread(
                self.gate.permitted_tools, credential, [t.name for t in all_tools]
            )
        except AuthError:
            # Auth config changed between the two reads
            raise PermissionError("Unauthorized")
        permitted = set(permitted)
        return [tool for tool in all_tools if tool.name in permitted]

    async def on_call_tool(
        self,
        context: MiddlewareContext[CallToolRequestParams],
        call_next: CallNext[CallToolRequestParams, ToolResult],
    ) -> ToolResult:
        tool_name = context.message.name
        verdict = await asyncio.to_thread(
            self.gate.handle,
            InvocationRequest(tool=tool_name, credential=self._get_credential()),
        )
        if verdict.http_status == 401:
            raise PermissionError("Unauthorized")
        if not verdict.allowed:
            raise PermissionError(f"Tool not available: {tool_name}")
        return await call_next(context)


# ---------------------------------------------------------------------------
# /tools/invoke
# ---------------------------------------------------------------------------
# Direct tool invocation without an agent turn. The route only translates
# between HTTP and the gate:
#
# - the body is validated by a pydantic model (400 on any violation)
# - the gate verdict decides 401 / 404 before any tool code runs
# - on an allow verdict the tool is looked up in the FastMCP registry and run
#
# A denied tool, an unknown session and an unregistered tool all produce the
# same 404 body ("Tool not available: <tool>").


class ToolInvokeBody(BaseModel):
    """Body of POST /tools/invoke."""

    model_config = ConfigDict(populate_by_name=True)

    tool: str = Field(min_length=1)
    action: str | None = None
    args: dict[str, Any] = Field(default_factory=dict)
    session_key: str | None = Field(default=None, alias="sessionKey")


def _error(status_code: int, error_type: str, message: str) -> JSONResponse:
    return JSONResponse(
        {"ok": False, "error": {"type": error_type, "message": message}},
        status_code=status_code,
    )


def _not_found(tool_name: str) -> JSONResponse:
    return _error(404, "not_found", f"Tool not available: {tool_name}")


def _tool_args(tool: Tool, body: ToolInvokeBody) -> dict[str, Any]:
    """
    Build the tool arguments from the request body.

    `action` and the request's `sessionKey` are only passed to tools that
    declare a matching parameter, and never override an explicit argument.
    The session key is the one the gate resolved, so a session-aware tool
    acts in the same session the policy was checked for.
    """
    args = dict(body.args)
    properties = tool.parameters.get("properties", {})
    if body.action is not None and "action" in properties and "action" not in args:
        args["action"] = body.action
    accepts_session = "session_key" in properties
    if body.session_key is not None and accepts_session and "session_key" not in args:
        args["session_key"] = body.session_key
    return args


def _result_payload(result: ToolResult) -> Any:
    if result.structured_content is not None:
        return result.structured_content
    return [block.model_dump(mode="json") for block in result.content]


def create_server(store: ConfigStore | None = None) -> FastMCP:
    """
    Build the gateway server around a configuration store.

    Args:
        store: Where configuration is read from; defaults to the file named by
               GATEWAY_CONFIG_PATH
    """
    store = store if store is not None else ConfigStore(settings.config_path)
    gate = InvocationGate(store)

    mcp = FastMCP(
        name="tool-gateway",
        instructions=(
            "Tool gateway: invokes tools on behalf of session-scoped agents, "
            "subject to gateway auth and per-agent tool policy."
        ),
        middleware=[PolicyMiddleware(gate)],
    )

    @mcp.tool(description="List the agent sessions configured on this gateway.")
    def sessions_list() -> dict:
        agents = store.get_agents_config()
        sessions = [
            {"key": agent.id, "agentId": agent.id, "default": agent.is_default}
            for agent in agents
        ]
        return {"count": len(sessions), "sessions": sessions}

    @mcp.tool(description="Show which agent a session key resolves to.")
    def session_status(session_key: str | None = None) -> dict:
        agent = resolve_agent(
            store.get_agents_config(), store.get_session_config(), session_key
        )
        return {
            "sessionKey": session_key or "main",
            "agentId": agent.id,
            "profile": agent.tools.profile or store.get_global_tools_config().profile,
        }

    @mcp.custom_route("/tools/invoke", methods=["POST"])
    async def tools_invoke(request: Request) -> Response:
        try:
            body = ToolInvokeBody.model_validate_json(await request.body())
        except ValidationError as e:
            logger.info("Rejected /tools/invoke body: %d validation errors", e.error_count())
            return _error(400, "invalid_request_error", "tools.invoke requires body.tool")

        tool_name = body.tool.strip()
        if not tool_name:
            return _error(400, "invalid_request_error", "tools.invoke requires body.tool")

        verdict = await asyncio.to_thread(
            gate.handle,
            InvocationRequest(
                tool=tool_name,
                session_key=body.session_key,
                credential=extract_bearer(request.headers.get("authorization")),
            ),
        )
        if verdict.http_status == 401:
            return _error(401, "unauthorized", "Unauthorized")
        if not verdict.allowed:
            return _not_found(tool_name)

        tools = await mcp.get_tools()
        tool = tools.get(tool_name)
        if tool is None:
            logger.warning("Tool %s allowed by policy but not registered", tool_name)
            return _not_found(tool_name)

        try:
            result = await tool.run(_tool_args(tool, body))
        except Exception as e:
            logger.exception("Tool %s failed", tool_name)
            return _error(400, "tool_error", str(e))

        return JSONResponse({"ok": True, "result": _result_payload(result)})

    @mcp.custom_route("/health", methods=["GET"])
    async def health_check(request: Request) -> Response:
        """Liveness probe: is the server process alive and responsive?"""
        return JSONResponse({"status": "healthy"})

    return mcp


mcp = create_server()


if __name__ == "__main__":
    ConfigStore(settings.config_path).validate()
    logger.info(
        "Starting tool gateway on %s:%d (config=%s)",
        settings.host,
        settings.port,
        settings.config_path,
    )
    mcp.run(
        transport="streamable-http",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )
