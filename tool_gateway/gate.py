"""
Invocation gate: the single decision point in front of tool execution.

For every request the gate runs, in order:

    1. authentication      (auth.authenticate)        -> 401 on failure
    2. session resolution  (sessions.resolve_agent)   -> 404 on failure
    3. tool policy         (policy.check_tool)        -> 404 on failure

and returns a Verdict. Nothing executes unless the verdict allows it. Each
step reads the configuration again from the store, so an edit made while a
request is in flight may be seen by its later steps only.

Configuration errors never widen access: a broken file during step 1 denies
with 401, during steps 2 or 3 with 404.
"""

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass

from tool_gateway.auth import AuthError, authenticate
from tool_gateway.config import AgentConfig, ConfigError, ConfigStore
from tool_gateway.policy import ToolNotPermitted, check_tool, filter_allowed
from tool_gateway.sessions import SessionNotFound, resolve_agent

logger = logging.getLogger("tool-gateway")


@dataclass(frozen=True)
class InvocationRequest:
    """
    A tool invocation as seen by the gate.

    Attributes:
        tool: Name of the tool to invoke
        session_key: Requested session, or None for the main session
        credential: Bearer value from the Authorization header, or None
    """

    tool: str
    session_key: str | None = None
    credential: str | None = None


@dataclass(frozen=True)
class Verdict:
    allowed: bool
    http_status: int
    reason: str
    agent_id: str | None = None


class InvocationGate:
    """Authentication, session resolution and tool policy, in that order."""

    def __init__(self, store: ConfigStore):
        self.store = store

    def authenticate(self, credential: str | None) -> None:
        """Raise AuthError unless `credential` satisfies the configured auth mode."""
        try:
            auth_config = self.store.get_auth_config()
        except ConfigError as e:
            logger.error("Cannot read auth configuration: %s", e)
            raise AuthError("config_error") from e
        authenticate(auth_config, credential)

    def _resolve(self, session_key: str | None) -> AgentConfig:
        return resolve_agent(
            self.store.get_agents_config(),
            self.store.get_session_config(),
            session_key,
        )

    def _log(self, request_id: str, request: InvocationRequest, verdict: Verdict) -> Verdict:
        log = logger.info if verdict.allowed else logger.warning
        log(
            "Tool invocation %s",
            "allowed" if verdict.allowed else "denied",
            extra={
                "gate_data": {
                    "request_id": request_id,
                    "tool": request.tool,
                    "session_key": request.session_key,
                    "agent_id": verdict.agent_id,
                    "decision": "allowed" if verdict.allowed else "denied",
                    "reason": verdict.reason,
                    "status": verdict.http_status,
                }
            },
        )
        return verdict

    def handle(self, request: InvocationRequest) -> Verdict:
        """
        Decide whether `request` may proceed to tool execution.

        Never raises for request-level or configuration failures; they are
        turned into denying verdicts.
        """
        request_id = str(uuid.uuid4())[:8]
        agent_id = None
        try:
            self.authenticate(request.credential)
            agent = self._resolve(request.session_key)
            agent_id = agent.id
            check_tool(self.store.get_global_tools_config(), agent.tools, request.tool)
        except AuthError as e:
            verdict = Verdict(False, e.status_code, e.message)
        except SessionNotFound as e:
            verdict = Verdict(False, e.status_code, "session_not_found")
        except ToolNotPermitted as e:
            verdict = Verdict(False, e.status_code, "tool_not_permitted", agent_id)
        except ConfigError as e:
            logger.error("Cannot read gateway configuration: %s", e)
            verdict = Verdict(False, 404, "config_error", agent_id)
        else:
            verdict = Verdict(True, 200, "allowed", agent_id)
        return self._log(request_id, request, verdict)

    def permitted_tools(
        self,
        credential: str | None,
        tool_names: Iterable[str],
        session_key: str | None = None,
    ) -> list[str]:
        """
        Return the subset of `tool_names` the caller may invoke.

        Raises:
            AuthError: If the caller is not authenticated
            SessionNotFound: If `session_key` names no agent
        """
        self.authenticate(credential)
        try:
            agent = self._resolve(session_key)
            return filter_allowed(self.store.get_global_tools_config(), agent.tools, tool_names)
        except ConfigError as e:
            logger.error("Cannot read gateway configuration: %s", e)
            return []
