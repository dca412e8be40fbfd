"""
Session key to agent resolution.

A request may name the session it acts in. The session key selects the agent
whose tool policy applies:

- no key, the literal "main", or the configured session.mainKey
      -> the default agent
- any other key
      -> the agent with that exact id, or SessionNotFound

The default agent is picked by an ordered fallback: the first agent marked
`default`, else the first agent in the list, else an implicit agent with no
per-agent tool restrictions.
"""

from collections.abc import Sequence

from tool_gateway.config import AgentConfig, SessionConfig

MAIN_SESSION_KEY = "main"
DEFAULT_AGENT_ID = "main"


class SessionNotFound(Exception):
    """
    Raised when an explicit session key matches no configured agent.

    Surfaced as 404, the same code used for a denied tool, so callers cannot
    tell a missing session from a missing tool.
    """

    def __init__(self, session_key: str, status_code: int = 404):
        self.session_key = session_key
        self.status_code = status_code
        super().__init__(f"No agent for session '{session_key}'")


def normalize_session_key(session_key: str | None) -> str | None:
    if session_key is None:
        return None
    return session_key.strip() or None


def is_main_alias(session_key: str | None, session_config: SessionConfig) -> bool:
    key = normalize_session_key(session_key)
    if key is None or key == MAIN_SESSION_KEY:
        return True
    return session_config.main_key is not None and key == session_config.main_key


def resolve_default_agent(agents: Sequence[AgentConfig]) -> AgentConfig:
    for agent in agents:
        if agent.is_default:
            return agent
    if agents:
        return agents[0]
    return AgentConfig(id=DEFAULT_AGENT_ID, is_default=True)


def resolve_agent(
    agents: Sequence[AgentConfig],
    session_config: SessionConfig,
    session_key: str | None,
) -> AgentConfig:
    """
    Map a requested session key to the agent whose policy applies.

    Args:
        agents: Configured agents, in configuration order
        session_config: Session aliases (mainKey)
        session_key: Key from the request, or None

    Returns:
        The resolved AgentConfig

    Raises:
        SessionNotFound: If an explicit, non-alias key matches no agent id
    """
    if is_main_alias(session_key, session_config):
        return resolve_default_agent(agents)

    key = normalize_session_key(session_key)
    for agent in agents:
        if agent.id == key:
            return agent
    raise SessionNotFound(key)
