"""
Tool access policy.

Decides whether a tool may be invoked for an agent, given the deployment-wide
`tools` section and the agent's own `tools` section. Precedence, high to low:

1. deny      - a tool in the agent's or the global deny list is refused,
               nothing overrides it
2. alsoAllow - a tool in the global alsoAllow list is permitted, whatever
               the base set below says
3. base set  - the intersection of every stage that is configured:
                 profile      agent profile, else global profile
                 global allow
                 agent allow
               a stage that is not configured does not restrict, so with no
               profile and no allow list every tool is in the base set

Everything here is a pure function of its arguments.
"""

from collections.abc import Iterable

from tool_gateway.config import GlobalToolsConfig, ToolsConfig
from tool_gateway.profiles import Profile, lookup_profile


class ToolNotPermitted(Exception):
    """
    Raised when policy refuses a tool for the resolved agent.

    Surfaced as 404 so that a refused tool looks like a tool that does not
    exist.
    """

    def __init__(self, tool_name: str, status_code: int = 404):
        self.tool_name = tool_name
        self.status_code = status_code
        super().__init__(f"Tool '{tool_name}' is not permitted")


def resolve_profile(
    global_tools: GlobalToolsConfig, agent_tools: ToolsConfig
) -> Profile | None:
    name = agent_tools.profile or global_tools.profile
    if name is None:
        return None
    return lookup_profile(name)


def is_denied(global_tools: GlobalToolsConfig, agent_tools: ToolsConfig, tool_name: str) -> bool:
    return tool_name in (agent_tools.deny or ()) or tool_name in (global_tools.deny or ())


def in_base_set(global_tools: GlobalToolsConfig, agent_tools: ToolsConfig, tool_name: str) -> bool:
    profile = resolve_profile(global_tools, agent_tools)
    if profile is not None and not profile.permits(tool_name):
        return False
    # An empty allow list counts as "not configured".
    for allow in (global_tools.allow, agent_tools.allow):
        if allow and tool_name not in allow:
            return False
    return True


def is_tool_allowed(
    global_tools: GlobalToolsConfig, agent_tools: ToolsConfig, tool_name: str
) -> bool:
    """
    Return True if `tool_name` may be invoked under the given policies.

    Raises:
        UnknownProfile: If a referenced profile does not exist. ConfigStore
                        rejects such files at load time, so this only happens
                        for hand-built configs.
    """
    if is_denied(global_tools, agent_tools, tool_name):
        return False
    if tool_name in (global_tools.also_allow or ()):
        return True
    return in_base_set(global_tools, agent_tools, tool_name)


def check_tool(global_tools: GlobalToolsConfig, agent_tools: ToolsConfig, tool_name: str) -> None:
    """Raise ToolNotPermitted unless the tool is allowed."""
    if not is_tool_allowed(global_tools, agent_tools, tool_name):
        raise ToolNotPermitted(tool_name)


def filter_allowed(
    global_tools: GlobalToolsConfig, agent_tools: ToolsConfig, tool_names: Iterable[str]
) -> list[str]:
    return [name for name in tool_names if is_tool_allowed(global_tools, agent_tools, name)]
