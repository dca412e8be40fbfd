"""
Static tool profiles.

A profile is a named bundle of tool names that acts as the base capability
set for an agent. Profiles are referenced from the gateway configuration by
name (`tools.profile` globally or per agent) and never change at runtime.

    minimal    -> session_status only
    coding     -> file, runtime, session and memory tools plus image
    messaging  -> message plus the session tools
    full       -> no restriction

Tool names are case-sensitive exact matches. There are no wildcards: the
group constants below are only a convenience for building the sets.
"""

from dataclasses import dataclass

FS_TOOLS = frozenset({"read", "write", "edit", "apply_patch"})
RUNTIME_TOOLS = frozenset({"exec", "process"})
SESSION_TOOLS = frozenset(
    {"sessions_list", "sessions_history", "sessions_send", "sessions_spawn", "session_status"}
)
MEMORY_TOOLS = frozenset({"memory_search", "memory_get"})


class UnknownProfile(LookupError):
    """Raised when a configuration names a profile that does not exist."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown tool profile '{name}'")


@dataclass(frozen=True)
class Profile:
    """
    A named tool bundle.

    Attributes:
        name: Profile name as written in the configuration
        tools: Permitted tool names, or None when the profile does not restrict
    """

    name: str
    tools: frozenset[str] | None

    def permits(self, tool_name: str) -> bool:
        if self.tools is None:
            return True
        return tool_name in self.tools


PROFILES: dict[str, Profile] = {
    "minimal": Profile("minimal", frozenset({"session_status"})),
    "coding": Profile(
        "coding", FS_TOOLS | RUNTIME_TOOLS | SESSION_TOOLS | MEMORY_TOOLS | {"image"}
    ),
    "messaging": Profile(
        "messaging",
        frozenset({"message", "sessions_list", "sessions_history", "sessions_send", "session_status"}),
    ),
    "full": Profile("full", None),
}


def lookup_profile(name: str) -> Profile:
    """Return the profile registered under `name` or raise UnknownProfile."""
    try:
        return PROFILES[name]
    except KeyError:
        raise UnknownProfile(name) from None
