"""
Gateway configuration.

Two layers live here:

1. Process settings (`Settings`), read from environment variables with the
   GATEWAY_ prefix via pydantic-settings. These say where the server binds,
   how verbose it logs and where the gateway configuration file is.

2. The gateway configuration file (JSON), parsed into frozen pydantic models.
   It holds the auth mode, the session aliases, the agent list and the global
   tool policy:

       {
         "gateway": {"auth": {"mode": "token", "token": "s3cret"}},
         "session": {"mainKey": "primary"},
         "agents":  {"list": [{"id": "ops", "default": true,
                               "tools": {"allow": ["sessions_list"]}}]},
         "tools":   {"profile": "minimal", "alsoAllow": ["sessions_list"]}
       }

The file is read again on every ConfigStore call. An operator can edit it
while the gateway runs and the next request sees the change.
"""

import json
import logging
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings

from tool_gateway.profiles import UnknownProfile, lookup_profile

logger = logging.getLogger("tool-gateway")


class Settings(BaseSettings):
    """
    Server settings with environment variable bindings.

    Each field maps to an environment variable with the GATEWAY_ prefix,
    e.g. `config_path` reads from GATEWAY_CONFIG_PATH.
    """

    # --- Server settings ---

    # The network interface to bind to. The gateway runs tools for whoever
    # passes auth, so it listens on loopback unless told otherwise; set
    # GATEWAY_HOST=0.0.0.0 inside a container.
    host: str = "127.0.0.1"

    # The port the gateway listens on.
    port: int = 18789

    # Logging verbosity. Maps to Python's logging levels.
    # "info" logs every gate decision; "warning" only the denials.
    log_level: str = "info"

    # --- Gateway configuration ---

    # JSON file with auth, session, agent and tool policy settings. It is read
    # again on every request, so edits take effect without a restart.
    # A missing file means: no auth, no agents, no tool restrictions.
    config_path: Path = Path("gateway.json")

    # Fallbacks for gateway.auth.token / gateway.auth.password so secrets can
    # be injected without writing them into the config file.
    token: str | None = None
    password: str | None = None

    model_config = {
        # All environment variables are prefixed with GATEWAY_ to avoid collisions.
        "env_prefix": "GATEWAY_",
        # Also read from .env if it exists (local development).
        # Environment variables take precedence over .env file values.
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }


settings = Settings()


class ConfigError(Exception):
    """
    Raised when the gateway configuration cannot be used.

    Covers unreadable files, invalid JSON, schema violations, duplicate agent
    ids and unknown profile names. This is a deployment problem, not a
    request problem: callers are denied rather than granted broader access.
    """


class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class ToolsConfig(_FrozenModel):
    """Per-agent tool policy. Every field is optional."""

    allow: frozenset[str] | None = None
    deny: frozenset[str] | None = None
    profile: str | None = None


class GlobalToolsConfig(ToolsConfig):
    """Deployment-wide tool policy; adds the additive `alsoAllow` list."""

    also_allow: frozenset[str] | None = Field(default=None, alias="alsoAllow")


class AgentConfig(_FrozenModel):
    # Session keys are whitespace-trimmed before lookup, so ids are too.
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(min_length=1)
    is_default: bool = Field(default=False, alias="default")
    tools: ToolsConfig = Field(default_factory=ToolsConfig)


class AgentsSection(_FrozenModel):
    agents: tuple[AgentConfig, ...] = Field(default=(), alias="list")


class SessionConfig(_FrozenModel):
    main_key: str | None = Field(default=None, alias="mainKey")


AuthMode = Literal["none", "token", "password"]


class AuthConfig(_FrozenModel):
    mode: AuthMode | None = None
    token: str | None = None
    password: str | None = None


class GatewaySection(_FrozenModel):
    auth: AuthConfig = Field(default_factory=AuthConfig)


class GatewayConfig(_FrozenModel):
    """The whole configuration file."""

    gateway: GatewaySection = Field(default_factory=GatewaySection)
    session: SessionConfig = Field(default_factory=SessionConfig)
    agents: AgentsSection = Field(default_factory=AgentsSection)
    tools: GlobalToolsConfig = Field(default_factory=GlobalToolsConfig)


def _check_profiles(config: GatewayConfig) -> None:
    names = [config.tools.profile] + [agent.tools.profile for agent in config.agents.agents]
    for name in names:
        if name is not None:
            lookup_profile(name)


def _check_agent_ids(config: GatewayConfig) -> None:
    seen: set[str] = set()
    for agent in config.agents.agents:
        if agent.id in seen:
            raise ConfigError(f"Duplicate agent id '{agent.id}'")
        seen.add(agent.id)


def parse_config(raw: dict) -> GatewayConfig:
    """
    Validate a decoded configuration document.

    Raises:
        ConfigError: If the document violates the schema, repeats an agent id
                     or names an unknown profile
    """
    try:
        config = GatewayConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid gateway configuration: {e}") from e

    try:
        _check_profiles(config)
    except UnknownProfile as e:
        raise ConfigError(str(e)) from e
    _check_agent_ids(config)
    return config


class ConfigStore:
    """
    Read-only access to the gateway configuration file.

    Every getter loads the file again; nothing is cached between calls.
    A missing file is treated as an empty configuration (no auth, no agents,
    no tool restrictions).
    """

    def __init__(self, path: Path, env: Settings | None = None):
        self.path = Path(path)
        self.env = env if env is not None else settings

    def load(self) -> GatewayConfig:
        if not self.path.exists():
            return GatewayConfig()
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise ConfigError(f"Cannot read gateway configuration {self.path}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigError(f"Gateway configuration {self.path} must be a JSON object")
        return parse_config(raw)

    def validate(self) -> None:
        """Load once and log the outcome; raises ConfigError on a bad file."""
        config = self.load()
        logger.info(
            "Gateway configuration loaded from %s (%d agents, auth=%s)",
            self.path,
            len(config.agents.agents),
            self.get_auth_config().mode,
        )

    def get_agents_config(self) -> list[AgentConfig]:
        return list(self.load().agents.agents)

    def get_session_config(self) -> SessionConfig:
        return self.load().session

    def get_global_tools_config(self) -> GlobalToolsConfig:
        return self.load().tools

    def get_auth_config(self) -> AuthConfig:
        """
        Return the effective auth configuration.

        Secrets missing from the file fall back to GATEWAY_TOKEN and
        GATEWAY_PASSWORD. Without an explicit mode, a configured password
        selects password mode, a configured token selects token mode and
        otherwise no auth is required.
        """
        auth = self.load().gateway.auth
        token = auth.token if auth.token is not None else self.env.token
        password = auth.password if auth.password is not None else self.env.password

        mode = auth.mode
        if mode is None:
            if password:
                mode = "password"
            elif token:
                mode = "token"
            else:
                mode = "none"

        return AuthConfig(mode=mode, token=token, password=password)
