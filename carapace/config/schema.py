"""Configuration schema using Pydantic.

Persisted as JSON (camelCase or snake_case keys) at ~/.carapace/config.json
unless CARAPACE_CONFIG points elsewhere. Every field can also be set from the
environment, e.g. CARAPACE_GATEWAY__SOCKET_GROUP=carapace-clients.
"""

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_SOCKET_PATH = "/var/run/carapace/gateway.sock"


class GatewayConfig(BaseModel):
    """Daemon socket and dispatch settings."""
    socket_path: str = DEFAULT_SOCKET_PATH
    # Owner + group only; the socket is the trust boundary.
    socket_mode: int = 0o770
    # Group that may connect (chgrp'd after bind); empty leaves the default group.
    socket_group: str = ""
    max_message_bytes: int = 1_048_576
    # Bounded wait for the execute method; None waits for the child indefinitely.
    execute_timeout_seconds: float | None = None

    @field_validator("socket_mode", mode="before")
    @classmethod
    def _parse_octal_mode(cls, value):
        if isinstance(value, str):
            return int(value, 8)
        return value

    @field_validator("socket_mode")
    @classmethod
    def _not_world_accessible(cls, value: int) -> int:
        if value & 0o007:
            raise ValueError(f"socket_mode {value:o} grants access to other users")
        return value


class LoggingConfig(BaseModel):
    """Log sinks."""
    level: str = "INFO"  # TRACE | DEBUG | INFO | WARNING | ERROR
    file: str = ""  # optional rotating log file


class ClientConfig(BaseModel):
    """Defaults for the CLI client."""
    timeout_seconds: float | None = None


class Config(BaseSettings):
    """Root configuration for carapace."""
    model_config = SettingsConfigDict(
        env_prefix="CARAPACE_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    client: ClientConfig = Field(default_factory=ClientConfig)
