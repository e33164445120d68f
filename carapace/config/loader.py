"""Configuration loading utilities."""

import json
import os
from pathlib import Path
from typing import Any

from carapace.config.schema import DEFAULT_SOCKET_PATH, Config

# Path of the config file; overrides ~/.carapace/config.json.
ENV_CONFIG_PATH = "CARAPACE_CONFIG"
# Socket path shared by daemon and clients; wins over the config file.
ENV_SOCKET_PATH = "CARAPACE_SOCKET_PATH"


def get_config_path() -> Path:
    """Get the configuration file path."""
    override = os.environ.get(ENV_CONFIG_PATH, "").strip()
    if override:
        return Path(override).expanduser()
    return Path.home() / ".carapace" / "config.json"


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from file or create default.

    Args:
        config_path: Optional path to config file. Uses default if not provided.

    Returns:
        Loaded configuration object (environment variables override file values
        only where the file is silent).
    """
    path = config_path or get_config_path()

    if path.exists():
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("config file must contain a JSON object")
            return Config(**convert_keys(data))
        except (json.JSONDecodeError, ValueError) as e:
            raise ValueError(
                f"Failed to load config from {path}: {e}. "
                "Fix the file or remove it to use defaults."
            ) from e

    return Config()


def save_config(config: Config, config_path: Path | None = None) -> Path:
    """
    Save configuration to file as camelCase JSON.

    Args:
        config: Configuration to save.
        config_path: Optional path to save to. Uses default if not provided.
    """
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    data = convert_to_camel(config.model_dump())
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    return path


def resolve_socket_path(cli_value: str | None = None, config: Config | None = None) -> Path:
    """Socket path by priority: CLI flag, CARAPACE_SOCKET_PATH, config, default."""
    if cli_value:
        return Path(cli_value).expanduser()
    env_value = os.environ.get(ENV_SOCKET_PATH, "").strip()
    if env_value:
        return Path(env_value).expanduser()
    if config is not None and config.gateway.socket_path:
        return Path(config.gateway.socket_path).expanduser()
    return Path(DEFAULT_SOCKET_PATH)


def convert_keys(data: Any) -> Any:
    """Convert camelCase keys to snake_case for Pydantic."""
    if isinstance(data, dict):
        return {camel_to_snake(k): convert_keys(v) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_keys(item) for item in data]
    return data


def convert_to_camel(data: Any) -> Any:
    """Convert snake_case keys to camelCase."""
    if isinstance(data, dict):
        return {snake_to_camel(k): convert_to_camel(v) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_to_camel(item) for item in data]
    return data


def camel_to_snake(name: str) -> str:
    """Convert camelCase to snake_case."""
    result = []
    for i, char in enumerate(name):
        if char.isupper() and i > 0:
            result.append("_")
        result.append(char.lower())
    return "".join(result)


def snake_to_camel(name: str) -> str:
    """Convert snake_case to camelCase."""
    components = name.split("_")
    return components[0] + "".join(x.title() for x in components[1:])
