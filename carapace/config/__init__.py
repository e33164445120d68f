"""Configuration module for carapace."""

from carapace.config.loader import load_config, get_config_path, resolve_socket_path, save_config
from carapace.config.schema import Config

__all__ = ["Config", "load_config", "save_config", "get_config_path", "resolve_socket_path"]
