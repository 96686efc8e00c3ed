"""
Runtime configuration for the canaryctl server process.

Configuration priority (highest to lowest):
1. Environment variables (HOST, PORT, CANARYCTL_LOG_LEVEL, CONFIG_PATH)
2. Base defaults

Controller behaviour itself lives in the YAML settings
(``canaryctl.utils.config_loader``); this module only covers how the
process is served.

Usage:
    from canaryctl.config.runtime import get_runtime_config

    config = get_runtime_config()
"""

from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_CONFIG_PATH = "config/default_config.yaml"


@dataclass
class ServerConfig:
    """Server configuration for the HTTP API."""

    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "info"
    timeout_keep_alive: int = 30


@dataclass
class RuntimeConfig:
    """Complete runtime configuration."""

    server: ServerConfig
    config_path: str = DEFAULT_CONFIG_PATH

    def to_env_dict(self) -> dict[str, str]:
        """Environment variables that reproduce this configuration."""
        return {
            "HOST": self.server.host,
            "PORT": str(self.server.port),
            "CANARYCTL_LOG_LEVEL": self.server.log_level,
            "CONFIG_PATH": self.config_path,
        }


def _get_env_str(key: str, default: str) -> str:
    return os.environ.get(key, default)


def _get_env_int(key: str, default: int) -> int:
    val = os.environ.get(key)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        return default


def get_runtime_config() -> RuntimeConfig:
    """Build runtime configuration from defaults and environment."""
    defaults = ServerConfig()
    server = ServerConfig(
        host=_get_env_str("HOST", defaults.host),
        port=_get_env_int("PORT", defaults.port),
        log_level=_get_env_str("CANARYCTL_LOG_LEVEL", defaults.log_level).lower(),
        timeout_keep_alive=_get_env_int("CANARYCTL_TIMEOUT_KEEP_ALIVE", defaults.timeout_keep_alive),
    )
    return RuntimeConfig(
        server=server,
        config_path=_get_env_str("CONFIG_PATH", DEFAULT_CONFIG_PATH),
    )


def apply_runtime_config(config: RuntimeConfig) -> None:
    """Export the configuration to the environment (for the app factory)."""
    for key, value in config.to_env_dict().items():
        os.environ[key] = value
