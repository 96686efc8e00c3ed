"""canaryctl process configuration (host, port, log level, config path)."""

from .runtime import (
    DEFAULT_CONFIG_PATH,
    RuntimeConfig,
    ServerConfig,
    apply_runtime_config,
    get_runtime_config,
)

__all__ = [
    "DEFAULT_CONFIG_PATH",
    "RuntimeConfig",
    "ServerConfig",
    "apply_runtime_config",
    "get_runtime_config",
]
