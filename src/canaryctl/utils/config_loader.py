"""Configuration loading with validation for canaryctl.

YAML file first, then ``CANARYCTL_`` environment overrides, then the
``ControllerSettings`` schema.
"""

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from canaryctl.utils.config_schema import (
    ControllerSettings,
    get_default_settings,
    validate_config_dict,
)
from canaryctl.utils.errors import ConfigurationError, ErrorCode

logger = logging.getLogger(__name__)

ENV_PREFIX = "CANARYCTL_"

# Runtime variables that share the prefix but are not settings keys
_RESERVED_ENV = frozenset(
    {"CANARYCTL_LOG_LEVEL", "CANARYCTL_API_URL", "CANARYCTL_TIMEOUT_KEEP_ALIVE"}
)


class ConfigLoader:
    """Load and validate configuration files."""

    @staticmethod
    def load_config(
        path: str | Path,
        validate: bool = True,
        env_override: bool = True,
    ) -> dict[str, Any]:
        """Load configuration from a YAML file.

        Args:
            path: Path to configuration file (.yaml or .yml)
            validate: If True, validate against schema
            env_override: If True, apply ``CANARYCTL_*`` overrides

        Returns:
            Configuration dictionary

        Raises:
            FileNotFoundError: If configuration file does not exist
            ConfigurationError: If the file is unreadable or invalid
        """
        path = Path(path)
        if not path.is_file():
            raise FileNotFoundError(f"Configuration file not found: {path}")
        if path.suffix not in (".yaml", ".yml"):
            raise ConfigurationError(
                f"Unsupported configuration file format '{path.suffix}'. "
                "Only YAML (.yaml, .yml) is supported.",
                code=ErrorCode.E801_INVALID_CONFIG_FILE,
            )

        config = ConfigLoader._load_yaml(path)

        if env_override:
            config = ConfigLoader._apply_env_overrides(config)

        if validate:
            try:
                config = validate_config_dict(config).model_dump()
            except ValueError as e:
                raise ConfigurationError(
                    f"Configuration validation failed for '{path}':\n{e}",
                    code=ErrorCode.E802_CONFIG_VALIDATION_FAILED,
                ) from e

        return config

    @staticmethod
    def _load_yaml(path: Path) -> dict[str, Any]:
        try:
            with open(path, encoding="utf-8") as f:
                config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML syntax in '{path}': {e}",
                code=ErrorCode.E801_INVALID_CONFIG_FILE,
            ) from e
        except OSError as e:
            raise ConfigurationError(
                f"Error reading YAML file '{path}': {e}",
                code=ErrorCode.E801_INVALID_CONFIG_FILE,
            ) from e
        if not isinstance(config, dict):
            raise ConfigurationError(
                f"Top level of '{path}' must be a mapping, got {type(config).__name__}",
                code=ErrorCode.E801_INVALID_CONFIG_FILE,
            )
        return config

    @staticmethod
    def _apply_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
        """Apply environment variable overrides to configuration.

        Variables use the ``CANARYCTL_`` prefix and double underscores for
        nesting. For example:
        - CANARYCTL_CONTROLLER__TICK_INTERVAL_SECONDS=1
        - CANARYCTL_ROUTING__BACKEND=file
        - CANARYCTL_PERSISTENCE__STATE_DIR=/var/lib/canaryctl
        """
        for env_key, env_value in os.environ.items():
            if not env_key.startswith(ENV_PREFIX) or env_key in _RESERVED_ENV:
                continue

            config_key = env_key[len(ENV_PREFIX):].lower()
            parts = [p for p in config_key.split("__") if p]
            if not parts:
                continue

            target = config
            path_segments: list[str] = []
            for part in parts[:-1]:
                path_segments.append(part)
                existing = target.get(part)
                if existing is None:
                    target[part] = {}
                    target = target[part]
                elif isinstance(existing, dict):
                    target = existing
                else:
                    raise ConfigurationError(
                        "Environment override target is not a mapping; refusing to overwrite "
                        f"'{'.'.join(path_segments)}' (existing type: {type(existing).__name__})",
                        code=ErrorCode.E802_CONFIG_VALIDATION_FAILED,
                    )

            target[parts[-1]] = ConfigLoader._parse_env_value(env_value)
            logger.debug("Config override from %s", env_key)

        return config

    @staticmethod
    def _parse_env_value(value: str) -> Any:
        """Parse an environment value to bool, int, float, None or str."""
        lowered = value.lower()
        if lowered in ("true", "yes", "on"):
            return True
        if lowered in ("false", "no", "off"):
            return False
        if lowered in ("null", "none", ""):
            return None

        try:
            return int(value)
        except ValueError:
            pass

        try:
            return float(value)
        except ValueError:
            pass

        return value

    @staticmethod
    def load_settings(path: str | Path | None = None) -> ControllerSettings:
        """Load validated settings, falling back to defaults if the file is absent.

        Environment overrides apply in both cases.

        Raises:
            ConfigurationError: If the file or the overrides are invalid
        """
        if path is None or not Path(path).is_file():
            if path is not None:
                logger.warning("Config file %s not found, using built-in defaults", path)
            config = ConfigLoader._apply_env_overrides(get_default_settings().model_dump())
        else:
            config = ConfigLoader.load_config(path, validate=False)

        try:
            return validate_config_dict(config)
        except ValueError as e:
            raise ConfigurationError(str(e), code=ErrorCode.E802_CONFIG_VALIDATION_FAILED) from e
