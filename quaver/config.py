"""
Quaver Configuration System.

Priority order (highest to lowest):
1. Command-line arguments
2. Environment variables
3. Configuration file (YAML)
4. Default values
"""

import logging
import os
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlparse

import yaml

from quaver.backends.types import MAX_SPEED, MIN_SPEED

logger = logging.getLogger(__name__)

# Valid backend types
VALID_BACKENDS = {"mpv", "embedded"}

# Valid log levels
VALID_LOG_LEVELS = {"debug", "info", "warning", "error"}

# Environment variable mappings
ENV_MAPPINGS = {
    # Player
    "QUAVER_BACKEND": ("player", "backend"),
    "QUAVER_AUTOPLAY": ("player", "autoplay"),
    "QUAVER_RESUME": ("player", "resume"),
    "QUAVER_QUEUE_PATH": ("player", "queue_path"),
    # Backends
    "QUAVER_MPV_PATH": ("mpv", "path"),
    "QUAVER_EMBEDDED_DEVICE": ("embedded", "device"),
    # Remote
    "QUAVER_REMOTE_HOST": ("remote", "host"),
    "QUAVER_REMOTE_PORT": ("remote", "port"),
    "QUAVER_REMOTE_USERNAME": ("remote", "username"),
    "QUAVER_REMOTE_PASSWORD": ("remote", "password"),
    # Media server
    "QUAVER_SERVER_URL": ("server", "url"),
    "QUAVER_SERVER_USERNAME": ("server", "username"),
    "QUAVER_SERVER_PASSWORD": ("server", "password"),
    # Logging
    "QUAVER_LOG_LEVEL": ("logging", "level"),
}

INT_ENV_VARS = {"QUAVER_REMOTE_PORT"}
BOOL_ENV_VARS = {"QUAVER_AUTOPLAY", "QUAVER_RESUME"}


class ConfigError(Exception):
    """Configuration error."""

    pass


@dataclass
class PlayerConfig:
    """Playback configuration."""

    backend: str = "mpv"
    autoplay: bool = True
    resume: bool = False
    queue_path: str = ""  # Defaults to the user's state directory
    volume: int = 50
    speed: float = 1.0


@dataclass
class MpvConfig:
    """mpv backend configuration."""

    path: str = "mpv"
    socket_path: str = ""  # Generated when empty
    extra_args: list[str] = field(default_factory=list)
    tick_interval: float = 1.0


@dataclass
class EmbeddedConfig:
    """Embedded backend configuration."""

    device: str = "default"
    buffer_size: int = 2048


@dataclass
class RemoteConfig:
    """Remote control server configuration."""

    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 4333
    username: str = ""
    password: str = ""
    auth_timeout: float = 5.0
    outbound_queue_size: int = 64
    exclusive: bool = False

    @property
    def requires_auth(self) -> bool:
        return bool(self.username or self.password)


@dataclass
class ServerConfig:
    """Media server configuration."""

    url: str = ""
    username: str = ""
    password: str = ""
    client_name: str = "quaver"


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "info"


@dataclass
class Config:
    """Complete Quaver configuration."""

    player: PlayerConfig = field(default_factory=PlayerConfig)
    mpv: MpvConfig = field(default_factory=MpvConfig)
    embedded: EmbeddedConfig = field(default_factory=EmbeddedConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def validate_port(port: int) -> bool:
    """Validate port number."""
    return isinstance(port, int) and 1 <= port <= 65535


def validate_config(config: Config) -> None:
    """
    Validate configuration.

    Raises:
        ConfigError: If configuration is invalid
    """
    errors = []

    # Player
    if config.player.backend not in VALID_BACKENDS:
        errors.append(
            f"Invalid backend: {config.player.backend}. Valid values: {sorted(VALID_BACKENDS)}"
        )
    if not 0 <= config.player.volume <= 100:
        errors.append(f"Invalid volume: {config.player.volume} (0-100)")
    if not MIN_SPEED <= config.player.speed <= MAX_SPEED:
        errors.append(f"Invalid speed: {config.player.speed} ({MIN_SPEED}-{MAX_SPEED})")

    # Backends
    if config.mpv.tick_interval <= 0:
        errors.append(f"Invalid mpv tick_interval: {config.mpv.tick_interval}")
    if config.embedded.buffer_size <= 0:
        errors.append(f"Invalid embedded buffer_size: {config.embedded.buffer_size}")

    # Remote
    if config.remote.enabled:
        if not validate_port(config.remote.port):
            errors.append(f"Invalid remote port: {config.remote.port}")
        if config.remote.requires_auth and not (config.remote.username and config.remote.password):
            errors.append("Remote username and password must be set together")
        if config.remote.auth_timeout <= 0:
            errors.append(f"Invalid remote auth_timeout: {config.remote.auth_timeout}")
        if config.remote.outbound_queue_size < 1:
            errors.append(f"Invalid remote outbound_queue_size: {config.remote.outbound_queue_size}")

    # Media server
    if config.server.url:
        parsed = urlparse(config.server.url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            errors.append(f"Invalid server URL: {config.server.url}")
        if not config.server.username:
            errors.append("Server username is required when a server URL is set")

    # Logging
    if config.logging.level.lower() not in VALID_LOG_LEVELS:
        errors.append(
            f"Invalid log level: {config.logging.level}. "
            f"Valid values: {sorted(VALID_LOG_LEVELS)}"
        )

    if errors:
        raise ConfigError("Configuration validation failed:\n  - " + "\n  - ".join(errors))


def load_yaml_config(path: Path) -> dict:
    """
    Load configuration from YAML file.

    Raises:
        ConfigError: If file cannot be read or parsed
    """
    if not path.exists():
        logger.debug(f"Config file not found: {path}")
        return {}

    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing YAML config: {e}")
    except OSError as e:
        raise ConfigError(f"Error reading config file: {e}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return data


def _set_nested(d: dict, path: tuple, value: Any) -> None:
    """Set a nested dictionary value using a path tuple."""
    for key in path[:-1]:
        d = d.setdefault(key, {})
    d[path[-1]] = value


def load_env_config() -> dict:
    """Load configuration from environment variables."""
    result: dict = {}

    for env_var, path in ENV_MAPPINGS.items():
        value: Any = os.environ.get(env_var)
        if value is None:
            continue
        if env_var in INT_ENV_VARS:
            try:
                value = int(value)
            except ValueError:
                logger.warning(f"Invalid integer for {env_var}: {value}")
                continue
        elif env_var in BOOL_ENV_VARS:
            value = value.lower() in ("true", "1", "yes", "on")
        _set_nested(result, path, value)

    return result


def _deep_merge(base: dict, override: dict) -> None:
    """Recursively merge override into base."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


def merge_configs(*configs: dict) -> dict:
    """
    Deep merge multiple configuration dictionaries.
    Later configs override earlier ones.
    """
    result: dict = {}
    for config in configs:
        _deep_merge(result, config)
    return result


def dict_to_config(d: dict) -> Config:
    """
    Convert a dictionary to Config dataclass.

    Unknown sections and keys are ignored with a warning.

    Raises:
        ConfigError: If a value has the wrong type
    """
    config = Config()

    for section_field in fields(config):
        values = d.get(section_field.name)
        if values is None:
            continue
        section = getattr(config, section_field.name)
        if not isinstance(values, dict):
            raise ConfigError(f"Config section '{section_field.name}' must be a mapping")

        known = {f.name: f for f in fields(section)}
        for key, value in values.items():
            if key not in known:
                logger.warning(f"Ignoring unknown config key: {section_field.name}.{key}")
                continue
            setattr(section, key, _coerce(f"{section_field.name}.{key}", getattr(section, key), value))

    for key in d:
        if key not in {f.name for f in fields(config)}:
            logger.warning(f"Ignoring unknown config section: {key}")

    return config


def _coerce(name: str, default: Any, value: Any) -> Any:
    """Convert a raw value to the type of the field's default."""
    if is_dataclass(default):
        raise ConfigError(f"{name} cannot be set directly")
    try:
        if isinstance(default, bool):
            if isinstance(value, str):
                return value.lower() in ("true", "1", "yes", "on")
            return bool(value)
        if isinstance(default, int):
            return int(value)
        if isinstance(default, float):
            return float(value)
        if isinstance(default, list):
            if isinstance(value, str):
                return value.split()
            return [str(v) for v in value]
        if isinstance(default, str):
            return "" if value is None else str(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid value for {name}: {value!r}")
    return value


def load_config(
    config_path: Optional[Path] = None,
    cli_args: Optional[dict] = None,
) -> Config:
    """
    Load configuration from all sources.

    Args:
        config_path: Path to YAML config file
        cli_args: Dictionary of CLI arguments

    Returns:
        Merged Config object

    Raises:
        ConfigError: If configuration is invalid
    """
    configs = []

    if config_path:
        file_config = load_yaml_config(config_path)
        if file_config:
            configs.append(file_config)
            logger.debug(f"Loaded config from {config_path}")

    env_config = load_env_config()
    if env_config:
        configs.append(env_config)
        logger.debug("Loaded config from environment variables")

    if cli_args:
        configs.append(cli_args)
        logger.debug("Loaded config from CLI arguments")

    merged = merge_configs(*configs) if configs else {}
    config = dict_to_config(merged)
    validate_config(config)
    return config
