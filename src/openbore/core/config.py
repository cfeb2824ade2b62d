"""Configuration types with environment variable support.

Server identity can come from the environment (OPEN_BORE_SERVER_ADDR,
OPEN_BORE_SERVER_PORT, OPEN_BORE_TOKEN, also read from a .env file) or from a
config file with a [common] section. The environment wins when it is complete.

Tuning knobs live in TunnelSettings and use the same OPEN_BORE_ prefix.
Example: OPEN_BORE_RECONNECT_DELAY=10 waits ten seconds between retries.
"""

from __future__ import annotations

import configparser
import tomllib
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from openbore.core.exceptions import ConfigError

DEFAULT_CONFIG_PATH = Path("open-bore.ini")
DEFAULT_SERVER_PORT = 7000


class ServerConfig(BaseModel):
    """Identity of the relay server."""

    model_config = ConfigDict(frozen=True)

    server_addr: str = Field(min_length=1)
    server_port: int = Field(default=DEFAULT_SERVER_PORT, ge=1, le=65535)
    token: str = Field(repr=False)


class ClientConfig(BaseModel):
    """Identity of the locally exposed service."""

    model_config = ConfigDict(frozen=True)

    subdomain: str = Field(min_length=1)
    local_port: int = Field(default=3000, ge=1, le=65535)


def _env_fields(error: ValidationError) -> str:
    return ", ".join(f"OPEN_BORE_{str(err['loc'][0]).upper()}" for err in error.errors())


class ServerSettings(BaseSettings):
    """Server identity as read from OPEN_BORE_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="OPEN_BORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    server_addr: str | None = None
    server_port: int = DEFAULT_SERVER_PORT
    token: str | None = Field(default=None, repr=False)

    def to_server_config(self) -> ServerConfig | None:
        """Return a ServerConfig if both address and token are set."""
        if not self.server_addr or not self.token:
            return None
        try:
            return ServerConfig(
                server_addr=self.server_addr,
                server_port=self.server_port,
                token=self.token,
            )
        except ValidationError as e:
            raise ConfigError(
                f"Invalid environment configuration: {_env_fields(e)}"
            ) from e


class TunnelSettings(BaseSettings):
    """Timing and buffer settings for the tunnel engine.

    All settings can be overridden via environment variables:
    - OPEN_BORE_RECONNECT_DELAY: Fixed delay between reconnect attempts (seconds)
    - OPEN_BORE_SPEED_INTERVAL: Interval between speed events (seconds)
    - OPEN_BORE_SPEED_WINDOW: Rolling window for throughput (seconds)
    - OPEN_BORE_CONNECT_TIMEOUT: TCP connect timeout (seconds)
    - OPEN_BORE_READ_CHUNK_SIZE: Max bytes per relay read
    """

    model_config = SettingsConfigDict(
        env_prefix="OPEN_BORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    reconnect_delay: float = Field(
        default=5.0,
        gt=0.0,
        description="Fixed delay before a reconnect attempt (seconds).",
    )
    speed_interval: float = Field(
        default=0.1,
        gt=0.0,
        description="Interval between speed events (seconds).",
    )
    speed_window: float = Field(
        default=1.0,
        gt=0.0,
        description="Rolling window used to compute throughput (seconds).",
    )
    connect_timeout: float = Field(
        default=30.0,
        gt=0.0,
        description="Timeout for opening relay and local connections (seconds).",
    )
    read_chunk_size: int = Field(
        default=65536,
        ge=1,
        description="Maximum bytes read from a socket in one call.",
    )


def load_config_from_file(path: str | Path) -> dict[str, Any]:
    """Load configuration from an INI, TOML or YAML file.

    Args:
        path: Path to the configuration file (.ini, .cfg, .toml, .yaml or .yml)

    Returns:
        Configuration dictionary keyed by section name

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ConfigError: If the file can't be read or parsed
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Failed to read config file {path}: {e}") from e

    try:
        if path.suffix in (".ini", ".cfg", ""):
            parser = configparser.ConfigParser(interpolation=None)
            parser.read_string(content, source=str(path))
            return {section: dict(parser.items(section)) for section in parser.sections()}
        elif path.suffix == ".toml":
            return tomllib.loads(content)
        elif path.suffix in (".yaml", ".yml"):
            return yaml.safe_load(content) or {}
        else:
            raise ConfigError(f"Unsupported config format: {path.suffix}")
    except configparser.Error as e:
        raise ConfigError(f"Invalid INI in {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e


def server_config_from_mapping(data: dict[str, Any], source: str = "config") -> ServerConfig:
    """Build a ServerConfig from the [common] section of a loaded config."""
    common = data.get("common") if isinstance(data, dict) else None
    if not isinstance(common, dict):
        raise ConfigError(f"Missing [common] section in {source}")

    values: dict[str, Any] = {
        "server_addr": common.get("server_addr"),
        "token": common.get("token"),
    }
    if common.get("server_port") not in (None, ""):
        values["server_port"] = common["server_port"]

    try:
        return ServerConfig.model_validate(values)
    except ValidationError as e:
        fields = ", ".join(str(err["loc"][0]) for err in e.errors())
        raise ConfigError(f"Invalid server settings in {source}: {fields}") from e


def load_server_config(path: str | Path) -> ServerConfig:
    """Load server identity from a config file, ignoring the environment."""
    try:
        raw = load_config_from_file(path)
    except FileNotFoundError as e:
        raise ConfigError(f"Failed to load server config from {path}: {e}") from e
    return server_config_from_mapping(raw, source=str(path))


def load_server_settings() -> ServerSettings:
    """Read OPEN_BORE_* server settings from the environment."""
    try:
        return ServerSettings()
    except ValidationError as e:
        raise ConfigError(f"Invalid environment configuration: {_env_fields(e)}") from e


def resolve_server_config(path: str | Path | None = None) -> ServerConfig:
    """Resolve server identity, environment first, then the config file.

    A missing file is only fatal when the environment is incomplete too. Any
    other failure to load the file raises ConfigError.
    """
    from_env = load_server_settings().to_server_config()
    if from_env is not None:
        return from_env

    path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    try:
        raw = load_config_from_file(path)
    except FileNotFoundError:
        raise ConfigError(
            "No server configuration found. Set OPEN_BORE_SERVER_ADDR and "
            f"OPEN_BORE_TOKEN or create {path}"
        ) from None
    return server_config_from_mapping(raw, source=str(path))


_settings: TunnelSettings | None = None


def get_settings() -> TunnelSettings:
    """Get the cached TunnelSettings instance.

    To reload settings (e.g., in tests), call clear_settings() first.
    """
    global _settings
    if _settings is None:
        try:
            _settings = TunnelSettings()
        except ValidationError as e:
            raise ConfigError(f"Invalid tunnel settings: {_env_fields(e)}") from e
    return _settings


def clear_settings() -> None:
    """Clear the cached settings so the next get_settings() rereads the environment."""
    global _settings
    _settings = None
