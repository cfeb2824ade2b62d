"""Tests for configuration loading from environment variables and files."""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from openbore.core.config import (
    ClientConfig,
    ServerConfig,
    ServerSettings,
    TunnelSettings,
    clear_settings,
    get_settings,
    load_config_from_file,
    load_server_config,
    resolve_server_config,
)
from openbore.core.exceptions import ConfigError

INI = """\
[common]
server_addr = relay.example.com
server_port = 7001
token = file-token
"""

CLEAN_ENV = {
    "OPEN_BORE_SERVER_ADDR": "",
    "OPEN_BORE_SERVER_PORT": "7000",
    "OPEN_BORE_TOKEN": "",
}


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    """Run in an empty directory so no stray open-bore.ini or .env is found."""
    monkeypatch.chdir(tmp_path)
    return tmp_path


class TestModels:
    """Test ServerConfig and ClientConfig validation."""

    def test_server_config_defaults(self) -> None:
        config = ServerConfig(server_addr="relay", token="t")
        assert config.server_port == 7000

    def test_server_config_is_immutable(self) -> None:
        config = ServerConfig(server_addr="relay", token="t")
        with pytest.raises(ValidationError):
            config.server_addr = "other"

    def test_server_port_range(self) -> None:
        with pytest.raises(ValidationError):
            ServerConfig(server_addr="relay", server_port=70000, token="t")

    def test_token_hidden_from_repr(self) -> None:
        assert "hunter2" not in repr(ServerConfig(server_addr="relay", token="hunter2"))

    def test_client_config(self) -> None:
        config = ClientConfig(subdomain="myapp")
        assert config.local_port == 3000

    def test_client_config_requires_subdomain(self) -> None:
        with pytest.raises(ValidationError):
            ClientConfig(subdomain="", local_port=3000)


class TestServerSettings:
    """Test OPEN_BORE_* environment variables."""

    def test_env_complete(self, workdir) -> None:
        env = {
            "OPEN_BORE_SERVER_ADDR": "env.example.com",
            "OPEN_BORE_SERVER_PORT": "7100",
            "OPEN_BORE_TOKEN": "env-token",
        }
        with patch.dict(os.environ, env):
            config = ServerSettings().to_server_config()
        assert config == ServerConfig(server_addr="env.example.com", server_port=7100, token="env-token")

    def test_env_default_port(self, workdir) -> None:
        env = {**CLEAN_ENV, "OPEN_BORE_SERVER_ADDR": "env.example.com", "OPEN_BORE_TOKEN": "t"}
        with patch.dict(os.environ, env):
            config = ServerSettings().to_server_config()
        assert config is not None
        assert config.server_port == 7000

    def test_env_incomplete(self, workdir) -> None:
        env = {**CLEAN_ENV, "OPEN_BORE_SERVER_ADDR": "env.example.com"}
        with patch.dict(os.environ, env):
            assert ServerSettings().to_server_config() is None


class TestLoadConfigFromFile:
    """Test load_config_from_file."""

    def test_ini(self, tmp_path) -> None:
        path = tmp_path / "open-bore.ini"
        path.write_text(INI)
        data = load_config_from_file(path)
        assert data["common"]["server_addr"] == "relay.example.com"

    def test_toml(self, tmp_path) -> None:
        path = tmp_path / "relay.toml"
        path.write_text('[common]\nserver_addr = "relay"\nserver_port = 7002\ntoken = "t"\n')
        config = load_server_config(path)
        assert config.server_port == 7002

    def test_yaml(self, tmp_path) -> None:
        path = tmp_path / "relay.yaml"
        path.write_text("common:\n  server_addr: relay\n  token: t\n")
        config = load_server_config(path)
        assert config.server_addr == "relay"
        assert config.server_port == 7000

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config_from_file(tmp_path / "nope.ini")

    def test_invalid_ini(self, tmp_path) -> None:
        path = tmp_path / "bad.ini"
        path.write_text("server_addr = no section header\n")
        with pytest.raises(ConfigError, match="Invalid INI"):
            load_config_from_file(path)

    def test_unsupported_suffix(self, tmp_path) -> None:
        path = tmp_path / "relay.json"
        path.write_text("{}")
        with pytest.raises(ConfigError, match="Unsupported"):
            load_config_from_file(path)


class TestLoadServerConfig:
    """Test load_server_config and the [common] section."""

    def test_ini_values(self, tmp_path) -> None:
        path = tmp_path / "open-bore.ini"
        path.write_text(INI)
        config = load_server_config(path)
        assert config == ServerConfig(server_addr="relay.example.com", server_port=7001, token="file-token")

    def test_missing_common_section(self, tmp_path) -> None:
        path = tmp_path / "open-bore.ini"
        path.write_text("[other]\nx = 1\n")
        with pytest.raises(ConfigError, match=r"\[common\]"):
            load_server_config(path)

    def test_missing_token(self, tmp_path) -> None:
        path = tmp_path / "open-bore.ini"
        path.write_text("[common]\nserver_addr = relay\n")
        with pytest.raises(ConfigError, match="token"):
            load_server_config(path)

    def test_bad_port(self, tmp_path) -> None:
        path = tmp_path / "open-bore.ini"
        path.write_text("[common]\nserver_addr = relay\nserver_port = http\ntoken = t\n")
        with pytest.raises(ConfigError, match="server_port"):
            load_server_config(path)

    def test_explicit_missing_file_is_fatal(self, tmp_path) -> None:
        with pytest.raises(ConfigError):
            load_server_config(tmp_path / "nope.ini")


class TestResolveServerConfig:
    """Environment first, then ./open-bore.ini."""

    def test_env_wins_over_file(self, workdir) -> None:
        (workdir / "open-bore.ini").write_text(INI)
        env = {
            "OPEN_BORE_SERVER_ADDR": "env.example.com",
            "OPEN_BORE_SERVER_PORT": "7000",
            "OPEN_BORE_TOKEN": "env-token",
        }
        with patch.dict(os.environ, env):
            config = resolve_server_config()
        assert config.server_addr == "env.example.com"
        assert config.token == "env-token"

    def test_file_used_when_env_incomplete(self, workdir) -> None:
        (workdir / "open-bore.ini").write_text(INI)
        with patch.dict(os.environ, {**CLEAN_ENV, "OPEN_BORE_TOKEN": "only-token"}):
            config = resolve_server_config()
        assert config.server_addr == "relay.example.com"
        assert config.token == "file-token"

    def test_env_only(self, workdir) -> None:
        env = {**CLEAN_ENV, "OPEN_BORE_SERVER_ADDR": "env.example.com", "OPEN_BORE_TOKEN": "t"}
        with patch.dict(os.environ, env):
            config = resolve_server_config()
        assert config.server_addr == "env.example.com"

    def test_nothing_configured(self, workdir) -> None:
        with patch.dict(os.environ, CLEAN_ENV):
            with pytest.raises(ConfigError, match="No server configuration"):
                resolve_server_config()

    def test_broken_file_is_fatal(self, workdir) -> None:
        (workdir / "open-bore.ini").write_text("garbage without section\n")
        with patch.dict(os.environ, CLEAN_ENV):
            with pytest.raises(ConfigError):
                resolve_server_config()

    def test_custom_path(self, workdir) -> None:
        path = workdir / "relay.ini"
        path.write_text(INI)
        with patch.dict(os.environ, CLEAN_ENV):
            config = resolve_server_config(path)
        assert config.server_port == 7001

    def test_invalid_env_port(self, workdir) -> None:
        with patch.dict(os.environ, {**CLEAN_ENV, "OPEN_BORE_SERVER_PORT": "invalid"}):
            with pytest.raises(ConfigError, match="OPEN_BORE_SERVER_PORT"):
                resolve_server_config()

    @pytest.mark.parametrize("port", ["70000", "0"])
    def test_out_of_range_env_port(self, workdir, port) -> None:
        env = {
            "OPEN_BORE_SERVER_ADDR": "env.example.com",
            "OPEN_BORE_SERVER_PORT": port,
            "OPEN_BORE_TOKEN": "t",
        }
        with patch.dict(os.environ, env):
            with pytest.raises(ConfigError, match="OPEN_BORE_SERVER_PORT"):
                resolve_server_config()


class TestTunnelSettings:
    """Test TunnelSettings settings."""

    def test_default_values(self, workdir) -> None:
        config = TunnelSettings()
        assert config.reconnect_delay == 5.0
        assert config.speed_interval == 0.1
        assert config.speed_window == 1.0
        assert config.connect_timeout == 30.0
        assert config.read_chunk_size == 65536

    def test_env_override_reconnect_delay(self, workdir) -> None:
        with patch.dict(os.environ, {"OPEN_BORE_RECONNECT_DELAY": "10"}):
            config = TunnelSettings()
            assert config.reconnect_delay == 10.0

    def test_non_positive_delay_rejected(self, workdir) -> None:
        with patch.dict(os.environ, {"OPEN_BORE_RECONNECT_DELAY": "0"}):
            with pytest.raises(ValidationError):
                TunnelSettings()


class TestGetSettings:
    """Test get_settings caching."""

    def test_caches_instance(self) -> None:
        clear_settings()
        assert get_settings() is get_settings()

    def test_clear_resets_cache(self) -> None:
        clear_settings()
        first = get_settings()
        clear_settings()
        assert get_settings() is not first
        clear_settings()

    def test_env_override(self, workdir) -> None:
        with patch.dict(os.environ, {"OPEN_BORE_SPEED_WINDOW": "5.0"}):
            clear_settings()
            assert get_settings().speed_window == 5.0
        clear_settings()

    def test_invalid_env_is_config_error(self, workdir) -> None:
        with patch.dict(os.environ, {"OPEN_BORE_RECONNECT_DELAY": "-1"}):
            clear_settings()
            with pytest.raises(ConfigError, match="OPEN_BORE_RECONNECT_DELAY"):
                get_settings()
        clear_settings()
