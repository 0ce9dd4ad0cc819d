"""Test config loading, env overrides and startup validation."""

from pathlib import Path

import pytest
import yaml

from discord_bridge.config import Config, _deep_update, load_and_validate, load_config
from discord_bridge.core.errors import ConfigError

VALID = {
    "bridge": {"domain": "example.org", "homeserverUrl": "http://localhost:8008", "port": 9005},
    "database": {"filename": "discord.db"},
}


def _write(tmp_path: Path, data: object, name: str = "config.yaml") -> Path:
    path = tmp_path / name
    path.write_text(yaml.safe_dump(data))
    return path


class TestDeepUpdate:
    """Test deep dictionary merge."""

    def test_deep_update_nested(self):
        # Arrange
        base = {"a": {"x": 1, "y": 2}, "b": 3}
        override = {"a": {"y": 99, "z": 100}}

        # Act
        result = _deep_update(base, override)

        # Assert
        assert result == {"a": {"x": 1, "y": 99, "z": 100}, "b": 3}

    def test_deep_update_preserves_base(self):
        # Arrange
        base = {"a": 1}

        # Act
        _deep_update(base, {"b": 2})

        # Assert
        assert base == {"a": 1}


class TestLoadConfig:
    def test_load_config_from_yaml(self, tmp_path):
        # Arrange
        path = _write(tmp_path, VALID)

        # Act
        data = load_config(path)

        # Assert
        assert data["bridge"]["domain"] == "example.org"

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    @pytest.mark.parametrize("content", ["just a string\n", "- a\n- b\n", "42\n", ""])
    def test_non_mapping_document_is_rejected(self, tmp_path, content):
        # Arrange
        path = tmp_path / "config.yaml"
        path.write_text(content)

        # Act / Assert
        with pytest.raises(ConfigError) as exc_info:
            load_config(path)
        assert exc_info.value.code == ConfigError.NOT_AN_OBJECT


class TestConfigDefaults:
    def test_defaults_applied(self):
        config = Config()
        assert config.bind_address == "0.0.0.0"
        assert config.metrics_enabled is False
        assert config.bridge_port is None
        assert config.database["filename"] == "discord.db"

    def test_file_values_override_defaults(self):
        config = Config({"bridge": {"bindAddress": "127.0.0.1"}, "metrics": {"enable": True}})
        assert config.bind_address == "127.0.0.1"
        assert config.metrics_enabled is True
        assert config.metrics["port"] == 9001

    def test_get_dot_path(self):
        config = Config(VALID)
        assert config.get("bridge.domain") == "example.org"
        assert config.get("bridge.missing", "x") == "x"


class TestResolvePort:
    def test_neither_cli_nor_config_port_fails(self):
        config = Config({"bridge": {"domain": "example.org"}})
        with pytest.raises(ConfigError) as exc_info:
            config.resolve_port(None)
        assert exc_info.value.code == ConfigError.MISSING_PORT

    def test_config_port_alone(self):
        assert Config(VALID).resolve_port(None) == 9005

    def test_cli_port_alone(self):
        assert Config({"bridge": {}}).resolve_port(9100) == 9100

    def test_cli_port_wins_over_config(self):
        assert Config(VALID).resolve_port(9100) == 9100


class TestLegacyConfig:
    @pytest.mark.parametrize("key", ["roomStorePath", "userStorePath"])
    def test_either_legacy_key_fails(self, key):
        # Arrange
        config = Config({**VALID, "database": {"filename": "discord.db", key: "room-store.db"}})

        # Act / Assert
        with pytest.raises(ConfigError) as exc_info:
            config.check_legacy()
        assert exc_info.value.code == ConfigError.LEGACY_CONFIG

    def test_legacy_key_detected_regardless_of_ordering(self, tmp_path):
        # Arrange: legacy key first, before every other section
        path = tmp_path / "config.yaml"
        path.write_text(
            "database:\n"
            "  userStorePath: user-store.db\n"
            "  filename: discord.db\n"
            "bridge:\n"
            "  domain: example.org\n"
            "  homeserverUrl: http://localhost:8008\n"
            "  port: 9005\n"
        )

        # Act / Assert
        with pytest.raises(ConfigError) as exc_info:
            load_and_validate(path, env={})
        assert exc_info.value.code == ConfigError.LEGACY_CONFIG

    def test_legacy_key_without_value_fails(self, tmp_path):
        # Arrange
        path = tmp_path / "config.yaml"
        path.write_text("bridge:\n  port: 9005\ndatabase:\n  roomStorePath:\n")

        # Act / Assert
        with pytest.raises(ConfigError) as exc_info:
            load_and_validate(path, env={})
        assert exc_info.value.code == ConfigError.LEGACY_CONFIG

    def test_clean_config_passes(self):
        Config(VALID).check_legacy()


class TestEnvironmentOverrides:
    def test_override_existing_key_case_insensitively(self):
        # Arrange
        config = Config(VALID)

        # Act
        config.apply_environment_overrides({"APPSERVICE_DISCORD_BRIDGE__HOMESERVERURL": "https://matrix.example.org"})

        # Assert
        assert config.homeserver_url == "https://matrix.example.org"

    def test_values_are_parsed_as_scalars(self):
        config = Config(VALID)
        config.apply_environment_overrides(
            {"APPSERVICE_DISCORD_BRIDGE__PORT": "9100", "APPSERVICE_DISCORD_METRICS__ENABLE": "true"}
        )
        assert config.bridge_port == 9100
        assert config.metrics_enabled is True

    def test_unrelated_variables_ignored(self):
        config = Config(VALID)
        config.apply_environment_overrides({"PATH": "/usr/bin", "BRIDGE__PORT": "1"})
        assert config.bridge_port == 9005

    def test_new_sections_created(self):
        config = Config(VALID)
        config.apply_environment_overrides({"APPSERVICE_DISCORD_AUTH__BOTTOKEN": "abc"})
        assert config.get("auth.botToken") == "abc"


class TestLoadAndValidate:
    def test_valid_config_returns_port(self, tmp_path):
        config, port = load_and_validate(_write(tmp_path, VALID), env={})
        assert port == 9005
        assert config.domain == "example.org"

    def test_env_supplies_missing_port(self, tmp_path):
        # Arrange
        data = {"bridge": {"domain": "example.org"}}

        # Act
        _, port = load_and_validate(_write(tmp_path, data), env={"APPSERVICE_DISCORD_BRIDGE__PORT": "9200"})

        # Assert
        assert port == 9200

    def test_missing_port_reported_before_legacy(self, tmp_path):
        data = {"bridge": {}, "database": {"roomStorePath": "x"}}
        with pytest.raises(ConfigError) as exc_info:
            load_and_validate(_write(tmp_path, data), env={})
        assert exc_info.value.code == ConfigError.MISSING_PORT

    def test_legacy_key_from_env_is_rejected(self, tmp_path):
        with pytest.raises(ConfigError) as exc_info:
            load_and_validate(
                _write(tmp_path, VALID),
                env={"APPSERVICE_DISCORD_DATABASE__ROOMSTOREPATH": "room-store.db"},
            )
        assert exc_info.value.code == ConfigError.LEGACY_CONFIG
