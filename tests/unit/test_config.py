"""Unit tests for layered configuration loading."""

import json
import logging

import pytest
from pydantic import ValidationError

from vaultkeeper.config import Config, env_overrides, load_config
from vaultkeeper.core.logging_config import level_for_env


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "vaultkeeper.json"
    path.write_text(json.dumps({"server_port": 9100, "db_path": "/srv/vault.db", "env": "dev", "colour": "blue"}))
    return path


def test_defaults():
    config = load_config(environ={})
    assert config.server_host == "localhost"
    assert config.server_port == 8099
    assert config.db_path == "./vaultkeeper.db"
    assert config.env == "local"
    assert config.token_ttl == 3600
    assert config.advertise is False


def test_file_values(config_file):
    config = load_config(config_file, environ={})
    assert config.server_port == 9100
    assert config.db_path == "/srv/vault.db"


def test_env_beats_file(config_file):
    config = load_config(config_file, environ={"VAULTKEEPER_SERVER_PORT": "9200", "VAULTKEEPER_ADVERTISE": "true"})
    assert config.server_port == 9200
    assert config.advertise is True
    assert config.db_path == "/srv/vault.db"


def test_flags_beat_env(config_file):
    config = load_config(
        config_file,
        overrides={"server_port": 9300, "db_path": None},
        environ={"VAULTKEEPER_SERVER_PORT": "9200"},
    )
    assert config.server_port == 9300
    # None means "flag not given"
    assert config.db_path == "/srv/vault.db"


def test_config_path_from_env(config_file):
    config = load_config(environ={"VAULTKEEPER_CONFIG": str(config_file)})
    assert config.server_port == 9100


def test_env_overrides_ignores_unknown_and_empty():
    assert env_overrides({"VAULTKEEPER_ENV": "prod", "VAULTKEEPER_NOPE": "x", "VAULTKEEPER_DB_PATH": ""}) == {"env": "prod"}


def test_from_env():
    assert Config.from_env({"VAULTKEEPER_JWT_SECRET": "s" * 32}).jwt_secret == "s" * 32


def test_from_file(config_file):
    assert Config.from_file(config_file).env == "dev"


@pytest.mark.parametrize("values", [{"env": "staging"}, {"server_port": 0}, {"server_port": 70000}, {"token_ttl": 0}])
def test_invalid_values(values):
    with pytest.raises(ValidationError):
        Config(**values)


def test_env_is_normalised():
    assert Config(env="PROD").env == "prod"


def test_explicit_fields_are_tracked():
    assert "server_host" not in load_config(environ={}).model_fields_set
    assert "server_host" in load_config(overrides={"server_host": "vault.lan"}, environ={}).model_fields_set


def test_non_object_file(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text("[1, 2]")
    with pytest.raises(ValueError):
        load_config(path, environ={})


@pytest.mark.parametrize(
    "env, level",
    [("local", logging.DEBUG), ("dev", logging.DEBUG), ("prod", logging.INFO), ("weird", logging.INFO)],
)
def test_log_levels(env, level):
    assert level_for_env(env) == level


def test_configure_logging_uses_env_level():
    from unittest.mock import patch

    from vaultkeeper.core.logging_config import configure_logging

    with patch("vaultkeeper.core.logging_config.logging.basicConfig") as basic:
        configure_logging("prod")
    assert basic.call_args.kwargs["level"] == logging.INFO
