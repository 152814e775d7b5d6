"""
VaultKeeper configuration: validated settings shared by server and client.

Values are layered, highest first:
    command-line flags > VAULTKEEPER_* environment variables > JSON file > defaults

Security Note:
    Never log the signing secret. Only log host, port, env and db path.
"""
import json
import logging
import os
from pathlib import Path
from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

ENV_PREFIX = "VAULTKEEPER_"
ENVIRONMENTS = ("local", "dev", "prod")


class Config(BaseModel):
    """Validated VaultKeeper configuration."""

    server_host: str = Field(default="localhost")
    server_port: int = Field(default=8099, ge=1, le=65535)
    db_path: str = Field(default="./vaultkeeper.db")
    jwt_secret: str = Field(default="")
    env: str = Field(default="local")
    token_ttl: int = Field(default=3600, ge=1)
    advertise: bool = Field(default=False)

    @field_validator("env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate the deployment environment name."""
        v = v.lower()
        if v not in ENVIRONMENTS:
            raise ValueError(f"Unsupported env: {v} (expected one of {', '.join(ENVIRONMENTS)})")
        return v

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Config":
        """Create a Config from VAULTKEEPER_* environment variables alone."""
        return cls(**env_overrides(environ))

    @classmethod
    def from_file(cls, path) -> "Config":
        """Create a Config from a JSON file."""
        return cls(**read_config_file(path))


def env_overrides(environ: Optional[Mapping[str, str]] = None) -> dict[str, str]:
    """Collect VAULTKEEPER_<FIELD> variables that name a known field.

    Values stay strings; pydantic coerces them on construction.
    """
    environ = os.environ if environ is None else environ
    values = {}
    for name in Config.model_fields:
        raw = environ.get(ENV_PREFIX + name.upper())
        if raw is not None and raw != "":
            values[name] = raw
    return values


def read_config_file(path) -> dict[str, Any]:
    """Read a JSON object of config values, dropping unknown keys."""
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"config file {path} must hold a JSON object")
    unknown = set(data) - set(Config.model_fields)
    if unknown:
        logger.warning("Ignoring unknown config keys: %s", ", ".join(sorted(unknown)))
    return {k: v for k, v in data.items() if k in Config.model_fields}


def load_config(
    config_path=None,
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Config:
    """Build the effective configuration.

    Args:
        config_path: optional JSON file; VAULTKEEPER_CONFIG is used when omitted
        overrides: values taken from command-line flags; None entries are ignored
        environ: environment mapping, defaults to os.environ

    Returns:
        Validated Config instance.
    """
    environ = os.environ if environ is None else environ
    values: dict[str, Any] = {}

    config_path = config_path or environ.get(ENV_PREFIX + "CONFIG")
    if config_path:
        values.update(read_config_file(config_path))

    values.update(env_overrides(environ))

    if overrides:
        values.update({k: v for k, v in overrides.items() if v is not None})

    config = Config(**values)
    logger.debug(
        "Loaded config env=%s host=%s port=%d db=%s",
        config.env, config.server_host, config.server_port, config.db_path,
    )
    return config
