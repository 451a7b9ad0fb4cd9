"""
Configuration management for MDB_CONNECTOR.

Database descriptors and the connector configuration are Pydantic models.
Configuration files may use one of three historical shapes; they are all
normalized into an ordered list of descriptors here, at the configuration
boundary, so nothing downstream ever sees the legacy forms:

    # list shape
    {"databases": [{"id": "api", "hosts": "127.0.0.1:27017", "default": true}]}

    # keyed shape
    {"database": "api", "databases": {"api": {"hosts": [{"host": "127.0.0.1"}]}}}

    # top-level single database
    {"database": "api", "hosts": [{"host": "127.0.0.1", "port": 27017}]}
"""

import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .constants import (
    CONFIG_FILE_TEMPLATE,
    DATABASE_BLOCK_KEYS,
    DATABASE_ENV_TEMPLATES,
    DEFAULT_ENVIRONMENT,
    DEFAULT_PORT,
    DEFAULT_READ_PREFERENCE,
    ENVIRONMENTS,
)
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ReadPreference = Literal[
    "primary", "primaryPreferred", "secondary", "secondaryPreferred", "nearest"
]


def format_host(entry: Any) -> str:
    """Render one host entry as ``host:port``, applying the default port."""
    if isinstance(entry, Mapping):
        host = entry.get("host")
        if not host:
            raise ValueError(f"Host entry is missing 'host': {entry!r}")
        port = entry.get("port") or DEFAULT_PORT
        return f"{host}:{port}"
    if isinstance(entry, str):
        return entry if ":" in entry else f"{entry}:{DEFAULT_PORT}"
    raise ValueError(f"Unsupported host entry: {entry!r}")


class DatabaseDescriptor(BaseModel):
    """
    Describes how to reach one logical database.

    ``hosts`` accepts either the wire form (``"h1:27017,h2:27018"``) or a
    list of ``{"host", "port"}`` entries; it is always stored in wire form
    with the input order preserved.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str = Field(..., min_length=1)
    hosts: str = ""
    username: str = ""
    password: str = ""
    auth_database: str = Field("", alias="authDatabase")
    auth_mechanism: str = Field("", alias="authMechanism")
    replica_set: str = Field("", alias="replicaSet")
    ssl: bool = False
    max_pool_size: int = Field(0, alias="maxPoolSize", ge=0)
    read_preference: ReadPreference | None = Field(
        DEFAULT_READ_PREFERENCE, alias="readPreference"
    )
    default: bool = False

    @field_validator("hosts", mode="before")
    @classmethod
    def _join_hosts(cls, value: Any) -> Any:
        if value is None:
            return ""
        if isinstance(value, str):
            value = [entry.strip() for entry in value.split(",") if entry.strip()]
        if isinstance(value, (list, tuple)):
            return ",".join(format_host(entry) for entry in value)
        return value

    @field_validator(
        "username", "password", "auth_database", "auth_mechanism", "replica_set",
        mode="before",
    )
    @classmethod
    def _empty_when_unset(cls, value: Any) -> Any:
        # JSON configs use null or false for "not set"
        if value is None or value is False:
            return ""
        return value

    @field_validator("max_pool_size", mode="before")
    @classmethod
    def _zero_when_unset(cls, value: Any) -> Any:
        if value is None or value == "":
            return 0
        return value

    @property
    def host_list(self) -> list[str]:
        """Hosts as individual ``host:port`` strings."""
        return self.hosts.split(",") if self.hosts else []

    @property
    def has_credentials(self) -> bool:
        return bool(self.username and self.password)


class ConnectorConfig(BaseModel):
    """
    Resolved connector configuration: an ordered list of database
    descriptors plus the flag that allows per-request database overrides.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    databases: list[DatabaseDescriptor] = Field(default_factory=list)
    enable_collection_databases: bool = Field(False, alias="enableCollectionDatabases")
    env: Literal["production", "development", "test", "qa"] = DEFAULT_ENVIRONMENT

    def get_database(self, database_id: str) -> DatabaseDescriptor | None:
        """Return the descriptor named ``database_id``, if configured."""
        for descriptor in self.databases:
            if descriptor.id == database_id:
                return descriptor
        return None

    @classmethod
    def from_mapping(
        cls,
        raw: Mapping[str, Any],
        environ: Mapping[str, str] | None = None,
    ) -> "ConnectorConfig":
        """
        Build a configuration from a raw mapping in any supported shape.

        Args:
            raw: Parsed configuration (list, keyed or top-level shape)
            environ: Environment used for overrides (defaults to os.environ)

        Raises:
            ConfigurationError: If the configuration does not validate
        """
        environ = os.environ if environ is None else environ
        default_name = environ.get("DB_NAME") or raw.get("database")

        blocks = normalize_databases(raw, default_name=default_name)
        blocks = [apply_env_overrides(block, environ) for block in blocks]

        payload = {k: v for k, v in raw.items() if k not in DATABASE_BLOCK_KEYS}
        payload["databases"] = blocks

        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid connector configuration: {e}",
                config_key="databases",
            ) from e


def normalize_databases(
    raw: Mapping[str, Any],
    default_name: str | None = None,
) -> list[dict[str, Any]]:
    """
    Convert any supported configuration shape into a list of database blocks.

    Args:
        raw: Parsed configuration
        default_name: Name of the default database (``database`` key or the
            ``DB_NAME`` environment variable)

    Returns:
        List of plain database blocks, each carrying an ``id``
    """
    databases = raw.get("databases")

    if isinstance(databases, Mapping):
        blocks = [{**dict(block or {}), "id": name} for name, block in databases.items()]
    elif isinstance(databases, (list, tuple)):
        blocks = [dict(block) for block in databases]
    else:
        blocks = []

    if not blocks and any(key in raw for key in DATABASE_BLOCK_KEYS):
        name = default_name or "api"
        logger.debug(f"Using top-level database block as '{name}'")
        top_level = {key: raw[key] for key in DATABASE_BLOCK_KEYS if key in raw}
        blocks = [{**top_level, "id": name, "default": True}]

    if default_name and not any(block.get("default") for block in blocks):
        for block in blocks:
            if block.get("id") == default_name:
                block["default"] = True
                break

    return blocks


def apply_env_overrides(
    block: dict[str, Any],
    environ: Mapping[str, str],
) -> dict[str, Any]:
    """
    Overlay per-database environment variables (e.g. ``DB_testdb_USERNAME``)
    on a database block.
    """
    database_id = block.get("id")
    if not database_id:
        return block

    result = dict(block)
    for key, template in DATABASE_ENV_TEMPLATES.items():
        value = environ.get(template.format(database=database_id))
        if value:
            result[key] = value
    return result


def load_config(
    path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> ConnectorConfig:
    """
    Load the connector configuration from a JSON file.

    Args:
        path: Config file path (defaults to ``config/mongodb.{env}.json``)
        environ: Environment mapping (defaults to os.environ)

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid
    """
    environ = os.environ if environ is None else environ
    env = environ.get("NODE_ENV") or environ.get("ENV") or DEFAULT_ENVIRONMENT
    if env not in ENVIRONMENTS:
        raise ConfigurationError(
            f"Unknown environment '{env}'", config_key="env", config_value=env
        )

    config_path = Path(path) if path else Path(CONFIG_FILE_TEMPLATE.format(env=env))

    try:
        raw = json.loads(config_path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigurationError(
            f"Configuration file not found: {config_path}",
            config_key="path",
            config_value=str(config_path),
        ) from e
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(
            f"Could not read configuration file {config_path}: {e}",
            config_key="path",
            config_value=str(config_path),
        ) from e

    if not isinstance(raw, dict):
        raise ConfigurationError(
            f"Configuration file {config_path} must contain a JSON object",
            config_key="path",
            config_value=str(config_path),
        )

    raw.setdefault("env", env)
    logger.info(f"Loaded connector configuration from {config_path} (env={env})")
    return ConnectorConfig.from_mapping(raw, environ=environ)
