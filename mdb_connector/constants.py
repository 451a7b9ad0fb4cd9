"""
Constants for MDB_CONNECTOR.

This module contains shared constants used across the connector so that
defaults, enumerations and store error codes live in one place.
"""

from enum import Enum, IntEnum
from typing import Final

# ============================================================================
# CONNECTION CONSTANTS
# ============================================================================

DEFAULT_PORT: Final[int] = 27017
"""Port applied to host entries that do not specify one."""

CONNECTION_SCHEME: Final[str] = "mongodb://"
"""Scheme prefix of every connection string built by the connector."""

DEFAULT_SERVER_SELECTION_TIMEOUT_MS: Final[int] = 5000
"""Server selection timeout handed to the driver (milliseconds)."""

DEFAULT_APP_NAME: Final[str] = "MDB_CONNECTOR"
"""Application name reported to the server in the handshake."""

READ_PREFERENCES: Final[tuple[str, ...]] = (
    "primary",
    "primaryPreferred",
    "secondary",
    "secondaryPreferred",
    "nearest",
)
"""Read preferences accepted in a database descriptor."""

DEFAULT_READ_PREFERENCE: Final[str] = "secondaryPreferred"
"""Read preference used when a descriptor does not set one."""

# Legacy configs wrote the string "false" to mean "no replica set"
REPLICA_SET_DISABLED: Final[str] = "false"


class ConnectionState(IntEnum):
    """Lifecycle state of a connection handle."""

    DISCONNECTED = 0
    CONNECTED = 1
    CONNECTING = 2


class ConnectionEventType(str, Enum):
    """Lifecycle notifications published to subscribers."""

    CONNECTED = "DB_CONNECTED"
    RECONNECTED = "DB_RECONNECTED"
    ERROR = "DB_ERROR"
    DISCONNECTED = "DB_DISCONNECTED"


# ============================================================================
# FIELD TYPE CONSTANTS
# ============================================================================

FIELD_TYPE_OBJECT_ID: Final[str] = "ObjectID"
"""Field type whose hex-24 string values are stored and matched as ObjectId."""

OPAQUE_FIELD_TYPES: Final[frozenset[str]] = frozenset({"Object", "Mixed"})
"""Field types whose contents are never rewritten."""

ID_FIELD: Final[str] = "_id"

# ============================================================================
# QUERY CONSTANTS
# ============================================================================

CONTAINS_ANY_OPERATOR: Final[str] = "$containsAny"
IN_OPERATOR: Final[str] = "$in"
REGEX_OPERATOR: Final[str] = "$regex"

LOGICAL_OPERATORS: Final[tuple[str, ...]] = ("$and", "$or", "$nor")
"""Operators whose value is a list of sub-filters."""

# ============================================================================
# STORE ERROR CODES
# ============================================================================

BAD_VALUE_ERROR_CODE: Final[int] = 2
"""Server error code for a malformed query or unknown operator."""

NAMESPACE_NOT_FOUND_ERROR_CODE: Final[int] = 26
NAMESPACE_NOT_FOUND_CODE_NAME: Final[str] = "NamespaceNotFound"

# ============================================================================
# CONFIGURATION CONSTANTS
# ============================================================================

ENVIRONMENTS: Final[tuple[str, ...]] = ("production", "development", "test", "qa")
"""Application environments a config file can be loaded for."""

DEFAULT_ENVIRONMENT: Final[str] = "development"

CONFIG_FILE_TEMPLATE: Final[str] = "config/mongodb.{env}.json"

DATABASE_ENV_TEMPLATES: Final[dict[str, str]] = {
    "username": "DB_{database}_USERNAME",
    "password": "DB_{database}_PASSWORD",
    "authDatabase": "DB_{database}_AUTH_SOURCE",
    "authMechanism": "DB_{database}_AUTH_MECHANISM",
    "maxPoolSize": "DB_{database}_MAX_POOL",
}
"""Per-database environment variables overriding config file values."""

# Keys of a database block that may appear at the top level in legacy configs
DATABASE_BLOCK_KEYS: Final[tuple[str, ...]] = (
    "hosts",
    "username",
    "password",
    "authDatabase",
    "authMechanism",
    "replicaSet",
    "ssl",
    "maxPoolSize",
    "readPreference",
)
