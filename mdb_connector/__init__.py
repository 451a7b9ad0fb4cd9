"""
MDB_CONNECTOR - MongoDB data connector

Connects an API framework to MongoDB: resolves the target database from
configuration, shares connections, normalizes filters and identifiers, and
returns results in a storage-agnostic shape.
"""

# Configuration
from .config import ConnectorConfig, DatabaseDescriptor, load_config
from .constants import ConnectionEventType, ConnectionState
# Connector
from .connector import MongoDBConnector
# Database layer
from .database import ConnectionEvent, ConnectionRegistry
# Errors
from .exceptions import (BadQueryError, ConfigurationError,
                         DisconnectedError, MongoDBConnectorError)

__version__ = "0.1.0"

SETTINGS = MongoDBConnector.settings

__all__ = [
    # Core
    "MongoDBConnector",
    "SETTINGS",
    # Configuration
    "ConnectorConfig",
    "DatabaseDescriptor",
    "load_config",
    # Connections
    "ConnectionRegistry",
    "ConnectionEvent",
    "ConnectionEventType",
    "ConnectionState",
    # Errors
    "MongoDBConnectorError",
    "ConfigurationError",
    "DisconnectedError",
    "BadQueryError",
]
