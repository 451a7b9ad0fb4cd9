"""
Database layer.

Connection strings, database selection, connection handles with their
lifecycle events, and filter normalization.
"""

from .connection import ConnectionHandle, ConnectionRegistry
from .connection_string import (build_connection_string, connection_options,
                                mask_credentials)
from .events import ConnectionEvent, ConnectionEventBus
from .query import (convert_object_ids_for_save,
                    create_object_id_from_string, prepare_query)
from .selector import resolve_database

__all__ = [
    # Connections
    "ConnectionHandle",
    "ConnectionRegistry",
    "ConnectionEvent",
    "ConnectionEventBus",
    # Connection strings
    "build_connection_string",
    "connection_options",
    "mask_credentials",
    "resolve_database",
    # Queries
    "prepare_query",
    "create_object_id_from_string",
    "convert_object_ids_for_save",
]
