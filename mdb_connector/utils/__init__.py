"""
Utility functions and helpers for MDB_CONNECTOR.
"""

from .mongo import is_object_id_string, stringify_documents, stringify_object_ids, to_object_id

__all__ = ["is_object_id_string", "stringify_documents", "stringify_object_ids", "to_object_id"]
