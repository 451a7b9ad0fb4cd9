"""
MongoDB utility functions for MDB_CONNECTOR.

Helpers for moving identifiers between their textual form (24 hex
characters) and bson.ObjectId.
"""

import re
from typing import Any

from bson import ObjectId

_HEX_24 = re.compile(r"^[a-fA-F0-9]{24}$")


def is_object_id_string(value: Any) -> bool:
    """Return True when ``value`` is a 24-character hexadecimal string."""
    return isinstance(value, str) and _HEX_24.match(value) is not None


def to_object_id(value: Any) -> Any:
    """
    Convert a hex-24 string to ObjectId; return anything else unchanged.

    Example:
        >>> to_object_id("55cb1658341a0a804d4dadcc")
        ObjectId('55cb1658341a0a804d4dadcc')
        >>> to_object_id("hello")
        'hello'
    """
    if is_object_id_string(value):
        return ObjectId(value)
    return value


def stringify_object_ids(value: Any) -> Any:
    """
    Replace every ObjectId in a document (recursively) with its hex string.

    Dictionaries and lists are rebuilt; other values are returned as-is.

    Example:
        ```python
        stringify_object_ids({"_id": ObjectId("507f1f77bcf86cd799439011"),
                              "tags": [ObjectId("507f1f77bcf86cd799439012")]})
        # {"_id": "507f1f77bcf86cd799439011",
        #  "tags": ["507f1f77bcf86cd799439012"]}
        ```
    """
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {key: stringify_object_ids(item) for key, item in value.items()}
    if isinstance(value, list):
        return [stringify_object_ids(item) for item in value]
    return value


def stringify_documents(documents: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Apply stringify_object_ids to each document in a list."""
    return [stringify_object_ids(document) for document in documents]
