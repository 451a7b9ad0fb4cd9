"""
Helper functions for index management.

Index requests arrive from the API layer as ``{"keys": ..., "options": ...}``
where ``keys`` may be a mapping (``{"field": 1}``), a list of field names
(``["field"]``) or a list of ``(field, direction)`` pairs.
"""

from typing import Any

from ..constants import ID_FIELD


IndexKeys = dict[str, Any] | list[Any]


def normalize_keys(keys: IndexKeys) -> list[tuple[str, Any]]:
    """
    Normalize index keys to a list of (field_name, direction) tuples.

    Bare field names get an ascending direction.
    """
    if isinstance(keys, dict):
        return [(k, v) for k, v in keys.items()]

    normalized: list[tuple[str, Any]] = []
    for entry in keys:
        if isinstance(entry, str):
            normalized.append((entry, 1))
        else:
            field, direction = entry
            normalized.append((field, direction))
    return normalized


def is_id_index(keys: IndexKeys) -> bool:
    """
    Check if index keys target only the _id field (which MongoDB creates automatically).
    """
    normalized = normalize_keys(keys)
    return len(normalized) == 1 and normalized[0][0] == ID_FIELD


def first_key_field(index_info: dict[str, Any]) -> str | None:
    """Return the first field of an index description from ``list_indexes``."""
    key = index_info.get("key")
    if not key:
        return None
    return next(iter(key), None)
