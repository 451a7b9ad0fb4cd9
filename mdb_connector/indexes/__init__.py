"""
Index management helpers.
"""

from .helpers import first_key_field, is_id_index, normalize_keys

__all__ = ["first_key_field", "is_id_index", "normalize_keys"]
