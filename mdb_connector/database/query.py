"""
Query and document normalization.

Translates filters and documents coming from the API layer, where document
identifiers are opaque strings, into their MongoDB form, where they are
ObjectIds. Field types come from the calling framework's schema as a flat
``{field_name: {"type": ...}}`` mapping; only the ``type`` attribute is read.

Identifier coercion follows one policy for filters and for saved documents,
so a value written through the connector is found again by the same string:

- ``_id`` is always coerced in filters (a hex-24 string, or the string / list
  operands of an operator map such as ``{"$in": [...]}`` or ``{"$ne": ...}``);
- any other field is coerced only when its type is ``ObjectID``, both when
  filtering and when saving. ``Reference`` fields keep their string form;
- ``Object`` and ``Mixed`` fields are never touched, including through
  dot-notation (``"meta._id"`` resolves to the type of ``meta``);
- strings that are not 24 hex characters are left alone.
"""

import re
from collections.abc import Mapping
from typing import Any

from bson.regex import Regex

from ..constants import (
    CONTAINS_ANY_OPERATOR,
    FIELD_TYPE_OBJECT_ID,
    ID_FIELD,
    IN_OPERATOR,
    LOGICAL_OPERATORS,
    OPAQUE_FIELD_TYPES,
    REGEX_OPERATOR,
)
from ..utils.mongo import to_object_id


FieldTypes = Mapping[str, Mapping[str, Any]]


def get_field_type(key: str, field_types: FieldTypes | None) -> str | None:
    """
    Return the declared type of a field, allowing for dot notation.

    With dot notation the first segment decides: ``"meta.author"`` has the
    type declared for ``meta``.
    """
    if not field_types:
        return None
    settings = field_types.get(key.split(".", 1)[0])
    if isinstance(settings, Mapping):
        return settings.get("type")
    return None


def _is_operator_map(value: Any) -> bool:
    return isinstance(value, dict) and bool(value) and all(
        isinstance(key, str) and key.startswith("$") for key in value
    )


def _coerce_operand(value: Any) -> Any:
    if isinstance(value, str):
        return to_object_id(value)
    if isinstance(value, list):
        return [to_object_id(item) for item in value]
    if _is_operator_map(value):
        return {operator: _coerce_operand(operand) for operator, operand in value.items()}
    return value


def sanitize_regex(query: dict[str, Any]) -> dict[str, Any]:
    """Rewrite compiled regular expression values as ``{"$regex": ...}``."""
    for key, value in query.items():
        if isinstance(value, re.Pattern):
            query[key] = {REGEX_OPERATOR: Regex.from_native(value)}
        elif isinstance(value, Regex):
            query[key] = {REGEX_OPERATOR: value}
    return query


def translate_operators(query: dict[str, Any]) -> dict[str, Any]:
    """Replace ``$containsAny`` with ``$in`` in every operator map of the filter."""
    for key, value in query.items():
        if isinstance(value, dict) and CONTAINS_ANY_OPERATOR in value:
            value = dict(value)
            value[IN_OPERATOR] = value.pop(CONTAINS_ANY_OPERATOR)
            query[key] = value
    return query


def create_object_id_from_string(
    query: dict[str, Any],
    field_types: FieldTypes | None = None,
) -> dict[str, Any]:
    """
    Convert identifier strings in a filter to ObjectIds.

    ``$and`` / ``$or`` / ``$nor`` branches are walked recursively; nested
    sub-documents are not.

    Args:
        query: Filter to convert
        field_types: Field type map of the collection

    Returns:
        A new filter with identifiers converted
    """
    result: dict[str, Any] = {}

    for key, value in query.items():
        if key in LOGICAL_OPERATORS and isinstance(value, list):
            result[key] = [
                create_object_id_from_string(branch, field_types)
                if isinstance(branch, dict)
                else branch
                for branch in value
            ]
            continue

        field_type = get_field_type(key, field_types)

        if field_type in OPAQUE_FIELD_TYPES:
            result[key] = value
        elif key == ID_FIELD or field_type == FIELD_TYPE_OBJECT_ID:
            result[key] = _coerce_operand(value)
        else:
            result[key] = value

    return result


def prepare_query(
    query: dict[str, Any] | None,
    field_types: FieldTypes | None = None,
) -> dict[str, Any]:
    """
    Prepare a filter for MongoDB.

    Steps, in order: regex sanitization, ``$containsAny`` -> ``$in``,
    identifier coercion. The caller's filter is not modified.

    Example:
        >>> prepare_query({"_id": "55cb1658341a0a804d4dadcc",
        ...                "tags": {"$containsAny": ["a", "b"]}})
        {'_id': ObjectId('55cb1658341a0a804d4dadcc'), 'tags': {'$in': ['a', 'b']}}
    """
    prepared = dict(query or {})
    sanitize_regex(prepared)
    translate_operators(prepared)
    return create_object_id_from_string(prepared, field_types)


def convert_object_ids_for_save(
    document: dict[str, Any],
    field_types: FieldTypes | None = None,
) -> dict[str, Any]:
    """
    Convert top-level ``ObjectID`` fields of a document to ObjectIds.

    Single hex-24 strings and hex-24 strings inside a list are converted;
    nested sub-documents are not inspected.

    Args:
        document: Document about to be written
        field_types: Field type map of the collection

    Returns:
        A new document with ObjectID fields converted
    """
    result = dict(document)

    for key, value in document.items():
        if get_field_type(key, field_types) != FIELD_TYPE_OBJECT_ID:
            continue
        if isinstance(value, list):
            result[key] = [to_object_id(item) for item in value]
        else:
            result[key] = to_object_id(value)

    return result
