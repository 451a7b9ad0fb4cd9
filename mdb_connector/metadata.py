"""
Result metadata for list queries.

Builds the pagination block returned next to ``find`` results from the query
options the API passed in and the total number of matching documents.
"""

import math
from typing import Any


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def build_metadata(options: dict[str, Any] | None, count: int) -> dict[str, Any]:
    """
    Build pagination metadata.

    Args:
        options: Query options (``limit``, ``skip``, ``page``, ``sort``, ``fields``)
        count: Number of documents matching the filter, ignoring limit and skip

    Returns:
        Dictionary with ``limit``, ``offset``, ``page``, ``totalCount``,
        ``totalPages`` and, where they exist, ``nextPage`` / ``prevPage``,
        ``sort`` and ``fields``

    Example:
        >>> build_metadata({"limit": 10, "skip": 10}, 35)["page"]
        2
    """
    options = options or {}
    limit = max(_as_int(options.get("limit")), 0)
    offset = max(_as_int(options.get("skip")), 0)

    page = _as_int(options.get("page"))
    if page < 1:
        page = offset // limit + 1 if limit else 1

    total_pages = math.ceil(count / limit) if limit else 1

    metadata: dict[str, Any] = {
        "limit": limit,
        "page": page,
        "offset": offset,
        "totalCount": count,
        "totalPages": total_pages,
    }

    if options.get("sort"):
        metadata["sort"] = options["sort"]
    if options.get("fields"):
        metadata["fields"] = options["fields"]

    if page < total_pages:
        metadata["nextPage"] = page + 1
    if 1 < page <= total_pages:
        metadata["prevPage"] = page - 1

    return metadata
