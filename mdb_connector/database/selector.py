"""
Database selection.

Resolves which configured database a request should use.
"""

import logging
from collections.abc import Sequence

from ..config import DatabaseDescriptor
from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def resolve_database(
    databases: Sequence[DatabaseDescriptor],
    requested: str | None = None,
    override: bool = False,
) -> DatabaseDescriptor:
    """
    Return the descriptor of the database to connect to.

    With ``override`` set and a ``requested`` name, the descriptor with that
    id is used. Otherwise the descriptor flagged ``default`` is used, or the
    only descriptor when exactly one is configured.

    Args:
        databases: Ordered database descriptors
        requested: Database named by the request (e.g. from the collection URL)
        override: Whether the request may select a non-default database

    Returns:
        The matching DatabaseDescriptor

    Raises:
        ConfigurationError: If no descriptor matches or it has no hosts
    """
    if override and requested:
        match = next((db for db in databases if db.id == requested), None)
    else:
        match = next(
            (db for db in databases if db.default or len(databases) == 1),
            None,
        )

    if match is None or not match.hosts:
        raise ConfigurationError(
            f"Configuration missing for database '{requested}'",
            config_key="databases",
            config_value=requested,
        )

    logger.debug(
        f"Resolved database '{match.id}' (requested={requested!r}, override={override})"
    )
    return match
