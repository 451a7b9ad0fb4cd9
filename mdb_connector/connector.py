"""
MongoDB data connector.

MongoDBConnector is the entry point used by the API framework. It resolves
which database a request targets, shares connections through a
ConnectionRegistry, normalizes filters and documents, runs the operation
through Motor and reshapes the result into the storage-agnostic form the
framework expects (string identifiers, counts, metadata).

Usage:
    from mdb_connector import MongoDBConnector, load_config

    connector = MongoDBConnector(load_config())
    await connector.connect(database="library", override=True)
    page = await connector.find(query={"name": "Wallace"}, collection="users")

This module is part of MDB_CONNECTOR - MongoDB data connector.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from functools import wraps
from typing import Any

from pymongo import ASCENDING
from pymongo.errors import ConnectionFailure, OperationFailure

from .config import ConnectorConfig, DatabaseDescriptor
from .constants import (
    BAD_VALUE_ERROR_CODE,
    ID_FIELD,
    NAMESPACE_NOT_FOUND_CODE_NAME,
    NAMESPACE_NOT_FOUND_ERROR_CODE,
    ConnectionState,
)
from .database.connection import ConnectionHandle, ConnectionRegistry
from .database.connection_string import build_connection_string, mask_credentials
from .database.events import ConnectionEventBus, ConnectionEventListener
from .database.query import convert_object_ids_for_save, prepare_query
from .database.selector import resolve_database
from .exceptions import BadQueryError, DisconnectedError
from .indexes.helpers import first_key_field, is_id_index, normalize_keys
from .metadata import build_metadata
from .observability import get_logger as get_contextual_logger
from .observability import (
    correlation_scope,
    log_operation,
    set_connection_context,
    timed_operation,
)
from .utils.mongo import stringify_documents, stringify_object_ids

logger = logging.getLogger(__name__)
contextual_logger = get_contextual_logger(__name__)


def _operation(name: str):
    """Time a connector coroutine and run it under a correlation ID."""

    def decorator(func):
        timed = timed_operation(f"connector.{name}")(func)

        @wraps(func)
        async def wrapper(*args, **kwargs):
            with correlation_scope():
                return await timed(*args, **kwargs)

        return wrapper

    return decorator


# Option names accepted from the API, mapped to driver keyword arguments
_INSERT_OPTIONS = {
    "ordered": "ordered",
    "bypassDocumentValidation": "bypass_document_validation",
}
_UPDATE_OPTIONS = {
    "upsert": "upsert",
    "arrayFilters": "array_filters",
    "bypassDocumentValidation": "bypass_document_validation",
    "collation": "collation",
    "hint": "hint",
}


def _driver_kwargs(options: dict[str, Any], accepted: dict[str, str]) -> dict[str, Any]:
    return {accepted[key]: value for key, value in options.items() if key in accepted}


def _find_kwargs(options: dict[str, Any]) -> dict[str, Any]:
    kwargs: dict[str, Any] = {}

    projection = options.get("fields") or options.get("projection")
    if projection:
        kwargs["projection"] = projection

    sort = options.get("sort")
    if isinstance(sort, dict) and sort:
        kwargs["sort"] = list(sort.items())
    elif isinstance(sort, (list, tuple)) and sort:
        kwargs["sort"] = [tuple(entry) for entry in sort]

    if options.get("skip"):
        kwargs["skip"] = int(options["skip"])
    if options.get("limit"):
        kwargs["limit"] = int(options["limit"])

    return kwargs


def _is_namespace_not_found(error: OperationFailure) -> bool:
    details = error.details or {}
    return (
        error.code == NAMESPACE_NOT_FOUND_ERROR_CODE
        or details.get("codeName") == NAMESPACE_NOT_FOUND_CODE_NAME
    )


class MongoDBConnector:
    """
    Data connector between the API framework and MongoDB.

    Each data operation requires the connector to be CONNECTED and fails
    immediately with DisconnectedError otherwise; nothing is queued or
    retried. Driver errors propagate unchanged.
    """

    # Capabilities advertised to the API framework
    settings: dict[str, Any] = {
        "connectWithCollection": True,
        "internalProperties": ["_id"],
    }

    def __init__(
        self,
        config: ConnectorConfig,
        registry: ConnectionRegistry | None = None,
    ) -> None:
        """
        Initialize the connector.

        Args:
            config: Resolved connector configuration
            registry: Shared connection registry (a private one is created
                when omitted)
        """
        self.config = config
        self.registry = registry if registry is not None else ConnectionRegistry()
        self._handle: ConnectionHandle | None = None
        self._events = ConnectionEventBus()

    @property
    def state(self) -> ConnectionState:
        if self._handle is None:
            return ConnectionState.DISCONNECTED
        return self._handle.state

    @property
    def ready_state(self) -> int:
        """Numeric state: 0 disconnected, 1 connected, 2 connecting."""
        return int(self.state)

    @property
    def handle(self) -> ConnectionHandle | None:
        return self._handle

    @property
    def database(self):
        """The Motor database of the current connection."""
        if self._handle is None:
            raise DisconnectedError(operation="database")
        return self._handle.database

    def subscribe(self, listener: ConnectionEventListener):
        """
        Subscribe to connection lifecycle events (connected, reconnected,
        error, disconnected).

        Returns:
            A callable that removes the listener
        """
        return self._events.subscribe(listener)

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def get_database_options(
        self,
        database: str | None = None,
        override: bool | None = None,
    ) -> DatabaseDescriptor:
        """
        Return the descriptor of the database to use.

        Args:
            database: Database named by the request
            override: Whether ``database`` may replace the default; defaults
                to the ``enableCollectionDatabases`` setting
        """
        if override is None:
            override = self.config.enable_collection_databases
        return resolve_database(self.config.databases, database, override)

    @staticmethod
    def get_connection_string(descriptor: DatabaseDescriptor) -> str:
        return build_connection_string(descriptor)

    async def connect(
        self,
        database: str | None = None,
        override: bool | None = None,
    ) -> ConnectionHandle:
        """
        Connect to the resolved database, reusing an open connection for the
        same connection string.

        Raises:
            ConfigurationError: If no usable database is configured
            PyMongoError: Driver errors, unchanged
        """
        if override is None:
            override = self.config.enable_collection_databases
        descriptor = self.get_database_options(database, override)
        connection_string = self.get_connection_string(descriptor)
        set_connection_context(database=descriptor.id, collection_databases=override)

        logger.debug(
            f"connect {mask_credentials(connection_string)} "
            f"(database={database!r}, override={override!r})"
        )

        handle = await self.registry.acquire(
            connection_string, descriptor.id, listener=self._events.publish
        )

        if self._handle is not None and self._handle is not handle:
            self._handle.events.unsubscribe(self._events.publish)
        self._handle = handle
        return handle

    def _require_connection(self, operation: str) -> ConnectionHandle:
        handle = self._handle
        if handle is None or not handle.connected:
            raise DisconnectedError(operation=operation)
        return handle

    @contextmanager
    def _transport_guard(self, handle: ConnectionHandle) -> Iterator[None]:
        try:
            yield
        except ConnectionFailure as e:
            handle.mark_failed(e)
            raise

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    @_operation("find")
    async def find(
        self,
        *,
        collection: str,
        query: dict[str, Any] | list[dict[str, Any]] | None = None,
        options: dict[str, Any] | None = None,
        schema: dict[str, Any] | None = None,
    ) -> dict[str, Any] | list[dict[str, Any]]:
        """
        Query a collection.

        A list ``query`` is run as an aggregation pipeline and its raw output
        is returned. A mapping is normalized and run as a filter.

        Args:
            collection: Collection name
            query: Filter or aggregation pipeline
            options: ``limit``, ``skip``, ``sort``, ``fields``, ``page``
            schema: Field type map of the collection

        Returns:
            ``{"results": [...], "metadata": {...}}`` for filters, the
            pipeline output for aggregations

        Raises:
            DisconnectedError: If not connected
            BadQueryError: If the store rejects the filter
        """
        handle = self._require_connection("find")
        options = dict(options or {})
        target = handle.database[collection]

        if isinstance(query, (list, tuple)):
            logger.debug(f"aggregate in {collection} {query!r}")
            with self._transport_guard(handle):
                cursor = target.aggregate(list(query))
                return await cursor.to_list(length=None)

        prepared = prepare_query(query, schema)
        logger.debug(f"find in {collection} {prepared!r} {options!r}")

        with self._transport_guard(handle):
            try:
                count = await target.count_documents(prepared)
                cursor = target.find(prepared, **_find_kwargs(options))
                documents = await cursor.to_list(length=None)
            except OperationFailure as e:
                if e.code == BAD_VALUE_ERROR_CODE:
                    raise BadQueryError(collection=collection, code=e.code) from e
                raise

        log_operation(contextual_logger, "find", collection=collection, count=count)
        return {
            "results": stringify_documents(documents),
            "metadata": self.get_metadata(options, count),
        }

    @_operation("insert")
    async def insert(
        self,
        *,
        collection: str,
        data: dict[str, Any] | list[dict[str, Any]] | tuple[dict[str, Any], ...],
        options: dict[str, Any] | None = None,
        schema: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """
        Insert one document or a list of documents.

        Returns:
            The inserted documents with identifiers as strings
        """
        handle = self._require_connection("insert")

        documents = list(data) if isinstance(data, (list, tuple)) else [data]
        if not documents:
            return []

        prepared = [convert_object_ids_for_save(document, schema) for document in documents]
        logger.debug(f"insert into {collection} {len(prepared)} document(s)")

        with self._transport_guard(handle):
            result = await handle.database[collection].insert_many(
                prepared, **_driver_kwargs(options or {}, _INSERT_OPTIONS)
            )

        # insert_many stamps _id on each dict; inserted_ids covers drivers that don't
        for document, inserted_id in zip(prepared, result.inserted_ids):
            document.setdefault("_id", inserted_id)

        log_operation(contextual_logger, "insert", collection=collection, count=len(prepared))
        return [stringify_object_ids(document) for document in prepared]

    @_operation("update")
    async def update(
        self,
        *,
        collection: str,
        query: dict[str, Any],
        update: dict[str, Any],
        options: dict[str, Any] | None = None,
        schema: dict[str, Any] | None = None,
    ) -> dict[str, int]:
        """
        Update every document matching ``query``.

        ``returnOriginal``, ``upsert`` and ``sort`` are always overridden:
        updates never insert and run in ascending ``_id`` order.

        Returns:
            ``{"matchedCount": n}``
        """
        handle = self._require_connection("update")
        prepared = prepare_query(query, schema)

        options = {
            **(options or {}),
            "returnOriginal": False,
            "sort": [("_id", ASCENDING)],
            "upsert": False,
        }
        logger.debug(f"update {collection} {prepared!r} {update!r} {options!r}")

        with self._transport_guard(handle):
            result = await handle.database[collection].update_many(
                prepared, update, **_driver_kwargs(options, _UPDATE_OPTIONS)
            )

        log_operation(
            contextual_logger, "update", collection=collection, count=result.matched_count
        )
        return {"matchedCount": result.matched_count}

    @_operation("delete")
    async def delete(
        self,
        *,
        collection: str,
        query: dict[str, Any],
        schema: dict[str, Any] | None = None,
    ) -> dict[str, int]:
        """
        Delete every document matching ``query``.

        Returns:
            ``{"deletedCount": n}``
        """
        handle = self._require_connection("delete")
        prepared = prepare_query(query, schema)
        logger.debug(f"delete {collection} {prepared!r}")

        with self._transport_guard(handle):
            result = await handle.database[collection].delete_many(prepared)

        log_operation(
            contextual_logger, "delete", collection=collection, count=result.deleted_count
        )
        return {"deletedCount": result.deleted_count}

    @_operation("stats")
    async def stats(
        self, collection: str, options: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """
        Get storage statistics for a collection.

        Returns:
            ``count``, ``size``, ``averageObjectSize``, ``storageSize``,
            ``indexes``, ``totalIndexSize`` and ``indexSizes``
        """
        handle = self._require_connection("stats")
        command_options = {}
        if options and options.get("scale"):
            command_options["scale"] = options["scale"]

        with self._transport_guard(handle):
            stats = await handle.database.command("collStats", collection, **command_options)

        return {
            "count": stats.get("count"),
            "size": stats.get("size"),
            "averageObjectSize": stats.get("avgObjSize"),
            "storageSize": stats.get("storageSize"),
            "indexes": stats.get("nindexes"),
            "totalIndexSize": stats.get("totalIndexSize"),
            "indexSizes": stats.get("indexSizes"),
        }

    @_operation("index")
    async def index(
        self, collection: str, indexes: list[dict[str, Any]]
    ) -> list[dict[str, str]]:
        """
        Create indexes on a collection.

        Requests for an index on ``_id`` alone are skipped; MongoDB creates
        that index itself.

        Args:
            collection: Collection name
            indexes: ``[{"keys": ..., "options": {...}}, ...]``

        Returns:
            ``[{"collection": ..., "index": <index name>}, ...]``
        """
        handle = self._require_connection("index")
        target = handle.database[collection]
        results = []

        for index in indexes:
            keys = index.get("keys") or {}
            if not keys or is_id_index(keys):
                logger.debug(f"Skipping _id index request on {collection}")
                continue

            with self._transport_guard(handle):
                name = await target.create_index(
                    normalize_keys(keys), **(index.get("options") or {})
                )
            results.append({"collection": collection, "index": name})

        log_operation(contextual_logger, "index", collection=collection, count=len(results))
        return results

    @_operation("get_indexes")
    async def get_indexes(self, collection: str) -> list[dict[str, str]]:
        """
        List the indexed fields of a collection, excluding ``_id``.

        Returns:
            ``[{"name": <first field of the index>}, ...]``
        """
        handle = self._require_connection("getIndexes")

        with self._transport_guard(handle):
            cursor = handle.database[collection].list_indexes()
            indexes = await cursor.to_list(length=None)

        response = []
        for index_info in indexes:
            field = first_key_field(index_info)
            if not field or field == ID_FIELD:
                continue
            response.append({"name": field})
        return response

    @_operation("drop_database")
    async def drop_database(self, collection: str | None = None) -> None:
        """
        Drop one collection, or the whole database when no collection is given.

        Dropping a collection that does not exist succeeds. Dropping the
        database closes the connection.
        """
        handle = self._require_connection("dropDatabase")

        if collection:
            with self._transport_guard(handle):
                try:
                    await handle.database.drop_collection(collection)
                except OperationFailure as e:
                    if _is_namespace_not_found(e):
                        logger.debug(f"Collection {collection} did not exist")
                        return
                    raise
            return

        with self._transport_guard(handle):
            await handle.database.command("dropDatabase")

        log_operation(contextual_logger, "dropDatabase", database=handle.database_name)
        logger.info(f"Dropped database '{handle.database_name}'")
        self.registry.discard(handle)
        handle.events.unsubscribe(self._events.publish)
        self._handle = None

    def handshake(self) -> dict[str, str]:
        """Report connector information to the API framework."""
        from . import __version__

        return {"version": __version__}

    def get_metadata(self, options: dict[str, Any] | None, count: int) -> dict[str, Any]:
        return build_metadata(options, count)
