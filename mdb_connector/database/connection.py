"""
Connection handles and the connection registry.

A ConnectionHandle owns exactly one Motor client for one connection string
and tracks its lifecycle:

    DISCONNECTED -> CONNECTING -> CONNECTED          (open succeeded)
    DISCONNECTED -> CONNECTING -> DISCONNECTED       (open failed)
    CONNECTED    -> DISCONNECTED                     (transport error, timeout, close)
    DISCONNECTED -> CONNECTED                        (driver reconnected, or open() ping)

Topology changes are observed through a pymongo TopologyListener. The driver
calls listeners from its monitor threads, so transitions are handed over to
the event loop that opened the handle.

The ConnectionRegistry caches handles by exact connection string so that
identical connect requests share one client.

This module is part of MDB_CONNECTOR - MongoDB data connector.
"""

import asyncio
import logging
import time
from typing import Any

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import ConnectionFailure, PyMongoError
from pymongo.monitoring import (
    TopologyClosedEvent,
    TopologyDescriptionChangedEvent,
    TopologyListener,
    TopologyOpenedEvent,
)

from ..constants import (
    DEFAULT_APP_NAME,
    DEFAULT_SERVER_SELECTION_TIMEOUT_MS,
    ConnectionEventType,
    ConnectionState,
)
from ..exceptions import DisconnectedError
from ..observability import get_logger as get_contextual_logger
from ..observability import record_operation
from .connection_string import mask_credentials
from .events import ConnectionEvent, ConnectionEventBus, ConnectionEventListener

logger = logging.getLogger(__name__)
contextual_logger = get_contextual_logger(__name__)


class _TopologyMonitor(TopologyListener):
    """Forwards server availability changes to a ConnectionHandle."""

    def __init__(self, handle: "ConnectionHandle") -> None:
        self._handle = handle

    def opened(self, event: TopologyOpenedEvent) -> None:
        pass

    def description_changed(self, event: TopologyDescriptionChangedEvent) -> None:
        previous = event.previous_description.has_known_servers
        available = event.new_description.has_known_servers
        if previous != available:
            self._handle.notify_availability(available)

    def closed(self, event: TopologyClosedEvent) -> None:
        pass


class ConnectionHandle:
    """
    A live session to one resolved connection string.

    The underlying client is owned by the handle and never handed out for
    lifecycle management; callers only borrow the database object.
    """

    def __init__(
        self,
        connection_string: str,
        database_name: str,
        server_selection_timeout_ms: int = DEFAULT_SERVER_SELECTION_TIMEOUT_MS,
    ) -> None:
        """
        Initialize the handle in the DISCONNECTED state.

        Args:
            connection_string: Canonical connection string
            database_name: Database the handle serves
            server_selection_timeout_ms: Driver server selection timeout
        """
        self.connection_string = connection_string
        self.database_name = database_name
        self.server_selection_timeout_ms = server_selection_timeout_ms

        self._state = ConnectionState.DISCONNECTED
        self._client: AsyncIOMotorClient | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._open_lock = asyncio.Lock()
        self._events = ConnectionEventBus()

    def __repr__(self) -> str:
        return (
            f"ConnectionHandle({mask_credentials(self.connection_string)!r}, "
            f"state={self._state.name})"
        )

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def is_open(self) -> bool:
        """Whether the handle owns a client, connected or not."""
        return self._client is not None

    @property
    def events(self) -> ConnectionEventBus:
        return self._events

    @property
    def database(self) -> AsyncIOMotorDatabase:
        """
        Get the database served by this handle.

        Raises:
            DisconnectedError: If the handle has no open client
        """
        if self._client is None:
            raise DisconnectedError(
                operation="database", context={"database": self.database_name}
            )
        return self._client[self.database_name]

    def subscribe(self, listener: ConnectionEventListener) -> Any:
        """Subscribe to this handle's lifecycle events."""
        return self._events.subscribe(listener)

    async def open(self) -> "ConnectionHandle":
        """
        Open the client and verify it with a ping.

        Calling open() on a CONNECTED handle is a no-op. A handle that still
        owns a client but was marked DISCONNECTED is pinged again and moves
        back to CONNECTED when the server answers.

        Raises:
            PyMongoError: Driver errors (authentication failure, unreachable
                hosts, missing replica set primary) are re-raised unchanged
        """
        async with self._open_lock:
            if self._client is not None:
                if self._state is ConnectionState.DISCONNECTED:
                    await self._revive()
                return self

            start_time = time.time()
            self._loop = asyncio.get_running_loop()
            self._state = ConnectionState.CONNECTING
            masked = mask_credentials(self.connection_string)

            contextual_logger.info(
                "Opening MongoDB connection",
                extra={"connection_string": masked, "db_name": self.database_name},
            )

            client = None
            try:
                client = AsyncIOMotorClient(
                    self.connection_string,
                    serverSelectionTimeoutMS=self.server_selection_timeout_ms,
                    appname=DEFAULT_APP_NAME,
                    event_listeners=[_TopologyMonitor(self)],
                )
                await client.admin.command("ping")
            except (PyMongoError, OSError, ValueError, TypeError) as e:
                if client is not None:
                    client.close()
                self._state = ConnectionState.DISCONNECTED
                duration_ms = (time.time() - start_time) * 1000
                record_operation("connection.open", duration_ms, success=False)
                contextual_logger.error(
                    "MongoDB connection failed",
                    extra={
                        "connection_string": masked,
                        "error_type": type(e).__name__,
                        "error": str(e),
                        "duration_ms": round(duration_ms, 2),
                    },
                )
                raise

            self._client = client
            self._state = ConnectionState.CONNECTED

            duration_ms = (time.time() - start_time) * 1000
            record_operation("connection.open", duration_ms, success=True)
            contextual_logger.info(
                "MongoDB connection established",
                extra={
                    "connection_string": masked,
                    "db_name": self.database_name,
                    "duration_ms": round(duration_ms, 2),
                },
            )

        self._publish(ConnectionEventType.CONNECTED)
        return self

    async def _revive(self) -> None:
        start_time = time.time()
        try:
            await self._client.admin.command("ping")
        except (PyMongoError, OSError) as e:
            record_operation("connection.reconnect", (time.time() - start_time) * 1000, False)
            logger.warning(
                f"Database '{self.database_name}' is still unreachable: "
                f"{type(e).__name__}: {e}"
            )
            raise

        record_operation("connection.reconnect", (time.time() - start_time) * 1000, True)
        if self._state is ConnectionState.DISCONNECTED:
            self._state = ConnectionState.CONNECTED
            logger.info(f"Reconnected to database '{self.database_name}'")
            self._publish(ConnectionEventType.RECONNECTED)

    def notify_availability(self, available: bool) -> None:
        """
        Report a server availability change.

        Safe to call from driver threads; the transition runs on the event
        loop that opened the handle.
        """
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._apply_availability(available)
        else:
            loop.call_soon_threadsafe(self._apply_availability, available)

    def _apply_availability(self, available: bool) -> None:
        if self._client is None:
            return

        if not available and self._state is ConnectionState.CONNECTED:
            self._state = ConnectionState.DISCONNECTED
            cause = ConnectionFailure(
                f"No reachable servers for {mask_credentials(self.connection_string)}"
            )
            logger.warning(f"Lost connection to database '{self.database_name}'")
            self._publish(ConnectionEventType.ERROR, cause)
        elif available and self._state is ConnectionState.DISCONNECTED:
            self._state = ConnectionState.CONNECTED
            logger.info(f"Reconnected to database '{self.database_name}'")
            self._publish(ConnectionEventType.RECONNECTED)

    def mark_failed(self, cause: BaseException) -> None:
        """Record a transport error raised by an operation on this handle."""
        if self._state is not ConnectionState.CONNECTED:
            return
        self._state = ConnectionState.DISCONNECTED
        logger.warning(
            f"Transport error on database '{self.database_name}': "
            f"{type(cause).__name__}: {cause}"
        )
        self._publish(ConnectionEventType.ERROR, cause)

    def close(self) -> None:
        """
        Close the client and move to DISCONNECTED.

        Idempotent - it's safe to call multiple times.
        """
        if self._client is None:
            return

        self._client.close()
        self._client = None
        self._state = ConnectionState.DISCONNECTED
        logger.info(f"Closed connection to database '{self.database_name}'")
        self._publish(ConnectionEventType.DISCONNECTED)

    def _publish(self, event_type: ConnectionEventType, cause: BaseException | None = None):
        self._events.publish(ConnectionEvent(event_type, self.connection_string, cause))


class ConnectionRegistry:
    """
    Cache of connection handles keyed by exact connection string.

    Two descriptors that build the same connection string share a handle.
    Insertion happens under a single asyncio.Lock so concurrent acquire()
    calls for one string converge on one handle.
    """

    def __init__(
        self, server_selection_timeout_ms: int = DEFAULT_SERVER_SELECTION_TIMEOUT_MS
    ) -> None:
        self.server_selection_timeout_ms = server_selection_timeout_ms
        self._handles: dict[str, ConnectionHandle] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._handles)

    def __contains__(self, connection_string: object) -> bool:
        return connection_string in self._handles

    def get(self, connection_string: str) -> ConnectionHandle | None:
        return self._handles.get(connection_string)

    async def acquire(
        self,
        connection_string: str,
        database_name: str,
        listener: ConnectionEventListener | None = None,
    ) -> ConnectionHandle:
        """
        Return the open handle for a connection string, opening it if needed.

        Args:
            connection_string: Canonical connection string
            database_name: Database the handle serves
            listener: Optional event listener subscribed before opening

        Returns:
            The cached or newly opened ConnectionHandle

        Raises:
            PyMongoError: If opening fails; the handle is not cached then
        """
        async with self._lock:
            handle = self._handles.get(connection_string)
            if handle is None:
                handle = ConnectionHandle(
                    connection_string,
                    database_name,
                    server_selection_timeout_ms=self.server_selection_timeout_ms,
                )
                self._handles[connection_string] = handle
                logger.debug(f"Registered handle for {mask_credentials(connection_string)}")
            else:
                logger.debug(f"Reusing handle for {mask_credentials(connection_string)}")

            if listener is not None and not handle.events.has_listener(listener):
                handle.subscribe(listener)

        try:
            await handle.open()
        except (PyMongoError, OSError, ValueError, TypeError):
            async with self._lock:
                if self._handles.get(connection_string) is handle and not handle.is_open:
                    del self._handles[connection_string]
            raise

        return handle

    def discard(self, handle: ConnectionHandle) -> None:
        """Close a handle and forget it."""
        if self._handles.get(handle.connection_string) is handle:
            del self._handles[handle.connection_string]
        handle.close()

    def close_all(self) -> None:
        """Close every cached handle. Call during application shutdown."""
        handles = list(self._handles.values())
        self._handles.clear()
        for handle in handles:
            handle.close()
        if handles:
            logger.info(f"Closed {len(handles)} MongoDB connection(s)")
