"""
Unit tests for ConnectionHandle, ConnectionRegistry and ConnectionEventBus.

Tests the connection state machine, handle sharing and event delivery.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pymongo.errors import (ConnectionFailure, OperationFailure,
                            ServerSelectionTimeoutError)

from mdb_connector.constants import ConnectionEventType, ConnectionState
from mdb_connector.database.connection import (ConnectionHandle,
                                               ConnectionRegistry,
                                               _TopologyMonitor)
from mdb_connector.database.events import ConnectionEvent, ConnectionEventBus
from mdb_connector.exceptions import DisconnectedError
from mdb_connector.observability import get_metrics_collector

CONNECTION_STRING = "mongodb://127.0.0.1:27017/testdb"
CLIENT_PATH = "mdb_connector.database.connection.AsyncIOMotorClient"


def recorder():
    events = []
    return events, events.append


async def open_handle_for(client):
    handle = ConnectionHandle(CONNECTION_STRING, "testdb")
    with patch(CLIENT_PATH, return_value=client):
        await handle.open()
    return handle


@pytest.mark.unit
class TestConnectionEventBus:
    """Test listener registration and delivery."""

    def test_publish_in_subscription_order(self):
        bus = ConnectionEventBus()
        received = []
        bus.subscribe(lambda event: received.append(("a", event.type)))
        bus.subscribe(lambda event: received.append(("b", event.type)))

        bus.publish(ConnectionEvent(ConnectionEventType.CONNECTED, CONNECTION_STRING))

        assert received == [
            ("a", ConnectionEventType.CONNECTED),
            ("b", ConnectionEventType.CONNECTED),
        ]

    def test_unsubscribe(self):
        bus = ConnectionEventBus()
        events, listener = recorder()
        unsubscribe = bus.subscribe(listener)
        unsubscribe()

        bus.publish(ConnectionEvent(ConnectionEventType.CONNECTED, CONNECTION_STRING))

        assert events == []
        assert bus.has_listener(listener) is False

    def test_failing_listener_does_not_stop_delivery(self):
        bus = ConnectionEventBus()
        events, listener = recorder()
        bus.subscribe(MagicMock(side_effect=RuntimeError("listener broke")))
        bus.subscribe(listener)

        bus.publish(ConnectionEvent(ConnectionEventType.ERROR, CONNECTION_STRING))

        assert len(events) == 1

    def test_event_str_masks_password(self):
        event = ConnectionEvent(
            ConnectionEventType.ERROR,
            "mongodb://u:secret@h1:27017/testdb",
            cause=ConnectionFailure("gone"),
        )
        assert str(event) == "DB_ERROR mongodb://u:***@h1:27017/testdb: gone"


@pytest.mark.unit
@pytest.mark.asyncio
class TestConnectionHandleOpen:
    """Test opening a handle."""

    async def test_open_success(self, mock_mongo_client):
        handle = ConnectionHandle(CONNECTION_STRING, "testdb")
        events, listener = recorder()
        handle.subscribe(listener)

        with patch(CLIENT_PATH, return_value=mock_mongo_client) as client_cls:
            await handle.open()

        assert handle.state is ConnectionState.CONNECTED
        assert handle.connected is True
        assert [event.type for event in events] == [ConnectionEventType.CONNECTED]
        mock_mongo_client.admin.command.assert_awaited_once_with("ping")

        args, kwargs = client_cls.call_args
        assert args == (CONNECTION_STRING,)
        assert kwargs["serverSelectionTimeoutMS"] == 5000
        assert isinstance(kwargs["event_listeners"][0], _TopologyMonitor)
        assert get_metrics_collector().get_operation_count("connection.open") == 1

    async def test_open_is_idempotent(self, mock_mongo_client):
        handle = ConnectionHandle(CONNECTION_STRING, "testdb")

        with patch(CLIENT_PATH, return_value=mock_mongo_client) as client_cls:
            await handle.open()
            await handle.open()

        assert client_cls.call_count == 1

    async def test_open_failure_reraises_driver_error(self):
        client = MagicMock()
        error = OperationFailure("Authentication failed.", code=18)
        client.admin.command = AsyncMock(side_effect=error)
        handle = ConnectionHandle(CONNECTION_STRING, "testdb")
        events, listener = recorder()
        handle.subscribe(listener)

        with patch(CLIENT_PATH, return_value=client):
            with pytest.raises(OperationFailure) as exc_info:
                await handle.open()

        assert exc_info.value is error
        assert handle.state is ConnectionState.DISCONNECTED
        assert events == []
        client.close.assert_called_once()

    async def test_database_requires_client(self):
        handle = ConnectionHandle(CONNECTION_STRING, "testdb")
        with pytest.raises(DisconnectedError):
            handle.database

    async def test_database_after_open(self, mock_mongo_client, mock_database):
        handle = ConnectionHandle(CONNECTION_STRING, "testdb")
        with patch(CLIENT_PATH, return_value=mock_mongo_client):
            await handle.open()

        assert handle.database is mock_database
        mock_mongo_client.__getitem__.assert_called_with("testdb")


@pytest.mark.unit
@pytest.mark.asyncio
class TestConnectionHandleTransitions:
    """Test transitions after the handle is open."""

    async def test_lost_and_regained_availability(self, mock_mongo_client):
        handle = await open_handle_for(mock_mongo_client)
        events, listener = recorder()
        handle.subscribe(listener)

        handle.notify_availability(False)
        assert handle.state is ConnectionState.DISCONNECTED

        handle.notify_availability(True)
        assert handle.state is ConnectionState.CONNECTED

        assert [event.type for event in events] == [
            ConnectionEventType.ERROR,
            ConnectionEventType.RECONNECTED,
        ]
        assert isinstance(events[0].cause, ConnectionFailure)

    async def test_repeated_availability_is_ignored(self, mock_mongo_client):
        handle = await open_handle_for(mock_mongo_client)
        events, listener = recorder()
        handle.subscribe(listener)

        handle.notify_availability(True)

        assert events == []

    async def test_mark_failed(self, mock_mongo_client):
        handle = await open_handle_for(mock_mongo_client)
        events, listener = recorder()
        handle.subscribe(listener)
        cause = ServerSelectionTimeoutError("timed out")

        handle.mark_failed(cause)
        handle.mark_failed(cause)

        assert handle.state is ConnectionState.DISCONNECTED
        assert len(events) == 1
        assert events[0].type is ConnectionEventType.ERROR
        assert events[0].cause is cause

    async def test_open_revives_after_mark_failed(self, mock_mongo_client):
        handle = await open_handle_for(mock_mongo_client)
        events, listener = recorder()
        handle.subscribe(listener)
        handle.mark_failed(ServerSelectionTimeoutError("timed out"))

        with patch(CLIENT_PATH) as client_cls:
            assert await handle.open() is handle

        client_cls.assert_not_called()
        assert mock_mongo_client.admin.command.await_count == 2
        assert handle.state is ConnectionState.CONNECTED
        assert [event.type for event in events] == [
            ConnectionEventType.ERROR,
            ConnectionEventType.RECONNECTED,
        ]

    async def test_failed_revive_stays_disconnected(self, mock_mongo_client):
        handle = await open_handle_for(mock_mongo_client)
        handle.mark_failed(ServerSelectionTimeoutError("timed out"))
        mock_mongo_client.admin.command.side_effect = ServerSelectionTimeoutError("still down")

        with pytest.raises(ServerSelectionTimeoutError):
            await handle.open()

        assert handle.state is ConnectionState.DISCONNECTED
        assert handle.is_open
        mock_mongo_client.close.assert_not_called()
        metrics = get_metrics_collector().get_metrics("connection.reconnect")["metrics"]
        assert metrics["connection.reconnect"]["error_count"] == 1

    async def test_close(self, mock_mongo_client):
        handle = await open_handle_for(mock_mongo_client)
        events, listener = recorder()
        handle.subscribe(listener)

        handle.close()
        handle.close()

        mock_mongo_client.close.assert_called_once()
        assert handle.state is ConnectionState.DISCONNECTED
        assert [event.type for event in events] == [ConnectionEventType.DISCONNECTED]

    async def test_topology_monitor_forwards_changes(self, mock_mongo_client):
        handle = await open_handle_for(mock_mongo_client)
        monitor = _TopologyMonitor(handle)
        event = MagicMock()
        event.previous_description.has_known_servers = True
        event.new_description.has_known_servers = False

        monitor.description_changed(event)

        assert handle.state is ConnectionState.DISCONNECTED

    async def test_topology_monitor_ignores_unchanged(self, mock_mongo_client):
        handle = await open_handle_for(mock_mongo_client)
        monitor = _TopologyMonitor(handle)
        event = MagicMock()
        event.previous_description.has_known_servers = True
        event.new_description.has_known_servers = True

        monitor.description_changed(event)

        assert handle.state is ConnectionState.CONNECTED


@pytest.mark.unit
@pytest.mark.asyncio
class TestConnectionRegistry:
    """Test handle caching by connection string."""

    async def test_identical_strings_share_handle(self, mock_mongo_client):
        registry = ConnectionRegistry()

        with patch(CLIENT_PATH, return_value=mock_mongo_client) as client_cls:
            first = await registry.acquire(CONNECTION_STRING, "testdb")
            second = await registry.acquire(CONNECTION_STRING, "testdb")

        assert first is second
        assert len(registry) == 1
        assert CONNECTION_STRING in registry
        assert client_cls.call_count == 1

    async def test_different_strings_get_different_handles(self, mock_mongo_client):
        registry = ConnectionRegistry()

        with patch(CLIENT_PATH, return_value=mock_mongo_client):
            first = await registry.acquire(CONNECTION_STRING, "testdb")
            second = await registry.acquire("mongodb://127.0.0.1:27017/library", "library")

        assert first is not second
        assert len(registry) == 2

    async def test_listener_subscribed_once(self, mock_mongo_client):
        registry = ConnectionRegistry()
        events, listener = recorder()

        with patch(CLIENT_PATH, return_value=mock_mongo_client):
            handle = await registry.acquire(CONNECTION_STRING, "testdb", listener=listener)
            await registry.acquire(CONNECTION_STRING, "testdb", listener=listener)

        assert [event.type for event in events] == [ConnectionEventType.CONNECTED]
        handle.close()
        assert events[-1].type is ConnectionEventType.DISCONNECTED
        assert len(events) == 2

    async def test_failed_open_is_not_cached(self):
        client = MagicMock()
        client.admin.command = AsyncMock(side_effect=ServerSelectionTimeoutError("no servers"))
        registry = ConnectionRegistry()

        with patch(CLIENT_PATH, return_value=client):
            with pytest.raises(ServerSelectionTimeoutError):
                await registry.acquire(CONNECTION_STRING, "testdb")

        assert CONNECTION_STRING not in registry

    async def test_concurrent_acquire_opens_once(self, mock_mongo_client):
        registry = ConnectionRegistry()

        with patch(CLIENT_PATH, return_value=mock_mongo_client) as client_cls:
            handles = await asyncio.gather(
                *(registry.acquire(CONNECTION_STRING, "testdb") for _ in range(5))
            )

        assert all(handle is handles[0] for handle in handles)
        assert len(registry) == 1
        assert client_cls.call_count == 1
        mock_mongo_client.admin.command.assert_awaited_once_with("ping")

    async def test_failed_reconnect_keeps_cached_handle(self, mock_mongo_client):
        registry = ConnectionRegistry()

        with patch(CLIENT_PATH, return_value=mock_mongo_client):
            handle = await registry.acquire(CONNECTION_STRING, "testdb")
        handle.mark_failed(ConnectionFailure("reset"))
        mock_mongo_client.admin.command.side_effect = ConnectionFailure("still down")

        with pytest.raises(ConnectionFailure):
            await registry.acquire(CONNECTION_STRING, "testdb")

        assert registry.get(CONNECTION_STRING) is handle

        mock_mongo_client.admin.command.side_effect = None
        assert await registry.acquire(CONNECTION_STRING, "testdb") is handle
        assert handle.state is ConnectionState.CONNECTED

    async def test_discard_and_close_all(self, mock_mongo_client):
        registry = ConnectionRegistry()

        with patch(CLIENT_PATH, return_value=mock_mongo_client):
            handle = await registry.acquire(CONNECTION_STRING, "testdb")
            await registry.acquire("mongodb://127.0.0.1:27017/library", "library")

        registry.discard(handle)
        assert handle.state is ConnectionState.DISCONNECTED
        assert len(registry) == 1

        registry.close_all()
        assert len(registry) == 0
