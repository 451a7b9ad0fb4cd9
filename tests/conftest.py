"""
Pytest configuration and shared fixtures for MDB_CONNECTOR tests.

This module provides:
- Mock Motor client / database / collection fixtures
- Configuration and descriptor factories
- Testcontainers fixtures for integration tests
"""

from typing import Any, Dict, List
from unittest.mock import AsyncMock, MagicMock

import pytest

from mdb_connector.config import ConnectorConfig, DatabaseDescriptor
from mdb_connector.observability import (clear_connection_context,
                                         clear_correlation_id,
                                         get_metrics_collector)


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without external services")
    config.addinivalue_line("markers", "integration: tests against a real MongoDB")


# ============================================================================
# MOCK MOTOR FIXTURES
# ============================================================================


def make_cursor(documents: List[Dict[str, Any]] = None) -> MagicMock:
    """Create a mock Motor cursor whose to_list() returns ``documents``."""
    cursor = MagicMock()
    cursor.to_list = AsyncMock(return_value=list(documents or []))
    return cursor


@pytest.fixture
def mock_collection() -> MagicMock:
    """Create a mock Motor collection."""
    collection = MagicMock()
    collection.name = "users"
    collection.find = MagicMock(return_value=make_cursor())
    collection.aggregate = MagicMock(return_value=make_cursor())
    collection.list_indexes = MagicMock(return_value=make_cursor())
    collection.count_documents = AsyncMock(return_value=0)
    collection.insert_many = AsyncMock(return_value=MagicMock(inserted_ids=[]))
    collection.update_many = AsyncMock(return_value=MagicMock(matched_count=0))
    collection.delete_many = AsyncMock(return_value=MagicMock(deleted_count=0))
    collection.create_index = AsyncMock(return_value="test_index")
    return collection


@pytest.fixture
def mock_database(mock_collection: MagicMock) -> MagicMock:
    """Create a mock Motor database; every collection name maps to mock_collection."""
    db = MagicMock()
    db.name = "testdb"
    db.__getitem__.return_value = mock_collection
    db.command = AsyncMock(return_value={"ok": 1})
    db.drop_collection = AsyncMock(return_value={"ok": 1})
    return db


@pytest.fixture
def mock_mongo_client(mock_database: MagicMock) -> MagicMock:
    """Create a mock AsyncIOMotorClient that answers ping."""
    client = MagicMock()
    client.admin.command = AsyncMock(return_value={"ok": 1})
    client.__getitem__.return_value = mock_database
    return client


# ============================================================================
# CONFIGURATION FIXTURES
# ============================================================================


@pytest.fixture
def descriptor() -> DatabaseDescriptor:
    """A single local database without credentials."""
    return DatabaseDescriptor(id="testdb", hosts="127.0.0.1:27017", default=True)


@pytest.fixture
def raw_config() -> Dict[str, Any]:
    """Provide a list-shaped configuration with two databases."""
    return {
        "databases": [
            {
                "id": "testdb",
                "hosts": [{"host": "127.0.0.1", "port": 27017}],
                "default": True,
            },
            {
                "id": "library",
                "hosts": [{"host": "127.0.0.1", "port": 27018}],
                "username": "reader",
                "password": "secret",
                "authDatabase": "admin",
            },
        ],
        "enableCollectionDatabases": True,
    }


@pytest.fixture
def connector_config(raw_config: Dict[str, Any]) -> ConnectorConfig:
    return ConnectorConfig.from_mapping(raw_config, environ={})


# ============================================================================
# ENVIRONMENT
# ============================================================================


@pytest.fixture(autouse=True)
def reset_environment(monkeypatch):
    """Reset environment variables and observability state before each test."""
    env_vars_to_clear = [
        "DB_NAME",
        "NODE_ENV",
        "ENV",
        "DB_testdb_USERNAME",
        "DB_testdb_PASSWORD",
        "DB_testdb_AUTH_SOURCE",
        "DB_testdb_AUTH_MECHANISM",
        "DB_testdb_MAX_POOL",
    ]
    for var in env_vars_to_clear:
        monkeypatch.delenv(var, raising=False)

    get_metrics_collector().reset()
    yield
    clear_correlation_id()
    clear_connection_context()


# ============================================================================
# TESTCONTAINERS FIXTURES (Real MongoDB for Integration Tests)
# ============================================================================


@pytest.fixture(scope="session")
def mongodb_container():
    """
    Start a MongoDB container for integration tests.

    Session-scoped: the container starts once and is reused.
    """
    try:
        from testcontainers.mongodb import MongoDbContainer
    except ImportError:
        pytest.skip("testcontainers not installed. Install with: pip install -e '.[test]'")

    with MongoDbContainer(image="mongo:7.0") as container:
        yield container


@pytest.fixture
def mongodb_port(mongodb_container) -> int:
    """Host port the container's MongoDB listens on."""
    return int(mongodb_container.get_exposed_port(27017))
