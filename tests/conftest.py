"""
Shared pytest fixtures for SyncSpine tests.

This module provides:
- An in-memory SQLite store with the schema applied
- An in-memory bulk client
- A connector registry with the example connector and a scripted test connector
- Factories for connectors rows and scripted document streams
"""

import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

# Ensure syncspine package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from syncspine.connectors.base import BaseConnector
from syncspine.connectors.example import ExampleConnector
from syncspine.connectors.registry import ConnectorRegistry
from syncspine.core.models import ConnectorStatus, SchedulingSettings, SyncAction
from syncspine.ingestion.clients import InMemoryBulkClient
from syncspine.persistence.sqlite import SqliteConnectorActions, open_database


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark thread-driven tests as slow so they can be deselected."""
    for item in items:
        if Path(item.fspath).name in {"test_consumer_threads.py", "test_timer.py"}:
            item.add_marker(pytest.mark.slow)


# =============================================================================
# Scripted connector
# =============================================================================


class ScriptedConnector(BaseConnector):
    """Yields whatever ``script`` holds.

    Script entries:
        dict                   → create_or_update of that document
        ("delete", id)         → delete action
        Exception instance     → document whose download raises it
        ("stream", Exception)  → raised by the generator itself
    """

    service_type = "scripted"
    script: list[Any] = []
    final_cursors: dict[str, str] = {"position": "end"}

    @classmethod
    def configurable_fields(cls) -> dict[str, dict[str, Any]]:
        return {"name": {"label": "Name", "value": "scripted"}}

    def yield_documents(self):
        for number, entry in enumerate(self.script, start=1):
            if isinstance(entry, dict):
                yield SyncAction.CREATE_OR_UPDATE, entry, None
            elif isinstance(entry, BaseException):
                yield SyncAction.CREATE_OR_UPDATE, {"id": f"poison-{number}"}, _raiser(entry)
            elif entry[0] == "delete":
                yield SyncAction.DELETE, {"id": entry[1]}, None
            elif entry[0] == "stream":
                raise entry[1]
        self._cursors.update(self.final_cursors)


def _raiser(error: BaseException) -> Callable[[], dict]:
    def download() -> dict:
        raise error

    return download


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def conn():
    connection = open_database(":memory:")
    yield connection
    connection.close()


@pytest.fixture
def client() -> InMemoryBulkClient:
    return InMemoryBulkClient()


@pytest.fixture
def actions(conn, client) -> SqliteConnectorActions:
    store = SqliteConnectorActions(conn, client=client)
    store.initialize_schema()
    return store


@pytest.fixture
def scripted() -> type[ScriptedConnector]:
    """Fresh ScriptedConnector subclass so scripts never leak between tests."""

    class Scripted(ScriptedConnector):
        script = []

    return Scripted


@pytest.fixture
def registry(scripted) -> ConnectorRegistry:
    reg = ConnectorRegistry()
    reg.register(ExampleConnector)
    reg.register(scripted)
    return reg


@pytest.fixture
def make_connector(actions):
    """Create a connector row that is ready to sync."""

    def _make(
        service_type: str = "scripted",
        index_name: str = "search-test",
        *,
        status: ConnectorStatus = ConnectorStatus.CONFIGURED,
        configuration: dict[str, Any] | None = None,
        scheduling: SchedulingSettings | None = None,
        sync_now: bool = False,
    ):
        if configuration is None:
            configuration = {"name": "scripted"} if service_type == "scripted" else {}
        settings = actions.create_connector(
            service_type,
            index_name,
            configuration=configuration,
            scheduling=scheduling or SchedulingSettings(enabled=True, interval="0 0 * * * ?"),
            status=status,
        )
        if sync_now:
            actions.request_sync_now(settings.id)
        return actions.load_connector_settings(settings.id)

    return _make
