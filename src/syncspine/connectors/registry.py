"""Connector registry: service type → connector class.

There is no module-level registry. The service builds one at startup
(``default_registry()`` or its own) and hands it to the scheduler, the
heartbeat and the job runners.

ARCHITECTURE
────────────
::

    ConnectorRegistry
      ├── .register(cls)          ─ store by cls.service_type (decorator-friendly)
      ├── .get(service_type)      ─ lookup, ConnectorNotFoundError if missing
      ├── .has(service_type)      ─ existence check
      ├── .service_types()        ─ sorted registered types
      ├── .unregister(...)
      └── .clear()
"""

from __future__ import annotations

from syncspine.connectors.base import BaseConnector
from syncspine.core.errors import ConnectorNotFoundError


class ConnectorRegistry:
    """Injectable connector registry.

    Example:
        >>> registry = ConnectorRegistry()
        >>> @registry.register
        ... class Hello(BaseConnector):
        ...     service_type = "hello"
        >>> registry.get("hello") is Hello
        True
    """

    def __init__(self) -> None:
        self._connectors: dict[str, type[BaseConnector]] = {}

    def register(self, connector_class: type[BaseConnector]) -> type[BaseConnector]:
        service_type = connector_class.service_type
        if not service_type:
            raise ValueError(f"{connector_class.__name__} does not declare a service_type")
        self._connectors[service_type] = connector_class
        return connector_class

    def get(self, service_type: str) -> type[BaseConnector]:
        try:
            return self._connectors[service_type]
        except KeyError:
            available = ", ".join(self.service_types()) or "none"
            raise ConnectorNotFoundError(
                f"No connector registered for service type '{service_type}'. "
                f"Available: {available}"
            ) from None

    def has(self, service_type: str) -> bool:
        return service_type in self._connectors

    def service_types(self) -> list[str]:
        return sorted(self._connectors)

    def unregister(self, service_type: str) -> bool:
        return self._connectors.pop(service_type, None) is not None

    def clear(self) -> None:
        self._connectors.clear()

    def __len__(self) -> int:
        return len(self._connectors)


def default_registry() -> ConnectorRegistry:
    """Registry holding the connectors shipped with SyncSpine."""
    from syncspine.connectors.example import ExampleConnector

    registry = ConnectorRegistry()
    registry.register(ExampleConnector)
    return registry
