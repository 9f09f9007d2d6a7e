"""Connector heartbeat and first-time configuration."""

from __future__ import annotations

from syncspine.connectors.registry import ConnectorRegistry
from syncspine.core.logging import get_logger
from syncspine.core.models import ConnectorSettings, ConnectorStatus
from syncspine.core.protocols import ConnectorActions

log = get_logger(__name__)


class Heartbeat:
    def __init__(self, actions: ConnectorActions, registry: ConnectorRegistry):
        self.actions = actions
        self.registry = registry

    def configure(self, settings: ConnectorSettings) -> ConnectorStatus:
        """Fill a freshly created connector with its default configuration.

        The connector becomes ``configured`` if every field has a default
        value, otherwise ``needs_configuration``.
        """
        connector_class = self.registry.get(settings.service_type)
        fields = connector_class.configurable_fields()
        configuration = {name: spec.get("value") for name, spec in fields.items()}
        complete = all(value not in (None, "") for value in configuration.values())
        status = ConnectorStatus.CONFIGURED if complete else ConnectorStatus.NEEDS_CONFIGURATION
        self.actions.update_connector_configuration(settings.id, configuration, status)
        log.info("connector.configured", connector_id=settings.id, status=status.value)
        return status

    def send(self, settings: ConnectorSettings) -> None:
        """Refresh ``last_seen`` and, for syncable connectors, the health status."""
        if settings.allows_sync and self.registry.has(settings.service_type):
            connector_class = self.registry.get(settings.service_type)
            try:
                healthy = connector_class(settings.configuration, settings.sync_cursor).is_healthy()
                error = None if healthy else "Health check failed"
            except Exception as e:
                log.exception("connector.health_check_failed", connector_id=settings.id)
                healthy, error = False, str(e)
            status = ConnectorStatus.CONNECTED if healthy else ConnectorStatus.ERROR
            if status != settings.status or error != settings.error:
                self.actions.update_connector_status(settings.id, status, error)
        self.actions.update_connector_last_seen(settings.id)
        log.debug("connector.heartbeat", connector_id=settings.id)
