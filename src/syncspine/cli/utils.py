"""CLI helpers: consoles and service construction."""

from __future__ import annotations

from pydantic import ValidationError
from rich.console import Console

from syncspine.core.errors import ConfigurationError
from syncspine.core.logging import configure_logging
from syncspine.core.settings import SyncSpineSettings, get_settings
from syncspine.service import SyncService

console = Console()
err_console = Console(stderr=True)


def load_settings(database: str | None = None) -> SyncSpineSettings:
    try:
        settings = get_settings()
    except ValidationError as e:
        raise ConfigurationError(f"Invalid SYNCSPINE_* settings: {e}", cause=e) from e
    if database:
        settings = settings.model_copy(update={"database_path": database})
    return settings


def make_service(database: str | None = None, connector_id: str | None = None) -> SyncService:
    settings = load_settings(database)
    configure_logging(settings.log_level, settings.log_json, settings.service_name)
    return SyncService(settings, connector_id=connector_id)


def format_timestamp(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else "-"
