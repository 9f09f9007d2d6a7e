"""Document source contract implemented by every connector."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Any, ClassVar

from syncspine.core.models import SyncAction

DocumentTuple = tuple[SyncAction, dict[str, Any], Callable[[], dict[str, Any]] | None]


class BaseConnector:
    """Base class for connectors.

    Subclasses set ``service_type``, declare ``configurable_fields`` and
    implement ``yield_documents``. Each yielded tuple is
    ``(action, document, download)``: ``download`` is an optional callable
    returning extra fields (e.g. extracted attachment text) that is invoked
    lazily, inside the per-document error guard.

    A connector that must pause (rate limits, maintenance windows) raises
    ``SyncSuspendedError`` with the cursors to resume from. The ``cursors``
    property reports the resume state after a completed stream.
    """

    service_type: ClassVar[str] = ""
    display_name: ClassVar[str] = ""

    def __init__(
        self,
        configuration: dict[str, Any] | None = None,
        cursors: dict[str, str] | None = None,
    ):
        self.configuration = dict(configuration or {})
        self._cursors: dict[str, str] = dict(cursors or {})

    @classmethod
    def configurable_fields(cls) -> dict[str, dict[str, Any]]:
        """Field name to ``{"label": ..., "value": default}``."""
        return {}

    @property
    def cursors(self) -> dict[str, str]:
        return dict(self._cursors)

    def is_healthy(self) -> bool:
        return True

    def yield_documents(self) -> Iterator[DocumentTuple]:
        raise NotImplementedError
