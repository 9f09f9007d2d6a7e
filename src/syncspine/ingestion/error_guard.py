"""Per-document error capture for connector syncs."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TypeVar

from syncspine.core.errors import FATAL_KINDS, CapturedError, ErrorKind
from syncspine.ingestion.error_monitor import ErrorMonitor

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorGuard:
    """Runs one document's extraction and routes its failure.

    Fatal kinds are logged and re-raised untouched. Anything else is logged
    as a warning and handed to the error monitor, which raises
    ``MonitoringError`` once a threshold trips.

    Example:
        >>> guard = ErrorGuard(ErrorMonitor())
        >>> guard.yield_single_document(lambda: 1 / 0, identifier="doc-1") is None
        True
        >>> guard.monitor.total_error_count
        1
    """

    def __init__(
        self,
        monitor: ErrorMonitor,
        fatal_kinds: frozenset[ErrorKind] = FATAL_KINDS,
    ):
        self.monitor = monitor
        self.fatal_kinds = fatal_kinds

    def yield_single_document(
        self,
        extract: Callable[[], T],
        identifier: str | None = None,
    ) -> T | None:
        try:
            result = extract()
        except Exception as e:
            captured = CapturedError.capture(e)
            described = f"document {identifier}" if identifier is not None else "a document"
            if captured.kind in self.fatal_kinds:
                logger.error(
                    "Encountered a fatal error while processing %s [%s]: %s",
                    described,
                    captured.correlation_id,
                    e,
                )
                raise
            logger.warning(
                "Encountered an error while processing %s [%s]: %s: %s",
                described,
                captured.correlation_id,
                type(e).__name__,
                e,
            )
            self.monitor.note_error(e, correlation_id=captured.correlation_id)
            return None

        self.monitor.note_success()
        return result
