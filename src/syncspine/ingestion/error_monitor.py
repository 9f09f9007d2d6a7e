"""Per-job document error accounting.

The monitor turns a stream of per-document outcomes into a go/no-go signal
for the job. It trips on, in this order:

    1. too many consecutive errors
    2. too many errors in total
    3. too large an error ratio within the trailing window

and, once the stream has been fully consumed, ``finalize`` checks the error
ratio over the whole job.

Not thread-safe: one monitor belongs to one job runner, which processes
documents sequentially.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Any

from syncspine.core.errors import (
    CapturedError,
    ErrorKind,
    MonitoringError,
    is_fatal,
)
from syncspine.core.models import DocumentError

logger = logging.getLogger(__name__)


class ErrorMonitor:
    def __init__(
        self,
        max_errors: int = 1000,
        max_consecutive_errors: int = 10,
        max_error_ratio: float = 0.15,
        window_size: int = 100,
        error_queue_size: int = 20,
    ):
        if window_size < 1:
            raise ValueError("window_size must be at least 1")
        self.max_errors = max_errors
        self.max_consecutive_errors = max_consecutive_errors
        self.max_error_ratio = max_error_ratio
        self.window_size = window_size

        self.total_error_count = 0
        self.success_count = 0
        self.consecutive_error_count = 0
        self.last_error: BaseException | None = None

        self._window: list[bool] = [False] * window_size
        self._window_index = 0
        self._error_queue: deque[DocumentError] = deque(maxlen=error_queue_size)

    # === Recording ===

    def note_success(self) -> None:
        self.consecutive_error_count = 0
        self.success_count += 1
        self._window[self._window_index] = False
        self._advance_window()

    def note_error(self, error: BaseException, correlation_id: str | None = None) -> None:
        """Record a failed document and raise if the job is no longer viable.

        Raises:
            MonitoringError: a threshold tripped.
            The original error, if its kind is fatal on its own.
        """
        captured = CapturedError.capture(error)
        if correlation_id is not None:
            captured = CapturedError(error, correlation_id, captured.kind)
        document_error = captured.to_document_error()
        logger.debug(
            "Message id: %s - %s: %s\n%s",
            captured.correlation_id,
            document_error.error_class,
            document_error.message,
            document_error.trace,
        )

        self.total_error_count += 1
        self.consecutive_error_count += 1
        self._window[self._window_index] = True
        self._error_queue.append(document_error)
        self._advance_window()
        self.last_error = error

        self._raise_if_necessary(error)

    def finalize(self) -> None:
        """Check the error ratio across the whole job."""
        total_documents = self.total_error_count + self.success_count
        if total_documents > 0 and self.total_error_count / total_documents > self.max_error_ratio:
            raise MonitoringError(
                f"There were {self.total_error_count} errors out of {total_documents} total documents",
                kind=ErrorKind.OVERALL_ERRORS_EXCEEDED,
                tripped_by=self.last_error,
            )

    # === Inspection ===

    @property
    def error_queue(self) -> list[DocumentError]:
        return list(self._error_queue)

    @property
    def errors_in_window(self) -> int:
        return sum(self._window)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_error_count": self.total_error_count,
            "success_count": self.success_count,
            "consecutive_error_count": self.consecutive_error_count,
            "errors_in_window": self.errors_in_window,
            "window_size": self.window_size,
            "last_error": repr(self.last_error) if self.last_error else None,
        }

    # === Internals ===

    def _advance_window(self) -> None:
        self._window_index = (self._window_index + 1) % self.window_size

    def _raise_if_necessary(self, error: BaseException) -> None:
        if self.consecutive_error_count > self.max_consecutive_errors:
            raise MonitoringError(
                "Exceeded maximum consecutive errors - "
                f"saw {self.consecutive_error_count} errors in a row.",
                kind=ErrorKind.CONSECUTIVE_ERRORS_EXCEEDED,
                tripped_by=error,
            )
        if self.total_error_count > self.max_errors:
            raise MonitoringError(
                "Exceeded maximum number of errors - "
                f"saw {self.total_error_count} errors in total.",
                kind=ErrorKind.TOTAL_ERRORS_EXCEEDED,
                tripped_by=error,
            )
        errors_in_window = self.errors_in_window
        if errors_in_window / self.window_size > self.max_error_ratio:
            raise MonitoringError(
                f"Exceeded maximum error ratio of {self.max_error_ratio}. "
                f"Of the last {self.window_size} documents, {errors_in_window} had errors",
                kind=ErrorKind.WINDOW_ERRORS_EXCEEDED,
                tripped_by=error,
            )
        if is_fatal(error):
            raise error
