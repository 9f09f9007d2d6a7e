"""Bounded buffer of serialized bulk operations."""

from __future__ import annotations

MiB = 1024 * 1024

DEFAULT_COUNT_THRESHOLD = 500
DEFAULT_SIZE_THRESHOLD = 5 * MiB


class BulkQueue:
    """Append-only NDJSON buffer bounded by line count and byte size.

    Callers check ``will_fit`` before ``add``; ``add`` itself never refuses,
    so a single operation larger than the whole byte budget still goes
    through on an otherwise empty queue.

    Example:
        >>> queue = BulkQueue(count_threshold=2, size_threshold=100)
        >>> queue.will_fit('{"delete": {"_id": "1"}}')
        True
        >>> queue.add('{"delete": {"_id": "1"}}')
        >>> queue.pop_all()
        ['{"delete": {"_id": "1"}}']
    """

    def __init__(
        self,
        count_threshold: int = DEFAULT_COUNT_THRESHOLD,
        size_threshold: int = DEFAULT_SIZE_THRESHOLD,
    ):
        self.count_threshold = count_threshold
        self.size_threshold = size_threshold
        self._buffer: list[str] = []
        self._current_size = 0

    def will_fit(self, *parts: str) -> bool:
        if len(self._buffer) + len(parts) > self.count_threshold:
            return False
        return self._current_size + _byte_size(parts) <= self.size_threshold

    def add(self, *parts: str) -> None:
        self._buffer.extend(parts)
        self._current_size += _byte_size(parts)

    def pop_all(self) -> list[str]:
        buffer, self._buffer = self._buffer, []
        self._current_size = 0
        return buffer

    @property
    def current_size(self) -> int:
        return self._current_size

    def __len__(self) -> int:
        return len(self._buffer)

    def __bool__(self) -> bool:
        return bool(self._buffer)


def _byte_size(parts: tuple[str, ...]) -> int:
    return sum(len(part.encode("utf-8")) for part in parts)
