"""
Ingestion sink: documents in, bulk requests out.

┌──────────────────────────────────────────────────────────────────────────────┐
│  INGESTION FLOW                                                              │
│                                                                              │
│   ingest(doc) ──► serialize ──► size cap ──► will_fit? ──no──► flush()       │
│   delete(id)  ──► delete op ─────────────────────┤                           │
│                                                  ▼                           │
│                                         BulkQueue.add(op, payload)           │
│                                         queued stats += ...                  │
│                                                                              │
│   flush() ──► pop_all ──► client.bulk(ops, pipeline) ──► check errors        │
│                                                  │                           │
│                                                  ▼                           │
│                                   completed += queued; queued = 0            │
└──────────────────────────────────────────────────────────────────────────────┘

Delivery is at-most-once from the sink's point of view: operations popped for
a failed bulk request are not put back.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from typing import Any

from syncspine.core.errors import BulkWriteError
from syncspine.core.models import IngestionStats
from syncspine.core.protocols import BulkClient
from syncspine.ingestion.bulk_queue import MiB, BulkQueue

logger = logging.getLogger(__name__)

DEFAULT_MAX_ALLOWED_DOCUMENT_SIZE = 5 * MiB
SUCCESSFUL_RESULTS = ("created", "deleted", "updated", "noop", "not_found")


class IngestionSink:
    def __init__(
        self,
        client: BulkClient,
        index_name: str,
        *,
        request_pipeline: str | None = None,
        queue: BulkQueue | None = None,
        max_allowed_document_size: int = DEFAULT_MAX_ALLOWED_DOCUMENT_SIZE,
        log_every: int = 1000,
    ):
        self.client = client
        self.index_name = index_name
        self.request_pipeline = request_pipeline
        self.queue = queue if queue is not None else BulkQueue()
        self.max_allowed_document_size = max_allowed_document_size
        self.log_every = log_every

        self._queued = IngestionStats()
        self._completed = IngestionStats()
        self._next_progress_log = log_every

    # === Documents ===

    def ingest(self, document: dict[str, Any] | None) -> None:
        if not document:
            logger.warning("Connector attempted to ingest an empty document, skipping")
            return
        document_id = document.get("id")
        if document_id is None:
            logger.warning("Connector attempted to ingest a document without an id, skipping")
            return

        payload = json.dumps(document, default=str)
        payload_size = len(payload.encode("utf-8"))
        if payload_size > self.max_allowed_document_size:
            logger.warning(
                "Document %s is too large to be ingested: %d bytes exceeds the %d byte limit, skipping",
                document_id,
                payload_size,
                self.max_allowed_document_size,
            )
            return

        operation = json.dumps({"index": {"_index": self.index_name, "_id": str(document_id)}})
        self._add(operation, payload)
        self._queued.indexed_document_count += 1
        self._queued.indexed_document_volume += payload_size

    def ingest_multiple(self, documents: Iterable[dict[str, Any] | None]) -> None:
        for document in documents:
            self.ingest(document)

    def delete(self, document_id: str | None) -> None:
        if document_id is None:
            return
        operation = json.dumps({"delete": {"_index": self.index_name, "_id": str(document_id)}})
        self._add(operation)
        self._queued.deleted_document_count += 1

    def delete_multiple(self, document_ids: Iterable[str | None]) -> None:
        for document_id in document_ids:
            self.delete(document_id)

    # === Flushing ===

    def flush(self) -> None:
        operations = self.queue.pop_all()
        if not operations:
            return

        logger.debug("Sending %d bulk operations to index %s", len(operations), self.index_name)
        response = self.client.bulk(operations, pipeline=self.request_pipeline)
        _raise_on_failed_items(response)

        self._completed.add(self._queued)
        self._queued.reset()
        self._log_progress()

    def ingestion_stats(self) -> IngestionStats:
        return self._completed.copy()

    # === Internals ===

    def _add(self, *parts: str) -> None:
        if not self.queue.will_fit(*parts):
            self.flush()
        self.queue.add(*parts)

    def _log_progress(self) -> None:
        processed = self._completed.indexed_document_count + self._completed.deleted_document_count
        if processed >= self._next_progress_log:
            logger.info(
                "Index %s: %d documents indexed, %d deleted so far",
                self.index_name,
                self._completed.indexed_document_count,
                self._completed.deleted_document_count,
            )
            while self._next_progress_log <= processed:
                self._next_progress_log += self.log_every


def _raise_on_failed_items(response: dict[str, Any] | None) -> None:
    if not response or not response.get("errors"):
        return
    for item in response.get("items", []):
        for op_type, data in item.items():
            if data.get("result") in SUCCESSFUL_RESULTS:
                continue
            error = data.get("error") or {}
            if isinstance(error, dict):
                reason = f"{error.get('type', 'unknown')}: {error.get('reason', '')}"
            else:
                reason = str(error)
            raise BulkWriteError(
                f"Bulk {op_type} of document {data.get('_id')} failed: {reason}"
            )
    raise BulkWriteError("Bulk request reported errors")
