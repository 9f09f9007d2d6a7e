"""Search engine clients for the ingestion sink.

``InMemoryBulkClient`` applies bulk requests to per-index dictionaries and is
used for local runs and tests. ``ElasticsearchBulkClient`` forwards them to an
Elasticsearch cluster through the official client.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any

from elasticsearch import Elasticsearch
from elasticsearch.helpers import scan

logger = logging.getLogger(__name__)


class InMemoryBulkClient:
    """Bulk client backed by dictionaries, one per index.

    Every request is recorded in ``calls`` as ``(operations, pipeline)``.
    """

    def __init__(self) -> None:
        self.indices: dict[str, dict[str, dict[str, Any]]] = {}
        self.calls: list[tuple[list[str], str | None]] = []
        self._lock = threading.Lock()

    def bulk(self, operations: list[str], *, pipeline: str | None = None) -> dict[str, Any]:
        items: list[dict[str, Any]] = []
        with self._lock:
            self.calls.append((list(operations), pipeline))
            lines = iter(operations)
            for line in lines:
                action = json.loads(line)
                if "index" in action:
                    meta = action["index"]
                    document = json.loads(next(lines))
                    index = self.indices.setdefault(meta["_index"], {})
                    result = "updated" if meta["_id"] in index else "created"
                    index[meta["_id"]] = document
                    items.append({"index": {"_id": meta["_id"], "result": result, "status": 200}})
                elif "delete" in action:
                    meta = action["delete"]
                    index = self.indices.setdefault(meta["_index"], {})
                    result = "deleted" if index.pop(meta["_id"], None) is not None else "not_found"
                    items.append({"delete": {"_id": meta["_id"], "result": result, "status": 200}})
                else:
                    raise ValueError(f"Unsupported bulk action: {line}")
        return {"errors": False, "items": items}

    def ensure_index(self, index_name: str) -> None:
        with self._lock:
            self.indices.setdefault(index_name, {})

    def fetch_document_ids(self, index_name: str) -> set[str]:
        with self._lock:
            return set(self.indices.get(index_name, {}))

    def documents(self, index_name: str) -> dict[str, dict[str, Any]]:
        with self._lock:
            return dict(self.indices.get(index_name, {}))


class ElasticsearchBulkClient:
    """Bulk client for an Elasticsearch cluster."""

    def __init__(self, es: Elasticsearch):
        self.es = es

    @classmethod
    def from_url(cls, url: str, api_key: str | None = None) -> ElasticsearchBulkClient:
        return cls(Elasticsearch(url, api_key=api_key))

    def bulk(self, operations: list[str], *, pipeline: str | None = None) -> dict[str, Any]:
        response = self.es.bulk(operations=operations, pipeline=pipeline)
        return dict(response.body) if hasattr(response, "body") else dict(response)

    def ensure_index(self, index_name: str) -> None:
        if self.es.indices.exists(index=index_name):
            return
        logger.info("Creating content index %s", index_name)
        self.es.indices.create(index=index_name)

    def fetch_document_ids(self, index_name: str) -> set[str]:
        if not self.es.indices.exists(index=index_name):
            return set()
        return {
            hit["_id"]
            for hit in scan(
                self.es,
                index=index_name,
                query={"query": {"match_all": {}}},
                _source=False,
            )
        }

    def close(self) -> None:
        self.es.close()
