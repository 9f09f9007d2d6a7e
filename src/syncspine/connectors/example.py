"""Example connector generating synthetic documents.

Useful for local runs (``syncspine create-connector --service-type example``)
and as a reference for writing real connectors.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime
from typing import Any

from syncspine.connectors.base import BaseConnector, DocumentTuple
from syncspine.core.models import SyncAction


class ExampleConnector(BaseConnector):
    service_type = "example"
    display_name = "Example Connector"

    @classmethod
    def configurable_fields(cls) -> dict[str, dict[str, Any]]:
        return {
            "document_count": {"label": "Number of documents to generate", "value": "10"},
            "title_prefix": {"label": "Title prefix", "value": "Example document"},
        }

    def yield_documents(self) -> Iterator[DocumentTuple]:
        count = int(self.configuration.get("document_count") or 0)
        prefix = self.configuration.get("title_prefix") or "Example document"
        generation = int(self._cursors.get("generation", "0")) + 1

        for number in range(1, count + 1):
            document = {
                "id": f"example-{number}",
                "title": f"{prefix} {number}",
                "generation": generation,
                "_timestamp": datetime.now(UTC).isoformat(),
            }
            yield SyncAction.CREATE_OR_UPDATE, document, self._body_for(number)

        self._cursors["generation"] = str(generation)

    @staticmethod
    def _body_for(number: int):
        def download() -> dict[str, Any]:
            return {"body": f"Body of example document {number}."}

        return download
