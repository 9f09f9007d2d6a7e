"""
SyncSpine: scheduled connector syncs into a search index.

Connectors yield documents; the scheduler decides when each connector is due,
the job consumer claims and runs one job per connector at a time, and the
ingestion sink batches documents into bulk requests under size and count
limits while the error monitor decides whether a job is still viable.

Quick start::

    from syncspine.service import SyncService

    service = SyncService()
    service.start()
"""

__version__ = "0.1.0"
