"""Ingestion pipeline: error monitor, error guard, bulk queue, sink and clients."""
