"""Persistence adapters for connectors and sync jobs."""
