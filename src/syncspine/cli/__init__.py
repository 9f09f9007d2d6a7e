"""
CLI layer for SyncSpine.

A thin Typer wrapper around ``SyncService`` for running the sync loops and
poking at connectors and jobs from a terminal.

Entry point::

    syncspine --help
"""

from syncspine.cli.app import app

__all__ = ["app"]
