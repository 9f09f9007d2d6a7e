"""Connector contract, registry and the bundled example connector."""
