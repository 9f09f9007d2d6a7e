"""Periodic timers, the sync scheduler and connector heartbeats."""
