"""Sync jobs: producer, consumer, worker pool, runner and clean-up."""
