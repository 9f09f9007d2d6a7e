"""Shared types: errors, models, settings, logging, cron evaluation."""
