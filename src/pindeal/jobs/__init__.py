"""Durable job queue and scheduler."""
