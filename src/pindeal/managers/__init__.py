"""Periodic reconciliation managers."""
