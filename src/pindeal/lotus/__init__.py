"""Lotus ledger client."""
