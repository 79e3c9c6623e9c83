"""Persistence core: central store, offline cache and reconciliation."""
