"""Persistence and logging adapters."""
