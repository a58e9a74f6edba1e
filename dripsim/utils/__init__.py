"""Shared helpers: clocks, event bus, HTTP envelopes, validation."""
