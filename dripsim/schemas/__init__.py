"""Pydantic request schemas for the HTTP API."""
