"""
Blueprint Common Utilities
==========================

Shared helper functions for API blueprints.

Usage:
    from dripsim.blueprints.api._common import get_container, get_coordinator, get_json, success, fail
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from flask import current_app, request

from dripsim.utils.http import error_response, success_response

if TYPE_CHECKING:
    from dripsim.services.application.irrigation_coordinator import IrrigationCoordinator
    from dripsim.services.container import ServiceContainer

logger = logging.getLogger("api._common")

# ============================================================================
# CONTAINER ACCESS
# ============================================================================


def get_container() -> "ServiceContainer":
    """
    Get the service container from Flask app config.

    Raises:
        RuntimeError: If container is not configured
    """
    container = current_app.config.get("CONTAINER")
    if not container:
        raise RuntimeError("ServiceContainer not found in app config")
    return container


def get_coordinator() -> "IrrigationCoordinator":
    return get_container().coordinator


# ============================================================================
# REQUEST HELPERS
# ============================================================================


def get_json() -> dict:
    """Parsed JSON body, or an empty dict when absent or malformed."""
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


# ============================================================================
# RESPONSE HELPERS
# ============================================================================


def success(data: dict | list | None = None, status: int = 200, *, message: str | None = None):
    """Flask Response with format: {"ok": true, "data": ..., "error": null}"""
    return success_response(data, status, message=message)


def fail(message: str, status: int = 400, *, details: dict | list | None = None):
    """Flask Response with format: {"ok": false, "data": null, "error": {...}}"""
    return error_response(message, status, details=details)
