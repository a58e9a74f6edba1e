"""Centralized exception hierarchy for DripSim.

All domain and service exceptions inherit from :class:`DripSimError` so that
callers can catch a single base class when they need a broad safety net, yet
still match on specific subclasses where narrower handling is appropriate.

Blueprint-level error handling (see ``dripsim/utils/http.safe_route``) maps
these to the correct HTTP status codes automatically.

Irrigation refusals (insufficient water, soil already wet, ...) are *not*
exceptions; they are reported through
:class:`~dripsim.enums.events.IrrigationOutcome`.

Hierarchy
---------
::

    DripSimError (base, maps to 500)
    ├── ValidationError          (400: bad input from caller)
    ├── NotFoundError            (404: entity does not exist)
    ├── ServiceError             (500: business-logic failure)
    │   ├── RepositoryError      (500: database / persistence)
    │   └── ExternalServiceError (502: weather feed / network)
    ├── CorruptedStateError      (500: persisted field failed validation)
    └── ConfigurationError       (500: missing / invalid config)
"""

from __future__ import annotations


class DripSimError(Exception):
    """Base exception for all DripSim application errors.

    Parameters
    ----------
    message:
        Human-readable description (logged server-side, **not** leaked to
        the HTTP client unless the exception class opts in).
    detail:
        Optional machine-readable context dict attached to the error for
        structured logging.
    """

    http_status: int = 500

    def __init__(self, message: str = "", *, detail: dict | None = None) -> None:
        super().__init__(message)
        self.detail = detail or {}


# ── Client errors (4xx) ──────────────────────────────────────────────


class ValidationError(DripSimError):
    """Caller supplied invalid or incomplete input (HTTP 400)."""

    http_status: int = 400


class NotFoundError(DripSimError):
    """Requested entity does not exist (HTTP 404)."""

    http_status: int = 404


# ── Server errors (5xx) ──────────────────────────────────────────────


class ServiceError(DripSimError):
    """Business-logic failure in a service method (HTTP 500)."""

    http_status: int = 500


class RepositoryError(ServiceError):
    """Database / persistence layer failure (HTTP 500)."""

    http_status: int = 500


class ExternalServiceError(ServiceError):
    """Third-party or network dependency failure (HTTP 502)."""

    http_status: int = 502


class CorruptedStateError(DripSimError):
    """A persisted field failed validation while loading state.

    Always caught by the loader, which resets the field to its default.
    """

    http_status: int = 500

    def __init__(self, field: str, value: object, reason: str) -> None:
        super().__init__(
            f"Corrupted value for {field!r}: {value!r} ({reason})",
            detail={"field": field, "value": repr(value), "reason": reason},
        )
        self.field = field
        self.value = value
        self.reason = reason


class ConfigurationError(DripSimError):
    """Missing or invalid application configuration (HTTP 500)."""

    http_status: int = 500
