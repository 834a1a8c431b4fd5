"""Centralized exception hierarchy for the care plan engine.

All domain and service exceptions inherit from :class:`CarePlanError` so that
callers can catch a single base class when they need a broad safety net, yet
still match on specific subclasses where narrower handling is appropriate.

The HTTP layer that consumes these services maps ``http_status`` to the
response code.

Hierarchy
---------
::

    CarePlanError (base — maps to 500)
    ├── ValidationError              (400 — bad input from caller)
    ├── NotFoundError                (404 — entity does not exist)
    │   └── TokenExpiredError        (410 — completion link past expiry)
    ├── ConflictError                (409 — duplicate / state conflict)
    │   └── TokenAlreadyUsedError    (409 — completion link consumed)
    ├── ServiceError                 (500 — business-logic failure)
    │   ├── RepositoryError          (500 — database / persistence)
    │   └── UpstreamUnavailableError (502 — forecast / model call failed)
    ├── GenerationMalformedError     (never surfaced — triggers fallbacks)
    └── ConfigurationError           (500 — missing / invalid config)
"""

from __future__ import annotations


class CarePlanError(Exception):
    """Base exception for all care plan engine errors.

    Parameters
    ----------
    message:
        Human-readable description (logged server-side).
    detail:
        Optional machine-readable context dict attached to the error for
        structured logging.
    """

    http_status: int = 500

    def __init__(self, message: str = "", *, detail: dict | None = None) -> None:
        super().__init__(message)
        self.detail = detail or {}


# ── Client errors (4xx) ──────────────────────────────────────────────


class ValidationError(CarePlanError):
    """Caller supplied invalid or out-of-range input (HTTP 400)."""

    http_status: int = 400


class NotFoundError(CarePlanError):
    """Requested plant, plan, action, disease or token does not exist (HTTP 404)."""

    http_status: int = 404


class TokenExpiredError(NotFoundError):
    """Completion token exists but is past its expiry (HTTP 410).

    Subclasses :class:`NotFoundError` because an expired token is treated
    as absent; callers that care can still tell the two apart.
    """

    http_status: int = 410


class ConflictError(CarePlanError):
    """Operation conflicts with existing state (HTTP 409)."""

    http_status: int = 409


class TokenAlreadyUsedError(ConflictError):
    """Completion token was consumed by an earlier redemption."""


# ── Server errors (5xx) ──────────────────────────────────────────────


class ServiceError(CarePlanError):
    """Business-logic failure in a service method (HTTP 500)."""

    http_status: int = 500


class RepositoryError(ServiceError):
    """Database / persistence layer failure (HTTP 500)."""

    http_status: int = 500


class UpstreamUnavailableError(ServiceError):
    """Forecast provider or model endpoint failed or timed out (HTTP 502)."""

    http_status: int = 502


class GenerationMalformedError(CarePlanError):
    """Generated text failed parsing or structural validation.

    Raised and caught inside the AI services only; it always routes to a
    deterministic fallback.
    """

    http_status: int = 500


class ConfigurationError(CarePlanError):
    """Missing or invalid application configuration (HTTP 500)."""

    http_status: int = 500
