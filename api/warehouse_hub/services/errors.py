# warehouse_hub/services/errors.py
"""Service-layer exceptions; routers map them onto HTTP status codes."""
from __future__ import annotations


class NotFoundError(LookupError):
    """Requested entity does not exist (404)."""


class ValidationFailed(ValueError):
    """Operation not allowed in the current state (400)."""

    def __init__(self, message: str, **extra):
        super().__init__(message)
        self.extra = extra


class ConflictError(ValueError):
    """Data conflict such as an already used marking code (409)."""


class UpstreamUnavailableError(RuntimeError):
    """MoySklad failed or returned nothing usable (502)."""
