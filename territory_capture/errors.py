"""Central error types used across the application."""

from __future__ import annotations


class TerritoryError(RuntimeError):
    """Base error for territory capture failures."""


class TerritoryServiceError(TerritoryError):
    """Raised when the territory backend cannot be reached or fails a request."""


class TerritoryPermissionError(TerritoryServiceError):
    """Raised when the backend rejects the API key or access token."""


class TerritoryClaimError(TerritoryServiceError):
    """Raised when a claim is rejected or the backend returns no territory."""


class TerritoryPayloadError(TerritoryServiceError):
    """Raised when a backend response cannot be decoded."""


__all__ = [
    "TerritoryError",
    "TerritoryServiceError",
    "TerritoryPermissionError",
    "TerritoryClaimError",
    "TerritoryPayloadError",
]
