"""Shared HTTP response helpers for territory backend interactions."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests

from ..errors import (
    TerritoryClaimError,
    TerritoryPermissionError,
    TerritoryServiceError,
)

RequestsJSONDecodeError = requests.exceptions.JSONDecodeError

__all__ = [
    "raise_for_territory_status",
    "extract_error",
]

LOGGER = logging.getLogger(__name__)


def raise_for_territory_status(response: requests.Response, context: str) -> None:
    """Raise the matching territory error for a non-success status."""

    status = response.status_code
    if status < 400:
        return
    detail = extract_error(response)
    message = f"{context} failed (status {status})"
    if detail:
        message = f"{message} | {detail}"

    if status in (401, 403):
        LOGGER.warning(message)
        raise TerritoryPermissionError(message)
    if status in (400, 409, 422):
        # PostgREST reports RPC exceptions (overlap rules etc.) as 4xx.
        LOGGER.warning(message)
        raise TerritoryClaimError(message)
    LOGGER.error(message)
    raise TerritoryServiceError(message)


def extract_error(resp: Optional[requests.Response]) -> Optional[str]:
    """Return compact string with PostgREST error info if present."""

    if resp is None:
        return None
    data = _safe_json(resp)
    if data is None:
        return _extract_error_text(resp)
    if not isinstance(data, dict):
        return None
    parts = _collect_error_parts(data)
    return " | ".join(parts) if parts else None


def _safe_json(resp: requests.Response) -> Optional[Any]:
    """Safely parse JSON; return None if parsing fails."""

    try:
        return resp.json()
    except (ValueError, RequestsJSONDecodeError) as exc:
        LOGGER.debug("Failed to decode JSON from %s: %s", getattr(resp, "url", "?"), exc)
        return None


def _extract_error_text(resp: requests.Response) -> Optional[str]:
    """Best-effort plain-text extraction when JSON parsing fails."""

    text = getattr(resp, "text", "")
    if not isinstance(text, str):
        return None
    trimmed = text.strip()
    if not trimmed:
        return None
    return (trimmed[:297] + "...") if len(trimmed) > 300 else trimmed


def _collect_error_parts(data: Dict[str, Any]) -> List[str]:
    parts: List[str] = []
    for key in ("message", "details", "hint"):
        value = data.get(key)
        if value:
            parts.append(str(value))
    code = data.get("code")
    if code:
        parts.append(f"code:{code}")
    return parts
