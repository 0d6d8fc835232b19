"""Territory backend client (Supabase REST: table view plus claim RPC)."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence

import requests

from ..activity_types import ActivityType
from ..config import (
    REQUEST_TIMEOUT,
    TERRITORY_ACCESS_TOKEN,
    TERRITORY_API_KEY,
    TERRITORY_API_URL,
    TERRITORY_CLAIM_RPC,
    TERRITORY_TABLE,
)
from ..errors import TerritoryClaimError, TerritoryPayloadError, TerritoryServiceError
from ..models import LatLon
from .features import TerritoryFeature, parse_feature, parse_features
from .response_handling import raise_for_territory_status
from .session import get_default_session

LOGGER = logging.getLogger(__name__)

__all__ = ["TerritoryClient", "TerritoryService"]


class TerritoryClient(Protocol):
    """Network boundary consumed by :class:`~territory_capture.store.TerritoryStore`."""

    def fetch_territories(self) -> List[TerritoryFeature]: ...

    def claim_territory(
        self,
        owner_id: str,
        activity: ActivityType,
        coordinates: Sequence[LatLon],
    ) -> TerritoryFeature: ...


class TerritoryService:
    """Fetches territories and submits claims against the backend."""

    def __init__(
        self,
        *,
        base_url: str = TERRITORY_API_URL,
        api_key: str = TERRITORY_API_KEY,
        access_token: str = TERRITORY_ACCESS_TOKEN,
        session: requests.Session | None = None,
        timeout: int = REQUEST_TIMEOUT,
    ) -> None:
        if not base_url:
            raise ValueError("TerritoryService requires a base_url (TERRITORY_API_URL)")
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._access_token = access_token
        self._session = session or get_default_session()
        self._timeout = timeout

    def fetch_territories(self) -> List[TerritoryFeature]:
        """Return every territory, most recently updated first.

        Malformed rows are skipped; only transport, HTTP and top-level payload
        errors raise.
        """

        url = f"{self._base_url}/rest/v1/{TERRITORY_TABLE}"
        params = {"select": "*", "order": "updated_at.desc"}
        data = self._request("GET", url, "fetch territories", params=params)
        if not isinstance(data, list):
            raise TerritoryPayloadError(
                f"fetch territories returned {type(data).__name__}, expected list"
            )
        features = parse_features(data)
        if len(features) != len(data):
            LOGGER.warning(
                "Dropped %d of %d territory rows while parsing",
                len(data) - len(features),
                len(data),
            )
        LOGGER.debug("Fetched %d territories", len(features))
        return features

    def claim_territory(
        self,
        owner_id: str,
        activity: ActivityType,
        coordinates: Sequence[LatLon],
    ) -> TerritoryFeature:
        """Submit a closed polygon and return the authoritative territory."""

        url = f"{self._base_url}/rest/v1/rpc/{TERRITORY_CLAIM_RPC}"
        payload = {
            "p_owner": owner_id,
            "p_activity": ActivityType(activity).value,
            "p_coordinates": [[float(lat), float(lon)] for lat, lon in coordinates],
        }
        LOGGER.info(
            "Claiming territory owner=%s activity=%s points=%d",
            owner_id,
            payload["p_activity"],
            len(coordinates),
        )
        data = self._request("POST", url, "claim territory", json=payload)
        rows = data if isinstance(data, list) else [data]
        if not rows or rows[0] is None:
            raise TerritoryClaimError("claim territory returned an empty response")
        feature = parse_feature(rows[0])
        if feature is None:
            raise TerritoryPayloadError("claim territory returned a malformed territory")
        return feature

    def _headers(self) -> Dict[str, str]:
        headers = {"apikey": self._api_key}
        token = self._access_token or self._api_key
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _request(
        self,
        method: str,
        url: str,
        context: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
    ) -> Any:
        try:
            response = self._session.request(
                method,
                url,
                headers=self._headers(),
                params=params,
                json=json,
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            message = f"{context} network error: {exc.__class__.__name__}"
            LOGGER.error(message)
            raise TerritoryServiceError(message) from exc
        raise_for_territory_status(response, context)
        try:
            return response.json()
        except ValueError as exc:
            message = f"{context} returned non-JSON payload"
            LOGGER.error(message)
            raise TerritoryPayloadError(message) from exc
