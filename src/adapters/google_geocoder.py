"""Reverse geocoding through the Google Maps Geocoding API."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Optional

import requests

from core.errors import GeocoderUnavailable

LOGGER = logging.getLogger(__name__)

GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"


class GoogleGeocoder:
    """GeocoderPort backed by a blocking HTTP call run in a worker thread."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout_seconds: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._api_key = api_key or os.getenv("GOOGLE_MAPS_API_KEY")
        self._timeout = timeout_seconds
        self._session = session or requests.Session()

    async def reverse_geocode(self, latitude: float, longitude: float) -> str:
        return await asyncio.to_thread(self._lookup, latitude, longitude)

    def _lookup(self, latitude: float, longitude: float) -> str:
        if not self._api_key:
            raise GeocoderUnavailable("GOOGLE_MAPS_API_KEY is not configured")
        try:
            response = self._session.get(
                GEOCODE_URL,
                params={"latlng": f"{latitude},{longitude}", "key": self._api_key},
                timeout=self._timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise GeocoderUnavailable(f"Geocoding request failed: {exc}") from exc

        results = data.get("results") or []
        if not results or not results[0].get("formatted_address"):
            raise GeocoderUnavailable(f"No address for {latitude}, {longitude} (status {data.get('status')})")
        address = results[0]["formatted_address"]
        LOGGER.debug("Geocoded %s, %s to %s", latitude, longitude, address)
        return address
