"""Async HTTP client for OpenStreetMap Nominatim geocoding."""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from localheroes_service.logging import get_logger


@dataclass(frozen=True)
class Coordinates:
    """A resolved latitude/longitude pair."""

    latitude: float
    longitude: float


class GeocodingClient:
    """
    Resolves free-text addresses to coordinates.

    Geocoding is a degradable feature: any failure (network, unexpected
    status, malformed or empty result) is logged and reported as None, and
    the caller stores the address without coordinates.
    """

    def __init__(self, base_url: str, user_agent: str, timeout_seconds: int) -> None:
        self._base_url = base_url
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
            headers={"User-Agent": user_agent, "Accept": "application/json"},
        )

    async def geocode(self, address: str) -> Coordinates | None:
        """Return the best match for an address, or None."""
        logger = get_logger(__name__)

        try:
            response = await self._client.get(
                "/search",
                params={"format": "json", "q": address, "limit": 1},
            )
        except httpx.HTTPError as exc:
            logger.warning(
                "Geocoding request failed",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            return None

        if response.status_code != 200:
            logger.warning(
                "Geocoding unexpected status",
                extra={"status_code": response.status_code, "base_url": self._base_url},
            )
            return None

        try:
            results = response.json()
            if not isinstance(results, list) or len(results) == 0:
                return None
            return Coordinates(
                latitude=float(results[0]["lat"]),
                longitude=float(results[0]["lon"]),
            )
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Geocoding response malformed", extra={"error": str(exc)})
            return None

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
